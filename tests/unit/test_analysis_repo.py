from datetime import datetime, timedelta

import pytest

from gallery_ai.models import AnalysisStatus, PhotoAnalysis
from gallery_ai.repositories.analysis_repo import (
    InvalidTransitionError,
    PhotoAnalysisRepository,
    query_tokens,
)


@pytest.fixture
def repo(db_session):
    return PhotoAnalysisRepository(db_session)


def _age(db_session, record: PhotoAnalysis, seconds: int) -> None:
    record.updated_at = datetime.utcnow() - timedelta(seconds=seconds)
    db_session.commit()


class TestTransitions:

    def test_ensure_pending_creates_missing_only(self, repo, make_gallery):
        gallery, photos = make_gallery(3)
        repo.mark_processing(photos[0].id, gallery.id)

        created = repo.ensure_pending(gallery.id, [p.id for p in photos])

        assert created == 2
        assert repo.get_by_photo(photos[0].id).status == AnalysisStatus.PROCESSING
        assert repo.get_by_photo(photos[1].id).status == AnalysisStatus.PENDING
        assert repo.ensure_pending(gallery.id, [p.id for p in photos]) == 0

    def test_happy_path(self, repo, make_gallery):
        gallery, photos = make_gallery(1)
        photo_id = photos[0].id
        repo.ensure_pending(gallery.id, [photo_id])

        repo.mark_processing(photo_id, gallery.id)
        record = repo.mark_completed(
            photo_id,
            description="A toast",
            analysis_data={"description": "A toast"},
            search_tags=["toast"],
            face_data=[{"faceId": "face_1"}, {"faceId": "face_2"}],
        )

        assert record.status == AnalysisStatus.COMPLETED
        assert record.face_count == 2
        assert record.analyzed_at is not None
        assert record.error_message is None

    def test_mark_failed_increments_retry_count(self, repo, make_gallery):
        gallery, photos = make_gallery(1)
        photo_id = photos[0].id

        repo.mark_processing(photo_id, gallery.id)
        repo.mark_failed(photo_id, gallery.id, "[TIMEOUT] slow")
        repo.mark_processing(photo_id, gallery.id)
        record = repo.mark_failed(photo_id, gallery.id, "[TIMEOUT] slow again")

        assert record.status == AnalysisStatus.FAILED
        assert record.retry_count == 2
        assert record.error_message == "[TIMEOUT] slow again"

    def test_mark_failed_without_record(self, repo, make_gallery):
        gallery, photos = make_gallery(1)

        record = repo.mark_failed(photos[0].id, gallery.id, "[IMAGE_ERROR] Photo not found")

        assert record.status == AnalysisStatus.FAILED
        assert record.retry_count == 1

    def test_completed_cannot_restart(self, repo, make_gallery):
        gallery, photos = make_gallery(1)
        photo_id = photos[0].id
        repo.mark_processing(photo_id, gallery.id)
        repo.mark_completed(photo_id, description="", analysis_data={}, search_tags=[], face_data=[])

        with pytest.raises(InvalidTransitionError):
            repo.mark_processing(photo_id, gallery.id)
        with pytest.raises(InvalidTransitionError):
            repo.mark_failed(photo_id, gallery.id, "[UNKNOWN] x")

    def test_processing_cannot_restart(self, repo, make_gallery):
        gallery, photos = make_gallery(1)
        repo.mark_processing(photos[0].id, gallery.id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            repo.mark_processing(photos[0].id, gallery.id)
        assert exc_info.value.current == AnalysisStatus.PROCESSING
        assert exc_info.value.target == AnalysisStatus.PROCESSING

    def test_cannot_complete_without_record(self, repo, make_gallery):
        gallery, photos = make_gallery(1)
        with pytest.raises(InvalidTransitionError):
            repo.mark_completed(photos[0].id, description="", analysis_data={}, search_tags=[], face_data=[])

    def test_reset_for_retry_keeps_retry_count(self, repo, make_gallery):
        gallery, photos = make_gallery(1)
        photo_id = photos[0].id
        repo.mark_processing(photo_id, gallery.id)
        record = repo.mark_failed(photo_id, gallery.id, "[API_ERROR] 500")

        assert repo.reset_for_retry([record]) == [photo_id]

        record = repo.get_by_photo(photo_id)
        assert record.status == AnalysisStatus.PENDING
        assert record.error_message is None
        assert record.retry_count == 1


class TestStaleRecovery:

    def test_reset_stale_only_touches_old_processing(self, repo, db_session, make_gallery):
        gallery, photos = make_gallery(2)
        old = repo.mark_processing(photos[0].id, gallery.id)
        repo.mark_processing(photos[1].id, gallery.id)
        _age(db_session, old, 600)

        assert repo.reset_stale(gallery.id, 300) == 1

        old = repo.get_by_photo(photos[0].id)
        assert old.status == AnalysisStatus.PENDING
        assert old.error_message.startswith("[STALE]")
        assert repo.get_by_photo(photos[1].id).status == AnalysisStatus.PROCESSING

    def test_stale_attempt_may_still_finish(self, repo, db_session, make_gallery):
        gallery, photos = make_gallery(1)
        record = repo.mark_processing(photos[0].id, gallery.id)
        _age(db_session, record, 600)
        repo.reset_stale(gallery.id, 300)

        record = repo.mark_completed(photos[0].id, description="late", analysis_data={}, search_tags=[], face_data=[])

        assert record.status == AnalysisStatus.COMPLETED


class TestWorkDiscovery:

    def test_needing_work(self, repo, db_session, make_gallery):
        gallery, photos = make_gallery(5)
        # 0: no record, 1: pending, 2: failed, 3: fresh processing, 4: completed
        repo.ensure_pending(gallery.id, [photos[1].id])
        repo.mark_processing(photos[2].id, gallery.id)
        repo.mark_failed(photos[2].id, gallery.id, "[IMAGE_ERROR] gone")
        repo.mark_processing(photos[3].id, gallery.id)
        repo.mark_processing(photos[4].id, gallery.id)
        repo.mark_completed(photos[4].id, description="", analysis_data={}, search_tags=[], face_data=[])

        needing = repo.photo_ids_needing_work(gallery.id, 300)

        assert needing == [photos[0].id, photos[1].id, photos[2].id]

    def test_stale_processing_needs_work(self, repo, db_session, make_gallery):
        gallery, photos = make_gallery(1)
        record = repo.mark_processing(photos[0].id, gallery.id)
        _age(db_session, record, 600)

        assert repo.photo_ids_needing_work(gallery.id, 300) == [photos[0].id]

    def test_retryable_failures(self, repo, make_gallery):
        gallery, photos = make_gallery(3)
        for photo, message in zip(photos, ["[TIMEOUT] a", "[PARSE_ERROR] b", "[RATE_LIMIT] c"]):
            repo.mark_processing(photo.id, gallery.id)
            repo.mark_failed(photo.id, gallery.id, message)
        # third photo has already used up round 1
        repo.mark_processing(photos[2].id, gallery.id)
        repo.mark_failed(photos[2].id, gallery.id, "[RATE_LIMIT] c")

        round_one = {r.photo_id for r in repo.retryable_failures(gallery.id, 1)}
        round_two = {r.photo_id for r in repo.retryable_failures(gallery.id, 2)}

        assert round_one == {photos[0].id}
        assert round_two == {photos[0].id, photos[2].id}

    def test_status_counts_include_every_status(self, repo, make_gallery):
        gallery, photos = make_gallery(2)
        repo.ensure_pending(gallery.id, [photos[0].id])

        counts = repo.status_counts(gallery.id)

        assert counts == {"PENDING": 1, "PROCESSING": 0, "COMPLETED": 0, "FAILED": 0}
        assert repo.count_photos(gallery.id) == 2


class TestSearchCandidates:

    def _complete(self, repo, gallery, photo, description, tags):
        repo.mark_processing(photo.id, gallery.id)
        repo.mark_completed(photo.id, description=description, analysis_data={}, search_tags=tags, face_data=[])

    def test_query_tokens(self):
        assert query_tokens("The Bride a cake") == ["the", "bride", "cake"]

    def test_scores_text_and_tags(self, repo, make_gallery):
        gallery, photos = make_gallery(3)
        self._complete(repo, gallery, photos[0], "The bride cuts the cake.", ["bride", "cake"])
        self._complete(repo, gallery, photos[1], "Guests dancing", ["dancing"])
        self._complete(repo, gallery, photos[2], "A cake table", ["dessert"])

        candidates = repo.search_candidates(gallery.id, "cake", limit=10)

        assert [c.photo_id for c in candidates] == [photos[0].id, photos[2].id]
        assert candidates[0].rank == pytest.approx(3.0)
        assert candidates[1].rank == pytest.approx(2.0)

    def test_ignores_unfinished_records(self, repo, make_gallery):
        gallery, photos = make_gallery(1)
        repo.mark_processing(photos[0].id, gallery.id)

        assert repo.search_candidates(gallery.id, "cake") == []

    def test_limit(self, repo, make_gallery):
        gallery, photos = make_gallery(3)
        for photo in photos:
            self._complete(repo, gallery, photo, "cake", ["cake"])

        assert len(repo.search_candidates(gallery.id, "cake", limit=2)) == 2
