import asyncio
import json

import pytest

from gallery_ai.repositories.analysis_repo import PhotoAnalysisRepository
from gallery_ai.schemas.search import SearchCandidate
from gallery_ai.services.ai.errors import ErrorCode, PhotoAnalysisError
from gallery_ai.services.search.photo_search import PhotoSearchEngine


@pytest.fixture
def engine(db_session, annotator, test_settings):
    return PhotoSearchEngine(db_session, annotator=annotator, config=test_settings)


def _candidates(n, tags=("cake", "reception", "joyful", "dancing")):
    return [
        SearchCandidate(photo_id=f"photo-{i}", description=f"Photo number {i}", search_tags=list(tags), rank=1.0)
        for i in range(n)
    ]


def _patch_candidates(mocker, engine, candidates):
    return mocker.patch.object(engine.analyses, "search_candidates", return_value=candidates)


class TestSearch:

    def test_blank_query(self, engine, mocker):
        retrieval = _patch_candidates(mocker, engine, _candidates(3))

        assert asyncio.run(engine.search_gallery_photos("g", "   ")) == []
        assert not retrieval.called

    def test_no_candidates(self, engine, mocker, annotator):
        _patch_candidates(mocker, engine, [])

        assert asyncio.run(engine.search_gallery_photos("g", "bride dancing with her father")) == []
        assert annotator.rank_prompts == []

    def test_fast_path_for_short_queries(self, engine, mocker, annotator):
        _patch_candidates(mocker, engine, _candidates(3))

        results = asyncio.run(engine.search_gallery_photos("g", "Cake"))

        assert [r.photo_id for r in results] == ["photo-0", "photo-1", "photo-2"]
        assert [r.relevance_score for r in results] == pytest.approx([1.0, 0.95, 0.90])
        assert results[0].match_reason == "Matched tags: cake"
        assert annotator.rank_prompts == []

    def test_fast_path_without_tag_match_shows_first_tags(self, engine, mocker):
        _patch_candidates(mocker, engine, _candidates(1))

        results = asyncio.run(engine.search_gallery_photos("g", "number"))

        assert results[0].match_reason == "Matched tags: cake, reception, joyful"

    def test_long_query_is_ranked(self, engine, mocker, annotator):
        _patch_candidates(mocker, engine, _candidates(3))
        annotator.rank_response = "```json\n" + json.dumps([
            {"index": 2, "relevanceScore": 0.6, "matchReason": "cake in background"},
            {"index": 0, "relevanceScore": 0.95, "matchReason": "cutting the cake"},
            {"index": 1, "relevanceScore": 0.2, "matchReason": "barely"},
        ]) + "\n```"

        results = asyncio.run(engine.search_gallery_photos("g", "couple cutting the wedding cake"))

        assert [r.photo_id for r in results] == ["photo-0", "photo-2"]
        assert results[0].relevance_score == pytest.approx(0.95)
        assert results[0].match_reason == "cutting the cake"
        assert 'relevance to the search query: "couple cutting the wedding cake"' in annotator.rank_prompts[0]

    def test_many_candidates_are_ranked_even_for_short_queries(self, engine, mocker, annotator):
        _patch_candidates(mocker, engine, _candidates(11))
        annotator.rank_response = json.dumps([{"index": 10, "relevanceScore": 0.8, "matchReason": "yes"}])

        results = asyncio.run(engine.search_gallery_photos("g", "cake"))

        assert [r.photo_id for r in results] == ["photo-10"]

    def test_bad_ranking_entries_are_dropped(self, engine, mocker, annotator):
        _patch_candidates(mocker, engine, _candidates(3))
        annotator.rank_response = json.dumps([
            {"index": 7, "relevanceScore": 0.9},
            {"index": "1", "relevanceScore": 0.9},
            {"index": True, "relevanceScore": 0.9},
            {"index": 1, "relevanceScore": "high"},
            "garbage",
            {"index": 1, "relevanceScore": 1.7, "matchReason": "very"},
            {"index": 1, "relevanceScore": 0.5, "matchReason": "duplicate"},
            {"index": 0, "relevanceScore": 0.4},
        ])

        results = asyncio.run(engine.search_gallery_photos("g", "the first dance together"))

        assert [r.photo_id for r in results] == ["photo-1", "photo-0"]
        assert results[0].relevance_score == 1.0
        assert results[1].match_reason == "Relevant to query"

    @pytest.mark.parametrize("response", [
        "I cannot rank these photos.",
        json.dumps({"index": 0}),
        PhotoAnalysisError("Gemini API rate limit exceeded", ErrorCode.RATE_LIMIT),
    ])
    def test_ranking_failure_falls_back_to_retrieval_order(self, engine, mocker, annotator, response):
        _patch_candidates(mocker, engine, _candidates(3))
        annotator.rank_response = response

        results = asyncio.run(engine.search_gallery_photos("g", "kids playing on the lawn"))

        assert [r.photo_id for r in results] == ["photo-0", "photo-1", "photo-2"]
        assert [r.relevance_score for r in results] == pytest.approx([1.0, 0.98, 0.96])
        assert all(r.match_reason == "Matched by text search" for r in results)


class TestSearchAgainstDatabase:

    def test_end_to_end_on_sqlite(self, engine, make_gallery, db_session):
        gallery, photos = make_gallery(3)
        repo = PhotoAnalysisRepository(db_session)
        for photo, description, tags in [
            (photos[0], "The bride and groom cut the cake", ["bride", "groom", "cake"]),
            (photos[1], "Guests on the dance floor", ["dancing", "guests"]),
            (photos[2], "Cake table with flowers", ["flowers"]),
        ]:
            repo.mark_processing(photo.id, gallery.id)
            repo.mark_completed(photo.id, description=description, analysis_data={}, search_tags=tags, face_data=[])

        results = asyncio.run(engine.search_gallery_photos(gallery.id, "cake"))

        assert [r.photo_id for r in results] == [photos[0].id, photos[2].id]
        assert results[0].match_reason == "Matched tags: cake"
        assert results[1].match_reason == "Matched tags: flowers"
