"""
Photo analysis repository.

Owns every status change of a `PhotoAnalysis` row. Transitions are guarded:

    (none)                      -> PENDING      work discovery
    (none) | PENDING | FAILED   -> PROCESSING   analysis attempt starts
    PROCESSING | PENDING        -> COMPLETED    attempt succeeded
    (none) | PROCESSING | PENDING -> FAILED     attempt failed, retry_count += 1
    PROCESSING (stale)          -> PENDING      stale recovery
    FAILED                      -> PENDING      retry eligibility

COMPLETED and FAILED accept a PENDING source because stale recovery may
reset a record while its attempt is still running.

Every method commits before returning; callers run on the event-loop
thread and never hold a pending transaction across an await.
"""
from datetime import datetime, timedelta
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlalchemy import and_, func, or_, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from gallery_ai.models.enums import AnalysisStatus
from gallery_ai.models.photo import Photo
from gallery_ai.models.photo_analysis import PhotoAnalysis
from gallery_ai.schemas.search import SearchCandidate
from gallery_ai.services.ai.errors import is_retryable_message

logger = logging.getLogger(__name__)

_NEW = None

ALLOWED_SOURCES = {
    AnalysisStatus.PENDING: {_NEW, AnalysisStatus.PROCESSING, AnalysisStatus.FAILED},
    AnalysisStatus.PROCESSING: {_NEW, AnalysisStatus.PENDING, AnalysisStatus.FAILED},
    AnalysisStatus.COMPLETED: {AnalysisStatus.PROCESSING, AnalysisStatus.PENDING},
    AnalysisStatus.FAILED: {_NEW, AnalysisStatus.PROCESSING, AnalysisStatus.PENDING},
}

STALE_NOTE = "[STALE] Reset to PENDING after exceeding the {secs}s processing window"

_PG_CANDIDATES_SQL = text("""
    SELECT
        pa.photo_id,
        pa.description,
        pa.search_tags,
        (
            COALESCE(ts_rank(to_tsvector('english', COALESCE(pa.description, '')),
                             plainto_tsquery('english', :query)), 0) * 2
            + CASE WHEN pa.search_tags ?| CAST(:tokens AS text[]) THEN 1 ELSE 0 END
        ) AS rank
    FROM photo_analyses pa
    WHERE pa.gallery_id = :gallery_id
      AND pa.status = 'COMPLETED'
      AND (
        to_tsvector('english', COALESCE(pa.description, '')) @@ plainto_tsquery('english', :query)
        OR pa.search_tags ?| CAST(:tokens AS text[])
      )
    ORDER BY rank DESC
    LIMIT :limit
""")


class InvalidTransitionError(Exception):
    """Raised when a status change is not allowed from the record's current state."""

    def __init__(self, photo_id: str, current: Optional[AnalysisStatus], target: AnalysisStatus):
        self.photo_id = photo_id
        self.current = current
        self.target = target
        current_name = current.value if current else "NONE"
        super().__init__(
            f"Illegal analysis transition for photo {photo_id}: {current_name} -> {target.value}"
        )


def query_tokens(query: str) -> List[str]:
    """Lower-cased whitespace tokens longer than one character."""
    return [w for w in query.lower().split() if len(w) > 1]


class PhotoAnalysisRepository:
    """Repository for photo analysis records."""

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_photo(self, photo_id: str) -> Optional[PhotoAnalysis]:
        return self.db.query(PhotoAnalysis).filter(PhotoAnalysis.photo_id == photo_id).first()

    def get_photo(self, photo_id: str) -> Optional[Photo]:
        return self.db.query(Photo).filter(Photo.id == photo_id).first()

    def count_photos(self, gallery_id: str) -> int:
        return self.db.query(func.count(Photo.id)).filter(Photo.gallery_id == gallery_id).scalar() or 0

    def status_counts(self, gallery_id: str) -> Dict[str, int]:
        """Record counts per status, every status present (zero when absent)."""
        rows = (
            self.db.query(PhotoAnalysis.status, func.count(PhotoAnalysis.id))
            .filter(PhotoAnalysis.gallery_id == gallery_id)
            .group_by(PhotoAnalysis.status)
            .all()
        )
        counts = {status.value: 0 for status in AnalysisStatus}
        for status, count in rows:
            counts[AnalysisStatus(status).value] = count
        return counts

    def photo_ids_needing_work(self, gallery_id: str, stale_after_secs: int) -> List[str]:
        """
        Photos with no record or a non-COMPLETED record, in gallery order.

        PROCESSING records updated within the staleness window belong to a
        live attempt and are skipped.
        """
        cutoff = datetime.utcnow() - timedelta(seconds=stale_after_secs)
        rows = (
            self.db.query(Photo.id)
            .outerjoin(PhotoAnalysis, PhotoAnalysis.photo_id == Photo.id)
            .filter(Photo.gallery_id == gallery_id)
            .filter(or_(
                PhotoAnalysis.id.is_(None),
                PhotoAnalysis.status.in_([AnalysisStatus.PENDING, AnalysisStatus.FAILED]),
                and_(PhotoAnalysis.status == AnalysisStatus.PROCESSING, PhotoAnalysis.updated_at < cutoff),
            ))
            .order_by(Photo.order.asc(), Photo.created_at.asc())
            .all()
        )
        return [row[0] for row in rows]

    def retryable_failures(self, gallery_id: str, round_number: int) -> List[PhotoAnalysis]:
        """FAILED records with a retryable error tag and `retry_count <= round_number`."""
        failed = (
            self.db.query(PhotoAnalysis)
            .filter(
                PhotoAnalysis.gallery_id == gallery_id,
                PhotoAnalysis.status == AnalysisStatus.FAILED,
                PhotoAnalysis.retry_count <= round_number,
            )
            .all()
        )
        return [record for record in failed if is_retryable_message(record.error_message)]

    def completed_with_faces(self, gallery_id: str) -> List[PhotoAnalysis]:
        return (
            self.db.query(PhotoAnalysis)
            .filter(
                PhotoAnalysis.gallery_id == gallery_id,
                PhotoAnalysis.status == AnalysisStatus.COMPLETED,
                PhotoAnalysis.face_count > 0,
            )
            .order_by(PhotoAnalysis.created_at.asc(), PhotoAnalysis.photo_id.asc())
            .all()
        )

    def completed(self, gallery_id: str) -> List[PhotoAnalysis]:
        return (
            self.db.query(PhotoAnalysis)
            .filter(
                PhotoAnalysis.gallery_id == gallery_id,
                PhotoAnalysis.status == AnalysisStatus.COMPLETED,
            )
            .order_by(PhotoAnalysis.created_at.asc(), PhotoAnalysis.photo_id.asc())
            .all()
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def ensure_pending(self, gallery_id: str, photo_ids: Iterable[str]) -> int:
        """Insert PENDING records for photos that have none. Never overwrites."""
        photo_ids = list(photo_ids)
        if not photo_ids:
            return 0

        existing = {
            row[0] for row in
            self.db.query(PhotoAnalysis.photo_id).filter(PhotoAnalysis.photo_id.in_(photo_ids)).all()
        }
        missing = [pid for pid in photo_ids if pid not in existing]
        for photo_id in missing:
            self.db.add(PhotoAnalysis(
                photo_id=photo_id,
                gallery_id=gallery_id,
                status=AnalysisStatus.PENDING,
                search_tags=[],
            ))
        try:
            self.db.commit()
        except IntegrityError:
            # Another worker inserted some of these rows first; retry one by one
            self.db.rollback()
            created = 0
            for photo_id in missing:
                if self.get_by_photo(photo_id) is None:
                    self.db.add(PhotoAnalysis(
                        photo_id=photo_id,
                        gallery_id=gallery_id,
                        status=AnalysisStatus.PENDING,
                        search_tags=[],
                    ))
                    try:
                        self.db.commit()
                        created += 1
                    except IntegrityError:
                        self.db.rollback()
            return created
        return len(missing)

    def mark_processing(self, photo_id: str, gallery_id: str) -> PhotoAnalysis:
        record = self.get_by_photo(photo_id)
        if record is None:
            record = PhotoAnalysis(photo_id=photo_id, gallery_id=gallery_id, search_tags=[])
            self.db.add(record)
        self._check(photo_id, record, AnalysisStatus.PROCESSING)

        record.status = AnalysisStatus.PROCESSING
        record.error_message = None
        record.updated_at = datetime.utcnow()
        self.db.commit()
        return record

    def mark_completed(
        self,
        photo_id: str,
        *,
        description: str,
        analysis_data: Dict[str, Any],
        search_tags: List[str],
        face_data: List[Dict[str, Any]],
    ) -> PhotoAnalysis:
        record = self.get_by_photo(photo_id)
        self._check(photo_id, record, AnalysisStatus.COMPLETED)

        record.status = AnalysisStatus.COMPLETED
        record.description = description
        record.analysis_data = analysis_data
        record.search_tags = list(search_tags)
        record.face_data = list(face_data)
        record.face_count = len(face_data)
        record.analyzed_at = datetime.utcnow()
        record.error_message = None
        self.db.commit()
        return record

    def mark_failed(self, photo_id: str, gallery_id: str, error_message: str) -> PhotoAnalysis:
        record = self.get_by_photo(photo_id)
        if record is None:
            record = PhotoAnalysis(photo_id=photo_id, gallery_id=gallery_id, search_tags=[], retry_count=0)
            self.db.add(record)
        self._check(photo_id, record, AnalysisStatus.FAILED)

        record.status = AnalysisStatus.FAILED
        record.error_message = error_message
        record.retry_count = (record.retry_count or 0) + 1
        self.db.commit()
        return record

    def reset_stale(self, gallery_id: str, stale_after_secs: int) -> int:
        """Move PROCESSING records older than the window back to PENDING."""
        cutoff = datetime.utcnow() - timedelta(seconds=stale_after_secs)
        stale = (
            self.db.query(PhotoAnalysis)
            .filter(
                PhotoAnalysis.gallery_id == gallery_id,
                PhotoAnalysis.status == AnalysisStatus.PROCESSING,
                PhotoAnalysis.updated_at < cutoff,
            )
            .all()
        )
        for record in stale:
            record.status = AnalysisStatus.PENDING
            record.error_message = STALE_NOTE.format(secs=stale_after_secs)
        if stale:
            self.db.commit()
            logger.warning(f"Reset {len(stale)} stale PROCESSING records in gallery {gallery_id}")
        return len(stale)

    def reset_for_retry(self, records: Sequence[PhotoAnalysis]) -> List[str]:
        """FAILED -> PENDING, clearing the error and keeping retry_count."""
        photo_ids = []
        for record in records:
            self._check(record.photo_id, record, AnalysisStatus.PENDING)
            record.status = AnalysisStatus.PENDING
            record.error_message = None
            photo_ids.append(record.photo_id)
        if photo_ids:
            self.db.commit()
        return photo_ids

    # ------------------------------------------------------------------
    # Bulk writes
    # ------------------------------------------------------------------

    def save_face_data(self, record: PhotoAnalysis, face_data: List[Dict[str, Any]]) -> None:
        """Replace a record's face list (count is left untouched); the caller commits."""
        # Assign a new list so the JSON column is flagged dirty
        record.face_data = list(face_data)
        self.db.flush()

    def delete_for_gallery(self, gallery_id: str) -> int:
        deleted = (
            self.db.query(PhotoAnalysis)
            .filter(PhotoAnalysis.gallery_id == gallery_id)
            .delete(synchronize_session=False)
        )
        self.db.commit()
        return deleted

    # ------------------------------------------------------------------
    # Search retrieval
    # ------------------------------------------------------------------

    def search_candidates(self, gallery_id: str, query: str, limit: int = 50) -> List[SearchCandidate]:
        """
        COMPLETED records matching the query by description text or tags,
        best first. Rank is twice the text score plus one when any query
        token is an exact tag.
        """
        tokens = query_tokens(query)
        if self.db.get_bind().dialect.name == "postgresql":
            rows = self.db.execute(
                _PG_CANDIDATES_SQL,
                {"gallery_id": gallery_id, "query": query, "tokens": tokens, "limit": limit},
            ).all()
            return [
                SearchCandidate(
                    photo_id=row.photo_id,
                    description=row.description,
                    search_tags=list(row.search_tags or []),
                    rank=float(row.rank or 0.0),
                )
                for row in rows
            ]

        return self._score_candidates_in_python(gallery_id, tokens, limit)

    def _score_candidates_in_python(self, gallery_id: str, tokens: List[str], limit: int) -> List[SearchCandidate]:
        if not tokens:
            return []
        token_set = set(tokens)

        scored = []
        for record in self.completed(gallery_id):
            words = set((record.description or "").lower().replace(",", " ").replace(".", " ").split())
            text_score = len(token_set & words) / len(token_set)
            tags = list(record.search_tags or [])
            tag_overlap = bool(token_set & set(tags))
            if text_score == 0 and not tag_overlap:
                continue
            scored.append(SearchCandidate(
                photo_id=record.photo_id,
                description=record.description,
                search_tags=tags,
                rank=text_score * 2 + (1.0 if tag_overlap else 0.0),
            ))

        scored.sort(key=lambda c: c.rank, reverse=True)
        return scored[:limit]

    # ------------------------------------------------------------------

    @staticmethod
    def _check(photo_id: str, record: Optional[PhotoAnalysis], target: AnalysisStatus) -> None:
        current = record.status if record is not None else None
        # A freshly added row has no status until flush
        if record is not None and current is None:
            current = _NEW
        if current not in ALLOWED_SOURCES[target]:
            error = InvalidTransitionError(photo_id, current, target)
            logger.error(str(error))
            raise error
