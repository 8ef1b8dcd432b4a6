"""
Gallery Analysis Orchestrator
=============================

Drives every photo in a gallery to COMPLETED or FAILED, then clusters
people once.

Process:
1. Ensure the gallery's face collection (non-fatal)
2. Reset stale PROCESSING records
3. Discover work and insert missing PENDING records
4. Run photos in fixed-size concurrent batches with a delay between batches
5. Retry FAILED records with retryable errors, up to N rounds with backoff
6. Finalize progress and the search flag
7. Cluster persons (failure is logged, never raised)

All progress is recomputed from the database, so a run can be resumed
after a crash by simply calling it again.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from gallery_ai.app.config import Settings, settings as default_settings
from gallery_ai.models.enums import AnalysisStatus
from gallery_ai.repositories.analysis_repo import PhotoAnalysisRepository
from gallery_ai.repositories.gallery_repo import GalleryRepository
from gallery_ai.repositories.person_cluster_repo import PersonClusterRepository
from gallery_ai.services.ai.errors import ErrorCode, error_code_from_message
from gallery_ai.services.analysis.interfaces import FaceIndex
from gallery_ai.services.analysis.photo_analyzer import PhotoAnalyzer
from gallery_ai.services.face.clustering import PersonClusterer

logger = logging.getLogger(__name__)


def collection_id_for(gallery_id: str) -> str:
    return f"gallery-{gallery_id}"


def batch_progress(done: int, total: int) -> int:
    """Progress during a run; 100 is reserved for finalization."""
    if total <= 0:
        return 0
    return min(99, round(100 * done / total))


class GalleryAnalyzer:
    """Orchestrates analysis of a whole gallery."""

    def __init__(
        self,
        db: Session,
        photo_analyzer: PhotoAnalyzer,
        clusterer: PersonClusterer,
        face_index: Optional[FaceIndex] = None,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.config = config or default_settings
        self.analyses = PhotoAnalysisRepository(db)
        self.galleries = GalleryRepository(db)
        self.clusters = PersonClusterRepository(db)
        self.photo_analyzer = photo_analyzer
        self.clusterer = clusterer
        self.face_index = face_index

    async def analyze_gallery(self, gallery_id: str) -> None:
        """Analyze every unfinished photo in the gallery. Safe to call repeatedly."""
        gallery = self.galleries.get_by_id(gallery_id)
        if gallery is None:
            raise ValueError(f"Gallery {gallery_id} not found")

        collection_id = await self.ensure_collection(gallery_id)

        self.analyses.reset_stale(gallery_id, self.config.ANALYSIS_STALE_AFTER_SECS)

        photo_ids = self.analyses.photo_ids_needing_work(gallery_id, self.config.ANALYSIS_STALE_AFTER_SECS)
        total = self.analyses.count_photos(gallery_id)
        logger.info(f"Gallery {gallery_id}: {len(photo_ids)} of {total} photo(s) need analysis")

        if photo_ids:
            self.analyses.ensure_pending(gallery_id, photo_ids)
            await self._run_batches(gallery_id, photo_ids, collection_id, total)

        retried = await self._retry_failures(gallery_id, collection_id, total)

        counts = self.analyses.status_counts(gallery_id)
        completed = counts[AnalysisStatus.COMPLETED.value]
        failed = counts[AnalysisStatus.FAILED.value]
        self.galleries.finalize(gallery_id, ai_search_enabled=completed > 0)
        logger.info(f"Gallery {gallery_id} analysis finished: {completed} completed, {failed} failed")

        if not photo_ids and not retried:
            # Nothing changed since the last run; existing clusters stay valid
            return

        try:
            await self.clusterer.cluster_persons(gallery_id)
        except Exception as e:
            self.db.rollback()
            logger.error(f"Person clustering failed for gallery {gallery_id}: {e}")

    async def ensure_collection(self, gallery_id: str) -> Optional[str]:
        """Return the gallery's face collection id, creating it on first use; None on failure."""
        gallery = self.galleries.get_by_id(gallery_id)
        if gallery is not None and gallery.face_collection_id:
            return gallery.face_collection_id
        if self.face_index is None:
            return None

        collection_id = collection_id_for(gallery_id)
        try:
            await self.face_index.create_collection(collection_id)
        except Exception as e:
            logger.warning(f"Face collection unavailable for gallery {gallery_id}, indexing disabled: {e}")
            return None

        self.galleries.set_face_collection(gallery_id, collection_id)
        return collection_id

    async def _run_batches(
        self,
        gallery_id: str,
        photo_ids: List[str],
        collection_id: Optional[str],
        total: int,
    ) -> None:
        batch_size = self.config.ANALYSIS_BATCH_SIZE
        for start in range(0, len(photo_ids), batch_size):
            batch = photo_ids[start:start + batch_size]
            outcomes = await asyncio.gather(
                *(self.photo_analyzer.analyze_photo(photo_id, gallery_id, collection_id) for photo_id in batch),
                return_exceptions=True,
            )
            for photo_id, outcome in zip(batch, outcomes):
                if isinstance(outcome, Exception):
                    logger.error(f"Unexpected error analyzing photo {photo_id}: {outcome}")

            counts = self.analyses.status_counts(gallery_id)
            done = counts[AnalysisStatus.COMPLETED.value] + counts[AnalysisStatus.FAILED.value]
            self.galleries.set_progress(gallery_id, batch_progress(done, total))

            if start + batch_size < len(photo_ids) and self.config.ANALYSIS_BATCH_DELAY_SECS > 0:
                await asyncio.sleep(self.config.ANALYSIS_BATCH_DELAY_SECS)

    async def _retry_failures(self, gallery_id: str, collection_id: Optional[str], total: int) -> bool:
        """Run the bounded retry rounds. Returns True if anything was retried."""
        retried = False
        for round_number in range(1, self.config.ANALYSIS_MAX_RETRY_ROUNDS + 1):
            failures = self.analyses.retryable_failures(gallery_id, round_number)
            if not failures:
                break

            rate_limited = any(
                error_code_from_message(record.error_message) == ErrorCode.RATE_LIMIT
                for record in failures
            )
            delay = self.config.ANALYSIS_RETRY_BACKOFF_SECS * (2 ** (round_number - 1))
            if rate_limited:
                delay += self.config.ANALYSIS_RATE_LIMIT_DELAY_SECS

            logger.info(
                f"Retry round {round_number} for gallery {gallery_id}: "
                f"{len(failures)} photo(s), waiting {delay:.0f}s"
            )
            if delay > 0:
                await asyncio.sleep(delay)

            photo_ids = self.analyses.reset_for_retry(failures)
            await self._run_batches(gallery_id, photo_ids, collection_id, total)
            retried = True
        return retried

    def get_analysis_status(self, gallery_id: str) -> Dict[str, Any]:
        """Progress, search flag, photo total and per-status counts."""
        gallery = self.galleries.get_by_id(gallery_id)
        if gallery is None:
            raise ValueError(f"Gallery {gallery_id} not found")
        return {
            "gallery_id": gallery_id,
            "progress": gallery.analysis_progress,
            "ai_search_enabled": gallery.ai_search_enabled,
            "total_photos": self.analyses.count_photos(gallery_id),
            "stats": self.analyses.status_counts(gallery_id),
        }

    async def reset_gallery(self, gallery_id: str) -> None:
        """
        Drop all analysis output for a gallery before reanalysis.

        Deletes analyses and clusters, deletes the face collection
        (best-effort) and resets progress and the search flag.
        """
        gallery = self.galleries.get_by_id(gallery_id)
        if gallery is None:
            raise ValueError(f"Gallery {gallery_id} not found")

        collection_id = gallery.face_collection_id
        self.clusters.delete_by_gallery(gallery_id)
        self.analyses.delete_for_gallery(gallery_id)

        if collection_id and self.face_index is not None:
            try:
                await self.face_index.delete_collection(collection_id)
            except Exception as e:
                logger.warning(f"Could not delete face collection {collection_id}: {e}")

        self.galleries.reset_analysis(gallery_id)
