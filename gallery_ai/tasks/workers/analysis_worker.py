"""
Gallery Analysis Celery Workers
===============================

Entry points used by the API to run the analysis core in the background.

Tasks:
- Analyze a gallery (photo pipeline, retries, clustering)
- Re-cluster persons for a gallery

Each task opens its own database session and drives the async core with
`asyncio.run`. Database errors retry the whole task with backoff; the
core's own per-photo retry loop is separate.
"""

import asyncio
import logging
import time
import traceback
from typing import Any, Dict

from celery import Task
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gallery_ai.db.base import SessionLocal
from gallery_ai.services.factory import build_clusterer, build_gallery_analyzer
from gallery_ai.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


class AnalysisTask(Task):
    """Base task for analysis operations."""

    autoretry_for = (SQLAlchemyError,)
    retry_kwargs = {'max_retries': 3}
    retry_backoff = True
    retry_backoff_max = 600
    retry_jitter = True

    def get_db(self) -> Session:
        """Get database session."""
        return SessionLocal()

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure."""
        logger.error(
            f"Task {task_id} failed: {str(exc)}",
            extra={
                "task_id": task_id,
                "args": args,
                "traceback": traceback.format_exc()
            }
        )

    def on_success(self, retval, task_id, args, kwargs):
        logger.info(f"Task {task_id} completed successfully", extra={"task_id": task_id, "result": retval})


@celery_app.task(
    bind=True,
    base=AnalysisTask,
    name='tasks.analyze_gallery',
    track_started=True
)
def analyze_gallery_task(self, gallery_id: str) -> Dict[str, Any]:
    """
    Analyze every unfinished photo in a gallery.

    Args:
        gallery_id: Gallery UUID

    Returns:
        Final analysis status summary
    """
    db = self.get_db()
    start_time = time.time()

    try:
        logger.info(f"Starting analysis of gallery {gallery_id}")
        analyzer = build_gallery_analyzer(db)
        asyncio.run(analyzer.analyze_gallery(gallery_id))

        status = analyzer.get_analysis_status(gallery_id)
        status["duration_seconds"] = round(time.time() - start_time, 2)
        return status

    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()


@celery_app.task(
    bind=True,
    base=AnalysisTask,
    name='tasks.cluster_persons',
    track_started=True
)
def cluster_persons_task(self, gallery_id: str) -> Dict[str, Any]:
    """Rebuild person clusters for a gallery."""
    db = self.get_db()
    try:
        asyncio.run(build_clusterer(db).cluster_persons(gallery_id))
        return {"gallery_id": gallery_id, "status": "clustered"}
    except SQLAlchemyError:
        db.rollback()
        raise
    finally:
        db.close()
