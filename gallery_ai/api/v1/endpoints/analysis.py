"""
Gallery Analysis API Endpoints
==============================

- POST /galleries/{gallery_id}/analysis: start, restart or toggle analysis
- GET  /galleries/{gallery_id}/analysis: progress and per-status counts
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from gallery_ai.api.deps import get_gallery_analyzer
from gallery_ai.db.base import get_db
from gallery_ai.repositories.gallery_repo import GalleryRepository
from gallery_ai.schemas.gallery import (
    AnalysisStatusResponse,
    AnalyzeGalleryRequest,
    AnalyzeGalleryResponse,
)
from gallery_ai.services.analysis.gallery_analyzer import GalleryAnalyzer
from gallery_ai.tasks.workers.analysis_worker import analyze_gallery_task

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/{gallery_id}/analysis",
    response_model=AnalyzeGalleryResponse,
    status_code=status.HTTP_202_ACCEPTED
)
async def start_analysis(
    gallery_id: str,
    request: Optional[AnalyzeGalleryRequest] = None,
    db: Session = Depends(get_db),
    analyzer: GalleryAnalyzer = Depends(get_gallery_analyzer)
):
    """
    Start gallery analysis in the background.

    `toggle_enabled` only flips the AI search flag and starts nothing.
    `reanalyze` drops existing analyses, clusters and the face collection
    before queueing a fresh run.
    """
    request = request or AnalyzeGalleryRequest()
    galleries = GalleryRepository(db)
    gallery = galleries.get_by_id(gallery_id)
    if not gallery:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Gallery {gallery_id} not found"
        )

    if request.toggle_enabled is not None:
        galleries.set_search_enabled(gallery_id, request.toggle_enabled)
        state = "enabled" if request.toggle_enabled else "disabled"
        return AnalyzeGalleryResponse(
            message=f"AI search {state}",
            ai_search_enabled=request.toggle_enabled
        )

    if request.reanalyze:
        await analyzer.reset_gallery(gallery_id)
        logger.info(f"Gallery {gallery_id} reset for reanalysis")

    task = analyze_gallery_task.delay(gallery_id)
    logger.info(f"Queued analysis task {task.id} for gallery {gallery_id}")

    return AnalyzeGalleryResponse(
        message="Analysis started",
        task_id=str(task.id)
    )


@router.get("/{gallery_id}/analysis", response_model=AnalysisStatusResponse)
async def get_analysis_status(
    gallery_id: str,
    analyzer: GalleryAnalyzer = Depends(get_gallery_analyzer)
):
    """Analysis progress, search flag and record counts per status."""
    try:
        return AnalysisStatusResponse(**analyzer.get_analysis_status(gallery_id))
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
