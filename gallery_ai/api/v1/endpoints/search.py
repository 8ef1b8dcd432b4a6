import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from gallery_ai.api.deps import get_search_engine
from gallery_ai.db.base import get_db
from gallery_ai.repositories.gallery_repo import GalleryRepository
from gallery_ai.schemas.search import SearchResponse
from gallery_ai.services.search.photo_search import PhotoSearchEngine

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/{gallery_id}/search", response_model=SearchResponse)
async def search_photos(
    gallery_id: str,
    q: str = Query("", max_length=500, description="Natural-language query"),
    db: Session = Depends(get_db),
    engine: PhotoSearchEngine = Depends(get_search_engine)
):
    """Search analyzed photos in a gallery."""
    query = q.strip()
    if not query:
        return SearchResponse(query=q, results=[], total_results=0)

    gallery = GalleryRepository(db).get_by_id(gallery_id)
    if not gallery:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Gallery {gallery_id} not found"
        )
    if not gallery.ai_search_enabled:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="AI search is not enabled for this gallery"
        )

    results = await engine.search_gallery_photos(gallery_id, query)
    logger.info(f"Search '{query}' in gallery {gallery_id}: {len(results)} result(s)")
    return SearchResponse(query=query, results=results, total_results=len(results))
