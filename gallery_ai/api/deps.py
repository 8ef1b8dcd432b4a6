"""Dependencies for API endpoints."""
from fastapi import Depends
from sqlalchemy.orm import Session

from gallery_ai.app.config import Settings, get_settings
from gallery_ai.db.base import get_db
from gallery_ai.services.analysis.gallery_analyzer import GalleryAnalyzer
from gallery_ai.services.factory import build_gallery_analyzer, build_search_engine
from gallery_ai.services.search.photo_search import PhotoSearchEngine


def get_gallery_analyzer(
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings)
) -> GalleryAnalyzer:
    return build_gallery_analyzer(db, config)


def get_search_engine(
    db: Session = Depends(get_db),
    config: Settings = Depends(get_settings)
) -> PhotoSearchEngine:
    return build_search_engine(db, config)
