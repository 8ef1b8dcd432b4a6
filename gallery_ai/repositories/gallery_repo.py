"""Gallery repository (analysis aggregate fields)."""
import logging
from typing import Optional

from sqlalchemy.orm import Session

from gallery_ai.models.gallery import Gallery

logger = logging.getLogger(__name__)


class GalleryRepository:
    """Repository for gallery-level analysis state."""

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, gallery_id: str) -> Optional[Gallery]:
        return self.db.query(Gallery).filter(Gallery.id == gallery_id).first()

    def get_for_update(self, gallery_id: str) -> Optional[Gallery]:
        """Load a gallery and hold a row lock on it until the transaction ends (Postgres)."""
        return (
            self.db.query(Gallery)
            .filter(Gallery.id == gallery_id)
            .with_for_update()
            .first()
        )

    def set_progress(self, gallery_id: str, progress: int) -> None:
        gallery = self.get_by_id(gallery_id)
        if gallery is None:
            return
        gallery.analysis_progress = max(0, min(100, int(progress)))
        self.db.commit()

    def finalize(self, gallery_id: str, ai_search_enabled: bool) -> None:
        """Mark analysis complete: progress 100 and the search flag."""
        gallery = self.get_by_id(gallery_id)
        if gallery is None:
            return
        gallery.analysis_progress = 100
        gallery.ai_search_enabled = ai_search_enabled
        self.db.commit()

    def set_search_enabled(self, gallery_id: str, enabled: bool) -> Optional[Gallery]:
        gallery = self.get_by_id(gallery_id)
        if gallery is None:
            return None
        gallery.ai_search_enabled = enabled
        self.db.commit()
        return gallery

    def set_face_collection(self, gallery_id: str, collection_id: Optional[str]) -> None:
        gallery = self.get_by_id(gallery_id)
        if gallery is None:
            return
        gallery.face_collection_id = collection_id
        self.db.commit()

    def reset_analysis(self, gallery_id: str) -> None:
        """Progress back to 0, search disabled, collection forgotten."""
        gallery = self.get_by_id(gallery_id)
        if gallery is None:
            return
        gallery.analysis_progress = 0
        gallery.ai_search_enabled = False
        gallery.face_collection_id = None
        self.db.commit()
        logger.info(f"Reset analysis state for gallery {gallery_id}")
