"""Gallery model (analysis aggregate columns live here)."""
from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from gallery_ai.db.base import Base
from .base import TimestampMixin, generate_id


class Gallery(Base, TimestampMixin):
    """A collection of photos from one shoot; the unit of analysis and clustering."""

    __tablename__ = 'galleries'

    id = Column(String(36), primary_key=True, default=generate_id, index=True)
    name = Column(String(255), nullable=False)

    # Analysis aggregate
    analysis_progress = Column(Integer, nullable=False, default=0)
    ai_search_enabled = Column(Boolean, nullable=False, default=False)
    face_collection_id = Column(String(255), nullable=True)

    # Relationships
    photos = relationship('Photo', back_populates='gallery', cascade='all, delete-orphan')
    person_clusters = relationship('PersonCluster', back_populates='gallery', cascade='all, delete-orphan')

    def __repr__(self) -> str:
        return f'<Gallery(id={self.id}, progress={self.analysis_progress})>'
