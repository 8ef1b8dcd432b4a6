"""Photo model."""
from sqlalchemy import Column, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from gallery_ai.db.base import Base
from .base import TimestampMixin, generate_id


class Photo(Base, TimestampMixin):
    """Uploaded photo. Owned by the upload subsystem; read-only for analysis."""

    __tablename__ = 'photos'

    id = Column(String(36), primary_key=True, default=generate_id, index=True)
    gallery_id = Column(String(36), ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False, index=True)

    # Storage info
    s3_key = Column(String(512), nullable=False)
    thumbnail_key = Column(String(512), nullable=True)
    mime_type = Column(String(100), nullable=False, default='image/jpeg')

    # Display order within the gallery
    order = Column(Integer, nullable=False, default=0)

    # Relationships
    gallery = relationship('Gallery', back_populates='photos')
    analysis = relationship('PhotoAnalysis', back_populates='photo', uselist=False, cascade='all, delete-orphan')

    def __repr__(self) -> str:
        return f'<Photo(id={self.id}, s3_key={self.s3_key})>'
