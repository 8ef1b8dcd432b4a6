"""Per-photo analysis record."""
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship

from gallery_ai.db.base import Base
from .base import JSONType, TimestampMixin, generate_id
from .enums import AnalysisStatus


class PhotoAnalysis(Base, TimestampMixin):
    """
    Durable analysis state for one photo.

    `analysis_data` and `face_data` hold camelCase JSON produced from
    `PhotoAnalysisResult` / `PersonFace`; decode them through the
    repository, never by hand.
    """

    __tablename__ = 'photo_analyses'

    id = Column(String(36), primary_key=True, default=generate_id)
    photo_id = Column(String(36), ForeignKey('photos.id', ondelete='CASCADE'), nullable=False, unique=True, index=True)
    gallery_id = Column(String(36), ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False, index=True)

    status = Column(SQLEnum(AnalysisStatus), nullable=False, default=AnalysisStatus.PENDING, index=True)

    description = Column(Text, nullable=True)
    analysis_data = Column(JSONType, nullable=True)
    search_tags = Column(JSONType, nullable=False, default=list)
    face_data = Column(JSONType, nullable=True)
    face_count = Column(Integer, nullable=False, default=0)

    error_message = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    analyzed_at = Column(DateTime, nullable=True)

    # Relationships
    photo = relationship('Photo', back_populates='analysis')

    def __repr__(self) -> str:
        return f'<PhotoAnalysis(photo_id={self.photo_id}, status={self.status})>'
