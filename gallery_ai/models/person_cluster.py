"""Person cluster model."""
from sqlalchemy import Column, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from gallery_ai.db.base import Base
from .base import JSONType, TimestampMixin, generate_id


class PersonCluster(Base, TimestampMixin):
    """
    One recurring person within a gallery.

    Rebuilt from scratch on every clustering run; `name` is the only
    user-supplied field and is lost on rebuild.
    """

    __tablename__ = 'person_clusters'

    id = Column(String(36), primary_key=True, default=generate_id, index=True)
    gallery_id = Column(String(36), ForeignKey('galleries.id', ondelete='CASCADE'), nullable=False, index=True)

    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    role = Column(String(100), nullable=True)
    face_description = Column(Text, nullable=True)

    photo_ids = Column(JSONType, nullable=False, default=list)
    embedding_face_ids = Column(JSONType, nullable=False, default=list)
    representative_face_id = Column(String(255), nullable=True)

    # Relationships
    gallery = relationship('Gallery', back_populates='person_clusters')

    def __repr__(self) -> str:
        return f'<PersonCluster(id={self.id}, role={self.role}, photos={len(self.photo_ids or [])})>'
