"""Import all models for Alembic."""
from .base import TimestampMixin, JSONType
from .enums import AnalysisStatus, DetectionSource
from .gallery import Gallery
from .photo import Photo
from .photo_analysis import PhotoAnalysis
from .person_cluster import PersonCluster

__all__ = [
    "TimestampMixin",
    "JSONType",
    "AnalysisStatus",
    "DetectionSource",
    "Gallery",
    "Photo",
    "PhotoAnalysis",
    "PersonCluster",
]
