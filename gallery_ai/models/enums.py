"""Enums for database models."""
import enum


class AnalysisStatus(str, enum.Enum):
    """Per-photo analysis lifecycle."""
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class DetectionSource(str, enum.Enum):
    """Which component produced a face's bounding box."""
    rekognition = "rekognition"
    llm = "llm"
