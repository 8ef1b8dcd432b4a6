"""Wiring of the analysis core with its production clients."""
from typing import Optional

from sqlalchemy.orm import Session

from gallery_ai.app.config import Settings, settings as default_settings
from gallery_ai.services.ai.gemini import GeminiAnnotator
from gallery_ai.services.analysis.gallery_analyzer import GalleryAnalyzer
from gallery_ai.services.analysis.photo_analyzer import PhotoAnalyzer
from gallery_ai.services.face.clustering import PersonClusterer
from gallery_ai.services.face.rekognition import (
    RekognitionFaceDetector,
    RekognitionFaceIndex,
    get_rekognition_client,
)
from gallery_ai.services.search.photo_search import PhotoSearchEngine
from gallery_ai.services.storage.s3 import S3Service


def build_gallery_analyzer(db: Session, config: Optional[Settings] = None) -> GalleryAnalyzer:
    """Orchestrator plus its photo stage and clusterer, sharing one Rekognition client and annotator."""
    config = config or default_settings
    rekognition = get_rekognition_client(config)
    face_index = RekognitionFaceIndex(client=rekognition, config=config)
    annotator = GeminiAnnotator(config=config)

    photo_analyzer = PhotoAnalyzer(
        db,
        image_store=S3Service(config=config),
        detector=RekognitionFaceDetector(client=rekognition, config=config),
        annotator=annotator,
        face_index=face_index,
        config=config,
    )
    clusterer = PersonClusterer(db, face_index=face_index, annotator=annotator, config=config)
    return GalleryAnalyzer(db, photo_analyzer, clusterer, face_index=face_index, config=config)


def build_clusterer(db: Session, config: Optional[Settings] = None) -> PersonClusterer:
    config = config or default_settings
    return PersonClusterer(
        db,
        face_index=RekognitionFaceIndex(config=config),
        annotator=GeminiAnnotator(config=config),
        config=config,
    )


def build_search_engine(db: Session, config: Optional[Settings] = None) -> PhotoSearchEngine:
    config = config or default_settings
    return PhotoSearchEngine(db, annotator=GeminiAnnotator(config=config), config=config)
