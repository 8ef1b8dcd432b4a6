"""
AWS Rekognition Face Services
=============================

Two thin async wrappers over the boto3 Rekognition client:

- RekognitionFaceDetector: bounding boxes, age range and emotions
- RekognitionFaceIndex: per-gallery collections, indexing and similarity search

Blocking SDK calls run in a worker thread. Every SDK failure is re-raised
as a coded `PhotoAnalysisError` (throttling -> RATE_LIMIT, timeouts ->
TIMEOUT, anything else -> API_ERROR).
"""

import asyncio
from dataclasses import dataclass, field
import logging
from typing import Any, Callable, Dict, List, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import ClientError

from gallery_ai.app.config import Settings, settings as default_settings
from gallery_ai.services.ai.errors import (
    ErrorCode,
    PhotoAnalysisError,
    classify_client_error,
)

logger = logging.getLogger(__name__)


@dataclass
class BoundingBox:
    """Normalized box (fractions of image width/height)."""
    x: float
    y: float
    width: float
    height: float

    def as_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass
class CVDetectedFace:
    """Face detection result."""
    bounding_box: BoundingBox
    confidence: float
    age_low: Optional[int] = None
    age_high: Optional[int] = None
    emotions: List[Dict[str, Any]] = field(default_factory=list)  # [{"type": "HAPPY", "confidence": 97.1}]

    @property
    def top_emotion(self) -> Optional[str]:
        if not self.emotions:
            return None
        best = max(self.emotions, key=lambda e: e.get("confidence", 0.0))
        return best.get("type")


@dataclass
class IndexedFace:
    face_id: str
    confidence: float


@dataclass
class FaceMatch:
    face_id: str
    similarity: float


def get_rekognition_client(config: Settings):
    """Create a Rekognition client; credentials fall back to the default AWS chain."""
    return boto3.client(
        'rekognition',
        aws_access_key_id=config.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=config.AWS_SECRET_ACCESS_KEY,
        region_name=config.AWS_REGION,
        config=Config(
            connect_timeout=5,
            read_timeout=30,
            retries={'max_attempts': 2, 'mode': 'standard'}
        )
    )


def _normalize_box(box: Dict[str, Any]) -> BoundingBox:
    return BoundingBox(
        x=float(box.get('Left', 0.0)),
        y=float(box.get('Top', 0.0)),
        width=float(box.get('Width', 0.0)),
        height=float(box.get('Height', 0.0)),
    )


async def _call(operation: str, fn: Callable[..., Any], **kwargs) -> Any:
    """Run a blocking SDK call off the event loop and code its errors."""
    try:
        return await asyncio.to_thread(fn, **kwargs)
    except Exception as e:
        code = classify_client_error(e)
        if code == ErrorCode.RATE_LIMIT:
            message = f"Rekognition rate limit exceeded during {operation}"
        else:
            message = f"Rekognition {operation} failed: {e}"
        raise PhotoAnalysisError(message, code, e)


class RekognitionFaceDetector:
    """CV face detector backed by Rekognition DetectFaces."""

    def __init__(self, client=None, config: Optional[Settings] = None):
        self.config = config or default_settings
        self._client = client

    @property
    def client(self):
        """Lazy-load Rekognition client."""
        if self._client is None:
            self._client = get_rekognition_client(self.config)
        return self._client

    async def detect(self, image_bytes: bytes, min_confidence: float = 70.0) -> List[CVDetectedFace]:
        """
        Detect faces in an image.

        Args:
            image_bytes: Raw image content
            min_confidence: Minimum detection confidence (0-100)

        Returns:
            Faces in reading order (top to bottom, then left to right), so
            list position is a stable correlation key for `face_{i+1}`.
        """
        response = await _call(
            "detect_faces",
            self.client.detect_faces,
            Image={'Bytes': image_bytes},
            Attributes=['ALL'],
        )

        faces: List[CVDetectedFace] = []
        for detail in response.get('FaceDetails', []):
            confidence = float(detail.get('Confidence', 0.0))
            if confidence < min_confidence:
                continue

            age = detail.get('AgeRange') or {}
            faces.append(CVDetectedFace(
                bounding_box=_normalize_box(detail.get('BoundingBox', {})),
                confidence=confidence,
                age_low=age.get('Low'),
                age_high=age.get('High'),
                emotions=[
                    {"type": e.get('Type', 'UNKNOWN'), "confidence": float(e.get('Confidence', 0.0))}
                    for e in detail.get('Emotions', [])
                ],
            ))

        faces.sort(key=lambda f: (round(f.bounding_box.y, 1), f.bounding_box.x))
        return faces


class RekognitionFaceIndex:
    """Face embedding index backed by Rekognition collections."""

    def __init__(self, client=None, config: Optional[Settings] = None):
        self.config = config or default_settings
        self._client = client

    @property
    def client(self):
        """Lazy-load Rekognition client."""
        if self._client is None:
            self._client = get_rekognition_client(self.config)
        return self._client

    async def create_collection(self, collection_id: str) -> None:
        """Create a collection; an existing collection with that id is accepted."""
        try:
            await asyncio.to_thread(self.client.create_collection, CollectionId=collection_id)
            logger.info(f"Created face collection {collection_id}")
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ResourceAlreadyExistsException':
                logger.info(f"Face collection {collection_id} already exists")
                return
            raise PhotoAnalysisError(
                f"Rekognition create_collection failed: {e}",
                classify_client_error(e),
                e
            )

    async def delete_collection(self, collection_id: str) -> None:
        """Delete a collection; a missing collection is ignored."""
        try:
            await asyncio.to_thread(self.client.delete_collection, CollectionId=collection_id)
            logger.info(f"Deleted face collection {collection_id}")
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') == 'ResourceNotFoundException':
                return
            raise PhotoAnalysisError(
                f"Rekognition delete_collection failed: {e}",
                classify_client_error(e),
                e
            )

    async def index_face(
        self,
        collection_id: str,
        face_bytes: bytes,
        external_id: str
    ) -> Optional[IndexedFace]:
        """
        Index a cropped face.

        Returns:
            The stored face id and confidence, or None when Rekognition
            found no indexable face in the crop.
        """
        response = await _call(
            "index_faces",
            self.client.index_faces,
            CollectionId=collection_id,
            Image={'Bytes': face_bytes},
            ExternalImageId=external_id,
            MaxFaces=1,
            DetectionAttributes=['DEFAULT'],
        )

        records = response.get('FaceRecords') or []
        if not records:
            return None
        face = records[0].get('Face') or {}
        if not face.get('FaceId'):
            return None
        return IndexedFace(face_id=face['FaceId'], confidence=float(face.get('Confidence', 0.0)))

    async def search_faces_by_id(
        self,
        collection_id: str,
        face_id: str,
        similarity_threshold: float = 80.0,
        max_faces: int = 100
    ) -> List[FaceMatch]:
        """Faces in the collection matching `face_id` above the threshold (the query face excluded)."""
        response = await _call(
            "search_faces",
            self.client.search_faces,
            CollectionId=collection_id,
            FaceId=face_id,
            FaceMatchThreshold=similarity_threshold,
            MaxFaces=max_faces,
        )

        matches = []
        for match in response.get('FaceMatches', []):
            matched_id = (match.get('Face') or {}).get('FaceId')
            if matched_id:
                matches.append(FaceMatch(face_id=matched_id, similarity=float(match.get('Similarity', 0.0))))
        return matches

    async def delete_faces(self, collection_id: str, face_ids: List[str]) -> None:
        if not face_ids:
            return
        await _call(
            "delete_faces",
            self.client.delete_faces,
            CollectionId=collection_id,
            FaceIds=face_ids,
        )
