"""
Photo Analysis Stage
====================

Runs one photo through the pipeline:

    fetch image -> CV face detection -> LLM annotation -> merge
    -> face indexing -> search tags -> COMPLETED record

Every failure is caught at the photo boundary and persisted as a FAILED
record with a `[CODE]` message. `analyze_photo` never raises.
"""

import json
import logging
from typing import List, Optional, Sequence

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from gallery_ai.app.config import Settings, settings as default_settings
from gallery_ai.models.enums import DetectionSource
from gallery_ai.repositories.analysis_repo import InvalidTransitionError, PhotoAnalysisRepository
from gallery_ai.schemas.analysis import (
    FacePosition,
    PersonFace,
    PhotoAnalysisResult,
    encode_faces,
)
from gallery_ai.services.ai.errors import (
    ErrorCode,
    PhotoAnalysisError,
    error_code_for,
    format_error_message,
)
from gallery_ai.services.ai.gemini import strip_code_fence
from gallery_ai.services.ai.prompts import build_photo_analysis_prompt
from gallery_ai.services.analysis.interfaces import Annotator, FaceDetector, FaceIndex, ImageStore
from gallery_ai.services.face.cropper import FaceCropper, decode_image
from gallery_ai.services.face.rekognition import CVDetectedFace

logger = logging.getLogger(__name__)

EMOTION_TO_EXPRESSION = {
    "HAPPY": "smiling",
    "CALM": "neutral",
    "SURPRISED": "surprised",
    "SAD": "sad",
    "ANGRY": "serious",
    "DISGUSTED": "serious",
    "CONFUSED": "neutral",
    "FEAR": "surprised",
}


def emotion_to_expression(emotion: Optional[str]) -> str:
    if not emotion:
        return "neutral"
    return EMOTION_TO_EXPRESSION.get(emotion.upper(), "neutral")


def age_bucket(age_low: Optional[int], age_high: Optional[int]) -> str:
    """Map a CV age range to child/teen/young_adult/adult/senior by its midpoint."""
    if age_low is None or age_high is None:
        return "adult"
    mid = (age_low + age_high) / 2
    if mid < 13:
        return "child"
    if mid < 20:
        return "teen"
    if mid < 30:
        return "young_adult"
    if mid < 60:
        return "adult"
    return "senior"


def cv_prompt_faces(cv_faces: Sequence[CVDetectedFace]) -> List[dict]:
    return [
        {
            "face_id": f"face_{i + 1}",
            "position": face.bounding_box.as_dict(),
            "age_range": age_bucket(face.age_low, face.age_high),
            "expression": emotion_to_expression(face.top_emotion),
        }
        for i, face in enumerate(cv_faces)
    ]


def parse_analysis_response(raw: str) -> PhotoAnalysisResult:
    """
    Parse model output into a `PhotoAnalysisResult`.

    Raises:
        PhotoAnalysisError: PARSE_ERROR for non-JSON text, VALIDATION_ERROR
            for JSON that is not an object or does not fit the schema
    """
    text = strip_code_fence(raw)
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise PhotoAnalysisError(
            f"Failed to parse model response as JSON: {text[:200]}",
            ErrorCode.PARSE_ERROR,
            e
        )

    if not isinstance(data, dict):
        raise PhotoAnalysisError(
            f"Expected a JSON object, got {type(data).__name__}",
            ErrorCode.VALIDATION_ERROR
        )

    try:
        return PhotoAnalysisResult.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0]
        location = ".".join(str(part) for part in first["loc"]) or "<root>"
        raise PhotoAnalysisError(
            f"Model response failed validation: {e.error_count()} error(s), "
            f"first at {location}: {first['msg']}",
            ErrorCode.VALIDATION_ERROR,
            e
        )


def merge_faces(cv_faces: Sequence[CVDetectedFace], llm_people: Sequence[PersonFace]) -> List[PersonFace]:
    """
    Combine CV detections with LLM annotations.

    CV is authoritative for boxes and count; annotations are matched by
    `face_{i+1}`. Without CV faces the LLM list is used as-is.
    """
    if not cv_faces:
        return [
            person.model_copy(update={
                "face_id": person.face_id or f"face_{i + 1}",
                "detection_source": DetectionSource.llm,
                "embedding_face_id": None,
                "person_cluster_id": None,
            })
            for i, person in enumerate(llm_people)
        ]

    annotations = {person.face_id: person for person in llm_people if person.face_id}
    merged = []
    for i, cv_face in enumerate(cv_faces):
        face_id = f"face_{i + 1}"
        annotation = annotations.get(face_id)
        merged.append(PersonFace(
            face_id=face_id,
            appearance=annotation.appearance if annotation else "person",
            role=annotation.role if annotation else None,
            expression=annotation.expression if annotation else emotion_to_expression(cv_face.top_emotion),
            age_range=annotation.age_range if annotation else age_bucket(cv_face.age_low, cv_face.age_high),
            position=FacePosition(**cv_face.bounding_box.as_dict()),
            confidence=cv_face.confidence,
            detection_source=DetectionSource.rekognition,
        ))
    return merged


def extract_search_tags(result: PhotoAnalysisResult, faces: Sequence[PersonFace]) -> List[str]:
    """Flatten annotation fields into lower-cased, de-duplicated tags (first occurrence order)."""
    values: List[str] = []
    values.extend(result.tags)
    values.extend(result.activities)
    values.extend(result.objects)
    values.extend([result.scene, result.mood, result.composition])
    for face in faces:
        values.extend([face.role or "", face.expression, face.age_range])

    tags = []
    seen = set()
    for value in values:
        if not isinstance(value, str):
            continue
        tag = value.lower().strip()
        if tag and tag not in seen:
            seen.add(tag)
            tags.append(tag)
    return tags


class PhotoAnalyzer:
    """Per-photo analysis pipeline."""

    def __init__(
        self,
        db: Session,
        image_store: ImageStore,
        detector: FaceDetector,
        annotator: Annotator,
        face_index: Optional[FaceIndex] = None,
        config: Optional[Settings] = None,
    ):
        self.db = db
        self.config = config or default_settings
        self.analyses = PhotoAnalysisRepository(db)
        self.image_store = image_store
        self.detector = detector
        self.annotator = annotator
        self.face_index = face_index
        self.cropper = FaceCropper(
            padding=self.config.FACE_CROP_PADDING,
            min_size=self.config.FACE_MIN_CROP_PX,
        )

    async def analyze_photo(self, photo_id: str, gallery_id: str, collection_id: Optional[str] = None) -> None:
        """
        Analyze one photo and persist the outcome.

        Ends with the record COMPLETED or FAILED. A record that cannot enter
        PROCESSING (already COMPLETED, or owned by a live attempt) is left
        untouched.
        """
        try:
            self.analyses.mark_processing(photo_id, gallery_id)
        except InvalidTransitionError:
            logger.warning(f"Skipping photo {photo_id}: record is not startable")
            return
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Could not start analysis for photo {photo_id}")
            return

        try:
            await self._run_pipeline(photo_id, gallery_id, collection_id)
        except Exception as e:
            if isinstance(e, SQLAlchemyError):
                self.db.rollback()
            code = error_code_for(e)
            message = format_error_message(code, str(e) or type(e).__name__)
            logger.error(f"Analysis failed for photo {photo_id}: {message}")
            self._record_failure(photo_id, gallery_id, message)

    def _record_failure(self, photo_id: str, gallery_id: str, message: str) -> None:
        try:
            self.analyses.mark_failed(photo_id, gallery_id, message)
        except InvalidTransitionError as e:
            logger.warning(f"Failure for photo {photo_id} not recorded: {e}")
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(f"Could not persist failure for photo {photo_id}")

    async def _run_pipeline(self, photo_id: str, gallery_id: str, collection_id: Optional[str]) -> None:
        image_bytes, mime_type = await self._load_image(photo_id)

        cv_faces = await self._detect_faces(photo_id, image_bytes)

        prompt = build_photo_analysis_prompt(cv_prompt_faces(cv_faces))
        raw = await self.annotator.generate(
            image_bytes,
            mime_type,
            prompt,
            timeout=self.config.ANNOTATE_TIMEOUT_SECS,
        )
        result = parse_analysis_response(raw)

        faces = merge_faces(cv_faces, result.people)

        if collection_id and cv_faces and self.face_index is not None:
            await self._index_faces(photo_id, gallery_id, collection_id, image_bytes, faces)

        search_tags = extract_search_tags(result, faces)
        analysis = result.model_copy(update={"people": faces})

        self.analyses.mark_completed(
            photo_id,
            description=result.description,
            analysis_data=analysis.to_json_dict(),
            search_tags=search_tags,
            face_data=encode_faces(faces),
        )
        logger.info(f"Analyzed photo {photo_id}: {len(faces)} face(s), {len(search_tags)} tag(s)")

    async def _load_image(self, photo_id: str):
        photo = self.analyses.get_photo(photo_id)
        if photo is None:
            raise PhotoAnalysisError("Photo not found", ErrorCode.IMAGE_ERROR)

        key = photo.thumbnail_key or photo.s3_key
        try:
            image_bytes = await self.image_store.fetch(key)
        except Exception as e:
            raise PhotoAnalysisError(f"Failed to fetch image {key}: {e}", ErrorCode.IMAGE_ERROR, e)
        if not image_bytes:
            raise PhotoAnalysisError(f"Empty image at {key}", ErrorCode.IMAGE_ERROR)

        mime_type = photo.mime_type if (photo.mime_type or "").startswith("image/") else "image/jpeg"
        return image_bytes, mime_type

    async def _detect_faces(self, photo_id: str, image_bytes: bytes) -> List[CVDetectedFace]:
        try:
            return await self.detector.detect(image_bytes, min_confidence=self.config.FACE_MIN_CONFIDENCE)
        except Exception as e:
            logger.warning(f"Face detection failed for photo {photo_id}, using LLM faces only: {e}")
            return []

    async def _index_faces(
        self,
        photo_id: str,
        gallery_id: str,
        collection_id: str,
        image_bytes: bytes,
        faces: List[PersonFace],
    ) -> None:
        """Crop and index each CV face; failures skip that face only."""
        image = decode_image(image_bytes)
        if image is None:
            logger.warning(f"Could not decode photo {photo_id} for face indexing")
            return

        for i, face in enumerate(faces):
            crop = self.cropper.crop(image, face.position.model_dump())
            if crop is None:
                continue

            try:
                indexed = await self.face_index.index_face(collection_id, crop, f"{photo_id}_face_{i}")
            except Exception as e:
                logger.warning(f"Failed to index face {i} for photo {photo_id}: {e}")
                continue

            if indexed is not None:
                face.embedding_face_id = indexed.face_id

            if self.config.STORE_FACE_CROPS:
                key = f"faces/{gallery_id}/{photo_id}/face_{i}.jpg"
                try:
                    await self.image_store.put(key, crop, "image/jpeg")
                except Exception as e:
                    logger.warning(f"Failed to store face crop {key}: {e}")
