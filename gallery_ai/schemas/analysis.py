"""Typed analysis payloads stored inside PhotoAnalysis JSON columns."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from gallery_ai.models.enums import DetectionSource


class CamelModel(BaseModel):
    """Reads and writes camelCase keys (LLM output and stored JSON), snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_json_dict(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class FacePosition(CamelModel):
    """Normalized bounding box, every value in [0, 1]."""
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @field_validator("x", "y", "width", "height", mode="before")
    @classmethod
    def clamp_unit(cls, v):
        if v is None:
            return 0.0
        return min(1.0, max(0.0, float(v)))


class PersonFace(CamelModel):
    face_id: str = ""
    appearance: str = "person"
    role: Optional[str] = None
    expression: str = "neutral"
    age_range: str = "adult"
    position: FacePosition = Field(default_factory=FacePosition)
    confidence: Optional[float] = None
    detection_source: DetectionSource = DetectionSource.llm
    embedding_face_id: Optional[str] = None
    person_cluster_id: Optional[str] = None

    @field_validator("role", mode="before")
    @classmethod
    def normalize_role(cls, v):
        # models sometimes answer the literal string "null"
        if v is None:
            return None
        v = str(v).strip()
        if not v or v.lower() in ("null", "none", "unknown"):
            return None
        return v

    @field_validator("position", mode="before")
    @classmethod
    def default_position(cls, v):
        return {} if v is None else v

    @field_validator("appearance", "expression", "age_range", mode="before")
    @classmethod
    def default_blank(cls, v, info):
        if v is None or (isinstance(v, str) and not v.strip()):
            return cls.model_fields[info.field_name].default
        return v


class PhotoAnalysisResult(CamelModel):
    description: str = ""
    people: List[PersonFace] = Field(default_factory=list)
    activities: List[str] = Field(default_factory=list)
    objects: List[str] = Field(default_factory=list)
    scene: str = ""
    mood: str = ""
    composition: str = ""
    tags: List[str] = Field(default_factory=list)

    @field_validator("scene", "mood", "composition", "description", mode="before")
    @classmethod
    def none_to_empty(cls, v):
        return "" if v is None else v

    @field_validator("activities", "objects", "tags", mode="before")
    @classmethod
    def string_items(cls, v):
        if v is None:
            return []
        if not isinstance(v, list):
            return v
        # numbers become strings; nested objects and nulls are dropped
        return [
            str(item) for item in v
            if isinstance(item, (str, int, float)) and not isinstance(item, bool)
        ]

    @field_validator("people", mode="before")
    @classmethod
    def none_to_people(cls, v):
        return [] if v is None else v


def decode_faces(raw: Optional[List[Dict[str, Any]]]) -> List[PersonFace]:
    """Decode a stored face_data column."""
    return [PersonFace.model_validate(item) for item in (raw or [])]


def encode_faces(faces: List[PersonFace]) -> List[Dict[str, Any]]:
    return [face.to_json_dict() for face in faces]
