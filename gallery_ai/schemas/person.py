"""Person cluster schemas."""
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class PersonClusterRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    gallery_id: str
    name: Optional[str] = None
    description: Optional[str] = None
    role: Optional[str] = None
    face_description: Optional[str] = None
    photo_ids: List[str] = Field(default_factory=list)
    embedding_face_ids: List[str] = Field(default_factory=list)
    representative_face_id: Optional[str] = None
    created_at: Optional[datetime] = None


class PersonClusterRename(BaseModel):
    name: str = Field("", max_length=255)
