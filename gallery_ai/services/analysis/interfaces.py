"""Collaborator interfaces consumed by the analysis core."""
from typing import List, Optional, Protocol

from gallery_ai.services.face.rekognition import CVDetectedFace, FaceMatch, IndexedFace


class ImageStore(Protocol):
    async def fetch(self, key: str) -> bytes: ...

    async def put(self, key: str, data: bytes, content_type: str = "image/jpeg") -> None: ...


class FaceDetector(Protocol):
    async def detect(self, image_bytes: bytes, min_confidence: float = 70.0) -> List[CVDetectedFace]: ...


class Annotator(Protocol):
    async def generate(self, image_bytes: bytes, mime_type: str, prompt: str, timeout: float = 60.0) -> str: ...

    async def rank(self, prompt: str, timeout: float = 30.0) -> str: ...


class FaceIndex(Protocol):
    async def create_collection(self, collection_id: str) -> None: ...

    async def delete_collection(self, collection_id: str) -> None: ...

    async def index_face(self, collection_id: str, face_bytes: bytes, external_id: str) -> Optional[IndexedFace]: ...

    async def search_faces_by_id(
        self,
        collection_id: str,
        face_id: str,
        similarity_threshold: float = 80.0,
        max_faces: int = 100,
    ) -> List[FaceMatch]: ...

    async def delete_faces(self, collection_id: str, face_ids: List[str]) -> None: ...
