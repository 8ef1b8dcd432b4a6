import asyncio
from collections import Counter
from dataclasses import dataclass
import json
import logging
from typing import Dict, List, Optional, Tuple
import weakref

from sqlalchemy.orm import Session

from gallery_ai.app.config import Settings, settings as default_settings
from gallery_ai.models.person_cluster import PersonCluster
from gallery_ai.repositories.analysis_repo import PhotoAnalysisRepository
from gallery_ai.repositories.gallery_repo import GalleryRepository
from gallery_ai.repositories.person_cluster_repo import PersonClusterRepository
from gallery_ai.schemas.analysis import PersonFace, decode_faces, encode_faces
from gallery_ai.services.ai.gemini import strip_code_fence
from gallery_ai.services.ai.prompts import build_appearance_prompt
from gallery_ai.services.analysis.interfaces import Annotator, FaceIndex

logger = logging.getLogger(__name__)

# One lock map per running loop: an asyncio.Lock binds to a single loop
_loop_locks: "weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, Dict[str, asyncio.Lock]]" = (
    weakref.WeakKeyDictionary()
)


def gallery_lock(gallery_id: str) -> asyncio.Lock:
    """Lock serializing clustering runs for one gallery within the running event loop."""
    locks = _loop_locks.setdefault(asyncio.get_running_loop(), {})
    lock = locks.get(gallery_id)
    if lock is None:
        lock = locks[gallery_id] = asyncio.Lock()
    return lock


@dataclass
class FaceEntry:
    photo_id: str
    face: PersonFace

    @property
    def key(self) -> Tuple[str, str]:
        return self.photo_id, self.face.face_id


@dataclass
class AppearanceGroup:
    entries: List[FaceEntry]
    description: Optional[str]
    role: Optional[str]


def majority_role(entries: List[FaceEntry]) -> Optional[str]:
    """Most common role among members; ties go to the role seen first."""
    counts = Counter(
        entry.face.role.lower() for entry in entries if entry.face.role
    )
    if not counts:
        return None
    return max(counts, key=counts.get)


def unique_photo_ids(entries: List[FaceEntry]) -> List[str]:
    return list(dict.fromkeys(entry.photo_id for entry in entries))


def parse_appearance_groups(raw: str, entries: List[FaceEntry]) -> List[AppearanceGroup]:
    """
    Read the model's person groups.

    Out-of-range, non-integer and repeated indices are dropped, as is any
    face already claimed by an earlier group. Groups left with fewer than
    two faces are discarded.

    Raises:
        ValueError: if the response is not a JSON array
    """
    data = json.loads(strip_code_fence(raw))
    if not isinstance(data, list):
        raise ValueError(f"Expected a JSON array of groups, got {type(data).__name__}")

    claimed = set()
    groups = []
    for item in data:
        if not isinstance(item, dict):
            continue
        indices = []
        for index in item.get("faceIndices") or []:
            if isinstance(index, bool) or not isinstance(index, int):
                continue
            if 0 <= index < len(entries) and index not in claimed and index not in indices:
                indices.append(index)
        if len(indices) < 2:
            continue
        claimed.update(indices)
        members = [entries[index] for index in indices]

        role = item.get("role")
        role = str(role).strip().lower() if role is not None else ""
        if role in ("", "null", "none", "unknown"):
            role = None
        description = str(item.get("personDescription") or "").strip() or members[0].face.appearance
        groups.append(AppearanceGroup(entries=members, description=description, role=role))
    return groups


class PersonClusterer:
    """
    Groups the faces of a gallery into recurring people.

    Three passes over faces from COMPLETED analyses:
    1. Embedding pass: faces with an index id are grouped through
       similarity search against the gallery's face collection
    2. Role pass: faces without an index id are grouped by key role
       (bride, groom, officiant)
    3. Appearance pass: the remaining faces without an index id are
       grouped by the annotator from their text descriptions

    Clusters are rebuilt from scratch on every run, inside one transaction
    that holds a row lock on the gallery.

    The embedding pass takes each unvisited face as a seed and adds its
    direct unvisited matches. Match-above-threshold is not transitive, so
    the result is not guaranteed to be an equivalence-class partition.
    """

    def __init__(
        self,
        db: Session,
        face_index: Optional[FaceIndex] = None,
        annotator: Optional[Annotator] = None,
        config: Optional[Settings] = None
    ):
        self.db = db
        self.config = config or default_settings
        self.analyses = PhotoAnalysisRepository(db)
        self.galleries = GalleryRepository(db)
        self.clusters = PersonClusterRepository(db)
        self.face_index = face_index
        self.annotator = annotator
        self.key_roles = {role.lower() for role in self.config.CLUSTER_KEY_ROLES}

    async def cluster_persons(self, gallery_id: str) -> None:
        """Rebuild person clusters for a gallery and refresh face back-references."""
        async with gallery_lock(gallery_id):
            try:
                await self._rebuild(gallery_id)
                self.clusters.commit()
            except Exception:
                self.db.rollback()
                raise

    async def _rebuild(self, gallery_id: str) -> None:
        # Held until commit; concurrent rebuilds in other workers wait here
        gallery = self.galleries.get_for_update(gallery_id)
        collection_id = gallery.face_collection_id if gallery else None

        self.clusters.delete_by_gallery(gallery_id)

        records = self.analyses.completed_with_faces(gallery_id)
        entries = [
            FaceEntry(photo_id=record.photo_id, face=face)
            for record in records
            for face in decode_faces(record.face_data)
        ]
        if not entries:
            logger.info(f"No faces to cluster in gallery {gallery_id}")
            return

        embedding_groups: List[List[FaceEntry]] = []
        if collection_id and self.face_index is not None and any(e.face.embedding_face_id for e in entries):
            embedding_groups = await self._cluster_by_embedding(collection_id, entries)

        role_groups = self._cluster_by_role(entries)
        appearance_groups = await self._cluster_by_appearance(gallery_id, entries)

        by_embedding: Dict[str, str] = {}
        by_face: Dict[Tuple[str, str], str] = {}
        role_clusters: List[PersonCluster] = []

        for group in embedding_groups:
            representative = group[0].face
            embedding_ids = [entry.face.embedding_face_id for entry in group]
            cluster = self.clusters.create(
                gallery_id,
                role=majority_role(group),
                description=representative.appearance,
                photo_ids=unique_photo_ids(group),
                embedding_face_ids=embedding_ids,
                representative_face_id=representative.embedding_face_id,
            )
            for embedding_id in embedding_ids:
                by_embedding[embedding_id] = cluster.id

        for role, group in role_groups.items():
            cluster = self.clusters.create(
                gallery_id,
                role=role,
                description=group[0].face.appearance,
                photo_ids=unique_photo_ids(group),
            )
            role_clusters.append(cluster)

        for group in appearance_groups:
            cluster = self.clusters.create(
                gallery_id,
                role=group.role,
                description=group.description,
                photo_ids=unique_photo_ids(group.entries),
            )
            for entry in group.entries:
                by_face[entry.key] = cluster.id

        updated = self._assign_back_references(records, by_embedding, by_face, role_clusters)
        logger.info(
            f"Clustered gallery {gallery_id}: {len(embedding_groups)} embedding cluster(s), "
            f"{len(role_clusters)} role cluster(s), {len(appearance_groups)} appearance cluster(s), "
            f"{updated} record(s) updated"
        )

    async def _cluster_by_embedding(self, collection_id: str, entries: List[FaceEntry]) -> List[List[FaceEntry]]:
        """
        Seed-and-expand grouping through the face index.

        Returns:
            Groups of two or more faces, pairwise disjoint
        """
        known: Dict[str, FaceEntry] = {}
        for entry in entries:
            embedding_id = entry.face.embedding_face_id
            if embedding_id and embedding_id not in known:
                known[embedding_id] = entry

        visited = set()
        groups = []
        for seed_id, seed in known.items():
            if seed_id in visited:
                continue
            visited.add(seed_id)
            group = [seed]

            try:
                matches = await self.face_index.search_faces_by_id(
                    collection_id,
                    seed_id,
                    similarity_threshold=self.config.FACE_MATCH_THRESHOLD,
                    max_faces=self.config.FACE_SEARCH_MAX_FACES,
                )
            except Exception as e:
                logger.warning(f"Face search failed for {seed_id}: {e}")
                matches = []

            for match in matches:
                if match.face_id in known and match.face_id not in visited:
                    visited.add(match.face_id)
                    group.append(known[match.face_id])

            if len(group) >= 2:
                groups.append(group)

        return groups

    def _cluster_by_role(self, entries: List[FaceEntry]) -> Dict[str, List[FaceEntry]]:
        """Faces without an index id, grouped by key role (first-seen role order)."""
        groups: Dict[str, List[FaceEntry]] = {}
        for entry in entries:
            if entry.face.embedding_face_id or not entry.face.role:
                continue
            role = entry.face.role.lower()
            if role in self.key_roles:
                groups.setdefault(role, []).append(entry)
        return groups

    async def _cluster_by_appearance(self, gallery_id: str, entries: List[FaceEntry]) -> List[AppearanceGroup]:
        """
        Ask the annotator to group faces that have neither an index id nor a
        key role. Any failure leaves these faces unclustered.
        """
        if self.annotator is None:
            return []

        candidates = [
            entry for entry in entries
            if not entry.face.embedding_face_id
            and not (entry.face.role and entry.face.role.lower() in self.key_roles)
        ]
        if len(candidates) < 2:
            return []
        if len(candidates) > self.config.CLUSTER_APPEARANCE_MAX_FACES:
            logger.info(
                f"Skipping appearance clustering for gallery {gallery_id}: "
                f"{len(candidates)} faces exceeds {self.config.CLUSTER_APPEARANCE_MAX_FACES}"
            )
            return []

        prompt = build_appearance_prompt([
            {
                "photo_id": entry.photo_id,
                "face_id": entry.face.face_id,
                "appearance": entry.face.appearance,
                "age_range": entry.face.age_range,
                "expression": entry.face.expression,
                "role": entry.face.role,
            }
            for entry in candidates
        ])
        try:
            raw = await self.annotator.rank(prompt, timeout=self.config.CLUSTER_APPEARANCE_TIMEOUT_SECS)
            return parse_appearance_groups(raw, candidates)
        except Exception as e:
            logger.warning(f"Appearance clustering failed for gallery {gallery_id}: {e}")
            return []

    def _assign_back_references(
        self,
        records,
        by_embedding: Dict[str, str],
        by_face: Dict[Tuple[str, str], str],
        role_clusters: List[PersonCluster],
    ) -> int:
        """Clear and reassign `person_cluster_id` on every face; changed records are flushed."""
        updated = 0
        for record in records:
            faces = decode_faces(record.face_data)
            changed = False
            for face in faces:
                cluster_id = None
                if face.embedding_face_id:
                    cluster_id = by_embedding.get(face.embedding_face_id)
                elif (record.photo_id, face.face_id) in by_face:
                    cluster_id = by_face[(record.photo_id, face.face_id)]
                elif face.role:
                    role = face.role.lower()
                    for cluster in role_clusters:
                        if cluster.role == role and record.photo_id in cluster.photo_ids:
                            cluster_id = cluster.id
                            break

                if face.person_cluster_id != cluster_id:
                    face.person_cluster_id = cluster_id
                    changed = True

            if changed:
                self.analyses.save_face_data(record, encode_faces(faces))
                updated += 1
        return updated
