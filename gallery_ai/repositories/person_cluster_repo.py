"""Person cluster repository."""
import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from gallery_ai.models.person_cluster import PersonCluster

logger = logging.getLogger(__name__)


class PersonClusterRepository:
    """Repository for person cluster operations."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        gallery_id: str,
        *,
        role: Optional[str],
        description: Optional[str],
        photo_ids: List[str],
        embedding_face_ids: Optional[List[str]] = None,
        representative_face_id: Optional[str] = None,
    ) -> PersonCluster:
        """Create a cluster; the caller commits."""
        cluster = PersonCluster(
            gallery_id=gallery_id,
            role=role,
            description=description,
            face_description=description,
            photo_ids=list(photo_ids),
            embedding_face_ids=list(embedding_face_ids or []),
            representative_face_id=representative_face_id,
        )
        self.db.add(cluster)
        self.db.flush()
        return cluster

    def get_by_id(self, cluster_id: str) -> Optional[PersonCluster]:
        return self.db.query(PersonCluster).filter(PersonCluster.id == cluster_id).first()

    def get_by_gallery(self, gallery_id: str) -> List[PersonCluster]:
        """Clusters in a gallery, largest first."""
        clusters = (
            self.db.query(PersonCluster)
            .filter(PersonCluster.gallery_id == gallery_id)
            .order_by(PersonCluster.created_at.asc())
            .all()
        )
        return sorted(clusters, key=lambda c: len(c.photo_ids or []), reverse=True)

    def delete_by_gallery(self, gallery_id: str) -> int:
        deleted = (
            self.db.query(PersonCluster)
            .filter(PersonCluster.gallery_id == gallery_id)
            .delete(synchronize_session=False)
        )
        self.db.flush()
        return deleted

    def rename(self, cluster_id: str, name: Optional[str]) -> Optional[PersonCluster]:
        """Set the display name; blank names clear it."""
        cluster = self.get_by_id(cluster_id)
        if not cluster:
            return None
        cleaned = (name or "").strip()
        cluster.name = cleaned or None
        self.db.commit()
        return cluster

    def commit(self) -> None:
        self.db.commit()
