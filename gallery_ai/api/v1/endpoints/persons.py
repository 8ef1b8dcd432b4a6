from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from gallery_ai.db.base import get_db
from gallery_ai.repositories.gallery_repo import GalleryRepository
from gallery_ai.repositories.person_cluster_repo import PersonClusterRepository
from gallery_ai.schemas.person import PersonClusterRead, PersonClusterRename

router = APIRouter()


@router.get("/galleries/{gallery_id}/persons", response_model=List[PersonClusterRead])
async def list_person_clusters(gallery_id: str, db: Session = Depends(get_db)):
    """Person clusters for a gallery, most photographed first."""
    if not GalleryRepository(db).get_by_id(gallery_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Gallery {gallery_id} not found"
        )
    return PersonClusterRepository(db).get_by_gallery(gallery_id)


@router.patch("/persons/{cluster_id}", response_model=PersonClusterRead)
async def rename_person_cluster(
    cluster_id: str,
    payload: PersonClusterRename,
    db: Session = Depends(get_db)
):
    cluster = PersonClusterRepository(db).rename(cluster_id, payload.name)
    if not cluster:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Person {cluster_id} not found"
        )
    return cluster
