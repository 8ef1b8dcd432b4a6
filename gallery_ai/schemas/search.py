"""Photo search schemas."""
from typing import List, Optional

from pydantic import BaseModel, Field


class SearchResult(BaseModel):
    """One ranked photo."""
    photo_id: str
    relevance_score: float = Field(..., ge=0.0, le=1.0)
    match_reason: str


class SearchCandidate(BaseModel):
    """Retrieval-stage hit, in rank order."""
    photo_id: str
    description: Optional[str] = None
    search_tags: List[str] = Field(default_factory=list)
    rank: float = 0.0


class SearchResponse(BaseModel):
    query: str
    results: List[SearchResult]
    total_results: int
