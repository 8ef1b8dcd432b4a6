"""Gallery analysis request/response schemas."""
from typing import Dict, Optional

from pydantic import BaseModel, Field


class AnalyzeGalleryRequest(BaseModel):
    """Start, restart or toggle gallery analysis."""
    reanalyze: bool = Field(False, description="Delete existing analyses and clusters first")
    toggle_enabled: Optional[bool] = Field(None, description="Only set the AI search flag")


class AnalyzeGalleryResponse(BaseModel):
    success: bool = True
    message: str
    ai_search_enabled: Optional[bool] = None
    task_id: Optional[str] = None


class AnalysisStatusResponse(BaseModel):
    gallery_id: str
    progress: int
    ai_search_enabled: bool
    total_photos: int
    stats: Dict[str, int]
