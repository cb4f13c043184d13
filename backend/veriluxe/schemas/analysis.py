"""
Pydantic schemas for Analysis and AnalysisDetail models.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict

from veriluxe.models.analysis import AnalysisVisibility


class AnalysisDetail(BaseModel):
    """One analyzed sub-region."""
    id: UUID
    analysis_id: UUID
    user_id: UUID
    image_url: str
    ai_confidence: Optional[float] = None
    ai_result: Dict[str, Any]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class Analysis(BaseModel):
    """Schema for analysis response."""
    id: UUID
    user_id: UUID
    image_url: str
    visibility: AnalysisVisibility
    ai_confidence: Optional[float] = None
    ai_result_text: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AnalysisWithDetails(Analysis):
    """Analysis plus its detail rows, oldest first."""
    details: List[AnalysisDetail] = []


class AnalysisUploadResponse(BaseModel):
    analysis: Analysis
    message: str = "Image uploaded successfully"


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool


class AnalysisListResponse(BaseModel):
    """Paginated analysis listing."""
    analyses: List[Analysis]
    pagination: Pagination
