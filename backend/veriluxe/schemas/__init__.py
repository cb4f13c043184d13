"""
Pydantic schemas for request/response validation.
"""
from veriluxe.schemas.user import (
    User,
    UserLogin,
    TokenResponse,
    MessageResponse,
)
from veriluxe.schemas.analysis import (
    Analysis,
    AnalysisDetail,
    AnalysisWithDetails,
    AnalysisUploadResponse,
    AnalysisListResponse,
    Pagination,
)

__all__ = [
    # User schemas
    "User",
    "UserLogin",
    "TokenResponse",
    "MessageResponse",
    # Analysis schemas
    "Analysis",
    "AnalysisDetail",
    "AnalysisWithDetails",
    "AnalysisUploadResponse",
    "AnalysisListResponse",
    "Pagination",
]
