"""
SQLAlchemy ORM models.
"""
from veriluxe.models.user import User, UserRole
from veriluxe.models.analysis import Analysis, AnalysisDetail, AnalysisVisibility

__all__ = [
    # User models
    "User",
    "UserRole",
    # Analysis models
    "Analysis",
    "AnalysisDetail",
    "AnalysisVisibility",
]
