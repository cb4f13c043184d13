"""
Analysis record service.

Handles:
- Analysis creation after an image upload
- Retrieval with visibility rules
- Paginated listing
- Deletion with blob cleanup
"""
import logging
import math
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import desc, or_
from sqlalchemy.orm import Session

from veriluxe.models import Analysis, AnalysisDetail, AnalysisVisibility, User
from veriluxe.services.storage_service import StorageService

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 50


def can_view(user: User, analysis: Analysis) -> bool:
    """Owners and admins see everything; others only public analyses."""
    return (
        user.is_admin
        or analysis.user_id == user.id
        or analysis.visibility == AnalysisVisibility.PUBLIC
    )


def can_modify(user: User, analysis: Analysis) -> bool:
    """Only the owner or an admin may run or delete an analysis."""
    return user.is_admin or analysis.user_id == user.id


class AnalysisService:
    """Service for analysis CRUD."""

    def __init__(self, db: Session):
        """Initialize analysis service with database session."""
        self.db = db

    # ========================================================================
    # Creation / Retrieval
    # ========================================================================

    def create_analysis(
        self,
        user_id: UUID,
        image_path: str,
        image_url: str,
        visibility: AnalysisVisibility = AnalysisVisibility.PRIVATE,
    ) -> Analysis:
        """
        Create an analysis row for an uploaded image.

        Aggregate fields start out null until a pipeline run completes.
        """
        analysis = Analysis(
            user_id=user_id,
            image_path=image_path,
            image_url=image_url,
            visibility=visibility,
        )

        self.db.add(analysis)
        self.db.commit()
        self.db.refresh(analysis)

        logger.info(f"Created analysis: id={analysis.id}, user_id={user_id}, visibility={visibility.value}")
        return analysis

    def get_analysis(self, analysis_id: UUID) -> Optional[Analysis]:
        return self.db.query(Analysis).filter(Analysis.id == analysis_id).first()

    def get_details(self, analysis_id: UUID) -> List[AnalysisDetail]:
        """Detail rows of an analysis, oldest first."""
        return (
            self.db.query(AnalysisDetail)
            .filter(AnalysisDetail.analysis_id == analysis_id)
            .order_by(AnalysisDetail.created_at.asc())
            .all()
        )

    # ========================================================================
    # Listing
    # ========================================================================

    def list_analyses(
        self,
        user: User,
        page: int = 1,
        limit: int = 10,
        visibility: Optional[AnalysisVisibility] = None,
    ) -> Tuple[List[Analysis], int, int]:
        """
        List analyses visible to a user, newest first.

        Admins see every analysis; other users see their own plus public
        ones. limit is capped at 50.

        Returns:
            (analyses, total_count, total_pages)
        """
        page = max(page, 1)
        limit = min(max(limit, 1), MAX_PAGE_SIZE)

        query = self.db.query(Analysis)
        if not user.is_admin:
            query = query.filter(
                or_(Analysis.user_id == user.id, Analysis.visibility == AnalysisVisibility.PUBLIC)
            )
        if visibility is not None:
            query = query.filter(Analysis.visibility == visibility)

        total = query.count()
        analyses = (
            query.order_by(desc(Analysis.created_at))
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        total_pages = math.ceil(total / limit) if total else 0
        return analyses, total, total_pages

    # ========================================================================
    # Deletion
    # ========================================================================

    def delete_analysis(self, analysis: Analysis, storage: Optional[StorageService] = None) -> None:
        """
        Delete an analysis and its details.

        Blob cleanup (source image and per-region crops) runs after the rows
        are gone and is best-effort: storage failures are logged, not raised.
        """
        analysis_id = analysis.id
        image_path = analysis.image_path

        self.db.delete(analysis)
        self.db.commit()
        logger.info(f"Deleted analysis {analysis_id}")

        if storage is None:
            return

        try:
            storage.delete_file(image_path)
            storage.delete_prefix(f"{analysis_id}/")
        except RuntimeError as e:
            logger.warning(f"⚠️  Storage cleanup failed for analysis {analysis_id}: {e}")


def get_analysis_service(db: Session) -> AnalysisService:
    """Factory function to create AnalysisService instance."""
    return AnalysisService(db)
