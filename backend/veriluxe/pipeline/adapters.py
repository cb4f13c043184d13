"""
Store adapters backing the orchestrator's ports.

MinIO and SQLAlchemy calls are blocking, so each one runs in the threadpool
to keep the event loop free while a stream is open.
"""
import logging
from datetime import datetime
from typing import Any, Dict
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool

from veriluxe.models.analysis import Analysis, AnalysisDetail
from veriluxe.pipeline.events import AnalysisSummary
from veriluxe.services.storage_service import StorageService

logger = logging.getLogger(__name__)


class StorageImageSource:
    """Loads source images from object storage."""

    def __init__(self, storage: StorageService):
        self.storage = storage

    async def load(self, image_path: str) -> bytes:
        return await run_in_threadpool(self.storage.download_bytes, image_path)


class StorageArtifactStore:
    """Stores per-region PNG crops under the analysis id prefix."""

    def __init__(self, storage: StorageService):
        self.storage = storage

    async def upload_image(self, analysis_id: UUID, name: str, png_bytes: bytes) -> str:
        object_name = self.storage.analysis_object_path(analysis_id, name)
        result = await run_in_threadpool(
            self.storage.upload_bytes, object_name, png_bytes, "image/png"
        )
        return result["url"]


class SqlAnalysisRecords:
    """
    Writes AnalysisDetail rows and the run aggregate.

    Every write opens its own short-lived session inside the worker thread,
    so a write still finishing after the client disconnects never shares a
    session with the request that started it.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def create_detail(
        self,
        analysis_id: UUID,
        user_id: UUID,
        image_url: str,
        confidence: float,
        result: Dict[str, Any],
    ) -> UUID:
        return await run_in_threadpool(
            self._insert_detail, analysis_id, user_id, image_url, confidence, result
        )

    async def save_summary(self, analysis_id: UUID, summary: AnalysisSummary) -> None:
        await run_in_threadpool(self._update_aggregate, analysis_id, summary)

    def _insert_detail(
        self,
        analysis_id: UUID,
        user_id: UUID,
        image_url: str,
        confidence: float,
        result: Dict[str, Any],
    ) -> UUID:
        detail = AnalysisDetail(
            analysis_id=analysis_id,
            user_id=user_id,
            image_url=image_url,
            ai_confidence=confidence,
            ai_result=result,
        )
        with self.session_factory() as db:
            try:
                db.add(detail)
                db.commit()
            except Exception:
                db.rollback()
                raise
            detail_id = detail.id

        logger.debug(f"Created analysis detail {detail_id} for {analysis_id}")
        return detail_id

    def _update_aggregate(self, analysis_id: UUID, summary: AnalysisSummary) -> None:
        """Single UPDATE so readers never see a half-written aggregate."""
        statement = (
            update(Analysis)
            .where(Analysis.id == analysis_id)
            .values(
                ai_confidence=summary.confidence,
                ai_result_text=summary.summary,
                updated_at=datetime.utcnow(),
            )
        )
        with self.session_factory() as db:
            try:
                result = db.execute(statement)
                if result.rowcount == 0:
                    raise LookupError(f"Analysis {analysis_id} no longer exists")
                db.commit()
            except Exception:
                db.rollback()
                raise
