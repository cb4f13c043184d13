"""
Analysis API endpoints.

Handles image analysis operations:
- POST /analysis/upload - Upload an image and create an analysis
- GET /analysis - List visible analyses (paginated)
- GET /analysis/{analysis_id} - Get an analysis with its detail records
- DELETE /analysis/{analysis_id} - Delete an analysis and its images
- POST /analysis/{analysis_id}/analyze - Run the pipeline, streaming events
"""
import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from fastapi.responses import StreamingResponse
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session, sessionmaker

from veriluxe.api.deps import (
    OrchestratorFactory,
    get_current_user,
    get_orchestrator_factory,
    get_session_factory,
    get_storage,
)
from veriluxe.core.config import settings
from veriluxe.core.database import get_db
from veriluxe.models import AnalysisVisibility, User
from veriluxe.pipeline.events import EVENT_STREAM_HEADERS, EVENT_STREAM_MEDIA_TYPE, encode_event
from veriluxe.pipeline.orchestrator import PipelineJob
from veriluxe.schemas.analysis import (
    Analysis,
    AnalysisListResponse,
    AnalysisUploadResponse,
    AnalysisWithDetails,
    Pagination,
)
from veriluxe.schemas.user import MessageResponse
from veriluxe.services.analysis_service import MAX_PAGE_SIZE, AnalysisService, can_modify, can_view
from veriluxe.services.storage_service import StorageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/analysis", tags=["analysis"])


def _get_analysis_or_404(service: AnalysisService, analysis_id: UUID):
    analysis = service.get_analysis(analysis_id)
    if not analysis:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Analysis {analysis_id} not found",
        )
    return analysis


# ============================================================================
# Upload
# ============================================================================

@router.post(
    "/upload",
    response_model=AnalysisUploadResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Upload image for analysis",
)
def upload_image(
    image: UploadFile = File(...),
    visibility: AnalysisVisibility = Form(AnalysisVisibility.PRIVATE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
) -> AnalysisUploadResponse:
    """
    Store an image and create its analysis record.

    The image must be an image/* upload no larger than MAX_IMAGE_SIZE_MB.
    """
    if not (image.content_type or "").startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="File must be an image",
        )

    data = image.file.read()
    max_bytes = settings.MAX_IMAGE_SIZE_MB * 1024 * 1024
    if len(data) > max_bytes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"File size must be less than {settings.MAX_IMAGE_SIZE_MB}MB",
        )
    if not data:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Image file is empty",
        )

    object_path = storage.generate_object_path(current_user.id, image.filename or "image.png")
    try:
        uploaded = storage.upload_bytes(object_path, data, content_type=image.content_type)
    except RuntimeError as e:
        logger.error(f"❌ Image upload failed for user {current_user.id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to upload image",
        )

    analysis = AnalysisService(db).create_analysis(
        user_id=current_user.id,
        image_path=object_path,
        image_url=uploaded["url"],
        visibility=visibility,
    )

    return AnalysisUploadResponse(analysis=Analysis.model_validate(analysis))


# ============================================================================
# Read / Delete
# ============================================================================

@router.get("", response_model=AnalysisListResponse)
def list_analyses(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1),
    visibility: Optional[AnalysisVisibility] = Query(None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AnalysisListResponse:
    """
    List analyses visible to the caller, newest first.

    Admins see all analyses; other users see their own plus public ones.
    limit is capped at 50.
    """
    service = AnalysisService(db)
    analyses, total, total_pages = service.list_analyses(current_user, page, limit, visibility)
    effective_limit = min(limit, MAX_PAGE_SIZE)

    return AnalysisListResponse(
        analyses=[Analysis.model_validate(a) for a in analyses],
        pagination=Pagination(
            page=page,
            limit=effective_limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        ),
    )


@router.get("/{analysis_id}", response_model=AnalysisWithDetails)
def get_analysis(
    analysis_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> AnalysisWithDetails:
    """Get an analysis and its detail records (owner, admin, or public)."""
    service = AnalysisService(db)
    analysis = _get_analysis_or_404(service, analysis_id)

    if not can_view(current_user, analysis):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to view this analysis",
        )

    return AnalysisWithDetails.model_validate(analysis)


@router.delete("/{analysis_id}", response_model=MessageResponse)
def delete_analysis(
    analysis_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
) -> MessageResponse:
    """Delete an analysis, its details and its stored images (owner or admin)."""
    service = AnalysisService(db)
    analysis = _get_analysis_or_404(service, analysis_id)

    if not can_modify(current_user, analysis):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to delete this analysis",
        )

    service.delete_analysis(analysis, storage)
    return MessageResponse(message="Analysis deleted successfully")


# ============================================================================
# Pipeline
# ============================================================================

@router.post(
    "/{analysis_id}/analyze",
    summary="Run authenticity analysis",
    response_class=StreamingResponse,
    responses={200: {"content": {EVENT_STREAM_MEDIA_TYPE: {}}}},
)
async def analyze(
    analysis_id: UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    storage: StorageService = Depends(get_storage),
    session_factory: sessionmaker = Depends(get_session_factory),
    orchestrator_factory: OrchestratorFactory = Depends(get_orchestrator_factory),
):
    """
    Run the analysis pipeline for an uploaded image.

    Authorization and existence of both the analysis and its source image
    are checked before the stream opens, so 401, 403 and 404 come back as
    plain JSON. Once streaming, every outcome is reported as events and the
    stream ends with complete or error.
    """
    service = AnalysisService(db)
    analysis = _get_analysis_or_404(service, analysis_id)

    if not can_modify(current_user, analysis):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Unauthorized to analyze this image",
        )

    try:
        image_found = await run_in_threadpool(storage.file_exists, analysis.image_path)
    except RuntimeError as e:
        # Storage trouble surfaces as an error event once the run tries to load the image
        logger.warning(f"Could not check source image for {analysis.id}: {e}")
        image_found = True
    if not image_found:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Source image not found",
        )

    job = PipelineJob(
        analysis_id=analysis.id,
        user_id=analysis.user_id,
        image_path=analysis.image_path,
    )
    logger.info(f"Analysis {job.analysis_id} requested by {current_user.id}")

    async def event_stream():
        orchestrator = orchestrator_factory(session_factory)
        async for event in orchestrator.run(job):
            yield encode_event(event)

    return StreamingResponse(
        event_stream(),
        media_type=EVENT_STREAM_MEDIA_TYPE,
        headers=EVENT_STREAM_HEADERS,
    )
