"""
Shared API dependencies: authentication, storage and pipeline wiring.
"""
import logging
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import UUID

import httpx
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session, sessionmaker

from veriluxe.core.config import settings
from veriluxe.core.database import SessionLocal, get_db
from veriluxe.cv.human_segmenter import HumanSegmenterClient, create_segmenter
from veriluxe.cv.region_detector import RegionDetectorClient, create_detector
from veriluxe.models.user import User
from veriluxe.pipeline.adapters import SqlAnalysisRecords, StorageArtifactStore, StorageImageSource
from veriluxe.pipeline.orchestrator import PipelineOptions, PipelineOrchestrator
from veriluxe.pipeline.segment_analysis import SegmentAnalysisUnit
from veriluxe.services.authenticity_scorer import AuthenticityScorer
from veriluxe.services.brand_identifier import BrandIdentifier
from veriluxe.services.llm_client import LLMClient
from veriluxe.services.session_service import TokenStore, token_store
from veriluxe.services.storage_service import StorageService, get_storage_service
from veriluxe.services.translator import Translator

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

OrchestratorFactory = Callable[[sessionmaker], PipelineOrchestrator]


# ============================================================================
# Pipeline clients (built once per process in the app lifespan)
# ============================================================================

@dataclass
class PipelineClients:
    detector: RegionDetectorClient
    segmenter: HumanSegmenterClient
    analysis_unit: SegmentAnalysisUnit


def build_pipeline_clients(http_client: httpx.AsyncClient) -> PipelineClients:
    """Construct the inference clients over one shared HTTP client."""
    llm = LLMClient(
        http_client=http_client,
        base_url=settings.LLM_API_URL,
        model=settings.LLM_MODEL,
        api_key=settings.LLM_API_KEY,
    )
    return PipelineClients(
        detector=create_detector(http_client, settings.YOLO_API_URL),
        segmenter=create_segmenter(
            http_client,
            settings.SEGFORMER_API_URL,
            min_coverage_percent=settings.MIN_SEGMENT_COVERAGE_PERCENT,
        ),
        analysis_unit=SegmentAnalysisUnit(
            brand_identifier=BrandIdentifier(llm),
            scorer=AuthenticityScorer(llm, streaming=settings.LLM_STREAMING),
            translator=Translator(llm),
            target_language=settings.TRANSLATION_TARGET_LANGUAGE,
        ),
    )


def get_pipeline_clients(request: Request) -> PipelineClients:
    clients: Optional[PipelineClients] = getattr(request.app.state, "pipeline_clients", None)
    if clients is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analysis pipeline is not initialized",
        )
    return clients


def get_storage() -> StorageService:
    return get_storage_service()


def get_token_store() -> TokenStore:
    return token_store


def get_session_factory() -> sessionmaker:
    """Session factory for work that outlives the request (streamed runs)."""
    return SessionLocal


def get_orchestrator_factory(
    clients: PipelineClients = Depends(get_pipeline_clients),
    storage: StorageService = Depends(get_storage),
) -> OrchestratorFactory:
    """
    Returns a callable building an orchestrator that writes through a
    session factory.

    Streamed runs outlive the request, so they never reuse the request's
    session.
    """
    def factory(session_factory: sessionmaker) -> PipelineOrchestrator:
        return PipelineOrchestrator(
            detector=clients.detector,
            segmenter=clients.segmenter,
            analysis_unit=clients.analysis_unit,
            image_source=StorageImageSource(storage),
            artifact_store=StorageArtifactStore(storage),
            records=SqlAnalysisRecords(session_factory),
            options=PipelineOptions(confidence_threshold=settings.DETECTION_CONFIDENCE_THRESHOLD),
        )

    return factory


# ============================================================================
# Authentication
# ============================================================================

def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> str:
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_bearer_token),
    tokens: TokenStore = Depends(get_token_store),
    db: Session = Depends(get_db),
) -> User:
    """
    Resolve the bearer token to an active user.

    Raises 401 for unknown/expired tokens or deleted users and 403 for
    inactive accounts.
    """
    token_data = tokens.get_token(token)
    if not token_data:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.query(User).filter(User.id == UUID(token_data["user_id"])).first()
    if not user:
        # Token outlived its user
        tokens.delete_token(token)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is inactive",
        )

    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin privileges required",
        )
    return current_user
