"""
Main FastAPI application entry point.
"""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from veriluxe.api.deps import build_pipeline_clients
from veriluxe.core.config import settings
from veriluxe.core.startup import run_startup_tasks
from veriluxe.services.health_service import check_services

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Own the shared HTTP client and inference clients for the process lifetime."""
    run_startup_tasks()

    timeout = httpx.Timeout(settings.HTTP_TIMEOUT_SECONDS)
    async with httpx.AsyncClient(timeout=timeout) as http_client:
        app.state.http_client = http_client
        app.state.pipeline_clients = build_pipeline_clients(http_client)
        logger.info("✅ Pipeline clients ready")
        yield

    logger.info("HTTP client closed")


app = FastAPI(
    title=settings.APP_NAME,
    description="Streaming image authenticity analysis",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS Configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/")
async def root():
    """Root endpoint - health check."""
    return {
        "status": "online",
        "service": settings.APP_NAME,
        "version": "0.1.0",
    }


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "healthy"}


@app.get("/health/services")
async def services_health(request: Request):
    """Probe the detection, segmentation and LLM services."""
    report = await check_services(request.app.state.http_client)
    return JSONResponse(
        content=report,
        status_code=200 if report["status"] == "healthy" else 503,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )


# Import and include API routers
from veriluxe.api.v1 import api_router

app.include_router(api_router, prefix=settings.API_V1_PREFIX)
