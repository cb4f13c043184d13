"""
Upstream inference service health checks.
"""
import asyncio
import logging
import time
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx

from veriluxe.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class ServiceHealth:
    name: str
    url: str
    status: str  # healthy | unhealthy | unknown
    response_time_ms: Optional[float] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def configured_services() -> List[Dict[str, str]]:
    """Probe targets: the detector uses /healthcheck, the others /health."""
    return [
        {"name": "YOLO API", "url": settings.YOLO_API_URL, "path": "/healthcheck"},
        {"name": "Segformer API", "url": settings.SEGFORMER_API_URL, "path": "/health"},
        {"name": "LLM API", "url": settings.LLM_API_URL, "path": "/health"},
    ]


async def check_service(
    http_client: httpx.AsyncClient,
    name: str,
    url: str,
    path: str,
    timeout: float,
) -> ServiceHealth:
    """Probe one service; never raises."""
    if not url:
        return ServiceHealth(name=name, url="", status="unknown", error="not configured")

    started = time.perf_counter()
    try:
        response = await http_client.get(f"{url.rstrip('/')}{path}", timeout=timeout)
    except httpx.HTTPError as e:
        elapsed = (time.perf_counter() - started) * 1000
        logger.warning(f"Health check failed for {name}: {e}")
        return ServiceHealth(name=name, url=url, status="unhealthy", response_time_ms=elapsed, error=str(e) or type(e).__name__)

    elapsed = (time.perf_counter() - started) * 1000
    if response.is_success:
        return ServiceHealth(name=name, url=url, status="healthy", response_time_ms=elapsed)
    return ServiceHealth(
        name=name,
        url=url,
        status="unhealthy",
        response_time_ms=elapsed,
        error=f"HTTP {response.status_code}",
    )


async def check_services(http_client: httpx.AsyncClient) -> Dict[str, Any]:
    """
    Probe all inference services concurrently.

    Returns:
        {"status", "timestamp", "services": [...], "summary": {...}}
    """
    timeout = settings.HEALTH_CHECK_TIMEOUT_SECONDS
    results = await asyncio.gather(*[
        check_service(http_client, s["name"], s["url"], s["path"], timeout)
        for s in configured_services()
    ])

    all_healthy = all(r.status == "healthy" for r in results)
    return {
        "status": "healthy" if all_healthy else "unhealthy",
        "timestamp": datetime.utcnow().isoformat(),
        "services": [r.to_dict() for r in results],
        "summary": {
            "total": len(results),
            "healthy": sum(1 for r in results if r.status == "healthy"),
            "unhealthy": sum(1 for r in results if r.status == "unhealthy"),
            "unknown": sum(1 for r in results if r.status == "unknown"),
        },
    }
