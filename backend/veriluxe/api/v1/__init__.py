"""
API v1 router aggregation.
"""
from fastapi import APIRouter

from veriluxe.api.v1 import analysis, auth

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(auth.router)
api_router.include_router(analysis.router)

__all__ = ["api_router"]
