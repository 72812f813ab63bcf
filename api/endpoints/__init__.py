"""API endpoints for the content analysis service."""

from fastapi import APIRouter

from .ai import router as ai_router
from .health import router as health_router

# Create main API router
api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["Health"])
api_router.include_router(ai_router, prefix="/ai", tags=["Content Analysis"])

__all__ = ["api_router"]
