"""
Health check endpoints.
"""

from fastapi import APIRouter, Request

from clipforge.config import get_settings
from clipforge.schemas.responses import HealthResponse, ReadinessResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    """
    return HealthResponse(
        status="healthy",
        version="1.0.0",
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request):
    """
    Readiness check endpoint.

    Ready once the lifespan hook has found ffmpeg and ffprobe.
    """
    engine_ready = bool(getattr(request.app.state, "engine_ready", False))

    return ReadinessResponse(
        ready=engine_ready,
        ffmpeg="available" if engine_ready else "missing",
        storage_backend=get_settings().storage_backend,
    )
