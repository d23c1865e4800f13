"""
Status API routes - liveness, version and service info.

Public endpoints with no database access, safe for load balancer probes.
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from companion_accounts.config import settings
from companion_accounts.models.api import HealthResponse

router = APIRouter(tags=["status"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", service=settings.service_name, version=settings.api_version)


@router.get("/version", response_class=PlainTextResponse)
async def version() -> str:
    return f"{settings.service_name} v{settings.api_version}"


@router.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "running",
    }
