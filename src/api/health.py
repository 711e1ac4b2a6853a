"""Health check endpoint."""

from fastapi import APIRouter
import structlog

from ..config import settings
from ..dependencies import ProcessRegistryDep, SessionStoreDep

logger = structlog.get_logger(__name__)
router = APIRouter()

SERVICE_NAME = "process-runner-api"
SERVICE_VERSION = "1.0.0"


@router.get("/health", summary="Basic health check")
async def basic_health_check(sessions: SessionStoreDep, registry: ProcessRegistryDep):
    """Liveness plus a few counters; does not require a session."""
    return {
        "status": "healthy",
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "sessions": sessions.count(),
        "running_processes": registry.count(),
        "sandbox_enabled": settings.sandbox_enabled,
    }
