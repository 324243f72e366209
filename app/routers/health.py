"""Health check endpoint."""

import structlog
from fastapi import APIRouter

from app import __version__
from app.schemas import HealthResponse
from app.services.pine import ENGINE_VERSION, is_debug_mode

router = APIRouter()
logger = structlog.get_logger(__name__)


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Service liveness. The runner has no external dependencies to probe."""
    return HealthResponse(
        status="ok",
        version=__version__,
        engine_version=ENGINE_VERSION,
        debug_mode=is_debug_mode(),
    )
