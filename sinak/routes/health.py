"""
Health check route for the SiNaK Backend.

This endpoint is PUBLIC (no authentication required) and provides a simple
status check for load balancers, monitoring, and deployment verification.

The API itself stays "ok" while Firestore is degraded or offline: writes are
queued and recommendations fall back to rule-based content. The firestore
field reports the last observed connection state without probing it.
"""

from fastapi import APIRouter

from sinak.config import settings
from sinak.db.client import get_firestore_status
from sinak.schemas.health import HealthResponse
from sinak.services.firestore_errors import error_monitor
from sinak.services.offline_handler import offline_handler
from sinak.utils.logging import get_logger

logger = get_logger(__name__)

# Create router with no prefix (mounted at root level in main.py)
router = APIRouter()


def _firestore_state() -> str:
    if settings.FIRESTORE_DISABLED:
        return "disabled"
    if offline_handler.is_offline:
        return "offline"
    status = get_firestore_status()
    if status["initialized"] and not status["healthy"]:
        return "degraded"
    if error_monitor.fallback_mode or settings.FIRESTORE_FALLBACK_MODE:
        return "degraded"
    return "healthy"


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint",
    description=(
        "Public health check endpoint (no authentication required). "
        "Returns a simple status indicator for monitoring and load balancing, "
        "plus the last observed Firestore connection state."
    ),
    status_code=200,
)
async def health_check() -> HealthResponse:
    """
    Public health check endpoint.

    Example response:
        {
            "status": "ok",
            "service": "sinak-backend",
            "firestore": "healthy"
        }
    """
    logger.debug("Health check endpoint called")

    return HealthResponse(status="ok", firestore=_firestore_state())
