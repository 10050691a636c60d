"""
Health check endpoint schemas.

The health endpoint is PUBLIC (no authentication required) and returns
a simple status indicator plus a coarse view of the Firestore connection.
"""

from typing import Literal

from pydantic import BaseModel, Field


class HealthResponse(BaseModel):
    """
    Response model for GET /health endpoint.

    Used by load balancers, monitoring systems, and deployment checks.
    A degraded Firestore connection does not make the API unhealthy: writes
    are queued and recommendations fall back to rule-based content.
    """

    status: Literal["ok"] = Field(
        default="ok",
        description="Health status of the API (always 'ok' if responding)",
        examples=["ok"]
    )
    service: str = Field(default="sinak-backend", examples=["sinak-backend"])
    firestore: Literal["healthy", "degraded", "offline", "disabled"] = Field(
        default="healthy",
        description="Firestore connection state as last observed"
    )

    model_config = {
        "json_schema_extra": {
            "example": {
                "status": "ok",
                "service": "sinak-backend",
                "firestore": "healthy"
            }
        }
    }
