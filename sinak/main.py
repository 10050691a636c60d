"""
FastAPI application entry point for the SiNaK backend.

This module creates the FastAPI app instance and registers all routers.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from sinak.config import settings
from sinak.routes.health import router as health_router
from sinak.routes.profile import router as profile_router
from sinak.routes.recommendations import router as recommendations_router
from sinak.routes.system import router as system_router
from sinak.services.offline_handler import offline_handler
from sinak.services.tracking_service import get_tracker

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def _get_cors_origins() -> list[str]:
    """
    Get allowed CORS origins based on environment.

    Environment-based configuration:
    - ENVIRONMENT=production: Uses CORS_ALLOWED_ORIGINS env var (required)
    - ENVIRONMENT=testing/development: Allows all origins for local dev

    Returns:
        List of allowed origin URLs, or ["*"] for development.
    """
    if settings.is_production():
        if settings.CORS_ALLOWED_ORIGINS:
            logger.info(
                f"CORS configured for production with {len(settings.CORS_ALLOWED_ORIGINS)} allowed origins"
            )
            return list(settings.CORS_ALLOWED_ORIGINS)
        # In production without explicit origins, allow none (strict)
        logger.warning(
            "CORS_ALLOWED_ORIGINS not set in production. "
            "No web origins allowed. Set CORS_ALLOWED_ORIGINS for the web client."
        )
        return []

    logger.info(f"CORS configured for {settings.ENVIRONMENT}: allowing all origins")
    return ["*"]


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Pending debounced saves would otherwise be lost on shutdown
    logger.info("Shutting down, flushing pending recommendation saves")
    await get_tracker().flush_all()
    await offline_handler.stop_reconnecting()


# Create FastAPI app
app = FastAPI(
    title="SiNaK API",
    description="Backend service for SiNaK: UMKM self-diagnosis and business recommendations",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# Custom validation error handler to log detailed errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Log detailed validation errors for debugging.

    This helps diagnose 422 errors from the frontend.
    """
    logger.error(
        f"Validation error on {request.method} {request.url.path}: {exc.errors()}"
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "details": jsonable_errors(exc),
        }
    )


def jsonable_errors(exc: RequestValidationError) -> list:
    """Validation errors without the non-serializable 'ctx' and 'input' values."""
    return [
        {key: value for key, value in error.items() if key not in ("ctx", "input")}
        for error in exc.errors()
    ]


# Configure CORS with environment-based origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router)
app.include_router(profile_router)
app.include_router(recommendations_router)
app.include_router(system_router)

logger.info("FastAPI app initialized successfully")
