"""
FastAPI application for the invoice assistant.

``create_app()`` builds the app; ``app`` is the module-level instance uvicorn
serves.
"""

import structlog
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from invoice_assistant import __version__
from invoice_assistant.api.routes import GENERIC_ERROR, router
from invoice_assistant.api.schemas import HealthResponse
from invoice_assistant.config import configure_logging, get_settings

logger = structlog.get_logger(__name__)

SERVICE_NAME = "invoice-assistant"


def _get_cors_origins() -> list[str]:
    """Explicit origins in production; the configured list (or any origin) elsewhere."""
    settings = get_settings()
    origins = settings.cors_origins
    if settings.is_production():
        if not origins:
            logger.warning("cors_origins_missing", environment=settings.environment)
        return origins
    return origins or ["*"]


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning(
        "request_validation_failed",
        method=request.method,
        path=request.url.path,
        errors=len(exc.errors()),
    )
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"error": "Invalid request body"},
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled_error", method=request.method, path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"error": GENERIC_ERROR},
    )


def create_app() -> FastAPI:
    configure_logging()

    app = FastAPI(
        title="Invoice Assistant API",
        description="Chat-driven QuickBooks invoice management",
        version=__version__,
    )
    app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, unhandled_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_get_cors_origins(),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)

    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health_check() -> HealthResponse:
        """Check if the API is running."""
        return HealthResponse(status="healthy", service=SERVICE_NAME)

    logger.info("app_initialized", environment=get_settings().environment)
    return app


app = create_app()
