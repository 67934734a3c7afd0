"""TempMail - Main FastAPI Application

Creates and configures the FastAPI application, including:
- Mailbox and notification routers
- Middleware (request ID correlation, CORS)
- Exception handlers
- Lifespan wiring for the SMTP gateway, expiry sweep and heartbeat
"""

from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .api.notifications import router as notifications_router
from .api.router import router as mailbox_router
from .config import Settings, get_settings
from .errors import ApiError, ErrorCode
from .lifecycle import Mailroom
from .observability.logging_config import configure_logging, get_logger
from .observability.middleware import RequestIDMiddleware
from .observability.router import router as observability_router

logger = get_logger(__name__)


# =============================================================================
# EXCEPTION HANDLERS
# =============================================================================

async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_content(),
        headers=exc.headers(),
    )


async def validation_exception_handler(
    request: Request,
    exc: RequestValidationError
) -> JSONResponse:
    """Handle Pydantic validation errors on request bodies and parameters."""
    logger.warning(f"Validation error on {request.method} {request.url.path}")
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Request validation failed",
            "code": ErrorCode.VALIDATION_ERROR.value,
        },
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception
) -> JSONResponse:
    """Handle uncaught exceptions.

    Full details are logged but not exposed to the client.
    """
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}",
        exc_info=exc
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "code": ErrorCode.INTERNAL_ERROR.value,
        },
    )


# =============================================================================
# APPLICATION FACTORY
# =============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build a fully wired application.

    Each call creates its own Mailroom, so tests get isolated state.
    """
    settings = settings or get_settings()
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    mailroom = Mailroom(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("TempMail starting up...")
        logger.info(f"Mail domain: {settings.MAIL_DOMAIN}")
        await mailroom.start()

        yield

        logger.info("TempMail shutting down...")
        await mailroom.shutdown()

    app = FastAPI(
        title="TempMail API",
        description="Disposable mailboxes with real-time delivery",
        version=__version__,
        docs_url="/docs" if settings.ENVIRONMENT != "production" else None,
        redoc_url=None,
        openapi_url="/openapi.json" if settings.ENVIRONMENT != "production" else None,
        lifespan=lifespan,
    )
    app.state.mailroom = mailroom

    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "Retry-After"],
    )

    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)

    app.include_router(observability_router)
    app.include_router(mailbox_router)
    app.include_router(notifications_router)

    @app.get("/", include_in_schema=False)
    async def root() -> dict[str, Any]:
        return {
            "name": "TempMail API",
            "version": __version__,
            "status": "running",
            "domain": settings.MAIL_DOMAIN,
        }

    return app


# =============================================================================
# DEVELOPMENT SERVER
# =============================================================================

def run() -> None:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "tempmail.main:create_app",
        factory=True,
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
