"""
FastAPI application entry point.

This module creates and configures the FastAPI application.
Using an application factory pattern (create_app function) because:
- Easier to test with different configurations
- Explicit about initialization order

For local development:
    uvicorn bucketgate.main:app --reload

For production:
    gunicorn bucketgate.main:app -w 4 -k uvicorn.workers.UvicornWorker
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api.routes import files, health, rate_limits, uploads, usage
from .config.settings import get_settings
from .core.crypto.vault import CredentialVault
from .core.errors import ConfigurationError, GatewayError, RateLimitExceeded

# Configure logging
logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=get_settings().log_level.upper(),
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup refuses to continue with a malformed vault key; requests would
    otherwise fail one by one when they first touch bucket credentials.
    Missing configuration is fatal in production and only logged elsewhere,
    so mock-mode development works with an empty environment.
    """
    # Startup
    settings = get_settings()

    logger.info(
        "Storage gateway starting",
        extra={
            "version": settings.api_version,
            "environment": settings.environment,
            "mock_mode": {
                "snowflake": settings.snowflake_mock_mode,
                "storage": settings.storage_mock_mode,
            }
        }
    )

    if settings.credentials_encryption_key:
        CredentialVault(settings.credentials_encryption_key)

    if settings.rate_limit_bypass:
        logger.warning("Rate limiting is bypassed for this deployment")

    missing_fields = settings.validate_required_fields()
    if missing_fields:
        logger.error(
            "Missing required configuration",
            extra={"missing_fields": missing_fields}
        )
        if settings.is_production:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing_fields)}"
            )

    yield

    # Shutdown
    logger.info("Storage gateway shutting down")


def create_app() -> FastAPI:
    """
    Application factory.

    Creates and configures the FastAPI application.
    """
    settings = get_settings()

    # Create FastAPI instance
    app = FastAPI(
        title=settings.api_title,
        version=settings.api_version,
        description="""
        Multi-tenant storage gateway for customer-owned S3 and R2 buckets.

        ## Authentication

        All endpoints require an API key provided in the `X-API-Key` header.
        Each key acts on exactly one project.

        ## Workflow

        1. **Start an upload**: `POST /api/v1/uploads/init`
           - Receive a signed URL and an upload ID

        2. **Upload the bytes**: `PUT` to the signed URL
           - Straight to the bucket; nothing passes through this API

        3. **Confirm**: `POST /api/v1/uploads/{upload_id}/confirm`
           - The object is verified and recorded as a file
           - Counts towards the project's daily usage

        4. **Review usage**: `GET /api/v1/usage/daily`

        5. **Manage files**: `GET /api/v1/files`, `GET /api/v1/files/{file_id}/download`,
           `DELETE /api/v1/files/{file_id}`
        """,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    # Configure allowed origins via CORS_ORIGINS environment variable
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include routers
    app.include_router(
        health.router,
        prefix="/health",
        tags=["Health"],
    )

    app.include_router(
        uploads.router,
        prefix="/api/v1/uploads",
        tags=["Uploads"],
    )

    app.include_router(
        files.router,
        prefix="/api/v1/files",
        tags=["Files"],
    )

    app.include_router(
        usage.router,
        prefix="/api/v1/usage",
        tags=["Usage"],
    )

    app.include_router(
        rate_limits.router,
        prefix="/api/v1/rate-limits",
        tags=["Rate Limits"],
    )

    # Root endpoint
    @app.get("/", include_in_schema=False)
    async def root():
        """Root endpoint - redirect to docs."""
        return {
            "message": "Bucketgate Storage Gateway",
            "version": settings.api_version,
            "docs": "/docs",
            "health": "/health",
        }

    @app.exception_handler(GatewayError)
    async def gateway_exception_handler(request: Request, exc: GatewayError):
        """
        Map core errors to HTTP responses.

        Every GatewayError knows its own status and code, so routes let
        them propagate instead of catching each one.
        """
        log = logger.error if exc.status_code >= 500 else logger.info
        log(
            "Request failed",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error_code": exc.code,
                "error": exc.message,
            },
        )

        headers = {}
        if isinstance(exc, RateLimitExceeded) and exc.retry_after_seconds:
            headers["Retry-After"] = str(exc.retry_after_seconds)

        return JSONResponse(
            status_code=exc.status_code,
            content={"detail": exc.message, "code": exc.code},
            headers=headers,
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """
        Catch-all exception handler.

        In production, this prevents stack traces from leaking to clients.
        We log the full error server-side but return a generic message.
        """
        logger.error(
            "Unhandled exception",
            extra={
                "path": request.url.path,
                "method": request.method,
                "error": str(exc),
            },
            exc_info=exc,
        )

        return JSONResponse(
            status_code=500,
            content={
                "detail": "Internal server error. Please contact support if this persists.",
                "code": "INT_001",
            }
        )

    logger.info(
        "FastAPI application created",
        extra={
            "title": settings.api_title,
            "version": settings.api_version,
        }
    )

    return app


# Create the application instance
# This is what uvicorn/gunicorn will import
app = create_app()


# For debugging/development
if __name__ == "__main__":
    import uvicorn

    # Get settings to determine log level
    settings = get_settings()

    uvicorn.run(
        "bucketgate.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level=settings.log_level.lower(),
    )
