"""ETDS API service.

FastAPI application providing:
- Application intake and listing for mission operators and the ministry
- Multi-agency verification fan-out/fan-in and the legacy agency path
- Ministry decisions, blacklisting and print bookkeeping
- Hash-chained audit history

This module provides the app factory pattern for creating configured
FastAPI instances suitable for testing and production deployment.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware

from etds.api.dependencies import StorageClient
from etds.api.middleware import ErrorHandlerMiddleware, IdentityMiddleware, RequestIDMiddleware
from etds.api.routers import applications_router, audit_router, verification_router
from etds.core.config import AuthSettings
from etds.db import close_engine
from etds.services.storage import ObjectStoreClient, StorageError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from etds.core.config import Settings

logger = logging.getLogger(__name__)

API_TITLE = "ETDS API"
API_DESCRIPTION = """
Emergency Travel Document workflow API.

## Namespaces

- **/api/applications/** - Intake, verification, decisions, printing
- **/api/audit/** - Audit chain verification (admin)

## Documentation

- OpenAPI spec: `/api/openapi.json`
- Swagger UI: `/api/docs`
- ReDoc: `/api/redoc`
"""


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the documents bucket on startup and release DB connections on shutdown.

    A store that cannot be reached at startup is logged rather than fatal;
    ``/health`` keeps reporting it until it recovers.
    """
    settings: Settings | None = app.state.settings
    if settings is not None:
        try:
            ObjectStoreClient.from_settings(settings.s3).ensure_bucket()
        except StorageError as e:
            logger.error(
                "Could not prepare documents bucket: %s",
                e.message,
                extra={"bucket": e.bucket, "operation": e.operation},
            )

    yield

    await close_engine()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure a FastAPI application instance.

    Args:
        settings: Optional Settings instance. If not provided, dependencies
            fall back to settings loaded from the environment, and token
            verification is disabled.

    Returns:
        Configured FastAPI application ready to serve requests.

    Example:
        app = create_app()

        settings = Settings(environment="dev", auth=AuthSettings(jwt_secret="..."))
        app = create_app(settings)
    """
    version = settings.app_version if settings else "0.1.0"

    app = FastAPI(
        title=API_TITLE,
        description=API_DESCRIPTION,
        version=version,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
        lifespan=lifespan,
    )

    # Store settings in app state for access in routes
    app.state.settings = settings

    _add_middleware(app, settings)
    _include_routers(app)

    @app.get("/health", tags=["health"])
    async def health_check(storage: StorageClient, response: Response) -> dict[str, Any]:
        """Health check endpoint for container orchestration.

        Reports 503 while the object store is unreachable or the documents
        bucket is missing.
        """
        try:
            storage_health = storage.health_check()
        except StorageError as e:
            logger.warning("Object store health check failed: %s", e.message)
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "unhealthy", "storage": {"healthy": False}}

        if not storage_health["bucket_present"]:
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {"status": "unhealthy", "storage": storage_health}
        return {"status": "healthy", "storage": storage_health}

    logger.info("ETDS API application created (version=%s)", version)

    return app


def _add_middleware(app: FastAPI, settings: Settings | None) -> None:
    """Add middleware to the application.

    The last middleware added is the outermost, so error responses still
    carry the request ID and identity resolution sees it in context.
    """
    app.add_middleware(ErrorHandlerMiddleware)

    app.add_middleware(
        IdentityMiddleware,
        settings=settings.auth if settings else AuthSettings(),
    )

    app.add_middleware(RequestIDMiddleware)

    allowed_origins = settings.cors_origins if settings else ["http://localhost:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID"],
    )


def _include_routers(app: FastAPI) -> None:
    """Include API namespace routers under /api."""
    app.include_router(applications_router, prefix="/api")
    app.include_router(verification_router, prefix="/api")
    app.include_router(audit_router, prefix="/api")
