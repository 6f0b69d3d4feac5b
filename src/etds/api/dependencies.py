"""Shared FastAPI dependencies for the API routers.

Tests replace these through ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from etds.api.middleware.auth import Identity, require_identity
from etds.core.config import WorkflowSettings

# NOTE: ObjectStoreClient needed at runtime for return type annotation used by dependency injection
from etds.services.storage import ObjectStoreClient  # noqa: TC001

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session.

    Uses the application's async session factory. Routes commit explicitly.
    """
    from etds.db import get_async_session

    async with get_async_session() as session:
        yield session


DbSession = Annotated[AsyncSession, Depends(get_db_session)]


async def get_storage_client(request: Request) -> ObjectStoreClient:
    """Get the object store client for the configured bucket."""
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        from etds.core.settings import get_settings

        settings = get_settings()
    return ObjectStoreClient.from_settings(settings.s3)


StorageClient = Annotated[ObjectStoreClient, Depends(get_storage_client)]


def get_workflow_settings(request: Request) -> WorkflowSettings:
    """Workflow policy switches from the app settings (defaults without settings)."""
    settings = getattr(request.app.state, "settings", None)
    if settings is None:
        return WorkflowSettings()
    return settings.workflow


Workflow = Annotated[WorkflowSettings, Depends(get_workflow_settings)]

CurrentIdentity = Annotated[Identity, Depends(require_identity)]
