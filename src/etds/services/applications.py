"""Application records: intake, draft edits, and role-scoped reads.

Also home to the two helpers every mutating workflow service shares:
``load_application`` (row lock with a fresh read) and ``flush_or_conflict``
(optimistic version check surfaced as ConflictingUpdateError).
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm.exc import StaleDataError

from etds.db.models.applications import Application
from etds.db.models.base import ApplicationStatus, UserRole
from etds.services.audit_log import AuditLogService
from etds.services.authz import Action, authorize, require_role_action
from etds.services.errors import (
    ApplicationNotFoundError,
    ConflictingUpdateError,
    ForbiddenError,
    WorkflowValidationError,
)
from etds.services.routing import resolve_actor_agency
from etds.services.status import PRINTABLE_STATUSES

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from sqlalchemy import Select
    from sqlalchemy.ext.asyncio import AsyncSession

    from etds.services.authz import Actor

logger = logging.getLogger(__name__)

# Citizen details a mission operator may set on create and edit while DRAFT
CITIZEN_FIELDS: frozenset[str] = frozenset(
    {
        "citizen_id",
        "first_name",
        "last_name",
        "father_name",
        "mother_name",
        "gender",
        "date_of_birth",
        "nationality",
        "birth_country",
        "birth_city",
        "profession",
        "pakistan_city",
        "pakistan_address",
        "height",
        "color_of_eyes",
        "color_of_hair",
        "departure_date",
        "transport_mode",
        "investor",
        "requested_by",
        "reason_for_deport",
        "amount",
        "currency",
        "is_fia_blacklist",
        "remarks",
    }
)

REQUIRED_CITIZEN_FIELDS: frozenset[str] = frozenset(
    {
        "citizen_id",
        "first_name",
        "last_name",
        "father_name",
        "mother_name",
        "date_of_birth",
        "profession",
        "pakistan_city",
        "pakistan_address",
        "height",
        "color_of_eyes",
        "color_of_hair",
        "departure_date",
        "transport_mode",
    }
)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


@dataclass(frozen=True, slots=True)
class ApplicationPage:
    """One page of a listing.

    Attributes:
        items: Applications on this page, newest first.
        total: Number of applications matching the filters.
        offset: Offset of the first item.
        limit: Page size used.
    """

    items: list[Application]
    total: int
    offset: int
    limit: int


async def load_application(
    session: AsyncSession,
    application_id: uuid.UUID,
    *,
    for_update: bool = False,
) -> Application:
    """Load one application, optionally locking its row.

    With ``for_update`` the row is read with SELECT ... FOR UPDATE and any
    identity-map copy is refreshed, so a caller that waited on the lock sees
    the state the previous holder committed.

    Raises:
        ApplicationNotFoundError: If the application does not exist.
    """
    query = select(Application).where(Application.application_id == application_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)

    result = await session.execute(query)
    application = result.scalar_one_or_none()
    if application is None:
        raise ApplicationNotFoundError(application_id)
    return application


async def flush_or_conflict(session: AsyncSession, application: Application) -> None:
    """Flush pending changes, turning a stale version into ConflictingUpdateError."""
    try:
        await session.flush()
    except StaleDataError as e:
        logger.warning(
            "Concurrent update detected",
            extra={"application_id": str(application.application_id)},
        )
        raise ConflictingUpdateError(application.application_id) from e


def is_visible(actor: Actor, application: Application) -> bool:
    """Whether ``actor`` may read ``application``.

    MINISTRY and ADMIN see everything, a mission operator sees what it
    created, and an agency sees applications it is pending on, has answered,
    or is assigned to.
    """
    if actor.role in (UserRole.MINISTRY, UserRole.ADMIN):
        return True
    if actor.role == UserRole.MISSION_OPERATOR:
        return application.created_by_id == actor.user_id

    agency = resolve_actor_agency(actor)
    return (
        agency.value in (application.pending_verification_agencies or [])
        or agency.value in (application.verification_completed_agencies or [])
        or application.assigned_agency == agency
    )


def ensure_visible(actor: Actor, application: Application) -> None:
    """Raise ForbiddenError unless ``actor`` may read ``application``."""
    if not is_visible(actor, application):
        logger.warning(
            "Application access denied",
            extra={
                "application_id": str(application.application_id),
                "user_id": actor.user_id,
                "role": actor.role.value,
            },
        )
        raise ForbiddenError(
            actor.role,
            "view",
            reason=f"Application {application.application_id} is not visible to this caller",
        )


def _scope_query(query: Select, actor: Actor) -> Select:
    """Narrow a listing query to what ``actor`` may see."""
    if actor.role == UserRole.MISSION_OPERATOR:
        return query.where(Application.created_by_id == actor.user_id)
    if actor.role == UserRole.AGENCY:
        agency = resolve_actor_agency(actor)
        return query.where(
            or_(
                Application.pending_verification_agencies.contains([agency.value]),
                Application.verification_completed_agencies.contains([agency.value]),
                Application.assigned_agency == agency,
            )
        )
    return query


def _clean_citizen_data(data: Mapping[str, Any]) -> dict[str, Any]:
    unknown = set(data) - CITIZEN_FIELDS - {"region"}
    if unknown:
        raise WorkflowValidationError(sorted(unknown)[0], "Field cannot be set on an application")
    return dict(data)


class ApplicationService:
    """Intake and read side of the application workflow.

    Example:
        service = ApplicationService(session)
        application = await service.create(actor, form_data)
        page = await service.list_applications(actor, statuses=[ApplicationStatus.DRAFT])
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        audit: AuditLogService | None = None,
    ) -> None:
        self._session = session
        self._audit = audit or AuditLogService(session)

    async def create(self, actor: Actor, data: Mapping[str, Any]) -> Application:
        """Create an application in DRAFT.

        DRAFT is the ministry's intake queue, so creating is also submitting.

        Args:
            actor: The mission operator (or admin) capturing the application.
            data: Citizen details, plus an optional ``region``.

        Returns:
            The new application.

        Raises:
            ForbiddenError: If the caller's role may not create applications.
            WorkflowValidationError: If a required citizen field is missing.
        """
        require_role_action(actor, Action.CREATE)

        fields = _clean_citizen_data(data)
        for name in sorted(REQUIRED_CITIZEN_FIELDS):
            value = fields.get(name)
            if value is None or (isinstance(value, str) and not value.strip()):
                raise WorkflowValidationError(name, f"{name} is required")

        now = datetime.now(UTC)
        region = fields.pop("region", None) or actor.region
        application = Application(
            application_id=uuid.uuid4(),
            created_at=now,
            updated_at=now,
            status=ApplicationStatus.DRAFT,
            region=region,
            created_by_id=actor.user_id,
            pending_verification_agencies=[],
            verification_completed_agencies=[],
            is_printed=False,
            agency_remarks=[],
            **fields,
        )
        self._session.add(application)

        await self._audit.record_transition(
            application,
            actor,
            action=Action.CREATE.value,
            from_status=ApplicationStatus.DRAFT,
            to_status=ApplicationStatus.DRAFT,
            summary={"region": region},
        )
        await flush_or_conflict(self._session, application)

        logger.info(
            "Application created",
            extra={
                "application_id": str(application.application_id),
                "user_id": actor.user_id,
                "region": region,
            },
        )
        return application

    async def update_draft(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        changes: Mapping[str, Any],
    ) -> Application:
        """Edit citizen details while the application is still a draft.

        Raises:
            ApplicationNotFoundError: If the application does not exist.
            ForbiddenError: If the caller may not edit this application.
            WorkflowValidationError: If a change names an unknown field or
                blanks a required one.
        """
        application = await load_application(self._session, application_id, for_update=True)
        ensure_visible(actor, application)
        authorize(actor, application.status, Action.EDIT)

        fields = _clean_citizen_data(changes)
        for name, value in fields.items():
            if name in REQUIRED_CITIZEN_FIELDS and (
                value is None or (isinstance(value, str) and not value.strip())
            ):
                raise WorkflowValidationError(name, f"{name} is required")

        changed = sorted(
            name for name, value in fields.items() if getattr(application, name) != value
        )
        for name in changed:
            setattr(application, name, fields[name])

        if changed:
            application.updated_at = datetime.now(UTC)
            await self._audit.record_transition(
                application,
                actor,
                action=Action.EDIT.value,
                from_status=application.status,
                to_status=application.status,
                summary={"fields": changed},
            )
            await flush_or_conflict(self._session, application)

        return application

    async def get(self, actor: Actor, application_id: uuid.UUID) -> Application:
        """Return one application the caller may see.

        Raises:
            ApplicationNotFoundError: If the application does not exist.
            ForbiddenError: If it is outside the caller's scope.
        """
        application = await load_application(self._session, application_id)
        ensure_visible(actor, application)
        return application

    async def list_applications(
        self,
        actor: Actor,
        *,
        statuses: Iterable[ApplicationStatus] | None = None,
        region: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = DEFAULT_PAGE_SIZE,
    ) -> ApplicationPage:
        """List applications in the caller's scope, newest first.

        Args:
            actor: The caller.
            statuses: Only return applications in one of these statuses.
            region: Only return applications from this region.
            search: Case-insensitive match on first/last name or citizen id.
            offset: Number of rows to skip.
            limit: Page size, capped at MAX_PAGE_SIZE.
        """
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(0, offset)

        query = _scope_query(select(Application), actor)
        status_list = list(statuses or [])
        if status_list:
            query = query.where(Application.status.in_(status_list))
        if region:
            query = query.where(Application.region == region)
        if search:
            pattern = f"%{search.strip()}%"
            digits = "".join(ch for ch in search if ch.isdigit())
            conditions = [
                Application.first_name.ilike(pattern),
                Application.last_name.ilike(pattern),
            ]
            if digits:
                conditions.append(Application.citizen_id.like(f"%{digits}%"))
            query = query.where(or_(*conditions))

        total_result = await self._session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = total_result.scalar_one()

        result = await self._session.execute(
            query.order_by(Application.created_at.desc()).offset(offset).limit(limit)
        )
        return ApplicationPage(
            items=list(result.scalars().all()),
            total=total,
            offset=offset,
            limit=limit,
        )

    async def stats(self, actor: Actor) -> dict[str, int]:
        """Count applications in the caller's scope, by status."""
        query = _scope_query(
            select(Application.status, func.count(Application.application_id)),
            actor,
        ).group_by(Application.status)
        result = await self._session.execute(query)

        counts = {status.value: 0 for status in ApplicationStatus}
        for status, count in result.all():
            counts[status.value] = count
        counts["total"] = sum(counts.values())
        return counts

    async def ready_for_print(self, actor: Actor) -> list[Application]:
        """Approved or completed applications that have not been printed yet."""
        query = _scope_query(
            select(Application).where(
                Application.status.in_(PRINTABLE_STATUSES),
                Application.is_printed.is_(False),
            ),
            actor,
        ).order_by(Application.reviewed_at.asc())
        result = await self._session.execute(query)
        return list(result.scalars().all())
