"""Typed errors raised by the workflow services.

Every workflow operation validates completely before it mutates anything,
so raising one of these never leaves a half-applied change behind. Only
ConflictingUpdateError is meant to be retried automatically.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from uuid import UUID

    from etds.db.models.base import Agency, ApplicationStatus, UserRole


class WorkflowError(Exception):
    """Base class for workflow errors.

    Attributes:
        code: Machine-readable error code surfaced to API clients.
        message: Human-readable description.
    """

    code = "workflow_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def detail(self) -> dict[str, Any]:
        """Structured context for the caller (offending field, status, agency)."""
        return {}


class InvalidTransitionError(WorkflowError):
    """Raised when the from/to status pair is not in the transition table."""

    code = "invalid_transition"

    def __init__(
        self,
        from_status: ApplicationStatus,
        to_status: ApplicationStatus,
        role: UserRole | None = None,
        reason: str | None = None,
    ) -> None:
        self.from_status = from_status
        self.to_status = to_status
        self.role = role
        super().__init__(
            reason or f"Cannot transition from {from_status.value} to {to_status.value}"
        )

    def detail(self) -> dict[str, Any]:
        return {
            "from_status": self.from_status.value,
            "to_status": self.to_status.value,
            "role": self.role.value if self.role else None,
        }


class ForbiddenError(WorkflowError):
    """Raised when the caller's role may not perform an action in this status.

    Also raised when an agency acts on an application it is not assigned to.
    """

    code = "forbidden"

    def __init__(
        self,
        role: UserRole,
        action: str,
        status: ApplicationStatus | None = None,
        reason: str | None = None,
    ) -> None:
        self.role = role
        self.action = action
        self.status = status
        if reason is None:
            where = f" in status {status.value}" if status else ""
            reason = f"Role {role.value} may not {action}{where}"
        super().__init__(reason)

    def detail(self) -> dict[str, Any]:
        return {
            "role": self.role.value,
            "action": self.action,
            "status": self.status.value if self.status else None,
        }


class WorkflowValidationError(WorkflowError):
    """Raised when a required field is missing or malformed."""

    code = "validation_error"

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)

    def detail(self) -> dict[str, Any]:
        return {"field": self.field}


class AlreadySubmittedError(WorkflowError):
    """Raised when an agency submits verification a second time."""

    code = "already_submitted"

    def __init__(self, application_id: UUID, agency: Agency) -> None:
        self.application_id = application_id
        self.agency = agency
        super().__init__(
            f"Agency {agency.value} already submitted verification for application "
            f"{application_id}"
        )

    def detail(self) -> dict[str, Any]:
        return {"application_id": str(self.application_id), "agency": self.agency.value}


class ApplicationNotFoundError(WorkflowError):
    """Raised when an application does not exist."""

    code = "not_found"

    def __init__(self, application_id: UUID) -> None:
        self.application_id = application_id
        super().__init__(f"Application {application_id} not found")

    def detail(self) -> dict[str, Any]:
        return {"application_id": str(self.application_id)}


class ConflictingUpdateError(WorkflowError):
    """Raised when a concurrent writer changed the application first.

    The caller should reload and retry the whole operation.
    """

    code = "conflicting_update"

    def __init__(self, application_id: UUID) -> None:
        self.application_id = application_id
        super().__init__(
            f"Application {application_id} was modified concurrently; reload and retry"
        )

    def detail(self) -> dict[str, Any]:
        return {"application_id": str(self.application_id)}
