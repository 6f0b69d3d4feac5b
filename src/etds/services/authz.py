"""Role-action authorization for the application workflow.

This module provides:
- Action definitions for every workflow operation
- The (role, status) -> actions table, the single enforcement point used by
  every service call and mirrored to clients so they can hide actions
- Agency scoping (an agency only acts on applications it owes a response to)

``can_act`` is a pure lookup: no I/O, no side effects, same answer for the
same inputs.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, NoReturn

from etds.db.models.base import Agency, ApplicationStatus, UserRole
from etds.services.errors import ForbiddenError
from etds.services.routing import resolve_actor_agency
from etds.services.status import require_transition

if TYPE_CHECKING:
    from etds.db.models.applications import Application

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Action definitions
# ---------------------------------------------------------------------------


class Action(str, Enum):
    """Workflow actions a caller may request on an application."""

    # Mission operator
    CREATE = "create"
    EDIT = "edit"
    PRINT = "print"
    MARK_PRINTED = "mark_printed"

    # Agency
    SUBMIT_VERIFICATION = "submit_verification"
    AGENCY_APPROVE = "agency_approve"
    AGENCY_REJECT = "agency_reject"

    # Ministry
    SEND_FOR_VERIFICATION = "send_for_verification"
    SEND_TO_AGENCY = "send_to_agency"
    APPROVE = "approve"
    REJECT = "reject"
    BLACKLIST = "blacklist"


@dataclass(frozen=True, slots=True)
class Actor:
    """The caller as seen by the workflow services.

    Attributes:
        user_id: Stable identifier of the caller.
        role: Caller's role.
        region: Region/province claim, used for agency routing.
        agency: Explicit agency claim, takes precedence over the region.
    """

    user_id: str
    role: UserRole
    region: str | None = None
    agency: Agency | None = None


# ---------------------------------------------------------------------------
# Role/status -> action table
# ---------------------------------------------------------------------------

S = ApplicationStatus

_MINISTRY_ACTIONS = frozenset(
    {
        Action.SEND_FOR_VERIFICATION,
        Action.SEND_TO_AGENCY,
        Action.APPROVE,
        Action.REJECT,
        Action.BLACKLIST,
    }
)
_LEGACY_AGENCY_ACTIONS = frozenset({Action.AGENCY_APPROVE, Action.AGENCY_REJECT})
_PRINT_ACTIONS = frozenset({Action.PRINT, Action.MARK_PRINTED})

_BASE_TABLE: dict[UserRole, dict[ApplicationStatus, frozenset[Action]]] = {
    UserRole.MISSION_OPERATOR: {
        S.DRAFT: frozenset({Action.CREATE, Action.EDIT}),
        S.APPROVED: _PRINT_ACTIONS,
        S.COMPLETED: _PRINT_ACTIONS,
    },
    UserRole.AGENCY: {
        S.SUBMITTED: _LEGACY_AGENCY_ACTIONS,
        S.AGENCY_REVIEW: _LEGACY_AGENCY_ACTIONS,
        S.PENDING_VERIFICATION: frozenset({Action.SUBMIT_VERIFICATION}),
    },
    UserRole.MINISTRY: {
        S.DRAFT: _MINISTRY_ACTIONS,
        S.SUBMITTED: _MINISTRY_ACTIONS,
        S.MINISTRY_REVIEW: _MINISTRY_ACTIONS,
        S.AGENCY_REVIEW: _MINISTRY_ACTIONS,
        S.VERIFICATION_SUBMITTED: _MINISTRY_ACTIONS,
        S.VERIFICATION_RECEIVED: _MINISTRY_ACTIONS,
        # Blacklisting is available from every non-terminal status
        S.UNDER_REVIEW: frozenset({Action.BLACKLIST}),
        S.PENDING_VERIFICATION: frozenset({Action.BLACKLIST}),
    },
}


def _build_admin_table() -> dict[ApplicationStatus, frozenset[Action]]:
    """ADMIN may do anything any other role may do, status by status."""
    table: dict[ApplicationStatus, frozenset[Action]] = {}
    for status in ApplicationStatus:
        actions: set[Action] = set()
        for role_table in _BASE_TABLE.values():
            actions |= role_table.get(status, frozenset())
        if actions:
            table[status] = frozenset(actions)
    return table


ROLE_STATUS_ACTIONS: dict[UserRole, dict[ApplicationStatus, frozenset[Action]]] = {
    **_BASE_TABLE,
    UserRole.ADMIN: _build_admin_table(),
}


def can_act(role: UserRole, status: ApplicationStatus) -> frozenset[Action]:
    """Return the actions ``role`` may perform on an application in ``status``.

    Args:
        role: Caller's role.
        status: Current application status.

    Returns:
        Set of permitted actions (empty if none).
    """
    return ROLE_STATUS_ACTIONS.get(role, {}).get(status, frozenset())


def actions_for_role(role: UserRole) -> frozenset[Action]:
    """Return every action ``role`` may perform in at least one status."""
    actions: set[Action] = set()
    for status_actions in ROLE_STATUS_ACTIONS.get(role, {}).values():
        actions |= status_actions
    return frozenset(actions)


# ---------------------------------------------------------------------------
# Enforcement
# ---------------------------------------------------------------------------


def authorize(
    actor: Actor,
    status: ApplicationStatus,
    action: Action,
    *,
    to_status: ApplicationStatus | None = None,
) -> None:
    """Check that ``actor`` may perform ``action`` moving ``status`` to ``to_status``.

    Checks run in this order so that each failure is reported precisely:
    1. The role never performs this action anywhere -> ForbiddenError.
    2. The transition is not in the table -> InvalidTransitionError.
    3. The role may not perform the action in the current status -> ForbiddenError.

    Args:
        actor: The calling identity.
        status: Current application status.
        action: Requested action.
        to_status: Target status, when the action changes status.

    Raises:
        ForbiddenError: If the role/status pair does not permit the action.
        InvalidTransitionError: If the status change is not legal.
    """
    if action not in actions_for_role(actor.role):
        _deny(actor, action, None)

    if to_status is not None:
        require_transition(status, to_status, role=actor.role)

    if action not in can_act(actor.role, status):
        _deny(actor, action, status)


def require_role_action(actor: Actor, action: Action) -> None:
    """Check only that the role performs ``action`` somewhere (e.g. create)."""
    if action not in actions_for_role(actor.role):
        _deny(actor, action, None)


def _deny(actor: Actor, action: Action, status: ApplicationStatus | None) -> NoReturn:
    logger.warning(
        "Workflow action denied",
        extra={
            "user_id": actor.user_id,
            "role": actor.role.value,
            "action": action.value,
            "status": status.value if status else None,
        },
    )
    raise ForbiddenError(actor.role, action.value, status)


def agency_may_act(agency: Agency, application: Application, action: Action) -> bool:
    """Check agency scoping for agency actions on one application.

    - submit_verification: the agency must still owe a response.
    - legacy approve/reject: the agency must be the assigned one, when set.

    Other actions are not agency-scoped.
    """
    if action == Action.SUBMIT_VERIFICATION:
        return agency.value in (application.pending_verification_agencies or [])
    if action in _LEGACY_AGENCY_ACTIONS:
        return application.assigned_agency is None or application.assigned_agency == agency
    return True


def allowed_actions(actor: Actor, application: Application) -> frozenset[Action]:
    """Actions ``actor`` may perform on this application right now.

    This is ``can_act`` narrowed by agency scoping for AGENCY callers, so
    clients can hide what the server would refuse anyway.
    """
    actions = can_act(actor.role, application.status)
    if actor.role != UserRole.AGENCY:
        return actions

    agency = resolve_actor_agency(actor)
    return frozenset(a for a in actions if agency_may_act(agency, application, a))
