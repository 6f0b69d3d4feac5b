"""Application status registry.

The closed set of statuses lives in ``etds.db.models.base.ApplicationStatus``;
this module owns the legal transition table, independent of who triggers a
transition. Role checks live in ``etds.services.authz``.

The table merges the verification fan-out path and the legacy single-agency
path into one graph with several entry edges into the same terminal nodes:

    DRAFT -> PENDING_VERIFICATION -> (PENDING_VERIFICATION)* -> VERIFICATION_RECEIVED
    SUBMITTED <-> AGENCY_REVIEW -> MINISTRY_REVIEW | VERIFICATION_SUBMITTED
    {decision-ready} -> APPROVED | REJECTED
    {any non-terminal} -> BLACKLISTED
    APPROVED -> COMPLETED (print and issue)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from etds.db.models.base import ApplicationStatus
from etds.services.errors import InvalidTransitionError

if TYPE_CHECKING:
    from etds.db.models.base import UserRole

logger = logging.getLogger(__name__)

S = ApplicationStatus

# Legal transitions: from_status -> {allowed to_statuses}
VALID_TRANSITIONS: dict[ApplicationStatus, frozenset[ApplicationStatus]] = {
    S.DRAFT: frozenset(
        {S.PENDING_VERIFICATION, S.APPROVED, S.REJECTED, S.BLACKLISTED}
    ),
    # Legacy single-agency path
    S.SUBMITTED: frozenset({S.AGENCY_REVIEW, S.APPROVED, S.REJECTED, S.BLACKLISTED}),
    S.UNDER_REVIEW: frozenset({S.BLACKLISTED}),
    S.AGENCY_REVIEW: frozenset(
        {
            S.SUBMITTED,
            S.MINISTRY_REVIEW,
            S.VERIFICATION_SUBMITTED,
            S.APPROVED,
            S.REJECTED,
            S.BLACKLISTED,
        }
    ),
    S.MINISTRY_REVIEW: frozenset({S.APPROVED, S.REJECTED, S.BLACKLISTED}),
    S.VERIFICATION_SUBMITTED: frozenset({S.APPROVED, S.REJECTED, S.BLACKLISTED}),
    # Fan-out/fan-in path; the self-edge is a partial agency response
    S.PENDING_VERIFICATION: frozenset(
        {S.PENDING_VERIFICATION, S.VERIFICATION_RECEIVED, S.BLACKLISTED}
    ),
    S.VERIFICATION_RECEIVED: frozenset({S.APPROVED, S.REJECTED, S.BLACKLISTED}),
    # Only the print-and-issue step leaves APPROVED
    S.APPROVED: frozenset({S.COMPLETED}),
    S.REJECTED: frozenset(),
    S.COMPLETED: frozenset(),
    S.BLACKLISTED: frozenset(),
}

# Decision finality: no ministry or agency decision is accepted from these
TERMINAL_STATUSES: frozenset[ApplicationStatus] = frozenset(
    {S.APPROVED, S.REJECTED, S.COMPLETED, S.BLACKLISTED}
)

# Statuses from which the ministry may approve or reject
DECISION_READY_STATUSES: frozenset[ApplicationStatus] = frozenset(
    status
    for status, targets in VALID_TRANSITIONS.items()
    if {S.APPROVED, S.REJECTED} <= targets
)

# Statuses in which print bookkeeping is allowed
PRINTABLE_STATUSES: frozenset[ApplicationStatus] = frozenset({S.APPROVED, S.COMPLETED})


def is_valid_transition(from_status: ApplicationStatus, to_status: ApplicationStatus) -> bool:
    """Check if a status transition is in the table.

    Args:
        from_status: Current status.
        to_status: Desired target status.

    Returns:
        True if the transition is allowed, False otherwise.
    """
    return to_status in VALID_TRANSITIONS.get(from_status, frozenset())


def is_terminal(status: ApplicationStatus) -> bool:
    """Check if a status is terminal (a decision has been reached)."""
    return status in TERMINAL_STATUSES


def allowed_targets(status: ApplicationStatus) -> frozenset[ApplicationStatus]:
    """Return every status reachable in one step from ``status``."""
    return VALID_TRANSITIONS.get(status, frozenset())


def require_transition(
    from_status: ApplicationStatus,
    to_status: ApplicationStatus,
    *,
    role: UserRole | None = None,
) -> None:
    """Raise unless ``from_status -> to_status`` is legal.

    Args:
        from_status: Current status.
        to_status: Desired target status.
        role: Role of the caller, reported with the error.

    Raises:
        InvalidTransitionError: If the transition is not in the table.
    """
    if is_valid_transition(from_status, to_status):
        return

    logger.warning(
        "Invalid transition attempted",
        extra={
            "from_status": from_status.value,
            "to_status": to_status.value,
            "role": role.value if role else None,
        },
    )
    raise InvalidTransitionError(from_status, to_status, role)
