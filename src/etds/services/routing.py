"""Agency routing.

One pure lookup from a region to its home agency, used wherever an agency
has to be resolved: legacy send-to-agency, and agency callers that carry no
explicit agency claim on their token. Explicit claims always win over the
derived fallback.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from etds.db.models.base import Agency, UserRole
from etds.services.errors import ForbiddenError, WorkflowValidationError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from etds.services.authz import Actor

logger = logging.getLogger(__name__)

# Normalized region name -> home agency
REGION_AGENCIES: dict[str, Agency] = {
    "PUNJAB": Agency.SPECIAL_BRANCH_PUNJAB,
    "SINDH": Agency.SPECIAL_BRANCH_SINDH,
    "KPK": Agency.SPECIAL_BRANCH_KPK,
    "BALOCHISTAN": Agency.SPECIAL_BRANCH_BALOCHISTAN,
    "FEDERAL": Agency.SPECIAL_BRANCH_FEDERAL,
}

DEFAULT_AGENCY = Agency.INTELLIGENCE_BUREAU


def normalize_region(region: str | None) -> str | None:
    """Normalize a free-text region ("Punjab", " kpk ") to its table key."""
    if region is None:
        return None
    key = region.strip().upper().replace("-", "_").replace(" ", "_")
    return key or None


def resolve_home_agency(region: str | None) -> Agency:
    """Resolve the home agency of a region.

    Unknown or absent regions fall back to the Intelligence Bureau.

    Args:
        region: Region or province name as carried on the identity or application.

    Returns:
        The agency responsible for that region.
    """
    key = normalize_region(region)
    if key is None:
        return DEFAULT_AGENCY
    return REGION_AGENCIES.get(key, DEFAULT_AGENCY)


def parse_agency(value: str | Agency, *, field: str = "agency") -> Agency:
    """Parse an agency identifier.

    Args:
        value: Agency enum value or its string form.
        field: Field name reported on failure.

    Returns:
        The Agency member.

    Raises:
        WorkflowValidationError: If the value is not a known agency.
    """
    if isinstance(value, Agency):
        return value
    try:
        return Agency(value.strip().upper())
    except ValueError:
        raise WorkflowValidationError(field, f"Unknown agency: {value}") from None


def parse_agencies(values: Iterable[str | Agency], *, field: str = "agencies") -> list[Agency]:
    """Parse a list of agencies, dropping duplicates while keeping order.

    Raises:
        WorkflowValidationError: If the list is empty or holds an unknown agency.
    """
    agencies: list[Agency] = []
    for value in values:
        agency = parse_agency(value, field=field)
        if agency not in agencies:
            agencies.append(agency)
    if not agencies:
        raise WorkflowValidationError(field, "At least one agency is required")
    return agencies


def resolve_actor_agency(actor: Actor, requested: Agency | None = None) -> Agency:
    """Resolve which agency slot the caller acts for.

    Order of precedence:
    1. The explicit ``agency`` claim on the caller's identity.
    2. For ADMIN callers only, the agency named in the request.
    3. The home agency of the caller's region.

    Args:
        actor: The calling identity.
        requested: Agency named in the request, if any.

    Returns:
        The resolved agency.

    Raises:
        ForbiddenError: If a non-admin caller names an agency other than its own.
    """
    if actor.agency is not None:
        agency = actor.agency
    elif actor.role == UserRole.ADMIN and requested is not None:
        return requested
    else:
        agency = resolve_home_agency(actor.region)

    if requested is not None and requested != agency:
        logger.warning(
            "Agency claim mismatch",
            extra={
                "user_id": actor.user_id,
                "resolved_agency": agency.value,
                "requested_agency": requested.value,
            },
        )
        raise ForbiddenError(
            actor.role,
            "act for another agency",
            reason=f"Caller acts for {agency.value}, not {requested.value}",
        )
    return agency
