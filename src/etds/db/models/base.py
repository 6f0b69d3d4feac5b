"""Base model definitions, common column types, and workflow enums.

This module provides:
- SQLAlchemy declarative base with naming conventions
- Reusable annotated column types
- Enum types shared by models, services and API schemas
"""

import enum
import uuid
from datetime import datetime
from typing import Annotated

from sqlalchemy import DateTime, MetaData, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import DeclarativeBase, mapped_column, registry

# Naming convention for constraints ensures consistent migration generation.
# See: https://alembic.sqlalchemy.org/en/latest/naming.html
NAMING_CONVENTION = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

metadata = MetaData(naming_convention=NAMING_CONVENTION)

type_registry = registry()

# UUID primary key with server-side default generation
UUIDPrimaryKey = Annotated[
    uuid.UUID,
    mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    ),
]

# Timestamp with timezone, defaults to now
TimestampTZ = Annotated[
    datetime,
    mapped_column(DateTime(timezone=True), server_default=text("now()")),
]

# Optional timestamp with timezone
OptionalTimestampTZ = Annotated[
    datetime | None,
    mapped_column(DateTime(timezone=True), nullable=True),
]

OptionalShortString = Annotated[str | None, mapped_column(String(100), nullable=True)]
OptionalMediumString = Annotated[str | None, mapped_column(String(255), nullable=True)]


class Base(DeclarativeBase):
    """Declarative base for all ETDS models."""

    metadata = metadata
    registry = type_registry


# =============================================================================
# Workflow Enums
# =============================================================================


class ApplicationStatus(enum.Enum):
    """Closed set of application statuses.

    Values are the upper-case strings the clients already exchange.

    States:
        DRAFT: Captured by a mission operator, waiting for the ministry
        SUBMITTED: Legacy intake state (pre fan-out applications)
        UNDER_REVIEW: Legacy review state, only blacklisting leaves it
        AGENCY_REVIEW: Legacy single-agency review
        MINISTRY_REVIEW: Legacy, agency cleared it without a report
        PENDING_VERIFICATION: Waiting for one or more agencies
        VERIFICATION_SUBMITTED: Legacy, agency cleared it with a report
        VERIFICATION_RECEIVED: Every agency responded, ready for a decision
        APPROVED: Ministry approved, ready for printing
        REJECTED: Rejected by the ministry or by the legacy agency path
        COMPLETED: ETD printed and issued
        BLACKLISTED: Blocked by the ministry
    """

    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    UNDER_REVIEW = "UNDER_REVIEW"
    AGENCY_REVIEW = "AGENCY_REVIEW"
    MINISTRY_REVIEW = "MINISTRY_REVIEW"
    PENDING_VERIFICATION = "PENDING_VERIFICATION"
    VERIFICATION_SUBMITTED = "VERIFICATION_SUBMITTED"
    VERIFICATION_RECEIVED = "VERIFICATION_RECEIVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    COMPLETED = "COMPLETED"
    BLACKLISTED = "BLACKLISTED"


class UserRole(enum.Enum):
    """Roles carried on the caller's identity token."""

    ADMIN = "ADMIN"
    MINISTRY = "MINISTRY"
    AGENCY = "AGENCY"
    MISSION_OPERATOR = "MISSION_OPERATOR"


class Agency(enum.Enum):
    """Verification agencies.

    One Special Branch per region plus the Intelligence Bureau, which is
    also the fallback for unknown regions.
    """

    INTELLIGENCE_BUREAU = "INTELLIGENCE_BUREAU"
    SPECIAL_BRANCH_PUNJAB = "SPECIAL_BRANCH_PUNJAB"
    SPECIAL_BRANCH_SINDH = "SPECIAL_BRANCH_SINDH"
    SPECIAL_BRANCH_KPK = "SPECIAL_BRANCH_KPK"
    SPECIAL_BRANCH_BALOCHISTAN = "SPECIAL_BRANCH_BALOCHISTAN"
    SPECIAL_BRANCH_FEDERAL = "SPECIAL_BRANCH_FEDERAL"

