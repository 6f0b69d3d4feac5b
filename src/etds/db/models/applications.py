"""Application models: the ETD application and its per-agency remarks.

The application row carries the citizen details captured by the mission
operator together with the workflow bookkeeping (verification fan-out,
decision and print fields). Agency responses live in their own table so a
second response from the same agency is a unique-key conflict rather than a
silent duplicate.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from datetime import date  # noqa: TC003 - required at runtime for SQLAlchemy type resolution
from decimal import Decimal  # noqa: TC003 - required at runtime for SQLAlchemy type resolution

from sqlalchemy import (
    Boolean,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from etds.db.models.base import (
    Agency,
    ApplicationStatus,
    Base,
    OptionalMediumString,
    OptionalShortString,
    OptionalTimestampTZ,
    TimestampTZ,
    UUIDPrimaryKey,
)


class Application(Base):
    """Emergency travel document application.

    Never deleted; the lifecycle is expressed only through ``status``.
    ``version`` is SQLAlchemy's optimistic lock column: every flush issues
    ``UPDATE ... WHERE version = :old`` and bumps it.
    """

    __tablename__ = "applications"

    application_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]
    updated_at: Mapped[TimestampTZ]
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, name="application_status", create_constraint=True),
        nullable=False,
        default=ApplicationStatus.DRAFT,
    )

    # Citizen details (mission operator form)
    citizen_id: Mapped[str] = mapped_column(String(15), nullable=False)
    first_name: Mapped[str] = mapped_column(String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(String(50), nullable=False)
    father_name: Mapped[str] = mapped_column(String(100), nullable=False)
    mother_name: Mapped[str] = mapped_column(String(100), nullable=False)
    gender: Mapped[OptionalShortString]
    date_of_birth: Mapped[date] = mapped_column(Date, nullable=False)
    nationality: Mapped[OptionalShortString]
    birth_country: Mapped[OptionalShortString]
    birth_city: Mapped[OptionalShortString]
    profession: Mapped[str] = mapped_column(String(100), nullable=False)
    pakistan_city: Mapped[str] = mapped_column(String(100), nullable=False)
    pakistan_address: Mapped[str] = mapped_column(String(200), nullable=False)
    height: Mapped[str] = mapped_column(String(20), nullable=False)
    color_of_eyes: Mapped[str] = mapped_column(String(30), nullable=False)
    color_of_hair: Mapped[str] = mapped_column(String(30), nullable=False)
    departure_date: Mapped[date] = mapped_column(Date, nullable=False)
    transport_mode: Mapped[str] = mapped_column(String(50), nullable=False)
    investor: Mapped[OptionalMediumString]
    requested_by: Mapped[OptionalMediumString]
    reason_for_deport: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    is_fia_blacklist: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Routing: region of the creating mission, and the legacy single agency
    region: Mapped[OptionalShortString]
    assigned_agency: Mapped[Agency | None] = mapped_column(
        Enum(Agency, name="agency", create_constraint=True),
        nullable=True,
    )
    created_by_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Verification fan-out/fan-in bookkeeping (agency enum values)
    pending_verification_agencies: Mapped[list[str]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    verification_completed_agencies: Mapped[list[str]] = mapped_column(
        JSONB, nullable=False, default=list
    )
    verification_document_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)
    verification_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)
    verification_sent_at: Mapped[OptionalTimestampTZ]
    verification_completed_at: Mapped[OptionalTimestampTZ]

    # Decision bookkeeping
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    blacklist_check_passed: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    blacklist_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    blacklisted_by_id: Mapped[OptionalMediumString]
    blacklisted_at: Mapped[OptionalTimestampTZ]
    etd_issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    etd_expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reviewed_by_id: Mapped[OptionalMediumString]
    reviewed_at: Mapped[OptionalTimestampTZ]

    # Print bookkeeping (does not affect status except APPROVED -> COMPLETED)
    is_printed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    printed_at: Mapped[OptionalTimestampTZ]
    printed_by_id: Mapped[OptionalMediumString]
    sheet_no: Mapped[OptionalShortString]

    agency_remarks: Mapped[list[AgencyRemark]] = relationship(
        "AgencyRemark",
        back_populates="application",
        cascade="all, delete-orphan",
        order_by="AgencyRemark.submitted_at",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_applications_status", "status"),
        Index("ix_applications_created_at", "created_at"),
        Index("ix_applications_created_by_id", "created_by_id"),
        Index("ix_applications_citizen_id", "citizen_id"),
        Index("ix_applications_region", "region"),
        Index(
            "ix_applications_pending_agencies",
            "pending_verification_agencies",
            postgresql_using="gin",
        ),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def remark_for(self, agency: Agency) -> AgencyRemark | None:
        """Return the remark submitted by ``agency``, if any."""
        for remark in self.agency_remarks:
            if remark.agency == agency:
                return remark
        return None


class AgencyRemark(Base):
    """One agency's verification response for one application."""

    __tablename__ = "agency_remarks"

    agency_remark_id: Mapped[UUIDPrimaryKey]
    application_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("applications.application_id", ondelete="CASCADE"),
        nullable=False,
    )
    agency: Mapped[Agency] = mapped_column(
        Enum(Agency, name="agency", create_constraint=True),
        nullable=False,
    )
    remarks: Mapped[str] = mapped_column(Text, nullable=False)
    submitted_at: Mapped[TimestampTZ]
    submitted_by_id: Mapped[str] = mapped_column(String(255), nullable=False)

    # Opaque blob store key of the agency's attachment
    attachment_ref: Mapped[str | None] = mapped_column(String(500), nullable=True)
    attachment_filename: Mapped[str | None] = mapped_column(String(255), nullable=True)

    application: Mapped[Application] = relationship(
        "Application",
        back_populates="agency_remarks",
    )

    __table_args__ = (
        UniqueConstraint("application_id", "agency", name="uq_agency_remarks_application_agency"),
        Index("ix_agency_remarks_application_id", "application_id"),
    )
