"""Initial ETDS schema.

Revision ID: 001
Revises: None
Create Date: 2026-10-19 00:00:00.000000+00:00

Creates:
- application_status, agency (enum types)
- applications (citizen details and workflow bookkeeping)
- agency_remarks (one verification response per agency per application)
- audit_log_records (hash-chained transition log)
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# Revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

APPLICATION_STATUSES = (
    "DRAFT",
    "SUBMITTED",
    "UNDER_REVIEW",
    "AGENCY_REVIEW",
    "MINISTRY_REVIEW",
    "PENDING_VERIFICATION",
    "VERIFICATION_SUBMITTED",
    "VERIFICATION_RECEIVED",
    "APPROVED",
    "REJECTED",
    "COMPLETED",
    "BLACKLISTED",
)

AGENCIES = (
    "INTELLIGENCE_BUREAU",
    "SPECIAL_BRANCH_PUNJAB",
    "SPECIAL_BRANCH_SINDH",
    "SPECIAL_BRANCH_KPK",
    "SPECIAL_BRANCH_BALOCHISTAN",
    "SPECIAL_BRANCH_FEDERAL",
)


def _uuid_pk(name: str) -> sa.Column:
    return sa.Column(
        name,
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    if nullable:
        return sa.Column(name, sa.DateTime(timezone=True), nullable=True)
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=False,
    )


def upgrade() -> None:
    """Apply migration: Initial ETDS schema."""
    application_status = postgresql.ENUM(
        *APPLICATION_STATUSES, name="application_status", create_type=False
    )
    application_status.create(op.get_bind(), checkfirst=True)

    agency = postgresql.ENUM(*AGENCIES, name="agency", create_type=False)
    agency.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "applications",
        _uuid_pk("application_id"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("status", application_status, nullable=False),
        # Citizen details
        sa.Column("citizen_id", sa.String(15), nullable=False),
        sa.Column("first_name", sa.String(50), nullable=False),
        sa.Column("last_name", sa.String(50), nullable=False),
        sa.Column("father_name", sa.String(100), nullable=False),
        sa.Column("mother_name", sa.String(100), nullable=False),
        sa.Column("gender", sa.String(100), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=False),
        sa.Column("nationality", sa.String(100), nullable=True),
        sa.Column("birth_country", sa.String(100), nullable=True),
        sa.Column("birth_city", sa.String(100), nullable=True),
        sa.Column("profession", sa.String(100), nullable=False),
        sa.Column("pakistan_city", sa.String(100), nullable=False),
        sa.Column("pakistan_address", sa.String(200), nullable=False),
        sa.Column("height", sa.String(20), nullable=False),
        sa.Column("color_of_eyes", sa.String(30), nullable=False),
        sa.Column("color_of_hair", sa.String(30), nullable=False),
        sa.Column("departure_date", sa.Date(), nullable=False),
        sa.Column("transport_mode", sa.String(50), nullable=False),
        sa.Column("investor", sa.String(255), nullable=True),
        sa.Column("requested_by", sa.String(255), nullable=True),
        sa.Column("reason_for_deport", sa.Text(), nullable=True),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("is_fia_blacklist", sa.Boolean(), nullable=False),
        sa.Column("remarks", sa.Text(), nullable=True),
        # Routing
        sa.Column("region", sa.String(100), nullable=True),
        sa.Column("assigned_agency", agency, nullable=True),
        sa.Column("created_by_id", sa.String(255), nullable=False),
        # Verification fan-out/fan-in
        sa.Column(
            "pending_verification_agencies",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column(
            "verification_completed_agencies",
            postgresql.JSONB(astext_type=sa.Text()),
            server_default=sa.text("'[]'::jsonb"),
            nullable=False,
        ),
        sa.Column("verification_document_ref", sa.String(500), nullable=True),
        sa.Column("verification_remarks", sa.Text(), nullable=True),
        _timestamp("verification_sent_at", nullable=True),
        _timestamp("verification_completed_at", nullable=True),
        # Decision
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("blacklist_check_passed", sa.Boolean(), nullable=True),
        sa.Column("blacklist_reason", sa.Text(), nullable=True),
        sa.Column("blacklisted_by_id", sa.String(255), nullable=True),
        _timestamp("blacklisted_at", nullable=True),
        sa.Column("etd_issue_date", sa.Date(), nullable=True),
        sa.Column("etd_expiry_date", sa.Date(), nullable=True),
        sa.Column("reviewed_by_id", sa.String(255), nullable=True),
        _timestamp("reviewed_at", nullable=True),
        # Printing
        sa.Column("is_printed", sa.Boolean(), nullable=False),
        _timestamp("printed_at", nullable=True),
        sa.Column("printed_by_id", sa.String(255), nullable=True),
        sa.Column("sheet_no", sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint("application_id", name=op.f("pk_applications")),
    )
    for column in ("status", "created_at", "created_by_id", "citizen_id", "region"):
        op.create_index(f"ix_applications_{column}", "applications", [column], unique=False)
    op.create_index(
        "ix_applications_pending_agencies",
        "applications",
        ["pending_verification_agencies"],
        unique=False,
        postgresql_using="gin",
    )

    op.create_table(
        "agency_remarks",
        _uuid_pk("agency_remark_id"),
        sa.Column("application_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("agency", agency, nullable=False),
        sa.Column("remarks", sa.Text(), nullable=False),
        _timestamp("submitted_at"),
        sa.Column("submitted_by_id", sa.String(255), nullable=False),
        sa.Column("attachment_ref", sa.String(500), nullable=True),
        sa.Column("attachment_filename", sa.String(255), nullable=True),
        sa.ForeignKeyConstraint(
            ["application_id"],
            ["applications.application_id"],
            name=op.f("fk_agency_remarks_application_id_applications"),
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("agency_remark_id", name=op.f("pk_agency_remarks")),
        sa.UniqueConstraint(
            "application_id", "agency", name="uq_agency_remarks_application_agency"
        ),
    )
    op.create_index(
        "ix_agency_remarks_application_id",
        "agency_remarks",
        ["application_id"],
        unique=False,
    )

    op.create_table(
        "audit_log_records",
        _uuid_pk("record_id"),
        _timestamp("created_at"),
        sa.Column("seq_no", sa.BigInteger(), nullable=False),
        sa.Column("record_hash", sa.String(64), nullable=False),
        sa.Column("prev_record_hash", sa.String(64), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("actor_id", sa.String(255), nullable=False),
        sa.Column("actor_role", sa.String(50), nullable=False),
        sa.Column("application_id", sa.String(64), nullable=False),
        sa.Column("from_status", application_status, nullable=True),
        sa.Column("to_status", application_status, nullable=False),
        sa.Column("summary", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.PrimaryKeyConstraint("record_id", name=op.f("pk_audit_log_records")),
    )
    op.create_index(
        "ix_audit_log_records_seq_no", "audit_log_records", ["seq_no"], unique=True
    )
    for column in ("application_id", "created_at", "actor_id"):
        op.create_index(
            f"ix_audit_log_records_{column}", "audit_log_records", [column], unique=False
        )


def downgrade() -> None:
    """Revert migration: Initial ETDS schema."""
    op.drop_table("audit_log_records")
    op.drop_table("agency_remarks")
    op.drop_table("applications")

    op.execute("DROP TYPE IF EXISTS agency")
    op.execute("DROP TYPE IF EXISTS application_status")
