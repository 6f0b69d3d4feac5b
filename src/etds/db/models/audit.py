"""Audit log model: hash-chained record of workflow transitions.

Each successful status change (and each status-preserving bookkeeping
mutation) is written here in the same transaction as the change itself, so
a rolled-back operation leaves no trace.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Enum, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from etds.db.models.base import (
    ApplicationStatus,
    Base,
    TimestampTZ,
    UUIDPrimaryKey,
)


class AuditLogRecord(Base):
    """Tamper-evident audit log entry.

    Each record is chained to the previous via prev_record_hash, creating an
    append-only, verifiable trail of who moved which application where.
    """

    __tablename__ = "audit_log_records"

    record_id: Mapped[UUIDPrimaryKey]
    created_at: Mapped[TimestampTZ]

    # Global sequence number (monotonically increasing, gap-free)
    seq_no: Mapped[int] = mapped_column(BigInteger, nullable=False)

    record_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    # First record has NULL prev_record_hash
    prev_record_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    # Workflow action name, e.g. "send_for_verification", "decide"
    action: Mapped[str] = mapped_column(String(100), nullable=False)

    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)

    application_id: Mapped[str] = mapped_column(String(64), nullable=False)

    from_status: Mapped[ApplicationStatus | None] = mapped_column(
        Enum(ApplicationStatus, name="application_status", create_constraint=True),
        nullable=True,
    )
    to_status: Mapped[ApplicationStatus] = mapped_column(
        Enum(ApplicationStatus, name="application_status", create_constraint=True),
        nullable=False,
    )

    # Small, non-sensitive context (agency, remarks excerpt, flags)
    summary: Mapped[dict | None] = mapped_column(JSONB, nullable=True)

    __table_args__ = (
        Index("ix_audit_log_records_seq_no", "seq_no", unique=True),
        Index("ix_audit_log_records_application_id", "application_id"),
        Index("ix_audit_log_records_created_at", "created_at"),
        Index("ix_audit_log_records_actor_id", "actor_id"),
    )
