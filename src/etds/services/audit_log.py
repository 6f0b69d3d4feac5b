"""Tamper-evident audit log of workflow transitions.

Every successful status change, and every bookkeeping mutation that keeps
the status (partial fan-in, draft edit, mark-as-printed), appends exactly one
record in the same transaction as the change. A failed operation rolls back
with its record, so only completed transitions are ever reported.

Records are chained: each one carries a SHA-256 hash over its canonical
content and the hash of the record before it, which makes deletion,
modification and reordering detectable by ``verify_chain``.
"""

from __future__ import annotations

import hashlib
import json
import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import select

from etds.db.models.audit import AuditLogRecord

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from etds.db.models.applications import Application
    from etds.db.models.base import ApplicationStatus
    from etds.services.authz import Actor

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class AuditEntry:
    """Immutable view of one audit record.

    Attributes:
        record_id: Unique identifier for this record.
        seq_no: Position in the global chain, starting at 1.
        record_hash: SHA-256 hash of this record's canonical content.
        prev_record_hash: Hash of the previous record (None for the first).
        action: Workflow action that produced the record.
        actor_id: Identifier of the caller.
        actor_role: Role of the caller.
        application_id: Application the action applied to.
        from_status: Status before the action, if any.
        to_status: Status after the action.
        summary: Small context payload (agencies, flags, sheet number).
        created_at: When the record was written.
    """

    record_id: uuid.UUID
    seq_no: int
    record_hash: str
    prev_record_hash: str | None
    action: str
    actor_id: str
    actor_role: str
    application_id: str
    from_status: str | None
    to_status: str
    summary: dict[str, Any] | None
    created_at: datetime

    @classmethod
    def from_record(cls, record: AuditLogRecord) -> AuditEntry:
        return cls(
            record_id=record.record_id,
            seq_no=record.seq_no,
            record_hash=record.record_hash,
            prev_record_hash=record.prev_record_hash,
            action=record.action,
            actor_id=record.actor_id,
            actor_role=record.actor_role,
            application_id=record.application_id,
            from_status=record.from_status.value if record.from_status else None,
            to_status=record.to_status.value,
            summary=record.summary,
            created_at=record.created_at,
        )


@dataclass(frozen=True, slots=True)
class ChainVerificationResult:
    """Result of verifying the audit chain.

    Attributes:
        valid: True if the chain is intact.
        checked_records: Number of records verified.
        first_seq_no: First sequence number checked.
        last_seq_no: Last sequence number checked.
        errors: Detected integrity violations.
    """

    valid: bool
    checked_records: int
    first_seq_no: int | None
    last_seq_no: int | None
    errors: list[str]


def compute_record_hash(
    *,
    seq_no: int,
    action: str,
    actor_id: str,
    actor_role: str,
    application_id: str,
    from_status: str | None,
    to_status: str,
    summary: dict[str, Any] | None,
    prev_record_hash: str | None,
    created_at: datetime,
) -> str:
    """Compute the SHA-256 hash of a record's canonical JSON representation.

    Kept as a module-level function so verification tools can recompute
    hashes without a service instance or database access.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = {
        "action": action,
        "actor_id": actor_id,
        "actor_role": actor_role,
        "application_id": application_id,
        "created_at": created_at.isoformat(),
        "from_status": from_status,
        "prev_record_hash": prev_record_hash,
        "seq_no": seq_no,
        "summary": summary,
        "to_status": to_status,
    }
    canonical_json = json.dumps(canonical, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical_json.encode("utf-8")).hexdigest()


class AuditLogService:
    """Append-only, hash-chained audit sink for the workflow services.

    Example:
        audit = AuditLogService(session)
        await audit.record_transition(
            application,
            actor,
            action="submit_verification",
            from_status=ApplicationStatus.PENDING_VERIFICATION,
            to_status=application.status,
            summary={"agency": "SPECIAL_BRANCH_SINDH"},
        )
    """

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record_transition(
        self,
        application: Application,
        actor: Actor,
        *,
        action: str,
        from_status: ApplicationStatus | None,
        to_status: ApplicationStatus,
        summary: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Append one record describing a completed mutation.

        Args:
            application: The mutated application.
            actor: The caller who performed the action.
            action: Workflow action name.
            from_status: Status before the mutation, if any.
            to_status: Status after the mutation.
            summary: Small, non-sensitive context.

        Returns:
            The appended entry.
        """
        next_seq_no, prev_hash = await self._get_next_seq_and_prev_hash()

        record_id = uuid.uuid4()
        created_at = datetime.now(UTC)
        application_id = str(application.application_id)
        from_value = from_status.value if from_status else None

        record_hash = compute_record_hash(
            seq_no=next_seq_no,
            action=action,
            actor_id=actor.user_id,
            actor_role=actor.role.value,
            application_id=application_id,
            from_status=from_value,
            to_status=to_status.value,
            summary=summary,
            prev_record_hash=prev_hash,
            created_at=created_at,
        )

        record = AuditLogRecord(
            record_id=record_id,
            created_at=created_at,
            seq_no=next_seq_no,
            record_hash=record_hash,
            prev_record_hash=prev_hash,
            action=action,
            actor_id=actor.user_id,
            actor_role=actor.role.value,
            application_id=application_id,
            from_status=from_status,
            to_status=to_status,
            summary=summary,
        )
        self._session.add(record)

        logger.info(
            "Workflow transition recorded",
            extra={
                "application_id": application_id,
                "action": action,
                "from_status": from_value,
                "to_status": to_status.value,
                "role": actor.role.value,
                "seq_no": next_seq_no,
            },
        )

        return AuditEntry.from_record(record)

    async def history(self, application_id: uuid.UUID) -> list[AuditEntry]:
        """Return the records for one application, oldest first."""
        query = (
            select(AuditLogRecord)
            .where(AuditLogRecord.application_id == str(application_id))
            .order_by(AuditLogRecord.seq_no)
        )
        result = await self._session.execute(query)
        return [AuditEntry.from_record(r) for r in result.scalars().all()]

    async def verify_chain(
        self,
        *,
        start_seq: int | None = None,
        end_seq: int | None = None,
    ) -> ChainVerificationResult:
        """Verify the integrity of the audit chain.

        Checks that:
        1. Sequence numbers are contiguous (no gaps)
        2. Each record's hash matches its recomputed hash
        3. Each record's prev_record_hash matches the previous record's hash
        4. The first record has prev_record_hash=None

        Args:
            start_seq: Starting sequence number (inclusive). Defaults to 1.
            end_seq: Ending sequence number (inclusive). Defaults to latest.

        Returns:
            ChainVerificationResult with validity status and any errors found.
        """
        query = select(AuditLogRecord).order_by(AuditLogRecord.seq_no)
        if start_seq is not None:
            query = query.where(AuditLogRecord.seq_no >= start_seq)
        if end_seq is not None:
            query = query.where(AuditLogRecord.seq_no <= end_seq)

        result = await self._session.execute(query)
        records: Sequence[AuditLogRecord] = result.scalars().all()

        if not records:
            return ChainVerificationResult(
                valid=True,
                checked_records=0,
                first_seq_no=None,
                last_seq_no=None,
                errors=[],
            )

        errors: list[str] = []
        prev_hash: str | None = None
        expected_seq: int | None = None

        for record in records:
            if expected_seq is not None and record.seq_no != expected_seq:
                errors.append(
                    f"Sequence gap detected: expected {expected_seq}, found {record.seq_no}"
                )

            if record.seq_no == 1 and record.prev_record_hash is not None:
                errors.append(
                    f"First record (seq_no=1) has prev_record_hash={record.prev_record_hash}, "
                    "expected None"
                )

            if prev_hash is not None and record.prev_record_hash != prev_hash:
                errors.append(
                    f"Chain break at seq_no={record.seq_no}: "
                    f"prev_record_hash={record.prev_record_hash}, expected {prev_hash}"
                )

            computed_hash = compute_record_hash(
                seq_no=record.seq_no,
                action=record.action,
                actor_id=record.actor_id,
                actor_role=record.actor_role,
                application_id=record.application_id,
                from_status=record.from_status.value if record.from_status else None,
                to_status=record.to_status.value,
                summary=record.summary,
                prev_record_hash=record.prev_record_hash,
                created_at=record.created_at,
            )
            if record.record_hash != computed_hash:
                errors.append(
                    f"Hash mismatch at seq_no={record.seq_no}: "
                    f"stored={record.record_hash}, computed={computed_hash}"
                )

            prev_hash = record.record_hash
            expected_seq = record.seq_no + 1

        if errors:
            logger.warning(
                "Audit chain verification failed",
                extra={"error_count": len(errors), "checked_records": len(records)},
            )

        return ChainVerificationResult(
            valid=not errors,
            checked_records=len(records),
            first_seq_no=records[0].seq_no,
            last_seq_no=records[-1].seq_no,
            errors=errors,
        )

    async def _get_next_seq_and_prev_hash(self) -> tuple[int, str | None]:
        """Lock the chain head and return (next_seq_no, prev_record_hash).

        SELECT ... FOR UPDATE serialises concurrent writers on the latest
        record until the surrounding transaction ends.
        """
        query = (
            select(AuditLogRecord)
            .order_by(AuditLogRecord.seq_no.desc())
            .limit(1)
            .with_for_update()
        )
        result = await self._session.execute(query)
        latest = result.scalar_one_or_none()

        if latest is None:
            return (1, None)
        return (latest.seq_no + 1, latest.record_hash)
