"""Decision engine: ministry approve/reject, blacklisting, and issue.

Applications from both routing lineages converge here. ``decide`` is the
single entry point behind the structured review, the status update and the
legacy ministry approve/reject aliases.

Reviewer fields (``reviewed_by_id``/``reviewed_at``) are stamped only by a
ministry approve or reject. Since both land in a terminal status they are
set at most once per application.
"""

from __future__ import annotations

import logging
from datetime import UTC, date, datetime
from enum import Enum
from typing import TYPE_CHECKING

from etds.core.config import WorkflowSettings
from etds.db.models.base import ApplicationStatus
from etds.services.applications import ensure_visible, flush_or_conflict, load_application
from etds.services.audit_log import AuditLogService
from etds.services.authz import Action, authorize
from etds.services.errors import InvalidTransitionError, WorkflowValidationError

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from etds.db.models.applications import Application
    from etds.services.authz import Actor

logger = logging.getLogger(__name__)

S = ApplicationStatus


class Decision(str, Enum):
    """Ministry decision on an application."""

    APPROVE = "APPROVE"
    REJECT = "REJECT"


_DECISION_TARGETS: dict[Decision, tuple[Action, ApplicationStatus]] = {
    Decision.APPROVE: (Action.APPROVE, S.APPROVED),
    Decision.REJECT: (Action.REJECT, S.REJECTED),
}


class DecisionService:
    """Terminal transitions of the workflow.

    Example:
        service = DecisionService(session)
        await service.decide(
            ministry,
            application_id,
            Decision.APPROVE,
            etd_issue_date=date(2026, 10, 1),
            etd_expiry_date=date(2026, 12, 31),
        )
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: WorkflowSettings | None = None,
        audit: AuditLogService | None = None,
    ) -> None:
        self._session = session
        self._settings = settings or WorkflowSettings()
        self._audit = audit or AuditLogService(session)

    async def decide(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        decision: Decision,
        *,
        rejection_reason: str | None = None,
        blacklist_check_passed: bool | None = None,
        etd_issue_date: date | None = None,
        etd_expiry_date: date | None = None,
    ) -> Application:
        """Approve or reject an application.

        Approval goes ahead even when the blacklist flag is set; the flag is
        stored verbatim and reported in the audit summary.

        Args:
            actor: Ministry or admin caller.
            application_id: Application to decide.
            decision: APPROVE or REJECT.
            rejection_reason: Required for REJECT.
            blacklist_check_passed: Decision-time blacklist flag.
            etd_issue_date: Issue date of the travel document (APPROVE).
            etd_expiry_date: Expiry date, must be after the issue date.

        Returns:
            The application, now APPROVED or REJECTED.

        Raises:
            ForbiddenError: If the caller may not decide.
            InvalidTransitionError: If the application is not ready for a
                decision (still pending verification, or already terminal).
            WorkflowValidationError: If the rejection reason is missing or
                the ETD dates are out of order.
        """
        action, to_status = _DECISION_TARGETS[decision]

        application = await load_application(self._session, application_id, for_update=True)
        from_status = application.status

        if from_status == S.DRAFT and not self._settings.allow_direct_draft_decision:
            logger.warning(
                "Direct decision on draft refused",
                extra={"application_id": str(application.application_id), "role": actor.role.value},
            )
            raise InvalidTransitionError(
                from_status,
                to_status,
                actor.role,
                reason="Drafts must be sent for verification before a decision",
            )

        authorize(actor, from_status, action, to_status=to_status)

        reason = rejection_reason.strip() if rejection_reason else None
        if decision == Decision.REJECT and not reason:
            raise WorkflowValidationError("rejection_reason", "A rejection reason is required")
        if (
            decision == Decision.APPROVE
            and etd_issue_date is not None
            and etd_expiry_date is not None
            and etd_issue_date >= etd_expiry_date
        ):
            raise WorkflowValidationError(
                "etd_expiry_date", "ETD expiry date must be after the issue date"
            )

        now = datetime.now(UTC)
        application.status = to_status
        application.reviewed_by_id = actor.user_id
        application.reviewed_at = now
        application.updated_at = now

        summary: dict[str, object] = {"decision": decision.value}
        if decision == Decision.APPROVE:
            application.etd_issue_date = etd_issue_date
            application.etd_expiry_date = etd_expiry_date
            application.blacklist_check_passed = blacklist_check_passed
            flagged = self._blacklist_flagged(blacklist_check_passed)
            summary["blacklist_flagged"] = flagged
            if flagged:
                logger.warning(
                    "Application approved with blacklist flag set",
                    extra={
                        "application_id": str(application.application_id),
                        "user_id": actor.user_id,
                        "black_list_check": blacklist_check_passed,
                    },
                )
        else:
            application.rejection_reason = reason

        await self._audit.record_transition(
            application,
            actor,
            action=action.value,
            from_status=from_status,
            to_status=to_status,
            summary=summary,
        )
        await flush_or_conflict(self._session, application)

        logger.info(
            "Ministry decision recorded",
            extra={
                "application_id": str(application.application_id),
                "decision": decision.value,
                "from_status": from_status.value,
                "to_status": to_status.value,
                "role": actor.role.value,
            },
        )
        return application

    async def blacklist(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        *,
        remarks: str | None,
    ) -> Application:
        """Blacklist an application from any non-terminal status.

        Agencies still pending on the application no longer owe a response,
        so the pending set is cleared.

        Raises:
            ForbiddenError: If the caller may not blacklist.
            InvalidTransitionError: If the application is already terminal.
            WorkflowValidationError: If remarks are missing.
        """
        application = await load_application(self._session, application_id, for_update=True)
        from_status = application.status
        authorize(actor, from_status, Action.BLACKLIST, to_status=S.BLACKLISTED)

        reason = remarks.strip() if remarks else ""
        if not reason:
            raise WorkflowValidationError("remarks", "Blacklist remarks are required")

        now = datetime.now(UTC)
        dropped = list(application.pending_verification_agencies or [])
        application.pending_verification_agencies = []
        application.status = S.BLACKLISTED
        application.blacklist_reason = reason
        application.blacklisted_by_id = actor.user_id
        application.blacklisted_at = now
        application.updated_at = now

        await self._audit.record_transition(
            application,
            actor,
            action=Action.BLACKLIST.value,
            from_status=from_status,
            to_status=application.status,
            summary={"dropped_agencies": dropped} if dropped else None,
        )
        await flush_or_conflict(self._session, application)

        logger.info(
            "Application blacklisted",
            extra={
                "application_id": str(application.application_id),
                "from_status": from_status.value,
                "role": actor.role.value,
            },
        )
        return application

    async def issue(
        self,
        actor: Actor,
        application_id: uuid.UUID,
        *,
        sheet_no: str | None = None,
    ) -> Application:
        """Record print-and-issue of an approved application (APPROVED -> COMPLETED).

        Args:
            actor: Mission operator or admin caller.
            application_id: Application being issued.
            sheet_no: Opaque number of the printed sheet.
        """
        application = await load_application(self._session, application_id, for_update=True)
        ensure_visible(actor, application)
        from_status = application.status
        authorize(actor, from_status, Action.PRINT, to_status=S.COMPLETED)

        now = datetime.now(UTC)
        self._stamp_printed(application, actor, now)
        if sheet_no and sheet_no.strip():
            application.sheet_no = sheet_no.strip()
        application.status = S.COMPLETED
        application.updated_at = now

        await self._audit.record_transition(
            application,
            actor,
            action=Action.PRINT.value,
            from_status=from_status,
            to_status=application.status,
            summary={"sheet_no": application.sheet_no},
        )
        await flush_or_conflict(self._session, application)

        logger.info(
            "Application issued",
            extra={
                "application_id": str(application.application_id),
                "sheet_no": application.sheet_no,
            },
        )
        return application

    async def mark_printed(self, actor: Actor, application_id: uuid.UUID) -> Application:
        """Set the printed flag without changing status.

        Repeating the call is a no-op and keeps the first ``printed_at``.
        """
        application = await load_application(self._session, application_id, for_update=True)
        ensure_visible(actor, application)
        authorize(actor, application.status, Action.MARK_PRINTED)

        if application.is_printed:
            return application

        now = datetime.now(UTC)
        self._stamp_printed(application, actor, now)
        application.updated_at = now

        await self._audit.record_transition(
            application,
            actor,
            action=Action.MARK_PRINTED.value,
            from_status=application.status,
            to_status=application.status,
        )
        await flush_or_conflict(self._session, application)
        return application

    def _blacklist_flagged(self, flag: bool | None) -> bool:
        """Whether the decision-time flag reports a blacklist hit."""
        if flag is None:
            return False
        return flag if self._settings.blacklist_flag_means_hit else not flag

    @staticmethod
    def _stamp_printed(application: Application, actor: Actor, now: datetime) -> None:
        if not application.is_printed:
            application.is_printed = True
            application.printed_at = now
            application.printed_by_id = actor.user_id
