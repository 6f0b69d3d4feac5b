"""Tests for the decision engine.

Tests cover:
- Approve/reject from every decision-ready status
- Refusals while verification is pending and after a terminal status
- Reviewer stamping on the legacy path
- Blacklisting from non-terminal statuses
- Issue and mark-as-printed
"""

from datetime import date
from unittest.mock import AsyncMock

import pytest

from etds.core.config import WorkflowSettings
from etds.db.models.base import Agency, ApplicationStatus
from etds.services.decision import Decision, DecisionService
from etds.services.errors import (
    ForbiddenError,
    InvalidTransitionError,
    WorkflowValidationError,
)
from etds.services.status import DECISION_READY_STATUSES, TERMINAL_STATUSES
from etds.services.verification import VerificationService
from tests.factories import create_application, create_mock_session

S = ApplicationStatus


def make_service(application, *, settings=None):
    session = create_mock_session(application)
    audit = AsyncMock()
    return DecisionService(session, settings=settings, audit=audit), session, audit


class TestDecide:
    """Tests for ministry approve and reject."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", sorted(DECISION_READY_STATUSES, key=lambda s: s.value))
    async def test_approve_from_ready_statuses(self, ministry, status):
        application = create_application(status)
        service, session, audit = make_service(application)

        result = await service.decide(
            ministry,
            application.application_id,
            Decision.APPROVE,
            etd_issue_date=date(2026, 10, 20),
            etd_expiry_date=date(2027, 1, 20),
        )

        assert result.status == S.APPROVED
        assert result.reviewed_by_id == ministry.user_id
        assert result.reviewed_at is not None
        assert result.etd_issue_date == date(2026, 10, 20)
        assert result.etd_expiry_date == date(2027, 1, 20)
        session.flush.assert_awaited_once()
        audit.record_transition.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_reject_sets_reason(self, ministry):
        application = create_application(S.VERIFICATION_RECEIVED, completed=["INTELLIGENCE_BUREAU"])
        service, _, _ = make_service(application)

        result = await service.decide(
            ministry,
            application.application_id,
            Decision.REJECT,
            rejection_reason="  Adverse report  ",
        )

        assert result.status == S.REJECTED
        assert result.rejection_reason == "Adverse report"
        assert result.reviewed_by_id == ministry.user_id

    @pytest.mark.asyncio
    async def test_reject_requires_reason(self, ministry):
        application = create_application(S.VERIFICATION_RECEIVED)
        service, _, audit = make_service(application)

        with pytest.raises(WorkflowValidationError) as exc_info:
            await service.decide(ministry, application.application_id, Decision.REJECT)

        assert exc_info.value.field == "rejection_reason"
        assert application.status == S.VERIFICATION_RECEIVED
        audit.record_transition.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_decision_refused_while_pending(self, ministry):
        """No decision while any agency still owes a response."""
        application = create_application(
            S.PENDING_VERIFICATION, pending=["INTELLIGENCE_BUREAU"]
        )
        service, _, audit = make_service(application)

        for decision in Decision:
            with pytest.raises(InvalidTransitionError):
                await service.decide(
                    ministry,
                    application.application_id,
                    decision,
                    rejection_reason="reason",
                )

        assert application.status == S.PENDING_VERIFICATION
        assert application.reviewed_by_id is None
        audit.record_transition.assert_not_awaited()

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
    async def test_terminal_statuses_refuse_decisions(self, ministry, status):
        application = create_application(status)
        service, _, _ = make_service(application)

        with pytest.raises(InvalidTransitionError):
            await service.decide(
                ministry, application.application_id, Decision.REJECT, rejection_reason="x"
            )
        assert application.status == status

    @pytest.mark.asyncio
    async def test_direct_draft_decision_can_be_disabled(self, ministry):
        application = create_application(S.DRAFT)
        settings = WorkflowSettings(allow_direct_draft_decision=False)
        service, _, _ = make_service(application, settings=settings)

        with pytest.raises(InvalidTransitionError):
            await service.decide(ministry, application.application_id, Decision.APPROVE)
        assert application.status == S.DRAFT

    @pytest.mark.asyncio
    async def test_expiry_must_follow_issue_date(self, ministry):
        application = create_application(S.VERIFICATION_RECEIVED)
        service, _, _ = make_service(application)

        with pytest.raises(WorkflowValidationError) as exc_info:
            await service.decide(
                ministry,
                application.application_id,
                Decision.APPROVE,
                etd_issue_date=date(2026, 12, 1),
                etd_expiry_date=date(2026, 12, 1),
            )
        assert exc_info.value.field == "etd_expiry_date"
        assert application.status == S.VERIFICATION_RECEIVED

    @pytest.mark.asyncio
    async def test_agency_cannot_decide(self, ib_agency):
        application = create_application(S.VERIFICATION_RECEIVED)
        service, _, _ = make_service(application)

        with pytest.raises(ForbiddenError):
            await service.decide(ib_agency, application.application_id, Decision.APPROVE)

    @pytest.mark.asyncio
    async def test_operator_cannot_decide(self, operator):
        application = create_application(S.DRAFT)
        service, _, _ = make_service(application)

        with pytest.raises(ForbiddenError):
            await service.decide(operator, application.application_id, Decision.APPROVE)


class TestBlacklistFlag:
    """Tests for the decision-time blacklist flag."""

    @pytest.mark.asyncio
    async def test_flag_stored_and_approval_proceeds(self, ministry):
        application = create_application(S.VERIFICATION_RECEIVED)
        service, _, audit = make_service(application)

        result = await service.decide(
            ministry,
            application.application_id,
            Decision.APPROVE,
            blacklist_check_passed=True,
        )

        assert result.status == S.APPROVED
        assert result.blacklist_check_passed is True
        assert audit.record_transition.await_args.kwargs["summary"]["blacklist_flagged"] is True

    @pytest.mark.asyncio
    async def test_flag_polarity_is_configurable(self, ministry):
        application = create_application(S.VERIFICATION_RECEIVED)
        settings = WorkflowSettings(blacklist_flag_means_hit=False)
        service, _, audit = make_service(application, settings=settings)

        await service.decide(
            ministry,
            application.application_id,
            Decision.APPROVE,
            blacklist_check_passed=True,
        )

        assert audit.record_transition.await_args.kwargs["summary"]["blacklist_flagged"] is False

    @pytest.mark.asyncio
    async def test_missing_flag_is_not_a_hit(self, ministry):
        application = create_application(S.VERIFICATION_RECEIVED)
        service, _, audit = make_service(application)

        await service.decide(ministry, application.application_id, Decision.APPROVE)

        assert application.blacklist_check_passed is None
        assert audit.record_transition.await_args.kwargs["summary"]["blacklist_flagged"] is False


class TestLegacyLineage:
    """The single-agency path converges on the same decision."""

    @pytest.mark.asyncio
    async def test_double_agency_approval_then_decision(self, ministry, sindh_agency):
        application = create_application(S.SUBMITTED)
        session = create_mock_session(application)
        verification = VerificationService(session, audit=AsyncMock())
        decisions = DecisionService(session, audit=AsyncMock())

        await verification.agency_approve(sindh_agency, application.application_id)
        assert application.status == S.AGENCY_REVIEW
        assert application.assigned_agency == Agency.SPECIAL_BRANCH_SINDH

        await verification.agency_approve(sindh_agency, application.application_id)
        assert application.status == S.MINISTRY_REVIEW
        assert application.reviewed_by_id is None

        await decisions.decide(ministry, application.application_id, Decision.APPROVE)
        assert application.status == S.APPROVED
        assert application.reviewed_by_id == ministry.user_id
        reviewed_at = application.reviewed_at

        with pytest.raises(InvalidTransitionError):
            await decisions.decide(
                ministry, application.application_id, Decision.REJECT, rejection_reason="x"
            )
        assert application.reviewed_at == reviewed_at


class TestBlacklist:
    """Tests for blacklisting."""

    @pytest.mark.asyncio
    async def test_blacklist_clears_pending_agencies(self, ministry):
        application = create_application(
            S.PENDING_VERIFICATION,
            pending=["INTELLIGENCE_BUREAU", "SPECIAL_BRANCH_SINDH"],
        )
        service, _, audit = make_service(application)

        result = await service.blacklist(
            ministry, application.application_id, remarks="FIA watch list"
        )

        assert result.status == S.BLACKLISTED
        assert result.pending_verification_agencies == []
        assert result.blacklist_reason == "FIA watch list"
        assert result.blacklisted_by_id == ministry.user_id
        assert result.blacklisted_at is not None
        summary = audit.record_transition.await_args.kwargs["summary"]
        assert summary == {"dropped_agencies": ["INTELLIGENCE_BUREAU", "SPECIAL_BRANCH_SINDH"]}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [S.DRAFT, S.UNDER_REVIEW, S.AGENCY_REVIEW])
    async def test_blacklist_from_non_terminal(self, ministry, status):
        application = create_application(status)
        service, _, _ = make_service(application)

        result = await service.blacklist(ministry, application.application_id, remarks="hit")
        assert result.status == S.BLACKLISTED

    @pytest.mark.asyncio
    async def test_blacklist_requires_remarks(self, ministry):
        application = create_application(S.DRAFT)
        service, _, _ = make_service(application)

        with pytest.raises(WorkflowValidationError) as exc_info:
            await service.blacklist(ministry, application.application_id, remarks="  ")
        assert exc_info.value.field == "remarks"
        assert application.status == S.DRAFT

    @pytest.mark.asyncio
    async def test_blacklist_refused_when_terminal(self, ministry):
        application = create_application(S.APPROVED)
        service, _, _ = make_service(application)

        with pytest.raises(InvalidTransitionError):
            await service.blacklist(ministry, application.application_id, remarks="late")
        assert application.status == S.APPROVED


class TestIssue:
    """Tests for print-and-issue and the printed flag."""

    @pytest.mark.asyncio
    async def test_issue_completes_application(self, operator):
        application = create_application(S.APPROVED)
        service, _, audit = make_service(application)

        result = await service.issue(operator, application.application_id, sheet_no=" 000123 ")

        assert result.status == S.COMPLETED
        assert result.is_printed is True
        assert result.printed_by_id == operator.user_id
        assert result.printed_at is not None
        assert result.sheet_no == "000123"
        assert audit.record_transition.await_args.kwargs["to_status"] == S.COMPLETED

    @pytest.mark.asyncio
    async def test_issue_requires_approval(self, operator):
        application = create_application(S.VERIFICATION_RECEIVED)
        service, _, _ = make_service(application)

        with pytest.raises(InvalidTransitionError):
            await service.issue(operator, application.application_id)

    @pytest.mark.asyncio
    async def test_issue_by_other_operator_forbidden(self, operator):
        application = create_application(S.APPROVED, created_by_id="operator-2")
        service, _, _ = make_service(application)

        with pytest.raises(ForbiddenError):
            await service.issue(operator, application.application_id)

    @pytest.mark.asyncio
    async def test_mark_printed_is_idempotent(self, operator):
        application = create_application(S.APPROVED)
        service, _, audit = make_service(application)

        await service.mark_printed(operator, application.application_id)
        first_printed_at = application.printed_at
        await service.mark_printed(operator, application.application_id)

        assert application.status == S.APPROVED
        assert application.is_printed is True
        assert application.printed_at == first_printed_at
        assert audit.record_transition.await_count == 1

    @pytest.mark.asyncio
    async def test_mark_printed_not_before_approval(self, operator):
        application = create_application(S.DRAFT)
        service, _, _ = make_service(application)

        with pytest.raises(ForbiddenError):
            await service.mark_printed(operator, application.application_id)
        assert application.is_printed is False
