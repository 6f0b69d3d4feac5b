"""Tests for role-action authorization.

Tests cover:
- The (role, status) -> actions table
- ADMIN as the union of every role
- authorize() check order (forbidden role, invalid transition, forbidden status)
- Agency scoping and allowed_actions
- Purity of can_act
"""

import copy

import pytest

from etds.db.models.base import Agency, ApplicationStatus, UserRole
from etds.services.authz import (
    ROLE_STATUS_ACTIONS,
    Action,
    Actor,
    actions_for_role,
    agency_may_act,
    allowed_actions,
    authorize,
    can_act,
    require_role_action,
)
from etds.services.errors import ForbiddenError, InvalidTransitionError
from tests.factories import create_application

S = ApplicationStatus


class TestCanAct:
    """Tests for the role/status table."""

    def test_mission_operator_edits_drafts(self):
        assert can_act(UserRole.MISSION_OPERATOR, S.DRAFT) == frozenset(
            {Action.CREATE, Action.EDIT}
        )

    def test_mission_operator_prints_approved(self):
        assert Action.PRINT in can_act(UserRole.MISSION_OPERATOR, S.APPROVED)
        assert Action.MARK_PRINTED in can_act(UserRole.MISSION_OPERATOR, S.COMPLETED)

    def test_agency_submits_only_while_pending(self):
        assert can_act(UserRole.AGENCY, S.PENDING_VERIFICATION) == frozenset(
            {Action.SUBMIT_VERIFICATION}
        )
        assert can_act(UserRole.AGENCY, S.VERIFICATION_RECEIVED) == frozenset()

    def test_agency_legacy_actions(self):
        for status in (S.SUBMITTED, S.AGENCY_REVIEW):
            assert can_act(UserRole.AGENCY, status) == frozenset(
                {Action.AGENCY_APPROVE, Action.AGENCY_REJECT}
            )

    def test_ministry_only_blacklists_while_pending(self):
        assert can_act(UserRole.MINISTRY, S.PENDING_VERIFICATION) == frozenset(
            {Action.BLACKLIST}
        )

    def test_ministry_decides_after_fan_in(self):
        actions = can_act(UserRole.MINISTRY, S.VERIFICATION_RECEIVED)
        assert {Action.APPROVE, Action.REJECT, Action.BLACKLIST} <= actions

    @pytest.mark.parametrize("role", list(UserRole))
    @pytest.mark.parametrize("status", [S.REJECTED, S.BLACKLISTED])
    def test_nobody_acts_on_closed_applications(self, role, status):
        assert can_act(role, status) == frozenset()

    def test_admin_is_union_of_roles(self):
        """ADMIN may do, in every status, what any other role may do."""
        for status in ApplicationStatus:
            union = frozenset()
            for role in (UserRole.MISSION_OPERATOR, UserRole.AGENCY, UserRole.MINISTRY):
                union |= can_act(role, status)
            assert can_act(UserRole.ADMIN, status) == union

    def test_actions_for_role(self):
        assert actions_for_role(UserRole.AGENCY) == frozenset(
            {Action.SUBMIT_VERIFICATION, Action.AGENCY_APPROVE, Action.AGENCY_REJECT}
        )


class TestCanActPurity:
    """can_act is a pure lookup."""

    def test_repeated_calls_return_same_result(self):
        for role in UserRole:
            for status in ApplicationStatus:
                assert can_act(role, status) == can_act(role, status)

    def test_calls_do_not_mutate_table(self):
        before = copy.deepcopy(ROLE_STATUS_ACTIONS)
        for role in UserRole:
            for status in ApplicationStatus:
                can_act(role, status)
        assert before == ROLE_STATUS_ACTIONS


class TestAuthorize:
    """Tests for authorize() and its check order."""

    def test_permitted_action_passes(self, ministry):
        authorize(
            ministry,
            S.DRAFT,
            Action.SEND_FOR_VERIFICATION,
            to_status=S.PENDING_VERIFICATION,
        )

    def test_role_that_never_performs_action_is_forbidden(self, operator):
        """A mission operator approving is Forbidden, whatever the status."""
        with pytest.raises(ForbiddenError) as exc_info:
            authorize(operator, S.PENDING_VERIFICATION, Action.APPROVE, to_status=S.APPROVED)
        assert exc_info.value.status is None

    def test_illegal_transition_reported_before_status_check(self, ministry):
        """Approving while pending is an invalid transition, not a permission issue."""
        with pytest.raises(InvalidTransitionError):
            authorize(ministry, S.PENDING_VERIFICATION, Action.APPROVE, to_status=S.APPROVED)

    def test_wrong_status_for_role_is_forbidden(self, sindh_agency):
        """Agencies may not submit verification outside fan-out."""
        with pytest.raises(ForbiddenError) as exc_info:
            authorize(
                sindh_agency,
                S.DRAFT,
                Action.SUBMIT_VERIFICATION,
            )
        assert exc_info.value.status == S.DRAFT
        assert exc_info.value.detail()["action"] == "submit_verification"

    def test_require_role_action(self, operator, sindh_agency):
        require_role_action(operator, Action.CREATE)
        with pytest.raises(ForbiddenError):
            require_role_action(sindh_agency, Action.CREATE)


class TestAgencyScoping:
    """Tests for agency_may_act and allowed_actions."""

    def test_pending_agency_may_submit(self):
        application = create_application(
            S.PENDING_VERIFICATION, pending=["SPECIAL_BRANCH_SINDH"]
        )
        assert agency_may_act(
            Agency.SPECIAL_BRANCH_SINDH, application, Action.SUBMIT_VERIFICATION
        )
        assert not agency_may_act(
            Agency.SPECIAL_BRANCH_PUNJAB, application, Action.SUBMIT_VERIFICATION
        )

    def test_legacy_action_requires_assigned_agency(self):
        application = create_application(
            S.AGENCY_REVIEW, assigned_agency=Agency.SPECIAL_BRANCH_PUNJAB
        )
        assert agency_may_act(Agency.SPECIAL_BRANCH_PUNJAB, application, Action.AGENCY_APPROVE)
        assert not agency_may_act(Agency.SPECIAL_BRANCH_SINDH, application, Action.AGENCY_REJECT)

    def test_unassigned_legacy_application_open_to_any_agency(self):
        application = create_application(S.SUBMITTED)
        assert agency_may_act(Agency.INTELLIGENCE_BUREAU, application, Action.AGENCY_APPROVE)

    def test_allowed_actions_hides_submit_from_other_agencies(self, sindh_agency, ib_agency):
        application = create_application(
            S.PENDING_VERIFICATION, pending=["SPECIAL_BRANCH_SINDH"]
        )
        assert allowed_actions(sindh_agency, application) == frozenset(
            {Action.SUBMIT_VERIFICATION}
        )
        assert allowed_actions(ib_agency, application) == frozenset()

    def test_allowed_actions_for_ministry_is_table_lookup(self, ministry):
        application = create_application(S.VERIFICATION_RECEIVED)
        assert allowed_actions(ministry, application) == can_act(
            UserRole.MINISTRY, S.VERIFICATION_RECEIVED
        )

    def test_actor_is_hashable_value(self):
        """Actors compare by value."""
        assert Actor("u", UserRole.ADMIN) == Actor("u", UserRole.ADMIN)
