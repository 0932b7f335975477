"""
Tests for the pure approver authorization rules.
"""

from dataclasses import replace
from datetime import date, datetime, timezone
from decimal import Decimal

import pytest

from claims_engines.authority import (
    DEPARTMENT_MISMATCH,
    EMPLOYEE,
    INFO_REQUEST_PENDING,
    INSUFFICIENT_ROLE,
    ROLE_MISMATCH,
    SELF_APPROVAL,
    authority_denial,
    can_act_on,
)
from claims_kernel.domain.claim import (
    ApprovalStep,
    ApprovalWorkflow,
    Claim,
    Role,
    StepStatus,
)


def make_claim(*roles: Role, index: int = 0, employee_id: str = "emp-eng") -> Claim:
    steps = tuple(
        ApprovalStep(
            step_number=i,
            required_role=role,
            status=StepStatus.APPROVED if i <= index else StepStatus.PENDING,
        )
        for i, role in enumerate(roles, start=1)
    )
    return Claim(
        claim_id="claim-1",
        employee_id=employee_id,
        department="engineering",
        category="travel",
        amount=Decimal("100"),
        currency="USD",
        expense_date=date(2024, 2, 25),
        submitted_at=datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc),
        workflow=ApprovalWorkflow(claim_id="claim-1", steps=steps, current_step_index=index),
    )


def deny(claim: Claim, actor_id: str, role: Role, department: str | None, directory_role=None):
    return authority_denial(
        claim=claim,
        step=claim.workflow.active_step,
        actor_id=actor_id,
        actor_role=role,
        directory_role=directory_role if directory_role is not None else role,
        actor_department=department,
    )


class TestAuthorityDenial:
    def test_manager_same_department_allowed(self):
        assert deny(make_claim(Role.MANAGER), "mgr-eng", Role.MANAGER, "engineering") is None

    def test_manager_other_department_denied(self):
        assert (
            deny(make_claim(Role.MANAGER), "mgr-sales", Role.MANAGER, "sales")
            == DEPARTMENT_MISMATCH
        )

    def test_manager_cannot_act_on_hr_step(self):
        claim = make_claim(Role.MANAGER, Role.HR, index=1)
        assert deny(claim, "mgr-eng", Role.MANAGER, "engineering") == INSUFFICIENT_ROLE

    def test_hr_cannot_act_on_admin_step(self):
        claim = make_claim(Role.MANAGER, Role.ADMINISTRATOR, index=1)
        assert deny(claim, "hr-1", Role.HR, "people") == INSUFFICIENT_ROLE

    @pytest.mark.parametrize("role", [Role.HR, Role.ADMINISTRATOR])
    def test_senior_roles_may_act_on_lower_steps(self, role):
        assert deny(make_claim(Role.MANAGER), "senior-1", role, "people") is None

    def test_employee_denied(self):
        assert deny(make_claim(Role.MANAGER), "emp-sales", Role.EMPLOYEE, "sales") == EMPLOYEE

    def test_self_approval_denied_even_for_admin(self):
        claim = make_claim(Role.MANAGER, employee_id="admin-1")
        assert deny(claim, "admin-1", Role.ADMINISTRATOR, "finance") == SELF_APPROVAL

    def test_claimed_role_must_match_directory(self):
        assert (
            deny(
                make_claim(Role.MANAGER),
                "mgr-eng",
                Role.ADMINISTRATOR,
                "engineering",
                directory_role=Role.MANAGER,
            )
            == ROLE_MISMATCH
        )

    def test_unknown_actor_is_role_mismatch(self):
        claim = make_claim(Role.MANAGER)
        assert (
            authority_denial(
                claim=claim,
                step=claim.workflow.active_step,
                actor_id="ghost",
                actor_role=Role.MANAGER,
                directory_role=None,
                actor_department=None,
            )
            == ROLE_MISMATCH
        )


class TestInfoRequestedStep:
    def _paused(self) -> Claim:
        claim = make_claim(Role.MANAGER)
        step = replace(
            claim.workflow.active_step,
            status=StepStatus.INFO_REQUESTED,
            approver_id="mgr-eng",
            approver_role=Role.MANAGER,
        )
        return replace(claim, workflow=replace(claim.workflow, steps=(step,)))

    def test_requester_may_continue(self):
        assert deny(self._paused(), "mgr-eng", Role.MANAGER, "engineering") is None

    def test_peer_manager_may_not_continue(self):
        assert (
            deny(self._paused(), "mgr-eng-2", Role.MANAGER, "engineering")
            == INFO_REQUEST_PENDING
        )

    def test_senior_role_may_continue(self):
        assert deny(self._paused(), "hr-1", Role.HR, "people") is None


class TestCanActOn:
    def test_terminal_claim(self):
        claim = make_claim(Role.MANAGER, index=1)
        assert not can_act_on(
            claim=claim, actor_id="mgr-eng", actor_role=Role.MANAGER, actor_department="engineering"
        )

    def test_active_manager_step(self):
        assert can_act_on(
            claim=make_claim(Role.MANAGER),
            actor_id="mgr-eng",
            actor_role=Role.MANAGER,
            actor_department="engineering",
        )
