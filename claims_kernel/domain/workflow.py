"""
Claim workflow state machine (``claims_kernel.domain.workflow``).

Responsibility
--------------
Pure functions that derive the workflow and claim status from the approval
steps, and pure transition functions that apply one decision to a workflow
and return the new workflow.

Architecture position
---------------------
**Kernel domain layer** -- pure functions over frozen value objects.
ZERO I/O, no clock reads (``now`` is a parameter).

Invariants enforced
-------------------
* Workflow status: ``rejected`` iff any step is rejected; ``approved`` iff
  every non-skipped step is approved.
* ``current_step_index`` only increases, and every step before it is
  terminal (approved / rejected / skipped).
* Claim status is derived, never stored (``derive_claim_status``).
* Every derived status change is a member of ``CLAIM_TRANSITIONS``.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

from claims_kernel.domain.claim import (
    REVIEW_STATUS_BY_ROLE,
    ApprovalStep,
    ApprovalWorkflow,
    ClaimStatus,
    Role,
    StepStatus,
    WorkflowStatus,
)
from claims_kernel.exceptions import InvalidTransitionError

# =========================================================================
# Status derivation
# =========================================================================


def derive_workflow_status(steps: tuple[ApprovalStep, ...]) -> WorkflowStatus:
    """Overall workflow status from its steps."""
    if any(s.status == StepStatus.REJECTED for s in steps):
        return WorkflowStatus.REJECTED

    counted = [s for s in steps if s.status != StepStatus.SKIPPED]
    if counted and all(s.status == StepStatus.APPROVED for s in counted):
        return WorkflowStatus.APPROVED

    if all(s.status == StepStatus.PENDING for s in steps):
        return WorkflowStatus.PENDING
    return WorkflowStatus.IN_PROGRESS


def derive_claim_status(workflow: ApprovalWorkflow) -> ClaimStatus:
    """Claim status as seen by users, derived from the workflow."""
    overall = workflow.status
    if overall == WorkflowStatus.APPROVED:
        return ClaimStatus.APPROVED
    if overall == WorkflowStatus.REJECTED:
        return ClaimStatus.REJECTED

    active = workflow.active_step
    if active is None:
        return ClaimStatus.PENDING
    if active.status == StepStatus.INFO_REQUESTED:
        return ClaimStatus.INFO_REQUESTED
    if active.entered_by_escalation and active.status == StepStatus.PENDING:
        return ClaimStatus.ESCALATED
    if overall == WorkflowStatus.PENDING:
        return ClaimStatus.PENDING
    return REVIEW_STATUS_BY_ROLE[active.required_role]


# =========================================================================
# Transition table
# =========================================================================

_DECIDED = frozenset({ClaimStatus.APPROVED, ClaimStatus.REJECTED})

CLAIM_TRANSITIONS: dict[ClaimStatus, frozenset[ClaimStatus]] = {
    ClaimStatus.PENDING: _DECIDED | {
        ClaimStatus.MANAGER_REVIEW,
        ClaimStatus.HR_REVIEW,
        ClaimStatus.ADMIN_REVIEW,
        ClaimStatus.ESCALATED,
        ClaimStatus.INFO_REQUESTED,
    },
    ClaimStatus.MANAGER_REVIEW: _DECIDED | {
        ClaimStatus.HR_REVIEW,
        ClaimStatus.ADMIN_REVIEW,
        ClaimStatus.ESCALATED,
        ClaimStatus.INFO_REQUESTED,
    },
    ClaimStatus.HR_REVIEW: _DECIDED | {
        ClaimStatus.ADMIN_REVIEW,
        ClaimStatus.ESCALATED,
        ClaimStatus.INFO_REQUESTED,
    },
    ClaimStatus.ADMIN_REVIEW: _DECIDED | {
        ClaimStatus.INFO_REQUESTED,
    },
    ClaimStatus.ESCALATED: _DECIDED | {
        ClaimStatus.ADMIN_REVIEW,
        ClaimStatus.ESCALATED,
        ClaimStatus.INFO_REQUESTED,
    },
    ClaimStatus.INFO_REQUESTED: _DECIDED | {
        ClaimStatus.HR_REVIEW,
        ClaimStatus.ADMIN_REVIEW,
        ClaimStatus.ESCALATED,
        ClaimStatus.INFO_REQUESTED,
    },
    ClaimStatus.APPROVED: frozenset(),
    ClaimStatus.REJECTED: frozenset(),
}


def is_valid_transition(from_status: ClaimStatus, to_status: ClaimStatus) -> bool:
    return to_status in CLAIM_TRANSITIONS[from_status]


def check_transition(
    claim_id: str, from_status: ClaimStatus, to_status: ClaimStatus
) -> None:
    """Raise InvalidTransitionError unless ``from_status -> to_status`` is legal."""
    if not is_valid_transition(from_status, to_status):
        raise InvalidTransitionError(
            claim_id,
            from_status.value,
            f"cannot move from {from_status.value} to {to_status.value}",
        )


# =========================================================================
# Transitions
# =========================================================================


def _require_active(workflow: ApprovalWorkflow) -> ApprovalStep:
    step = workflow.active_step
    if step is None:
        raise InvalidTransitionError(
            workflow.claim_id,
            derive_claim_status(workflow).value,
            "workflow has no active step",
        )
    return step


def _next_unresolved_index(steps: tuple[ApprovalStep, ...], after: int) -> int:
    for i in range(after + 1, len(steps)):
        if not steps[i].is_terminal:
            return i
    return len(steps)


def _with_step(
    steps: tuple[ApprovalStep, ...], index: int, step: ApprovalStep
) -> tuple[ApprovalStep, ...]:
    return steps[:index] + (step,) + steps[index + 1:]


def apply_approval(
    workflow: ApprovalWorkflow,
    actor_id: str,
    actor_role: Role,
    comments: str,
    now: datetime,
) -> ApprovalWorkflow:
    """Approve the active step and advance to the next unresolved step."""
    step = _require_active(workflow)
    index = workflow.current_step_index
    decided = replace(
        step,
        status=StepStatus.APPROVED,
        approver_id=actor_id,
        approver_role=actor_role,
        comments=comments,
        completed_at=now,
    )
    steps = _with_step(workflow.steps, index, decided)
    return replace(
        workflow,
        steps=steps,
        current_step_index=_next_unresolved_index(steps, index),
    )


def apply_rejection(
    workflow: ApprovalWorkflow,
    actor_id: str,
    actor_role: Role,
    comments: str,
    now: datetime,
) -> ApprovalWorkflow:
    """Reject the active step; the workflow becomes terminal."""
    step = _require_active(workflow)
    index = workflow.current_step_index
    decided = replace(
        step,
        status=StepStatus.REJECTED,
        approver_id=actor_id,
        approver_role=actor_role,
        comments=comments,
        completed_at=now,
    )
    return replace(
        workflow,
        steps=_with_step(workflow.steps, index, decided),
        current_step_index=index + 1,
    )


def apply_info_request(
    workflow: ApprovalWorkflow,
    actor_id: str,
    actor_role: Role,
    comments: str,
) -> ApprovalWorkflow:
    """Pause the active step until the requester (or a senior role) decides."""
    step = _require_active(workflow)
    paused = replace(
        step,
        status=StepStatus.INFO_REQUESTED,
        approver_id=actor_id,
        approver_role=actor_role,
        comments=comments,
        completed_at=None,
    )
    return replace(
        workflow,
        steps=_with_step(workflow.steps, workflow.current_step_index, paused),
    )


ESCALATION_ROLE: dict[Role, Role] = {
    Role.MANAGER: Role.HR,
    Role.HR: Role.ADMINISTRATOR,
}


def escalation_target(workflow: ApprovalWorkflow) -> int | None:
    """Index of the step an escalation of the active step lands on.

    Returns None when no existing step qualifies and the workflow must be
    extended instead.
    """
    step = _require_active(workflow)
    for i in range(workflow.current_step_index + 1, len(workflow.steps)):
        candidate = workflow.steps[i]
        if candidate.is_terminal:
            continue
        if (
            candidate.required_role.rank > step.required_role.rank
            and candidate.required_role.at_least(Role.HR)
        ):
            return i
    return None


def apply_escalation(
    workflow: ApprovalWorkflow,
    actor_id: str,
    actor_role: Role,
    comments: str,
    now: datetime,
) -> ApprovalWorkflow:
    """Skip the active step and hand the claim to a higher-authority step.

    Unresolved steps between the escalated step and the target are skipped
    as well.  When no later step qualifies, one step for the next higher
    role is appended.
    """
    step = _require_active(workflow)
    if step.required_role not in ESCALATION_ROLE:
        raise InvalidTransitionError(
            workflow.claim_id,
            derive_claim_status(workflow).value,
            f"{step.required_role.value} steps cannot be escalated",
        )

    index = workflow.current_step_index
    target = escalation_target(workflow)

    steps = list(workflow.steps)
    steps[index] = replace(
        step,
        status=StepStatus.SKIPPED,
        approver_id=actor_id,
        approver_role=actor_role,
        comments=comments,
        completed_at=now,
    )

    if target is None:
        target = len(steps)
        for i in range(index + 1, target):
            if not steps[i].is_terminal:
                steps[i] = replace(steps[i], status=StepStatus.SKIPPED, completed_at=now)
        steps.append(
            ApprovalStep(
                step_number=len(steps) + 1,
                required_role=ESCALATION_ROLE[step.required_role],
                inclusion_reasons=("escalation",),
                entered_by_escalation=True,
            )
        )
    else:
        for i in range(index + 1, target):
            if not steps[i].is_terminal:
                steps[i] = replace(steps[i], status=StepStatus.SKIPPED, completed_at=now)
        steps[target] = replace(steps[target], entered_by_escalation=True)

    return replace(workflow, steps=tuple(steps), current_step_index=target)
