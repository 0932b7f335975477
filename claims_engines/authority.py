"""
claims_engines.authority -- Pure approver authorization rules.

Responsibility:
    Decide whether an actor may act on a claim's active approval step, and
    if not, which rule stops them.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  Directory lookups are
    done by the caller and passed in.

Invariants enforced:
    - The role the actor claims must be the role the directory holds.
    - Employees never act on any step.
    - No one decides on a claim they submitted.
    - Managers act only on manager steps in their own department.
    - hr and administrator act on any step at or below their rank.
    - A step paused by an information request can be continued only by the
      requesting approver or an actor ranked at or above them.
"""

from __future__ import annotations

from claims_kernel.domain.claim import ApprovalStep, Claim, Role, StepStatus

ROLE_MISMATCH = "role_mismatch"
EMPLOYEE = "employee"
SELF_APPROVAL = "self_approval"
INFO_REQUEST_PENDING = "info_request_pending"
INSUFFICIENT_ROLE = "insufficient_role"
DEPARTMENT_MISMATCH = "department_mismatch"


def authority_denial(
    *,
    claim: Claim,
    step: ApprovalStep,
    actor_id: str,
    actor_role: Role,
    directory_role: Role | None,
    actor_department: str | None,
) -> str | None:
    """Return the denial reason, or None when the actor may act."""
    if directory_role is None or directory_role != actor_role:
        return ROLE_MISMATCH
    if actor_role == Role.EMPLOYEE:
        return EMPLOYEE
    if actor_id == claim.employee_id:
        return SELF_APPROVAL

    if step.status == StepStatus.INFO_REQUESTED and step.approver_id != actor_id:
        requester_role = step.approver_role or step.required_role
        if not actor_role.at_least(requester_role):
            return INFO_REQUEST_PENDING

    if actor_role == Role.MANAGER:
        if step.required_role != Role.MANAGER:
            return INSUFFICIENT_ROLE
        if actor_department != claim.department:
            return DEPARTMENT_MISMATCH
        return None

    if not actor_role.at_least(step.required_role):
        return INSUFFICIENT_ROLE
    return None


def can_act_on(
    *,
    claim: Claim,
    actor_id: str,
    actor_role: Role,
    actor_department: str | None,
) -> bool:
    """True if the claim is awaiting a decision this actor may make."""
    step = claim.workflow.active_step
    if step is None:
        return False
    return (
        authority_denial(
            claim=claim,
            step=step,
            actor_id=actor_id,
            actor_role=actor_role,
            directory_role=actor_role,
            actor_department=actor_department,
        )
        is None
    )
