"""
claims_engines.routing -- Workflow rule engine.

Responsibility:
    Decide which approval steps a claim needs, from its amount, category
    and risk assessment.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Step 1 is always a manager step.
    - An hr step, when present, always precedes an administrator step.
    - Flagged claims never resolve at manager level alone.  A flag with no
      other reason past the manager adds both an hr and an administrator
      step; otherwise it only adds the hr step.
    - Step numbers are 1-based and assigned in emission order.
    - Determinism: same (claim, risk, config) -> same steps.
"""

from __future__ import annotations

from decimal import Decimal

from claims_config.schema import WorkflowConfig
from claims_engines.tracer import traced_engine
from claims_kernel.domain.claim import ApprovalStep, ApprovalWorkflow, ClaimSubmission, Role
from claims_kernel.domain.risk import RiskAssessment


def hr_step_reasons(
    claim: ClaimSubmission, risk: RiskAssessment, config: WorkflowConfig
) -> tuple[str, ...]:
    reasons = []
    if claim.amount > config.hr_threshold:
        reasons.append("amount_above_hr_threshold")
    if config.is_sensitive(claim.category):
        reasons.append("sensitive_category")
    if risk.is_flagged:
        reasons.append("risk_flagged")
    return tuple(reasons)


def admin_step_reasons(
    claim: ClaimSubmission, risk: RiskAssessment, config: WorkflowConfig
) -> tuple[str, ...]:
    """Reasons for an administrator step.

    The flag alone adds one only when nothing else escalated the claim past
    the manager; a flagged claim that already goes to hr stays there.
    """
    reasons = []
    if claim.amount > config.admin_threshold:
        reasons.append("amount_above_admin_threshold")
    if risk.score >= config.critical_score:
        reasons.append("critical_risk_score")
    if risk.is_flagged and not reasons:
        hr_other = [r for r in hr_step_reasons(claim, risk, config) if r != "risk_flagged"]
        if not hr_other:
            reasons.append("risk_flagged")
    return tuple(reasons)


@traced_engine("routing", "1.0", fingerprint_fields=("claim", "risk"))
def build_steps(
    *,
    claim: ClaimSubmission,
    risk: RiskAssessment,
    config: WorkflowConfig,
) -> tuple[ApprovalStep, ...]:
    """Ordered approval steps for a claim.

    Returns:
        Tuple of pending ApprovalSteps: manager, then hr and administrator
        where required.
    """
    planned: list[tuple[Role, Decimal, tuple[str, ...]]] = [
        (Role.MANAGER, Decimal("0"), ("always_required",)),
    ]

    hr_reasons = hr_step_reasons(claim, risk, config)
    if hr_reasons:
        planned.append((Role.HR, config.hr_threshold, hr_reasons))

    admin_reasons = admin_step_reasons(claim, risk, config)
    if admin_reasons:
        planned.append((Role.ADMINISTRATOR, config.admin_threshold, admin_reasons))

    return tuple(
        ApprovalStep(
            step_number=number,
            required_role=role,
            amount_threshold=threshold,
            inclusion_reasons=reasons,
        )
        for number, (role, threshold, reasons) in enumerate(planned, start=1)
    )


def build_workflow(
    claim_id: str,
    claim: ClaimSubmission,
    risk: RiskAssessment,
    config: WorkflowConfig,
) -> ApprovalWorkflow:
    """The initial workflow for a newly submitted claim."""
    return ApprovalWorkflow(
        claim_id=claim_id,
        steps=build_steps(claim=claim, risk=risk, config=config),
        current_step_index=0,
    )
