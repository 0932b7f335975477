"""
Claim domain types (``claims_kernel.domain.claim``).

Responsibility
--------------
Pure value objects for the expense claim approval engine: the closed
enumerations for roles, statuses and decisions, the claim lock token, the
approval step / workflow plan, the claim itself and the immutable approval
history entry.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/`` or outer layers.

Invariants enforced
-------------------
* Claim status is never stored independently: ``Claim.status`` is derived
  from the workflow (see ``domain/workflow.py``).
* ``ApprovalWorkflow.current_step_index`` only increases; steps before it
  are terminal.
* Everything here is frozen; "mutation" means building a new instance with
  ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from claims_kernel.domain.events import DomainEvent, Notification


# =========================================================================
# Closed enumerations
# =========================================================================


class Role(str, Enum):
    """Organisational roles, ordered by approval authority."""

    EMPLOYEE = "employee"
    MANAGER = "manager"
    HR = "hr"
    ADMINISTRATOR = "administrator"

    @property
    def rank(self) -> int:
        return ROLE_RANK[self]

    def at_least(self, other: Role) -> bool:
        """True if this role has the same or more authority than ``other``."""
        return self.rank >= other.rank


ROLE_RANK: dict[Role, int] = {
    Role.EMPLOYEE: 0,
    Role.MANAGER: 1,
    Role.HR: 2,
    Role.ADMINISTRATOR: 3,
}

APPROVER_ROLES: tuple[Role, ...] = (Role.MANAGER, Role.HR, Role.ADMINISTRATOR)


class ClaimStatus(str, Enum):
    """Claim lifecycle states (derived from the workflow, never set directly)."""

    PENDING = "pending"
    MANAGER_REVIEW = "manager_review"
    HR_REVIEW = "hr_review"
    ADMIN_REVIEW = "admin_review"
    ESCALATED = "escalated"
    INFO_REQUESTED = "info_requested"
    APPROVED = "approved"
    REJECTED = "rejected"


TERMINAL_CLAIM_STATUSES: frozenset[ClaimStatus] = frozenset({
    ClaimStatus.APPROVED,
    ClaimStatus.REJECTED,
})

REVIEW_STATUS_BY_ROLE: dict[Role, ClaimStatus] = {
    Role.MANAGER: ClaimStatus.MANAGER_REVIEW,
    Role.HR: ClaimStatus.HR_REVIEW,
    Role.ADMINISTRATOR: ClaimStatus.ADMIN_REVIEW,
}


class StepStatus(str, Enum):
    """Status of a single approval step."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    INFO_REQUESTED = "info_requested"


TERMINAL_STEP_STATUSES: frozenset[StepStatus] = frozenset({
    StepStatus.APPROVED,
    StepStatus.REJECTED,
    StepStatus.SKIPPED,
})


class WorkflowStatus(str, Enum):
    """Overall status of an approval workflow."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    APPROVED = "approved"
    REJECTED = "rejected"


class Decision(str, Enum):
    """Decision kinds an approver can submit."""

    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"
    REQUEST_INFO = "request_info"


class HistoryAction(str, Enum):
    """Action recorded on an approval history entry.

    The first five record applied changes; the rest tag failed attempts
    with the kind of error that stopped them.
    """

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"
    REQUEST_INFO = "request_info"
    NOT_FOUND = "not_found"
    LOCK_DENIED = "lock_denied"
    UNAUTHORIZED = "unauthorized"
    INVALID_TRANSITION = "invalid_transition"
    VALIDATION_FAILED = "validation_failed"
    STORE_CONFLICT = "store_conflict"


HISTORY_ACTION_BY_DECISION: dict[Decision, HistoryAction] = {
    Decision.APPROVE: HistoryAction.APPROVE,
    Decision.REJECT: HistoryAction.REJECT,
    Decision.ESCALATE: HistoryAction.ESCALATE,
    Decision.REQUEST_INFO: HistoryAction.REQUEST_INFO,
}


class RiskLevel(str, Enum):
    """Coarse risk bucket derived from the risk score."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


# =========================================================================
# Lock token
# =========================================================================


@dataclass(frozen=True)
class ClaimLock:
    """Exclusive, short-lived right to process one claim.

    ``token`` makes every acquisition distinct, so a holder whose lock
    expired and was re-acquired by someone else can never release or
    write through the newer lock.
    """

    holder_id: str
    token: UUID
    acquired_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_held_by(self, holder_id: str, now: datetime) -> bool:
        return self.holder_id == holder_id and not self.is_expired(now)


# =========================================================================
# Workflow plan
# =========================================================================


@dataclass(frozen=True)
class ApprovalStep:
    """One required sign-off by a specific role.

    ``amount_threshold`` and ``inclusion_reasons`` are diagnostic only:
    they record why the routing rules emitted this step.
    """

    step_number: int
    required_role: Role
    status: StepStatus = StepStatus.PENDING
    approver_id: str | None = None
    approver_role: Role | None = None
    comments: str = ""
    completed_at: datetime | None = None
    amount_threshold: Decimal | None = None
    inclusion_reasons: tuple[str, ...] = ()
    entered_by_escalation: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STEP_STATUSES


@dataclass(frozen=True)
class ApprovalWorkflow:
    """The ordered approval plan attached to a claim at submission.

    The overall status is derived from the steps; see
    ``claims_kernel.domain.workflow.derive_workflow_status``.
    """

    claim_id: str
    steps: tuple[ApprovalStep, ...]
    current_step_index: int = 0

    @property
    def status(self) -> WorkflowStatus:
        from claims_kernel.domain.workflow import derive_workflow_status

        return derive_workflow_status(self.steps)

    @property
    def is_terminal(self) -> bool:
        return self.status in (WorkflowStatus.APPROVED, WorkflowStatus.REJECTED)

    @property
    def active_step(self) -> ApprovalStep | None:
        """The step awaiting a decision, or None once the workflow is terminal."""
        if self.is_terminal or self.current_step_index >= len(self.steps):
            return None
        return self.steps[self.current_step_index]


# =========================================================================
# History
# =========================================================================


@dataclass(frozen=True)
class ApprovalHistoryEntry:
    """Immutable audit record of one submission or decision attempt.

    Failed attempts are recorded too, with ``action`` naming the error kind
    and ``error_code`` carrying the exception code.
    """

    entry_id: UUID
    claim_id: str
    actor_id: str
    actor_role: str
    action: HistoryAction
    timestamp: datetime
    step_number: int | None = None
    decision: Decision | None = None
    comments: str = ""
    error_code: str | None = None
    sequence: int | None = None
    prev_hash: str | None = None
    entry_hash: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error_code is None


# =========================================================================
# Claim
# =========================================================================


@dataclass(frozen=True)
class ClaimSubmission:
    """Attributes supplied by an employee when submitting a claim."""

    employee_id: str
    department: str
    category: str
    amount: Decimal
    currency: str
    expense_date: date
    description: str = ""
    receipt_refs: tuple[str, ...] = ()
    vendor: str | None = None


@dataclass(frozen=True)
class Claim:
    """A single expense reimbursement request.

    ``status`` is a property: it is always computed from ``workflow``.
    ``approval_history`` holds the applied decisions only; failed attempts
    live in the audit log (``AuditLogger.history``).
    """

    claim_id: str
    employee_id: str
    department: str
    category: str
    amount: Decimal
    currency: str
    expense_date: date
    submitted_at: datetime
    workflow: ApprovalWorkflow
    description: str = ""
    receipt_refs: tuple[str, ...] = ()
    vendor: str | None = None
    risk_score: int = 0
    risk_flags: tuple[str, ...] = ()
    risk_level: RiskLevel = RiskLevel.LOW
    is_flagged: bool = False
    lock: ClaimLock | None = None
    approval_history: tuple[ApprovalHistoryEntry, ...] = ()
    version: int = 1

    @property
    def status(self) -> ClaimStatus:
        from claims_kernel.domain.workflow import derive_claim_status

        return derive_claim_status(self.workflow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_CLAIM_STATUSES

    @property
    def has_receipt(self) -> bool:
        return len(self.receipt_refs) > 0


@dataclass(frozen=True)
class ClaimFilter:
    """Query filter accepted by ``ClaimStore.query``.

    ``None`` fields do not constrain the result.
    """

    employee_id: str | None = None
    department: str | None = None
    statuses: frozenset[ClaimStatus] | None = None
    include_terminal: bool = True
    submitted_from: datetime | None = None
    submitted_to: datetime | None = None
    expense_date_from: date | None = None
    claim_ids: frozenset[str] | None = None

    def matches(self, claim: Claim) -> bool:
        if self.claim_ids is not None and claim.claim_id not in self.claim_ids:
            return False
        if self.employee_id is not None and claim.employee_id != self.employee_id:
            return False
        if self.department is not None and claim.department != self.department:
            return False
        status = claim.status
        if not self.include_terminal and status in TERMINAL_CLAIM_STATUSES:
            return False
        if self.statuses is not None and status not in self.statuses:
            return False
        if self.submitted_from is not None and claim.submitted_at < self.submitted_from:
            return False
        if self.submitted_to is not None and claim.submitted_at > self.submitted_to:
            return False
        if self.expense_date_from is not None and claim.expense_date < self.expense_date_from:
            return False
        return True


@dataclass(frozen=True)
class DecisionResult:
    """Successful outcome of ``decide``."""

    claim: Claim
    workflow_status: WorkflowStatus
    history_entry: ApprovalHistoryEntry
    event: DomainEvent | None = None
    notifications: tuple[Notification, ...] = field(default_factory=tuple)

