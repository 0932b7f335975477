"""
Pure domain layer.

Value objects, enumerations and pure state-machine functions with NO
dependencies on:
- ORM (SQLAlchemy)
- Database
- Time/clock (``now`` is passed in)
- I/O

All domain objects are immutable and deterministic.
"""

from claims_kernel.domain.claim import (
    APPROVER_ROLES,
    ApprovalHistoryEntry,
    ApprovalStep,
    ApprovalWorkflow,
    Claim,
    ClaimFilter,
    ClaimLock,
    ClaimStatus,
    ClaimSubmission,
    Decision,
    DecisionResult,
    HistoryAction,
    RiskLevel,
    Role,
    StepStatus,
    WorkflowStatus,
)
from claims_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from claims_kernel.domain.events import (
    DomainEvent,
    EventType,
    Notification,
    NotificationKind,
)
from claims_kernel.domain.interfaces import (
    ClaimStore,
    EventPublisher,
    NotificationSink,
    UserDirectory,
)
from claims_kernel.domain.risk import RiskAssessment, RiskFlag, RiskIndicator
from claims_kernel.domain.workflow import (
    derive_claim_status,
    derive_workflow_status,
)

__all__ = [
    "APPROVER_ROLES",
    "ApprovalHistoryEntry",
    "ApprovalStep",
    "ApprovalWorkflow",
    "Claim",
    "ClaimFilter",
    "ClaimLock",
    "ClaimStatus",
    "ClaimStore",
    "ClaimSubmission",
    "Clock",
    "Decision",
    "DecisionResult",
    "DeterministicClock",
    "DomainEvent",
    "EventPublisher",
    "EventType",
    "HistoryAction",
    "Notification",
    "NotificationKind",
    "NotificationSink",
    "RiskAssessment",
    "RiskFlag",
    "RiskIndicator",
    "RiskLevel",
    "Role",
    "StepStatus",
    "SystemClock",
    "UserDirectory",
    "WorkflowStatus",
    "derive_claim_status",
    "derive_workflow_status",
]
