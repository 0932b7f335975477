"""
claims_services -- Package init and public API.

Responsibility:
    Stateful orchestration that composes the pure engines (claims_engines/)
    with the kernel's stores, audit logger and notification dispatcher.
    This is the only layer that wires engines to I/O.

Architecture position:
    Services -- orchestration over engines + kernel.

    Dependency direction:
        claims_services/ -> claims_engines/  (allowed)
        claims_services/ -> claims_kernel/   (allowed)
        claims_engines/  -> claims_services/ (FORBIDDEN)
        claims_kernel/   -> claims_services/ (FORBIDDEN)
"""

from claims_services.approval_processor import ApprovalProcessor
from claims_services.event_bus import EventBus, IdempotentConsumer, Subscription
from claims_services.workflow_coordinator import (
    ApprovalStatistics,
    BulkDecisionOutcome,
    WorkflowCoordinator,
)

__all__ = [
    "ApprovalProcessor",
    "ApprovalStatistics",
    "BulkDecisionOutcome",
    "EventBus",
    "IdempotentConsumer",
    "Subscription",
    "WorkflowCoordinator",
]
