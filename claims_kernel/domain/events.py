"""
Domain events and notification records.

Pure value objects.  ``DomainEvent`` is what the event bus carries to
subscribers (UI refresh, export, analytics); ``Notification`` is what the
notification sink delivers to people.  Both carry a unique id so that
at-least-once consumers can deduplicate.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class EventType(str, Enum):
    """Domain event topics published after committed transitions."""

    SUBMITTED = "claim.submitted"
    STEP_APPROVED = "claim.step_approved"
    APPROVED = "claim.approved"
    REJECTED = "claim.rejected"
    ESCALATED = "claim.escalated"
    INFO_REQUESTED = "claim.info_requested"


@dataclass(frozen=True)
class DomainEvent:
    """Payload published to event bus subscribers."""

    event_id: UUID
    event_type: EventType
    claim_id: str
    employee_id: str
    amount: Decimal
    currency: str
    category: str
    new_status: str
    comments: str
    timestamp: datetime
    actor_id: str | None = None

    @property
    def topic(self) -> str:
        return self.event_type.value

    def to_payload(self) -> dict[str, Any]:
        return {
            "event_id": str(self.event_id),
            "event_type": self.event_type.value,
            "claim_id": self.claim_id,
            "employee_id": self.employee_id,
            "amount": str(self.amount),
            "currency": self.currency,
            "category": self.category,
            "new_status": self.new_status,
            "comments": self.comments,
            "timestamp": self.timestamp.isoformat(),
            "actor_id": self.actor_id,
        }


class NotificationKind(str, Enum):
    CLAIM_SUBMITTED = "claim_submitted"
    CLAIM_APPROVED = "claim_approved"
    CLAIM_REJECTED = "claim_rejected"
    CLAIM_ESCALATED = "claim_escalated"
    STEP_APPROVED = "claim_step_approved"
    INFO_REQUESTED = "claim_info_requested"
    APPROVAL_REQUIRED = "approval_required"


@dataclass(frozen=True)
class Notification:
    """A message for one person, or for everyone holding a role.

    Exactly one of ``recipient_id`` / ``recipient_role`` is set.
    """

    notification_id: UUID
    claim_id: str
    kind: NotificationKind
    title: str
    message: str
    created_at: datetime
    recipient_id: str | None = None
    recipient_role: str | None = None
    priority: str = "medium"
