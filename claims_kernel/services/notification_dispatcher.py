"""
claims_kernel.services.notification_dispatcher -- Notifications and domain events.

Responsibility:
    After a committed transition, build one notification for the claim's
    employee and one per approver of the next pending step, hand them to
    the notification sink, and publish the domain event.

Architecture position:
    Kernel > Services.  Runs after the claim lock is released, on the
    already-committed claim snapshot.

Invariants enforced:
    - The employee always gets exactly one notification per transition.
    - Next-step approvers are resolved through the UserDirectory; managers
      are filtered to the claim's department.  If nobody holds the role, a
      single role-addressed notification is built instead.
    - Sink or publisher failures are logged and never propagate: the
      decision is already committed.
"""

from __future__ import annotations

from collections.abc import Callable
from uuid import uuid4

from claims_kernel.domain.claim import Claim, Role
from claims_kernel.domain.clock import Clock, SystemClock
from claims_kernel.domain.events import (
    DomainEvent,
    EventType,
    Notification,
    NotificationKind,
)
from claims_kernel.domain.interfaces import EventPublisher, NotificationSink, UserDirectory
from claims_kernel.logging_config import get_logger

logger = get_logger("services.notification_dispatcher")

_EMPLOYEE_KIND: dict[EventType, NotificationKind] = {
    EventType.SUBMITTED: NotificationKind.CLAIM_SUBMITTED,
    EventType.STEP_APPROVED: NotificationKind.STEP_APPROVED,
    EventType.APPROVED: NotificationKind.CLAIM_APPROVED,
    EventType.REJECTED: NotificationKind.CLAIM_REJECTED,
    EventType.ESCALATED: NotificationKind.CLAIM_ESCALATED,
    EventType.INFO_REQUESTED: NotificationKind.INFO_REQUESTED,
}

_EMPLOYEE_TITLES: dict[EventType, str] = {
    EventType.SUBMITTED: "Expense Claim Submitted",
    EventType.STEP_APPROVED: "Expense Claim Step Approved",
    EventType.APPROVED: "Expense Claim Approved",
    EventType.REJECTED: "Expense Claim Rejected",
    EventType.ESCALATED: "Expense Claim Escalated",
    EventType.INFO_REQUESTED: "Additional Information Required",
}

_EMPLOYEE_MESSAGES: dict[EventType, Callable[[Claim], str]] = {
    EventType.SUBMITTED: lambda c: (
        f"Your expense claim for {c.currency} {c.amount} has been submitted for approval"
    ),
    EventType.STEP_APPROVED: lambda c: (
        f"Your expense claim for {c.currency} {c.amount} passed a review step "
        f"and is now in {c.status.value}"
    ),
    EventType.APPROVED: lambda c: (
        f"Your expense claim for {c.currency} {c.amount} has been approved"
    ),
    EventType.REJECTED: lambda c: (
        f"Your expense claim for {c.currency} {c.amount} has been rejected"
    ),
    EventType.ESCALATED: lambda c: (
        f"Your expense claim for {c.currency} {c.amount} has been escalated for further review"
    ),
    EventType.INFO_REQUESTED: lambda c: (
        f"Please provide additional information for your expense claim of "
        f"{c.currency} {c.amount}"
    ),
}


class InMemoryNotificationOutbox:
    """NotificationSink that keeps every notification in a list."""

    def __init__(self) -> None:
        self.sent: list[Notification] = []

    def send(self, notification: Notification) -> None:
        self.sent.append(notification)

    def for_recipient(self, recipient_id: str) -> list[Notification]:
        return [n for n in self.sent if n.recipient_id == recipient_id]

    def for_role(self, role: Role) -> list[Notification]:
        return [n for n in self.sent if n.recipient_role == role.value]


class NotificationDispatcher:
    """Builds and delivers notifications and the domain event for a transition."""

    def __init__(
        self,
        directory: UserDirectory,
        sink: NotificationSink,
        publisher: EventPublisher | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._directory = directory
        self._sink = sink
        self._publisher = publisher
        self._clock = clock or SystemClock()

    def build_event(
        self,
        claim: Claim,
        event_type: EventType,
        comments: str = "",
        actor_id: str | None = None,
    ) -> DomainEvent:
        return DomainEvent(
            event_id=uuid4(),
            event_type=event_type,
            claim_id=claim.claim_id,
            employee_id=claim.employee_id,
            amount=claim.amount,
            currency=claim.currency,
            category=claim.category,
            new_status=claim.status.value,
            comments=comments,
            timestamp=self._clock.now(),
            actor_id=actor_id,
        )

    def build_notifications(
        self,
        claim: Claim,
        event_type: EventType,
        comments: str = "",
    ) -> tuple[Notification, ...]:
        now = self._clock.now()
        message = _EMPLOYEE_MESSAGES[event_type](claim)
        if comments:
            message = f"{message}. Comments: {comments}"

        notifications = [
            Notification(
                notification_id=uuid4(),
                claim_id=claim.claim_id,
                kind=_EMPLOYEE_KIND[event_type],
                title=_EMPLOYEE_TITLES[event_type],
                message=message,
                created_at=now,
                recipient_id=claim.employee_id,
                priority="high" if event_type == EventType.REJECTED else "medium",
            )
        ]

        step = claim.workflow.active_step
        if step is not None and event_type != EventType.INFO_REQUESTED:
            department = claim.department if step.required_role == Role.MANAGER else None
            approvers = [
                user_id
                for user_id in self._directory.users_with_role(step.required_role, department)
                if user_id != claim.employee_id
            ]
            title = "Expense Claim Awaiting Approval"
            approver_message = (
                f"Claim {claim.claim_id} from {claim.employee_id} for "
                f"{claim.currency} {claim.amount} requires {step.required_role.value} approval"
            )
            priority = "high" if claim.is_flagged else "medium"
            if approvers:
                for user_id in approvers:
                    notifications.append(
                        Notification(
                            notification_id=uuid4(),
                            claim_id=claim.claim_id,
                            kind=NotificationKind.APPROVAL_REQUIRED,
                            title=title,
                            message=approver_message,
                            created_at=now,
                            recipient_id=user_id,
                            priority=priority,
                        )
                    )
            else:
                notifications.append(
                    Notification(
                        notification_id=uuid4(),
                        claim_id=claim.claim_id,
                        kind=NotificationKind.APPROVAL_REQUIRED,
                        title=title,
                        message=approver_message,
                        created_at=now,
                        recipient_role=step.required_role.value,
                        priority=priority,
                    )
                )
        return tuple(notifications)

    def dispatch(
        self,
        claim: Claim,
        event_type: EventType,
        comments: str = "",
        actor_id: str | None = None,
    ) -> tuple[DomainEvent, tuple[Notification, ...]]:
        """Deliver notifications and publish the event for a committed transition."""
        notifications = self.build_notifications(claim, event_type, comments)
        for notification in notifications:
            try:
                self._sink.send(notification)
            except Exception:
                logger.warning(
                    "notification_send_failed",
                    extra={
                        "claim_id": claim.claim_id,
                        "notification_id": str(notification.notification_id),
                        "recipient_id": notification.recipient_id,
                        "recipient_role": notification.recipient_role,
                    },
                    exc_info=True,
                )

        event = self.build_event(claim, event_type, comments, actor_id)
        if self._publisher is not None:
            try:
                self._publisher.publish(event)
            except Exception:
                logger.warning(
                    "event_publish_failed",
                    extra={
                        "claim_id": claim.claim_id,
                        "event_type": event_type.value,
                        "event_id": str(event.event_id),
                    },
                    exc_info=True,
                )

        logger.debug(
            "transition_dispatched",
            extra={
                "claim_id": claim.claim_id,
                "event_type": event_type.value,
                "notification_count": len(notifications),
            },
        )
        return event, notifications
