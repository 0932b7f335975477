"""
Tests for the audit logger (history recording and chain verification) and
the notification dispatcher.
"""

from dataclasses import replace
from decimal import Decimal

import pytest

from claims_kernel.domain.claim import Decision, HistoryAction, Role
from claims_kernel.domain.events import EventType, NotificationKind
from claims_kernel.exceptions import (
    AuditChainBrokenError,
    ClaimNotFoundError,
    ClaimValidationError,
)
from claims_kernel.services.audit_logger import AuditLogger
from claims_kernel.services.notification_dispatcher import (
    InMemoryNotificationOutbox,
    NotificationDispatcher,
)
from claims_kernel.services.user_directory import DirectoryUser, InMemoryUserDirectory
from claims_services.event_bus import EventBus

# =========================================================================
# Audit logger
# =========================================================================


class TestAuditHistory:
    def test_submission_is_first_entry(self, coordinator, submit):
        claim = submit()
        history = coordinator.get_history(claim.claim_id)
        assert len(history) == 1
        assert history[0].action == HistoryAction.SUBMIT
        assert history[0].actor_id == "emp-eng"
        assert history[0].actor_role == "employee"
        assert history[0].sequence == 1
        assert history[0].prev_hash is None

    def test_failed_attempts_stay_out_of_claim_history(self, coordinator, submit):
        claim = submit()
        with pytest.raises(ClaimValidationError):
            coordinator.decide(claim.claim_id, "mgr-eng", Role.MANAGER, Decision.REJECT)
        coordinator.decide(claim.claim_id, "mgr-eng", Role.MANAGER, Decision.APPROVE)

        audit_actions = [e.action for e in coordinator.get_history(claim.claim_id)]
        claim_actions = [
            e.action for e in coordinator.get_claim(claim.claim_id).approval_history
        ]
        assert audit_actions == [
            HistoryAction.SUBMIT,
            HistoryAction.VALIDATION_FAILED,
            HistoryAction.APPROVE,
        ]
        assert claim_actions == [HistoryAction.SUBMIT, HistoryAction.APPROVE]
        assert coordinator.verify_audit_chain(claim.claim_id) == 3

    def test_record_failure_for_unknown_claim(self, memory_store, deterministic_clock):
        audit = AuditLogger(memory_store, deterministic_clock)
        entry = audit.record_failure(
            claim_id="ghost",
            actor_id="mgr-eng",
            actor_role=Role.MANAGER,
            decision=Decision.APPROVE,
            step_number=None,
            comments="",
            error=ClaimNotFoundError("ghost"),
        )
        assert entry.action == HistoryAction.NOT_FOUND
        assert entry.error_code == "NOT_FOUND"
        assert entry.actor_role == "manager"
        assert not entry.succeeded
        assert audit.verify_chain("ghost") == 1


class TestChainVerification:
    def test_tampered_entry_detected(self, coordinator, submit, memory_store):
        claim = submit()
        coordinator.decide(claim.claim_id, "mgr-eng", Role.MANAGER, Decision.APPROVE, "ok")

        entries = memory_store._history[claim.claim_id]
        entries[1] = replace(entries[1], comments="approved without review")

        with pytest.raises(AuditChainBrokenError) as exc_info:
            coordinator.verify_audit_chain(claim.claim_id)
        assert exc_info.value.sequence == 2

    def test_removed_entry_detected(self, coordinator, submit, memory_store):
        claim = submit()
        coordinator.decide(claim.claim_id, "mgr-eng", Role.MANAGER, Decision.APPROVE)
        del memory_store._history[claim.claim_id][0]

        with pytest.raises(AuditChainBrokenError) as exc_info:
            coordinator.verify_audit_chain(claim.claim_id)
        assert exc_info.value.sequence == 1

    def test_empty_history_verifies(self, coordinator):
        assert coordinator.verify_audit_chain("never-submitted") == 0


# =========================================================================
# Notification dispatcher
# =========================================================================


class TestSubmissionNotifications:
    def test_employee_and_department_managers_notified(self, coordinator, submit):
        claim = submit()
        outbox = coordinator.notifications

        employee = outbox.for_recipient("emp-eng")
        assert len(employee) == 1
        assert employee[0].kind == NotificationKind.CLAIM_SUBMITTED
        assert employee[0].title == "Expense Claim Submitted"

        approvers = [n for n in outbox.sent if n.kind == NotificationKind.APPROVAL_REQUIRED]
        assert {n.recipient_id for n in approvers} == {"mgr-eng", "mgr-eng-2"}
        assert all(n.claim_id == claim.claim_id for n in approvers)
        assert all(n.priority == "medium" for n in approvers)

    def test_flagged_claim_is_high_priority(self, coordinator, submit):
        claim = submit(amount=Decimal("12000"), receipt_refs=())
        assert claim.is_flagged
        approvers = [
            n
            for n in coordinator.notifications.sent
            if n.kind == NotificationKind.APPROVAL_REQUIRED
        ]
        assert approvers
        assert all(n.priority == "high" for n in approvers)


class TestDispatcher:
    def _dispatcher(self, directory, sink, publisher=None, clock=None):
        return NotificationDispatcher(directory, sink, publisher, clock)

    def test_role_addressed_when_nobody_holds_role(
        self, coordinator, submit, deterministic_clock
    ):
        claim = submit(amount=Decimal("6000"))
        empty = InMemoryUserDirectory([DirectoryUser("emp-eng", Role.EMPLOYEE, "engineering")])
        outbox = InMemoryNotificationOutbox()

        self._dispatcher(empty, outbox, clock=deterministic_clock).dispatch(
            claim, EventType.SUBMITTED
        )

        role_addressed = outbox.for_role(Role.MANAGER)
        assert len(role_addressed) == 1
        assert role_addressed[0].recipient_id is None

    def test_sink_failure_does_not_propagate(
        self, submit, directory, deterministic_clock, captured_logs
    ):
        class BrokenSink:
            def send(self, notification):
                raise ConnectionError("smtp down")

        claim = submit()
        event, notifications = self._dispatcher(
            directory, BrokenSink(), clock=deterministic_clock
        ).dispatch(claim, EventType.SUBMITTED)

        assert event.event_type == EventType.SUBMITTED
        failures = [r for r in captured_logs() if r["message"] == "notification_send_failed"]
        assert len(failures) == len(notifications)

    def test_stopped_bus_is_logged_not_raised(
        self, submit, directory, deterministic_clock, captured_logs
    ):
        claim = submit()
        stopped = EventBus()
        self._dispatcher(
            directory, InMemoryNotificationOutbox(), stopped, deterministic_clock
        ).dispatch(claim, EventType.SUBMITTED)

        failed = [r for r in captured_logs() if r["message"] == "event_publish_failed"]
        assert failed[0]["exc_type"] == "EventBusNotRunningError"

    def test_event_payload(self, submit, directory, deterministic_clock):
        claim = submit()
        dispatcher = self._dispatcher(directory, InMemoryNotificationOutbox(), clock=deterministic_clock)
        event = dispatcher.build_event(claim, EventType.APPROVED, "fine", "mgr-eng")
        payload = event.to_payload()
        assert payload["event_type"] == "claim.approved"
        assert payload["amount"] == "120.50"
        assert payload["actor_id"] == "mgr-eng"
        assert payload["new_status"] == "pending"
