"""
ClaimStore contract tests, run against both the in-memory store and the
SQLAlchemy store on SQLite; plus SQL-only persistence checks.
"""

from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import StatementError

from claims_config.schema import WorkflowConfig
from claims_engines.risk import annotate_risk
from claims_engines.routing import build_workflow
from claims_kernel.db.engine import make_session_factory, session_scope
from claims_kernel.domain.claim import (
    ApprovalHistoryEntry,
    Claim,
    ClaimFilter,
    ClaimLock,
    ClaimStatus,
    ClaimSubmission,
    Decision,
    HistoryAction,
    RiskLevel,
    Role,
)
from claims_kernel.domain.clock import DeterministicClock
from claims_kernel.domain.workflow import apply_approval
from claims_kernel.exceptions import (
    AuditWriteError,
    ImmutabilityViolationError,
    StoreConflictError,
)
from claims_kernel.models.approval_history import ApprovalHistoryModel
from claims_kernel.services.sql_claim_store import (
    APPEND_ATTEMPTS,
    SqlAlchemyClaimStore,
    claim_row_lock,
)
from claims_kernel.services.user_directory import InMemoryUserDirectory
from claims_services.event_bus import EventBus
from claims_services.workflow_coordinator import WorkflowCoordinator

NOW = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)


# =========================================================================
# Factory helpers
# =========================================================================


def make_claim(claim_id: str = "claim-1", amount: str = "6000", submitted_at=NOW, **overrides):
    submission = ClaimSubmission(
        employee_id=overrides.pop("employee_id", "emp-eng"),
        department=overrides.pop("department", "engineering"),
        category="travel",
        amount=Decimal(amount),
        currency="EUR",
        expense_date=date(2024, 2, 20),
        description="Conference hotel",
        receipt_refs=("r-1", "r-2"),
        vendor="Hotel Europa",
    )
    config = WorkflowConfig()
    risk = annotate_risk(submission=submission, submitted_at=submitted_at, config=config)
    return Claim(
        claim_id=claim_id,
        employee_id=submission.employee_id,
        department=submission.department,
        category=submission.category,
        amount=submission.amount,
        currency=submission.currency,
        expense_date=submission.expense_date,
        submitted_at=submitted_at,
        workflow=build_workflow(claim_id, submission, risk, config),
        description=submission.description,
        receipt_refs=submission.receipt_refs,
        vendor=submission.vendor,
        risk_score=risk.score,
        risk_flags=risk.flag_names,
        risk_level=risk.level,
        is_flagged=risk.is_flagged,
        **overrides,
    )


def make_entry(claim_id: str, action=HistoryAction.SUBMIT, actor_id="emp-eng", **kw):
    return ApprovalHistoryEntry(
        entry_id=uuid4(),
        claim_id=claim_id,
        actor_id=actor_id,
        actor_role=kw.pop("actor_role", "employee"),
        action=action,
        timestamp=kw.pop("timestamp", NOW),
        **kw,
    )


def make_lock(holder="mgr-eng", seconds=30) -> ClaimLock:
    return ClaimLock(
        holder_id=holder,
        token=uuid4(),
        acquired_at=NOW,
        expires_at=NOW + timedelta(seconds=seconds),
    )


# =========================================================================
# Contract
# =========================================================================


class TestInsertAndGet:
    def test_round_trip(self, any_store):
        claim = make_claim()
        stored = any_store.insert(claim, make_entry(claim.claim_id))

        loaded = any_store.get(claim.claim_id)
        assert loaded == stored
        assert loaded.amount == Decimal("6000")
        assert loaded.submitted_at == NOW
        assert loaded.submitted_at.tzinfo is not None
        assert loaded.workflow == claim.workflow
        assert loaded.receipt_refs == ("r-1", "r-2")
        assert loaded.risk_level == RiskLevel.LOW
        assert loaded.version == 1
        assert loaded.lock is None
        assert [e.sequence for e in loaded.approval_history] == [1]

    def test_duplicate_insert_rejected(self, any_store):
        claim = make_claim()
        any_store.insert(claim, make_entry(claim.claim_id))
        with pytest.raises(ValueError):
            any_store.insert(claim, make_entry(claim.claim_id))

    def test_missing_claim(self, any_store):
        assert any_store.get("nope") is None


class TestLockCompareAndSwap:
    def test_acquire_and_release(self, any_store):
        claim = make_claim()
        any_store.insert(claim, make_entry(claim.claim_id))
        lock = make_lock()

        assert any_store.compare_and_swap_lock(claim.claim_id, None, lock)
        assert any_store.get(claim.claim_id).lock == lock
        assert any_store.compare_and_swap_lock(claim.claim_id, lock, None)
        assert any_store.get(claim.claim_id).lock is None

    def test_second_acquire_fails(self, any_store):
        claim = make_claim()
        any_store.insert(claim, make_entry(claim.claim_id))
        first = make_lock("mgr-eng")

        assert any_store.compare_and_swap_lock(claim.claim_id, None, first)
        assert not any_store.compare_and_swap_lock(claim.claim_id, None, make_lock("mgr-eng-2"))
        assert any_store.get(claim.claim_id).lock.holder_id == "mgr-eng"

    def test_stale_expected_lock_fails(self, any_store):
        claim = make_claim()
        any_store.insert(claim, make_entry(claim.claim_id))
        current = make_lock()
        any_store.compare_and_swap_lock(claim.claim_id, None, current)

        assert not any_store.compare_and_swap_lock(claim.claim_id, make_lock(), None)
        assert any_store.get(claim.claim_id).lock == current

    def test_unknown_claim(self, any_store):
        assert not any_store.compare_and_swap_lock("nope", None, make_lock())


class TestVersionedSave:
    def _locked(self, store):
        claim = make_claim()
        store.insert(claim, make_entry(claim.claim_id))
        lock = make_lock()
        store.compare_and_swap_lock(claim.claim_id, None, lock)
        return store.get(claim.claim_id), lock

    def test_save_applies_and_clears_lock(self, any_store):
        claim, lock = self._locked(any_store)
        updated = replace(
            claim,
            workflow=apply_approval(claim.workflow, "mgr-eng", Role.MANAGER, "ok", NOW),
        )
        entry = make_entry(
            claim.claim_id,
            HistoryAction.APPROVE,
            actor_id="mgr-eng",
            actor_role="manager",
            decision=Decision.APPROVE,
            step_number=1,
            comments="ok",
        )

        saved = any_store.save(
            updated, expected_version=1, lock_token=lock.token, history_entry=entry
        )

        assert saved.version == 2
        assert saved.lock is None
        assert saved.status == ClaimStatus.HR_REVIEW
        assert saved.workflow.steps[0].approver_id == "mgr-eng"
        assert saved.workflow.steps[0].completed_at == NOW
        assert [e.sequence for e in saved.approval_history] == [1, 2]
        assert any_store.get(claim.claim_id) == saved

    def test_wrong_version_conflicts(self, any_store):
        claim, lock = self._locked(any_store)
        with pytest.raises(StoreConflictError):
            any_store.save(
                claim,
                expected_version=7,
                lock_token=lock.token,
                history_entry=make_entry(claim.claim_id, HistoryAction.APPROVE),
            )
        assert any_store.get(claim.claim_id).version == 1
        assert len(any_store.history(claim.claim_id)) == 1

    def test_wrong_lock_conflicts(self, any_store):
        claim, _ = self._locked(any_store)
        with pytest.raises(StoreConflictError):
            any_store.save(
                claim,
                expected_version=1,
                lock_token=uuid4(),
                history_entry=make_entry(claim.claim_id, HistoryAction.APPROVE),
            )

    def test_appended_escalation_step_persisted(self, any_store):
        from claims_kernel.domain.workflow import apply_escalation

        claim = make_claim(amount="100")
        any_store.insert(claim, make_entry(claim.claim_id))
        lock = make_lock()
        any_store.compare_and_swap_lock(claim.claim_id, None, lock)
        escalated = replace(
            claim,
            workflow=apply_escalation(claim.workflow, "mgr-eng", Role.MANAGER, "", NOW),
        )

        saved = any_store.save(
            escalated,
            expected_version=1,
            lock_token=lock.token,
            history_entry=make_entry(claim.claim_id, HistoryAction.ESCALATE),
        )

        assert len(saved.workflow.steps) == 2
        assert saved.workflow.steps[1].entered_by_escalation
        assert saved.workflow.steps[1].inclusion_reasons == ("escalation",)
        assert saved.status == ClaimStatus.ESCALATED


class TestQueryAndHistory:
    def test_filters(self, any_store):
        any_store.insert(make_claim("a"), make_entry("a"))
        any_store.insert(
            make_claim("b", submitted_at=NOW + timedelta(hours=1), employee_id="emp-sales", department="sales"),
            make_entry("b", actor_id="emp-sales"),
        )

        assert [c.claim_id for c in any_store.query(ClaimFilter())] == ["a", "b"]
        assert [c.claim_id for c in any_store.query(ClaimFilter(department="sales"))] == ["b"]
        assert [
            c.claim_id for c in any_store.query(ClaimFilter(employee_id="emp-eng"))
        ] == ["a"]
        assert [
            c.claim_id
            for c in any_store.query(ClaimFilter(submitted_from=NOW + timedelta(minutes=30)))
        ] == ["b"]
        assert [
            c.claim_id
            for c in any_store.query(ClaimFilter(statuses=frozenset({ClaimStatus.PENDING})))
        ] == ["a", "b"]
        assert any_store.query(ClaimFilter(statuses=frozenset({ClaimStatus.APPROVED}))) == []

    def test_history_for_unknown_claim_is_appendable(self, any_store):
        written = any_store.append_history(
            make_entry("ghost", HistoryAction.NOT_FOUND, error_code="NOT_FOUND")
        )
        assert written.sequence == 1
        assert [e.action for e in any_store.history("ghost")] == [HistoryAction.NOT_FOUND]


# =========================================================================
# SQL-only
# =========================================================================


class TestSqlPersistence:
    pytestmark = pytest.mark.sqlite

    def test_history_rows_are_immutable(self, sql_store, sqlite_engine):
        claim = make_claim()
        sql_store.insert(claim, make_entry(claim.claim_id))
        factory = make_session_factory(sqlite_engine)

        with pytest.raises(ImmutabilityViolationError):
            with session_scope(factory) as session:
                row = session.scalars(select(ApprovalHistoryModel)).one()
                row.comments = "edited"

        with pytest.raises(ImmutabilityViolationError):
            with session_scope(factory) as session:
                session.delete(session.scalars(select(ApprovalHistoryModel)).one())

        assert sql_store.count_history(claim.claim_id) == 1

    def test_coordinator_on_sql_store(self, sql_store, directory, make_submission):
        clock = DeterministicClock()
        coordinator = WorkflowCoordinator(
            sql_store, directory, config=WorkflowConfig(), clock=clock, event_bus=EventBus()
        )
        with coordinator:
            claim = coordinator.submit(make_submission(amount=Decimal("6000")))
            clock.advance(60)
            coordinator.decide(claim.claim_id, "mgr-eng", Role.MANAGER, Decision.APPROVE)
            clock.advance(60)
            result = coordinator.decide(claim.claim_id, "hr-1", Role.HR, Decision.APPROVE)

        assert result.claim.status == ClaimStatus.APPROVED
        assert result.claim.version == 3
        assert coordinator.verify_audit_chain(claim.claim_id) == 3
        assert sql_store.get(claim.claim_id) == result.claim

    def test_naive_datetime_rejected(self, sql_store):
        naive = make_claim(submitted_at=datetime(2024, 3, 1, 9, 0))
        with pytest.raises((ValueError, StatementError)):
            sql_store.insert(naive, make_entry(naive.claim_id))
        assert sql_store.get(naive.claim_id) is None

    def test_get_pending_for_unknown_actor(self, sql_store):
        coordinator = WorkflowCoordinator(
            sql_store, InMemoryUserDirectory(), config=WorkflowConfig(), clock=DeterministicClock()
        )
        assert coordinator.get_pending("anyone", Role.MANAGER) == []


class StaleReadStore(SqlAlchemyClaimStore):
    """Reads the entry before the last one while ``stale_reads`` lasts.

    Reproduces a writer that computed its next sequence before another
    writer's append committed.
    """

    stale_reads = 0

    def _last_entry(self, session, claim_id):
        rows = self._history_models(session, claim_id)
        if self.stale_reads and len(rows) >= 2:
            self.stale_reads -= 1
            return rows[-2].to_dto()
        return super()._last_entry(session, claim_id)


class TestHistoryAppendSerialization:
    pytestmark = pytest.mark.sqlite

    def _store_with_two_entries(self, sqlite_engine):
        store = StaleReadStore(make_session_factory(sqlite_engine))
        claim = make_claim()
        store.insert(claim, make_entry(claim.claim_id))
        store.append_history(
            make_entry(claim.claim_id, HistoryAction.LOCK_DENIED, actor_id="mgr-eng")
        )
        return store, claim

    def test_append_locks_claim_row_on_postgresql(self):
        sql = str(claim_row_lock("claim-1").compile(dialect=postgresql.dialect()))
        assert "FOR UPDATE" in sql
        assert "claims.claim_id" in sql

    def test_failure_append_retries_sequence_collision(self, sqlite_engine, captured_logs):
        store, claim = self._store_with_two_entries(sqlite_engine)
        store.stale_reads = 1

        written = store.append_history(
            make_entry(claim.claim_id, HistoryAction.UNAUTHORIZED, actor_id="mgr-sales")
        )

        assert written.sequence == 3
        history = store.history(claim.claim_id)
        assert [e.sequence for e in history] == [1, 2, 3]
        assert history[-1].prev_hash == history[-2].entry_hash
        retries = [r for r in captured_logs() if r["message"] == "history_append_race_retry"]
        assert [r["attempt"] for r in retries] == [1]

    def test_persistent_collision_is_an_audit_write_error(self, sqlite_engine):
        store, claim = self._store_with_two_entries(sqlite_engine)
        store.stale_reads = APPEND_ATTEMPTS

        with pytest.raises(AuditWriteError):
            store.append_history(
                make_entry(claim.claim_id, HistoryAction.UNAUTHORIZED, actor_id="mgr-sales")
            )

        assert [e.sequence for e in store.history(claim.claim_id)] == [1, 2]
