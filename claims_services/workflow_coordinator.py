"""
claims_services.workflow_coordinator -- Public operations of the approval engine.

Responsibility:
    Wires the risk engine, the workflow rule engine, the approval processor,
    the audit logger and the notification dispatcher into the operations
    callers use: submit, decide, escalate, request_info, bulk_decide and
    the queries.

Architecture position:
    Services layer.  The coordinator is an explicitly constructed instance
    owned by the hosting application, with a ``start()`` / ``shutdown()``
    lifecycle for its event bus.  There is no module-level instance.

Invariants enforced:
    - A claim gets exactly one workflow, built at submission.
    - Submission writes the claim and its SUBMIT history entry atomically.
    - Bulk decisions never abort on one failure; each claim is decided
      independently and reported.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from uuid import uuid4

from claims_config import get_workflow_config
from claims_config.schema import WorkflowConfig
from claims_engines.authority import can_act_on
from claims_engines.risk import PATTERN_WINDOW_DAYS, annotate_risk
from claims_engines.routing import build_workflow
from claims_kernel.domain.claim import (
    ApprovalHistoryEntry,
    Claim,
    ClaimFilter,
    ClaimStatus,
    ClaimSubmission,
    Decision,
    DecisionResult,
    HistoryAction,
    Role,
)
from claims_kernel.domain.clock import Clock, SystemClock
from claims_kernel.domain.events import EventType
from claims_kernel.domain.interfaces import ClaimStore, NotificationSink, UserDirectory
from claims_kernel.exceptions import (
    ClaimNotFoundError,
    ClaimsKernelError,
    ClaimValidationError,
)
from claims_kernel.logging_config import LogContext, get_logger
from claims_kernel.services.audit_logger import AuditLogger
from claims_kernel.services.notification_dispatcher import (
    InMemoryNotificationOutbox,
    NotificationDispatcher,
)
from claims_services.approval_processor import (
    ApprovalProcessor,
    coerce_decision,
    coerce_role,
)
from claims_services.event_bus import EventBus

logger = get_logger("services.workflow_coordinator")

CURRENCY_CODE_LENGTH = 3


@dataclass(frozen=True)
class BulkDecisionOutcome:
    """Result of one claim within ``bulk_decide``."""

    claim_id: str
    success: bool
    error_code: str | None = None
    message: str = ""
    claim: Claim | None = None


@dataclass(frozen=True)
class ApprovalStatistics:
    """Decision statistics for one approver."""

    actor_id: str
    decisions_made: int = 0
    approved: int = 0
    rejected: int = 0
    escalated: int = 0
    info_requested: int = 0
    pending: int = 0
    total_amount_approved: Decimal = Decimal("0")
    average_decision_hours: float = 0.0


class WorkflowCoordinator:
    """Orchestrates claim submission, decisions and queries."""

    def __init__(
        self,
        store: ClaimStore,
        directory: UserDirectory,
        config: WorkflowConfig | None = None,
        clock: Clock | None = None,
        sink: NotificationSink | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._store = store
        self._directory = directory
        self._config = config or get_workflow_config()
        self._clock = clock or SystemClock()
        self._sink = sink if sink is not None else InMemoryNotificationOutbox()
        self._event_bus = event_bus if event_bus is not None else EventBus()

        self._audit = AuditLogger(store, self._clock)
        self._dispatcher = NotificationDispatcher(
            directory, self._sink, self._event_bus, self._clock
        )
        self._processor = ApprovalProcessor(
            store,
            directory,
            self._audit,
            self._dispatcher,
            self._clock,
            lock_ttl=timedelta(seconds=self._config.lock_ttl_seconds),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    @property
    def notifications(self) -> NotificationSink:
        return self._sink

    @property
    def config(self) -> WorkflowConfig:
        return self._config

    def start(self) -> None:
        self._event_bus.start()
        logger.info("workflow_coordinator_started")

    def shutdown(self, timeout: float = 5.0) -> None:
        self._event_bus.join(timeout)
        self._event_bus.shutdown(timeout)
        logger.info("workflow_coordinator_stopped")

    def __enter__(self) -> WorkflowCoordinator:
        self.start()
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def _validate_submission(self, submission: ClaimSubmission) -> ClaimSubmission:
        for field_name in ("employee_id", "department", "category"):
            value = getattr(submission, field_name)
            if not isinstance(value, str) or not value.strip():
                raise ClaimValidationError(field_name, f"{field_name} is required")

        amount = submission.amount
        if not isinstance(amount, Decimal):
            try:
                amount = Decimal(str(amount))
            except InvalidOperation:
                raise ClaimValidationError("amount", f"invalid amount {amount!r}") from None
        if not amount.is_finite() or amount <= 0:
            raise ClaimValidationError("amount", "amount must be a positive number")

        currency = (submission.currency or "").strip().upper()
        if len(currency) != CURRENCY_CODE_LENGTH or not currency.isalpha():
            raise ClaimValidationError(
                "currency", "currency must be a three-letter ISO 4217 code"
            )

        if submission.expense_date > self._clock.now().date():
            raise ClaimValidationError(
                "expense_date", "expense date cannot be in the future"
            )

        return ClaimSubmission(
            employee_id=submission.employee_id.strip(),
            department=submission.department.strip(),
            category=submission.category.strip(),
            amount=amount,
            currency=currency,
            expense_date=submission.expense_date,
            description=submission.description or "",
            receipt_refs=tuple(submission.receipt_refs),
            vendor=submission.vendor,
        )

    def submit(self, submission: ClaimSubmission) -> Claim:
        """Validate, score, route and persist a new claim."""
        submission = self._validate_submission(submission)
        now = self._clock.now()
        claim_id = str(uuid4())

        with LogContext.bind(claim_id=claim_id, actor_id=submission.employee_id):
            lookback_days = max(self._config.duplicate_lookback_days, PATTERN_WINDOW_DAYS)
            prior_claims = self._store.query(
                ClaimFilter(
                    employee_id=submission.employee_id,
                    submitted_from=now - timedelta(days=lookback_days),
                )
            )
            risk = annotate_risk(
                submission=submission,
                submitted_at=now,
                prior_claims=prior_claims,
                config=self._config,
            )
            workflow = build_workflow(claim_id, submission, risk, self._config)

            claim = Claim(
                claim_id=claim_id,
                employee_id=submission.employee_id,
                department=submission.department,
                category=submission.category,
                amount=submission.amount,
                currency=submission.currency,
                expense_date=submission.expense_date,
                submitted_at=now,
                workflow=workflow,
                description=submission.description,
                receipt_refs=submission.receipt_refs,
                vendor=submission.vendor,
                risk_score=risk.score,
                risk_flags=risk.flag_names,
                risk_level=risk.level,
                is_flagged=risk.is_flagged,
            )
            entry = self._audit.build_entry(
                claim_id=claim_id,
                actor_id=submission.employee_id,
                actor_role=Role.EMPLOYEE,
                action=HistoryAction.SUBMIT,
            )
            stored = self._store.insert(claim, entry)

            logger.info(
                "claim_submitted",
                extra={
                    "amount": submission.amount,
                    "currency": submission.currency,
                    "risk_score": risk.score,
                    "is_flagged": risk.is_flagged,
                    "steps": [s.required_role.value for s in workflow.steps],
                    "indicators": [i.value for i in risk.indicators],
                },
            )
            self._dispatcher.dispatch(stored, EventType.SUBMITTED, "", submission.employee_id)
        return stored

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def decide(
        self,
        claim_id: str,
        actor_id: str,
        actor_role: Role | str,
        decision: Decision | str,
        comments: str = "",
    ) -> DecisionResult:
        return self._processor.decide(claim_id, actor_id, actor_role, decision, comments)

    def escalate(
        self, claim_id: str, actor_id: str, actor_role: Role | str, comments: str = ""
    ) -> DecisionResult:
        return self._processor.decide(
            claim_id, actor_id, actor_role, Decision.ESCALATE, comments
        )

    def request_info(
        self, claim_id: str, actor_id: str, actor_role: Role | str, comments: str
    ) -> DecisionResult:
        return self._processor.decide(
            claim_id, actor_id, actor_role, Decision.REQUEST_INFO, comments
        )

    def bulk_decide(
        self,
        claim_ids: Iterable[str],
        actor_id: str,
        actor_role: Role | str,
        decision: Decision | str,
        comments: str = "",
    ) -> list[BulkDecisionOutcome]:
        """Decide on several claims, one at a time, collecting the outcomes."""
        outcomes: list[BulkDecisionOutcome] = []
        with LogContext.bind(correlation_id=str(uuid4())):
            for claim_id in claim_ids:
                try:
                    result = self._processor.decide(
                        claim_id, actor_id, actor_role, decision, comments
                    )
                except ClaimsKernelError as exc:
                    outcomes.append(
                        BulkDecisionOutcome(
                            claim_id=claim_id,
                            success=False,
                            error_code=exc.code,
                            message=exc.user_message,
                        )
                    )
                    continue
                outcomes.append(
                    BulkDecisionOutcome(
                        claim_id=claim_id,
                        success=True,
                        message=f"Claim {result.claim.status.value}",
                        claim=result.claim,
                    )
                )

            kind = coerce_decision(decision)
            logger.info(
                "bulk_decision_completed",
                extra={
                    "decision": kind.value if kind is not None else str(decision),
                    "total": len(outcomes),
                    "succeeded": sum(1 for o in outcomes if o.success),
                },
            )
        return outcomes

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_claim(self, claim_id: str) -> Claim:
        claim = self._store.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)
        return claim

    def get_history(self, claim_id: str) -> list[ApprovalHistoryEntry]:
        """Every history entry for the claim, failed attempts included."""
        return self._audit.history(claim_id)

    def get_pending(self, actor_id: str, actor_role: Role | str) -> list[Claim]:
        """Claims whose active step this actor may decide.

        Returns an empty list when the directory does not confirm the role.
        """
        role = coerce_role(actor_role)
        if role is None or self._directory.role_of(actor_id) != role:
            return []
        if role == Role.EMPLOYEE:
            return []

        department = self._directory.department_of(actor_id)
        candidates = self._store.query(
            ClaimFilter(
                department=department if role == Role.MANAGER else None,
                include_terminal=False,
            )
        )
        return [
            c
            for c in candidates
            if can_act_on(
                claim=c,
                actor_id=actor_id,
                actor_role=role,
                actor_department=department,
            )
        ]

    def get_statistics(self, actor_id: str) -> ApprovalStatistics:
        """Decision counts, approved amount and turnaround for one approver."""
        counts = {action: 0 for action in HistoryAction}
        total_approved = Decimal("0")
        hours: list[float] = []

        for claim in self._store.query(ClaimFilter()):
            mine = [e for e in claim.approval_history if e.actor_id == actor_id and e.decision]
            for entry in mine:
                counts[entry.action] += 1
                elapsed = entry.timestamp - claim.submitted_at
                hours.append(elapsed.total_seconds() / 3600)
            if claim.status == ClaimStatus.APPROVED and any(
                e.action == HistoryAction.APPROVE for e in mine
            ):
                total_approved += claim.amount

        role = self._directory.role_of(actor_id)
        pending = len(self.get_pending(actor_id, role)) if role is not None else 0
        decisions = (
            counts[HistoryAction.APPROVE]
            + counts[HistoryAction.REJECT]
            + counts[HistoryAction.ESCALATE]
            + counts[HistoryAction.REQUEST_INFO]
        )
        return ApprovalStatistics(
            actor_id=actor_id,
            decisions_made=decisions,
            approved=counts[HistoryAction.APPROVE],
            rejected=counts[HistoryAction.REJECT],
            escalated=counts[HistoryAction.ESCALATE],
            info_requested=counts[HistoryAction.REQUEST_INFO],
            pending=pending,
            total_amount_approved=total_approved,
            average_decision_hours=round(sum(hours) / len(hours), 2) if hours else 0.0,
        )

    def verify_audit_chain(self, claim_id: str) -> int:
        return self._audit.verify_chain(claim_id)
