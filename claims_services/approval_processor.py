"""
claims_services.approval_processor -- Guarded single-writer decision processing.

Responsibility:
    Applies one approver's decision to one claim: acquires the claim lock
    by compare-and-swap, re-validates state and authority under the lock,
    applies the pure workflow transition, saves the claim together with its
    history entry, and always releases the lock.  Notifications and the
    domain event go out after the lock is released.

Architecture position:
    Services layer.  May import from claims_engines/ (authority rules) and
    claims_kernel/ (domain, services).

Invariants enforced:
    - At most one concurrent decision per claim: lock CAS plus versioned
      save.  Two racing calls can never both succeed.
    - Every call appends exactly one approval history entry; failed
      attempts are tagged with the error kind.
    - The lock is released on every exit path (``finally``).
    - A decision that cannot be audited is not applied: the history entry
      is written in the same store operation as the claim.

Failure modes:
    - ClaimNotFoundError, InvalidTransitionError, ClaimValidationError,
      ClaimLockedError, UnauthorizedApproverError, StoreConflictError,
      AuditWriteError (see the check order in ``decide``).
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from uuid import uuid4

from claims_engines.authority import authority_denial
from claims_kernel.domain.claim import (
    ApprovalStep,
    Claim,
    ClaimLock,
    Decision,
    DecisionResult,
    Role,
    WorkflowStatus,
)
from claims_kernel.domain.clock import Clock, SystemClock
from claims_kernel.domain.events import EventType
from claims_kernel.domain.interfaces import ClaimStore, UserDirectory
from claims_kernel.domain.workflow import (
    apply_approval,
    apply_escalation,
    apply_info_request,
    apply_rejection,
    check_transition,
)
from claims_kernel.exceptions import (
    AuditError,
    AuditWriteError,
    ClaimLockedError,
    ClaimNotFoundError,
    ClaimsKernelError,
    ClaimValidationError,
    InvalidTransitionError,
    StoreConflictError,
    UnauthorizedApproverError,
)
from claims_kernel.logging_config import LogContext, get_logger
from claims_kernel.services.audit_logger import AuditLogger
from claims_kernel.services.notification_dispatcher import NotificationDispatcher

logger = get_logger("services.approval_processor")

DEFAULT_LOCK_TTL = timedelta(seconds=30)

_COMMENT_REQUIRED: dict[Decision, str] = {
    Decision.REJECT: "rejection requires a reason",
    Decision.REQUEST_INFO: "an information request must say what is needed",
}


def coerce_role(actor_role: Role | str) -> Role | None:
    """Map a caller-supplied role to ``Role``; unknown strings give None."""
    if isinstance(actor_role, Role):
        return actor_role
    try:
        return Role(str(actor_role).strip().lower())
    except ValueError:
        return None


def coerce_decision(decision: Decision | str) -> Decision | None:
    """Map a caller-supplied decision to ``Decision``; unknown values give None."""
    if isinstance(decision, Decision):
        return decision
    try:
        return Decision(str(decision).strip().lower())
    except ValueError:
        return None


def event_type_for(decision: Decision, workflow_status: WorkflowStatus) -> EventType:
    if decision == Decision.APPROVE:
        if workflow_status == WorkflowStatus.APPROVED:
            return EventType.APPROVED
        return EventType.STEP_APPROVED
    if decision == Decision.REJECT:
        return EventType.REJECTED
    if decision == Decision.ESCALATE:
        return EventType.ESCALATED
    return EventType.INFO_REQUESTED


class ApprovalProcessor:
    """Applies decisions to claims under an exclusive, expiring lock."""

    def __init__(
        self,
        store: ClaimStore,
        directory: UserDirectory,
        audit: AuditLogger,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
        lock_ttl: timedelta = DEFAULT_LOCK_TTL,
    ) -> None:
        self._store = store
        self._directory = directory
        self._audit = audit
        self._dispatcher = dispatcher
        self._clock = clock or SystemClock()
        self._lock_ttl = lock_ttl

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def decide(
        self,
        claim_id: str,
        actor_id: str,
        actor_role: Role | str,
        decision: Decision | str,
        comments: str = "",
    ) -> DecisionResult:
        """Apply one decision to one claim.

        Check order: load (NotFound) -> terminal (InvalidTransition) ->
        decision kind and comments (ValidationError) -> lock CAS
        (AlreadyLocked) -> re-load under lock, version still the one first
        loaded (StoreConflict) -> authorization (Unauthorized) -> transition
        -> versioned save with history entry (StoreConflict /
        AuditWriteError) -> lock release -> notifications and event.
        """
        comments = comments or ""
        role = coerce_role(actor_role)
        role_label = role.value if role is not None else str(actor_role)
        kind = coerce_decision(decision)
        decision_label = kind.value if kind is not None else str(decision)
        step_number: int | None = None

        with LogContext.bind(claim_id=claim_id, actor_id=actor_id):
            try:
                claim = self._load(claim_id)
                step_number = self._active_step_number(claim)
                self._check_not_terminal(claim)
                self._validate_decision(claim_id, kind, decision_label)
                self._validate_comments(claim_id, kind, comments)

                lock = self._acquire_lock(claim, actor_id)
                try:
                    result = self._decide_locked(
                        claim_id,
                        claim.version,
                        lock,
                        actor_id,
                        role,
                        role_label,
                        kind,
                        comments,
                    )
                finally:
                    self._release_lock(claim_id, lock)
            except ClaimsKernelError as exc:
                logger.warning(
                    "decision_failed",
                    extra={
                        "decision": decision_label,
                        "actor_role": role_label,
                        "error_code": exc.code,
                        "retryable": exc.retryable,
                    },
                )
                if not isinstance(exc, AuditError):
                    self._record_failure(
                        claim_id, actor_id, role_label, kind, step_number, comments, exc
                    )
                raise

            logger.info(
                "decision_applied",
                extra={
                    "decision": kind.value,
                    "actor_role": role_label,
                    "new_status": result.claim.status.value,
                    "workflow_status": result.workflow_status.value,
                    "version": result.claim.version,
                },
            )

            if self._dispatcher is not None:
                event, notifications = self._dispatcher.dispatch(
                    result.claim,
                    event_type_for(kind, result.workflow_status),
                    comments,
                    actor_id,
                )
                result = replace(result, event=event, notifications=notifications)
            return result

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def _load(self, claim_id: str) -> Claim:
        claim = self._store.get(claim_id)
        if claim is None:
            raise ClaimNotFoundError(claim_id)
        return claim

    @staticmethod
    def _active_step_number(claim: Claim) -> int | None:
        step = claim.workflow.active_step
        return step.step_number if step is not None else None

    @staticmethod
    def _check_not_terminal(claim: Claim) -> None:
        if claim.is_terminal:
            status = claim.status.value
            raise InvalidTransitionError(
                claim.claim_id, status, f"claim is already {status}"
            )

    @staticmethod
    def _validate_decision(claim_id: str, kind: Decision | None, label: str) -> None:
        if kind is None:
            raise ClaimValidationError(
                "decision", f"unknown decision {label!r}", claim_id=claim_id
            )

    @staticmethod
    def _validate_comments(claim_id: str, decision: Decision, comments: str) -> None:
        reason = _COMMENT_REQUIRED.get(decision)
        if reason is not None and not comments.strip():
            raise ClaimValidationError("comments", reason, claim_id=claim_id)

    def _authorize(
        self,
        claim: Claim,
        step: ApprovalStep,
        actor_id: str,
        role: Role | None,
        role_label: str,
    ) -> None:
        if role is None:
            reason = "role_mismatch"
        else:
            reason = authority_denial(
                claim=claim,
                step=step,
                actor_id=actor_id,
                actor_role=role,
                directory_role=self._directory.role_of(actor_id),
                actor_department=self._directory.department_of(actor_id),
            )
        if reason is not None:
            raise UnauthorizedApproverError(
                claim.claim_id,
                actor_id,
                role_label,
                step.required_role.value,
                reason,
            )

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _acquire_lock(self, claim: Claim, actor_id: str) -> ClaimLock:
        now = self._clock.now()
        current = claim.lock
        if current is not None and not current.is_expired(now):
            raise ClaimLockedError(claim.claim_id, current.holder_id, current.expires_at)

        lock = ClaimLock(
            holder_id=actor_id,
            token=uuid4(),
            acquired_at=now,
            expires_at=now + self._lock_ttl,
        )
        if not self._store.compare_and_swap_lock(claim.claim_id, current, lock):
            latest = self._store.get(claim.claim_id)
            holder = latest.lock if latest is not None else None
            raise ClaimLockedError(
                claim.claim_id,
                holder.holder_id if holder else None,
                holder.expires_at if holder else None,
            )

        if current is not None:
            logger.info(
                "expired_lock_taken_over",
                extra={
                    "previous_holder": current.holder_id,
                    "expired_at": current.expires_at,
                },
            )
        logger.debug("lock_acquired", extra={"expires_at": lock.expires_at})
        return lock

    def _release_lock(self, claim_id: str, lock: ClaimLock) -> None:
        # Succeeds only if save did not already clear it.
        released = self._store.compare_and_swap_lock(claim_id, lock, None)
        logger.debug("lock_released", extra={"cleared_by_release": released})

    # ------------------------------------------------------------------
    # Transition under lock
    # ------------------------------------------------------------------

    def _decide_locked(
        self,
        claim_id: str,
        seen_version: int,
        lock: ClaimLock,
        actor_id: str,
        role: Role | None,
        role_label: str,
        decision: Decision,
        comments: str,
    ) -> DecisionResult:
        claim = self._load(claim_id)
        held = claim.lock
        if held is None or held.token != lock.token or not held.is_held_by(
            actor_id, self._clock.now()
        ):
            raise StoreConflictError(claim_id, seen_version, "lock lost before processing")
        # Another decision committed after this caller loaded the claim; the
        # step it meant to decide is gone.
        if claim.version != seen_version:
            raise StoreConflictError(
                claim_id, seen_version, f"claim moved to version {claim.version}"
            )
        self._check_not_terminal(claim)

        step = claim.workflow.active_step
        self._authorize(claim, step, actor_id, role, role_label)

        now = self._clock.now()
        if decision == Decision.APPROVE:
            workflow = apply_approval(claim.workflow, actor_id, role, comments, now)
        elif decision == Decision.REJECT:
            workflow = apply_rejection(claim.workflow, actor_id, role, comments, now)
        elif decision == Decision.ESCALATE:
            workflow = apply_escalation(claim.workflow, actor_id, role, comments, now)
        else:
            workflow = apply_info_request(claim.workflow, actor_id, role, comments)

        updated = replace(claim, workflow=workflow)
        check_transition(claim_id, claim.status, updated.status)

        entry = self._audit.decision_entry(
            claim_id=claim_id,
            actor_id=actor_id,
            actor_role=role,
            decision=decision,
            step_number=step.step_number,
            comments=comments,
        )
        stored = self._store.save(
            updated,
            expected_version=claim.version,
            lock_token=lock.token,
            history_entry=entry,
        )
        return DecisionResult(
            claim=stored,
            workflow_status=stored.workflow.status,
            history_entry=stored.approval_history[-1],
        )

    # ------------------------------------------------------------------
    # Audit of failures
    # ------------------------------------------------------------------

    def _record_failure(
        self,
        claim_id: str,
        actor_id: str,
        role_label: str,
        decision: Decision | None,
        step_number: int | None,
        comments: str,
        error: ClaimsKernelError,
    ) -> None:
        try:
            self._audit.record_failure(
                claim_id=claim_id,
                actor_id=actor_id,
                actor_role=role_label,
                decision=decision,
                step_number=step_number,
                comments=comments,
                error=error,
            )
        except AuditWriteError:
            # The caller still receives the original error.
            logger.error(
                "failure_audit_write_failed",
                extra={"error_code": error.code},
                exc_info=True,
            )
