"""
claims_kernel.services.audit_logger -- Approval history recording and verification.

Responsibility:
    Builds ApprovalHistoryEntry records for submissions, applied decisions
    and failed attempts, appends failed-attempt entries to the store, and
    verifies the per-claim hash chain.

Architecture position:
    Kernel > Services.  May import from domain/, utils/.

Invariants enforced:
    - Append-only: there is no update or delete path.
    - Never rejects an entry because of a business-rule failure; failed
      attempts against unknown claims are recorded too.
    - Per-claim ordering: the store assigns a monotonic sequence and chains
      each entry to the previous one by hash.

Failure modes:
    - AuditWriteError if the store cannot write the entry.
    - AuditChainBrokenError from ``verify_chain`` on tampering.
"""

from __future__ import annotations

from uuid import uuid4

from claims_kernel.domain.claim import (
    HISTORY_ACTION_BY_DECISION,
    ApprovalHistoryEntry,
    Decision,
    HistoryAction,
)
from claims_kernel.domain.clock import Clock, SystemClock
from claims_kernel.domain.interfaces import ClaimStore
from claims_kernel.exceptions import AuditChainBrokenError, ClaimsKernelError
from claims_kernel.logging_config import get_logger
from claims_kernel.utils.hashing import GENESIS, hash_history_entry

logger = get_logger("services.audit_logger")


def _role_value(role) -> str:
    return getattr(role, "value", None) or str(role)


class AuditLogger:
    """Append-only sink for approval history entries."""

    def __init__(self, store: ClaimStore, clock: Clock | None = None) -> None:
        self._store = store
        self._clock = clock or SystemClock()

    def build_entry(
        self,
        *,
        claim_id: str,
        actor_id: str,
        actor_role,
        action: HistoryAction,
        step_number: int | None = None,
        decision: Decision | None = None,
        comments: str = "",
        error_code: str | None = None,
    ) -> ApprovalHistoryEntry:
        """An unsequenced entry; the store chains it on write."""
        return ApprovalHistoryEntry(
            entry_id=uuid4(),
            claim_id=claim_id,
            actor_id=actor_id,
            actor_role=_role_value(actor_role),
            action=action,
            timestamp=self._clock.now(),
            step_number=step_number,
            decision=decision,
            comments=comments,
            error_code=error_code,
        )

    def decision_entry(
        self,
        *,
        claim_id: str,
        actor_id: str,
        actor_role,
        decision: Decision,
        step_number: int | None,
        comments: str,
    ) -> ApprovalHistoryEntry:
        return self.build_entry(
            claim_id=claim_id,
            actor_id=actor_id,
            actor_role=actor_role,
            action=HISTORY_ACTION_BY_DECISION[decision],
            step_number=step_number,
            decision=decision,
            comments=comments,
        )

    def record_failure(
        self,
        *,
        claim_id: str,
        actor_id: str,
        actor_role,
        decision: Decision | None,
        step_number: int | None,
        comments: str,
        error: ClaimsKernelError,
    ) -> ApprovalHistoryEntry:
        """Append an entry for a failed decision attempt.

        The entry's action is the error's ``history_action`` tag.
        """
        action = HistoryAction(error.history_action or HistoryAction.INVALID_TRANSITION)
        entry = self.build_entry(
            claim_id=claim_id,
            actor_id=actor_id,
            actor_role=actor_role,
            action=action,
            step_number=step_number,
            decision=decision,
            comments=comments,
            error_code=error.code,
        )
        written = self._store.append_history(entry)
        logger.debug(
            "audit_failure_recorded",
            extra={
                "claim_id": claim_id,
                "history_action": action.value,
                "error_code": error.code,
                "sequence": written.sequence,
            },
        )
        return written

    def history(self, claim_id: str) -> list[ApprovalHistoryEntry]:
        return self._store.history(claim_id)

    def verify_chain(self, claim_id: str) -> int:
        """Recompute the hash chain for a claim.

        Returns:
            Number of entries verified.

        Raises:
            AuditChainBrokenError: at the first entry whose sequence,
                back-link or hash does not match.
        """
        prev_hash: str | None = None
        entries = self._store.history(claim_id)
        for expected_sequence, entry in enumerate(entries, start=1):
            if entry.sequence != expected_sequence:
                raise AuditChainBrokenError(
                    claim_id,
                    expected_sequence,
                    f"sequence {expected_sequence}",
                    f"sequence {entry.sequence}",
                )
            if entry.prev_hash != prev_hash:
                raise AuditChainBrokenError(
                    claim_id,
                    expected_sequence,
                    prev_hash or GENESIS,
                    entry.prev_hash or GENESIS,
                )
            computed = hash_history_entry(entry, prev_hash)
            if computed != entry.entry_hash:
                raise AuditChainBrokenError(
                    claim_id, expected_sequence, computed, entry.entry_hash or ""
                )
            prev_hash = entry.entry_hash

        logger.debug(
            "audit_chain_verified",
            extra={"claim_id": claim_id, "entries": len(entries)},
        )
        return len(entries)
