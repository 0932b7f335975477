"""
claims_kernel.services.claim_store -- In-memory ClaimStore.

Responsibility:
    Dictionary-backed claim store for tests, demos and single-process
    deployments.  Implements the ``ClaimStore`` protocol with the same
    atomicity guarantees as the SQL store.

Invariants enforced:
    - One ``threading.Lock`` guards every read-modify-write, so lock CAS and
      versioned save are atomic.
    - Stored claims are frozen snapshots; callers can never mutate store
      state through a returned object.
    - History entries are chained per claim (sequence + hash) at write time.

Failure modes:
    - StoreConflictError on version or lock-token mismatch in ``save``.
    - ValueError on duplicate ``insert``.
"""

from __future__ import annotations

import threading
from dataclasses import replace

from claims_kernel.domain.claim import (
    ApprovalHistoryEntry,
    Claim,
    ClaimFilter,
    ClaimLock,
)
from claims_kernel.exceptions import StoreConflictError
from claims_kernel.logging_config import get_logger
from claims_kernel.utils.hashing import chain_entry

logger = get_logger("services.claim_store")


def _token(lock: ClaimLock | None):
    return None if lock is None else lock.token


class InMemoryClaimStore:
    """Thread-safe in-memory claim store."""

    def __init__(self) -> None:
        self._claims: dict[str, Claim] = {}
        self._history: dict[str, list[ApprovalHistoryEntry]] = {}
        self._mutex = threading.Lock()

    def _append_locked(self, entry: ApprovalHistoryEntry) -> ApprovalHistoryEntry:
        entries = self._history.setdefault(entry.claim_id, [])
        chained = chain_entry(entry, entries[-1] if entries else None)
        entries.append(chained)
        return chained

    def insert(self, claim: Claim, history_entry: ApprovalHistoryEntry) -> Claim:
        with self._mutex:
            if claim.claim_id in self._claims:
                raise ValueError(f"Claim already exists: {claim.claim_id}")
            chained = self._append_locked(history_entry)
            stored = replace(claim, lock=None, approval_history=(chained,))
            self._claims[claim.claim_id] = stored
            return stored

    def get(self, claim_id: str) -> Claim | None:
        with self._mutex:
            return self._claims.get(claim_id)

    def compare_and_swap_lock(
        self,
        claim_id: str,
        expected: ClaimLock | None,
        new_lock: ClaimLock | None,
    ) -> bool:
        with self._mutex:
            current = self._claims.get(claim_id)
            if current is None:
                return False
            if _token(current.lock) != _token(expected):
                logger.debug(
                    "lock_cas_failed",
                    extra={"claim_id": claim_id},
                )
                return False
            self._claims[claim_id] = replace(current, lock=new_lock)
            return True

    def save(
        self,
        claim: Claim,
        *,
        expected_version: int,
        lock_token: object,
        history_entry: ApprovalHistoryEntry,
    ) -> Claim:
        with self._mutex:
            current = self._claims.get(claim.claim_id)
            if current is None:
                raise StoreConflictError(claim.claim_id, expected_version, "claim vanished")
            if current.version != expected_version:
                raise StoreConflictError(
                    claim.claim_id,
                    expected_version,
                    f"stored version is {current.version}",
                )
            if _token(current.lock) != lock_token:
                raise StoreConflictError(
                    claim.claim_id, expected_version, "lock no longer held"
                )
            chained = self._append_locked(history_entry)
            stored = replace(
                claim,
                lock=None,
                version=expected_version + 1,
                approval_history=current.approval_history + (chained,),
            )
            self._claims[claim.claim_id] = stored
            return stored

    def query(self, claim_filter: ClaimFilter) -> list[Claim]:
        with self._mutex:
            claims = list(self._claims.values())
        matched = [c for c in claims if claim_filter.matches(c)]
        return sorted(matched, key=lambda c: (c.submitted_at, c.claim_id))

    def append_history(self, entry: ApprovalHistoryEntry) -> ApprovalHistoryEntry:
        with self._mutex:
            return self._append_locked(entry)

    def history(self, claim_id: str) -> list[ApprovalHistoryEntry]:
        with self._mutex:
            return list(self._history.get(claim_id, ()))
