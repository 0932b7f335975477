"""
Collaborator interfaces consumed by the approval engine.

The engine depends on these protocols, never on a concrete database,
directory service or transport.  Implementations live in
``claims_kernel.services`` (in-memory and SQLAlchemy stores, in-memory
directory and outbox) and ``claims_services.event_bus``.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from claims_kernel.domain.claim import (
    ApprovalHistoryEntry,
    Claim,
    ClaimFilter,
    ClaimLock,
    Role,
)
from claims_kernel.domain.events import DomainEvent, Notification


@runtime_checkable
class ClaimStore(Protocol):
    """Persistence for claims and their approval history.

    Contract:
        ``compare_and_swap_lock`` is atomic: it replaces the stored lock with
        ``new_lock`` only if the stored lock token equals the token of
        ``expected`` (both None counts as equal).

        ``save`` is atomic: it writes the claim, appends ``history_entry``
        and clears the lock only if the stored version equals
        ``expected_version`` and the stored lock token equals
        ``lock_token``.  Otherwise nothing is written and
        ``StoreConflictError`` is raised.

        History entries are chained per claim (sequence + hash) by the
        store at write time.
    """

    def insert(self, claim: Claim, history_entry: ApprovalHistoryEntry) -> Claim:
        """Persist a newly submitted claim together with its SUBMIT entry."""
        ...

    def get(self, claim_id: str) -> Claim | None:
        ...

    def compare_and_swap_lock(
        self,
        claim_id: str,
        expected: ClaimLock | None,
        new_lock: ClaimLock | None,
    ) -> bool:
        ...

    def save(
        self,
        claim: Claim,
        *,
        expected_version: int,
        lock_token: object,
        history_entry: ApprovalHistoryEntry,
    ) -> Claim:
        """Write the decided claim.  Returns the stored snapshot."""
        ...

    def query(self, claim_filter: ClaimFilter) -> list[Claim]:
        ...

    def append_history(self, entry: ApprovalHistoryEntry) -> ApprovalHistoryEntry:
        """Append one history entry (used for failed attempts)."""
        ...

    def history(self, claim_id: str) -> list[ApprovalHistoryEntry]:
        """All history entries for a claim, in sequence order."""
        ...


@runtime_checkable
class UserDirectory(Protocol):
    """Organisation lookups used for authorization and notification routing."""

    def role_of(self, user_id: str) -> Role | None:
        ...

    def department_of(self, user_id: str) -> str | None:
        ...

    def users_with_role(
        self, role: Role, department: str | None = None
    ) -> tuple[str, ...]:
        ...


@runtime_checkable
class NotificationSink(Protocol):
    def send(self, notification: Notification) -> None:
        ...


@runtime_checkable
class EventPublisher(Protocol):
    def publish(self, event: DomainEvent) -> None:
        ...
