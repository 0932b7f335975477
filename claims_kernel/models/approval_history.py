"""
Module: claims_kernel.models.approval_history
Responsibility: ORM persistence for the append-only approval history.

Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Append-only: ORM before_update / before_delete listeners raise
      ImmutabilityViolationError.
    - UNIQUE(claim_id, sequence): entries of one claim are totally ordered;
      two writers racing for the same sequence cannot both commit.
    - No foreign key to ``claims``: attempts against unknown claim ids are
      audited too.

Failure modes:
    - IntegrityError on duplicate (claim_id, sequence).
    - ImmutabilityViolationError on UPDATE/DELETE through the ORM.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Index, String, Text, UniqueConstraint, event
from sqlalchemy.orm import Mapped, mapped_column

from claims_kernel.db.base import Base, UUIDString
from claims_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from claims_kernel.domain.claim import ApprovalHistoryEntry


class ApprovalHistoryModel(Base):
    """Persistent approval history entry. Append-only."""

    __tablename__ = "approval_history"

    __table_args__ = (
        UniqueConstraint("claim_id", "sequence", name="uq_approval_history_sequence"),
        Index("ix_approval_history_actor", "actor_id", "timestamp"),
    )

    entry_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False, unique=True)
    claim_id: Mapped[str] = mapped_column(String(64), nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)
    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    step_number: Mapped[int | None] = mapped_column(nullable=True)
    decision: Mapped[str | None] = mapped_column(String(20), nullable=True)
    comments: Mapped[str] = mapped_column(Text, default="", nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    timestamp: Mapped[datetime] = mapped_column(nullable=False)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalHistory {self.claim_id}#{self.sequence} "
            f"{self.action} by {self.actor_id}>"
        )

    def to_dto(self) -> ApprovalHistoryEntry:
        from claims_kernel.domain.claim import (
            ApprovalHistoryEntry as EntryDTO,
            Decision,
            HistoryAction,
        )

        return EntryDTO(
            entry_id=self.entry_id,
            claim_id=self.claim_id,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            action=HistoryAction(self.action),
            timestamp=self.timestamp,
            step_number=self.step_number,
            decision=Decision(self.decision) if self.decision else None,
            comments=self.comments,
            error_code=self.error_code,
            sequence=self.sequence,
            prev_hash=self.prev_hash,
            entry_hash=self.entry_hash,
        )

    @classmethod
    def from_dto(cls, dto: ApprovalHistoryEntry) -> ApprovalHistoryModel:
        """Create ORM model from a chained entry (sequence and hash set)."""
        return cls(
            entry_id=dto.entry_id,
            claim_id=dto.claim_id,
            sequence=dto.sequence,
            actor_id=dto.actor_id,
            actor_role=dto.actor_role,
            action=dto.action.value,
            step_number=dto.step_number,
            decision=dto.decision.value if dto.decision else None,
            comments=dto.comments,
            error_code=dto.error_code,
            timestamp=dto.timestamp,
            prev_hash=dto.prev_hash,
            entry_hash=dto.entry_hash,
        )


# =============================================================================
# ORM-Level Immutability (Append-Only)
# =============================================================================


@event.listens_for(ApprovalHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to approval history records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistory",
        entity_id=str(target.entry_id),
        reason="Approval history entries are immutable -- cannot modify",
    )


@event.listens_for(ApprovalHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of approval history records."""
    raise ImmutabilityViolationError(
        entity_type="ApprovalHistory",
        entity_id=str(target.entry_id),
        reason="Approval history entries are immutable -- cannot delete",
    )
