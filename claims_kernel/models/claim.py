"""
Module: claims_kernel.models.claim
Responsibility: ORM persistence for claims and their approval steps.

Architecture position: Kernel > Models.  May import from db/base.py and the
    pure domain layer only.

Invariants enforced:
    - Status is NOT a column.  It is derived from the step rows on load.
    - ``version`` increases by one on every committed decision; writers
      update WHERE version = expected (optimistic check).
    - ``lock_token`` is replaced only by conditional UPDATE (lock CAS).
    - UNIQUE(claim_id, step_number): steps are numbered once.

Failure modes:
    - IntegrityError on duplicate claim_id or duplicate step number.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Iterable
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from claims_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from claims_kernel.domain.claim import (
        ApprovalHistoryEntry,
        ApprovalStep,
        Claim,
    )


class ClaimModel(Base):
    """Persistent expense claim with its lock fields.

    Contract:
        Rows are never deleted.  Terminal claims are retained for audit.
    """

    __tablename__ = "claims"

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_claims_positive_amount"),
        CheckConstraint(
            "risk_score >= 0 AND risk_score <= 100",
            name="ck_claims_risk_score_range",
        ),
        Index("ix_claims_employee", "employee_id", "submitted_at"),
        Index("ix_claims_department", "department"),
    )

    claim_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    employee_id: Mapped[str] = mapped_column(String(100), nullable=False)
    department: Mapped[str] = mapped_column(String(100), nullable=False)
    category: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    expense_date: Mapped[date] = mapped_column(Date, nullable=False)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    receipt_refs: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    vendor: Mapped[str | None] = mapped_column(String(200), nullable=True)
    risk_score: Mapped[int] = mapped_column(default=0, nullable=False)
    risk_flags: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    risk_level: Mapped[str] = mapped_column(String(20), default="low", nullable=False)
    is_flagged: Mapped[bool] = mapped_column(default=False, nullable=False)
    current_step_index: Mapped[int] = mapped_column(default=0, nullable=False)
    lock_holder_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    lock_token: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    lock_acquired_at: Mapped[datetime | None] = mapped_column(nullable=True)
    lock_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(default=1, nullable=False)

    steps: Mapped[list["ApprovalStepModel"]] = relationship(
        "ApprovalStepModel",
        primaryjoin="ClaimModel.claim_id == ApprovalStepModel.claim_id",
        order_by="ApprovalStepModel.step_number",
        lazy="selectin",
        viewonly=True,
    )

    def __repr__(self) -> str:
        return (
            f"<Claim {self.claim_id} employee={self.employee_id} "
            f"amount={self.amount} {self.currency} v{self.version}>"
        )

    def to_dto(
        self, history: Iterable[ApprovalHistoryEntry] = ()
    ) -> Claim:
        """Convert ORM model to frozen domain DTO."""
        from claims_kernel.domain.claim import (
            ApprovalWorkflow,
            Claim as ClaimDTO,
            ClaimLock,
            RiskLevel,
        )

        lock = None
        if self.lock_token is not None:
            lock = ClaimLock(
                holder_id=self.lock_holder_id,
                token=self.lock_token,
                acquired_at=self.lock_acquired_at,
                expires_at=self.lock_expires_at,
            )

        return ClaimDTO(
            claim_id=self.claim_id,
            employee_id=self.employee_id,
            department=self.department,
            category=self.category,
            amount=self.amount,
            currency=self.currency,
            expense_date=self.expense_date,
            submitted_at=self.submitted_at,
            workflow=ApprovalWorkflow(
                claim_id=self.claim_id,
                steps=tuple(s.to_dto() for s in self.steps),
                current_step_index=self.current_step_index,
            ),
            description=self.description,
            receipt_refs=tuple(self.receipt_refs or ()),
            vendor=self.vendor,
            risk_score=self.risk_score,
            risk_flags=tuple(self.risk_flags or ()),
            risk_level=RiskLevel(self.risk_level),
            is_flagged=self.is_flagged,
            lock=lock,
            approval_history=tuple(h for h in history if h.succeeded),
            version=self.version,
        )

    @classmethod
    def from_dto(cls, dto: Claim) -> ClaimModel:
        """Create ORM model from domain DTO (lock fields start empty)."""
        return cls(
            claim_id=dto.claim_id,
            employee_id=dto.employee_id,
            department=dto.department,
            category=dto.category,
            amount=dto.amount,
            currency=dto.currency,
            expense_date=dto.expense_date,
            submitted_at=dto.submitted_at,
            description=dto.description,
            receipt_refs=list(dto.receipt_refs),
            vendor=dto.vendor,
            risk_score=dto.risk_score,
            risk_flags=list(dto.risk_flags),
            risk_level=dto.risk_level.value,
            is_flagged=dto.is_flagged,
            current_step_index=dto.workflow.current_step_index,
            version=dto.version,
        )


class ApprovalStepModel(Base):
    """One required sign-off on a claim."""

    __tablename__ = "approval_steps"

    __table_args__ = (
        UniqueConstraint("claim_id", "step_number", name="uq_approval_steps_number"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'skipped', "
            "'info_requested')",
            name="ck_approval_steps_valid_status",
        ),
        CheckConstraint(
            "required_role IN ('manager', 'hr', 'administrator')",
            name="ck_approval_steps_valid_role",
        ),
    )

    claim_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("claims.claim_id"), nullable=False,
    )
    step_number: Mapped[int] = mapped_column(nullable=False)
    required_role: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    approver_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    approver_role: Mapped[str | None] = mapped_column(String(20), nullable=True)
    comments: Mapped[str] = mapped_column(Text, default="", nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    amount_threshold: Mapped[Decimal | None] = mapped_column(nullable=True)
    inclusion_reasons: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    entered_by_escalation: Mapped[bool] = mapped_column(default=False, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ApprovalStep {self.claim_id}#{self.step_number} "
            f"{self.required_role} status={self.status}>"
        )

    def to_dto(self) -> ApprovalStep:
        from claims_kernel.domain.claim import (
            ApprovalStep as ApprovalStepDTO,
            Role,
            StepStatus,
        )

        return ApprovalStepDTO(
            step_number=self.step_number,
            required_role=Role(self.required_role),
            status=StepStatus(self.status),
            approver_id=self.approver_id,
            approver_role=Role(self.approver_role) if self.approver_role else None,
            comments=self.comments,
            completed_at=self.completed_at,
            amount_threshold=self.amount_threshold,
            inclusion_reasons=tuple(self.inclusion_reasons or ()),
            entered_by_escalation=self.entered_by_escalation,
        )

    @staticmethod
    def column_values(step: ApprovalStep) -> dict:
        """Column values for a step, used by INSERT and conditional UPDATE."""
        return {
            "required_role": step.required_role.value,
            "status": step.status.value,
            "approver_id": step.approver_id,
            "approver_role": step.approver_role.value if step.approver_role else None,
            "comments": step.comments,
            "completed_at": step.completed_at,
            "amount_threshold": step.amount_threshold,
            "inclusion_reasons": list(step.inclusion_reasons),
            "entered_by_escalation": step.entered_by_escalation,
        }

    @classmethod
    def from_dto(cls, claim_id: str, step: ApprovalStep) -> ApprovalStepModel:
        return cls(
            claim_id=claim_id,
            step_number=step.step_number,
            **cls.column_values(step),
        )
