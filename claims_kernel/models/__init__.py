"""SQLAlchemy ORM models for the claims kernel."""

from claims_kernel.models.approval_history import ApprovalHistoryModel
from claims_kernel.models.claim import ApprovalStepModel, ClaimModel

__all__ = [
    "ApprovalHistoryModel",
    "ApprovalStepModel",
    "ClaimModel",
]
