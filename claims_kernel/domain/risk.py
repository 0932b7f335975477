"""Risk annotation value objects shared by the risk engine and routing."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from claims_kernel.domain.claim import RiskLevel


class RiskFlag(str, Enum):
    """Scored risk conditions."""

    MISSING_RECEIPT = "missing_receipt"
    HIGH_VALUE = "high_value"
    LATE_SUBMISSION = "late_submission"
    SENSITIVE_CATEGORY = "sensitive_category"
    DUPLICATE = "duplicate_vendor_date_amount"


class RiskIndicator(str, Enum):
    """Advisory conditions.  Reported, never scored."""

    ROUND_AMOUNT = "round_amount"
    VAGUE_DESCRIPTION = "vague_description"
    HIGH_FREQUENCY = "high_frequency"
    THRESHOLD_GAMING = "threshold_gaming"
    REPEATED_AMOUNTS = "repeated_amounts"
    DUPLICATE_DESCRIPTION = "duplicate_description"
    WEEKEND_SUBMISSION = "weekend_submission"
    UNUSUAL_TIME = "unusual_time"


@dataclass(frozen=True)
class RiskAssessment:
    """Result of annotating one claim.

    ``is_flagged`` is true when the score reaches the flag threshold or a
    high-severity flag (missing receipt on a high-value claim) is present.
    """

    score: int
    flags: tuple[RiskFlag, ...] = ()
    is_flagged: bool = False
    level: RiskLevel = RiskLevel.LOW
    indicators: tuple[RiskIndicator, ...] = ()

    def has_flag(self, flag: RiskFlag) -> bool:
        return flag in self.flags

    @property
    def flag_names(self) -> tuple[str, ...]:
        return tuple(f.value for f in self.flags)


NO_RISK = RiskAssessment(score=0)
