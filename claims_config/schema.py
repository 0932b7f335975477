"""
Workflow configuration schema (``claims_config.schema``).

Frozen dataclasses describing every tunable number the approval engine
uses: routing thresholds, risk weights and risk-level boundaries, lock TTL.
Validation happens in ``__post_init__`` so an invalid configuration can
never be constructed.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from claims_kernel.logging_config import get_logger

logger = get_logger("config.schema")


@dataclass(frozen=True)
class RiskWeights:
    """Additive score contributions per risk flag."""

    missing_receipt: int = 25
    high_value: int = 20
    late_submission: int = 15
    sensitive_category: int = 10
    duplicate: int = 30

    def __post_init__(self):
        for name in (
            "missing_receipt",
            "high_value",
            "late_submission",
            "sensitive_category",
            "duplicate",
        ):
            if getattr(self, name) < 0:
                raise ValueError(f"risk weight {name} cannot be negative")


@dataclass(frozen=True)
class RiskLevelThresholds:
    """Lower score bounds of the medium, high and critical risk levels."""

    medium: int = 50
    high: int = 75
    critical: int = 90

    def __post_init__(self):
        if not 0 <= self.medium <= self.high <= self.critical <= 100:
            raise ValueError(
                "risk levels must satisfy 0 <= medium <= high <= critical <= 100, "
                f"got {self.medium}/{self.high}/{self.critical}"
            )


@dataclass(frozen=True)
class WorkflowConfig:
    """
    Configuration for routing, risk scoring and locking.

    Defaults match ``claims_config/defaults.yaml``.  Override at
    instantiation or through ``load_workflow_config``:

        config = WorkflowConfig(hr_threshold=Decimal("2500"))
    """

    # Routing
    hr_threshold: Decimal = Decimal("5000")
    admin_threshold: Decimal = Decimal("15000")
    critical_score: int = 90

    # Risk scoring
    high_value_threshold: Decimal = Decimal("10000")
    flag_score: int = 70
    sensitive_categories: frozenset[str] = frozenset({"entertainment"})
    late_submission_days: int = 30
    duplicate_lookback_days: int = 90
    weights: RiskWeights = field(default_factory=RiskWeights)
    risk_levels: RiskLevelThresholds = field(default_factory=RiskLevelThresholds)

    # Locking
    lock_ttl_seconds: float = 30.0

    def __post_init__(self):
        if self.hr_threshold < 0:
            raise ValueError("hr_threshold cannot be negative")
        if self.admin_threshold < self.hr_threshold:
            raise ValueError(
                f"admin_threshold ({self.admin_threshold}) cannot be less than "
                f"hr_threshold ({self.hr_threshold})"
            )
        if self.high_value_threshold < 0:
            raise ValueError("high_value_threshold cannot be negative")
        if not 0 <= self.flag_score <= 100:
            raise ValueError("flag_score must be between 0 and 100")
        if not 0 <= self.critical_score <= 100:
            raise ValueError("critical_score must be between 0 and 100")
        if self.late_submission_days <= 0:
            raise ValueError("late_submission_days must be positive")
        if self.duplicate_lookback_days <= 0:
            raise ValueError("duplicate_lookback_days must be positive")
        if self.lock_ttl_seconds <= 0:
            raise ValueError("lock_ttl_seconds must be positive")

        # Category matching is case-insensitive.
        object.__setattr__(
            self,
            "sensitive_categories",
            frozenset(c.strip().lower() for c in self.sensitive_categories),
        )
        logger.debug(
            "workflow_config_initialized",
            extra={
                "hr_threshold": str(self.hr_threshold),
                "admin_threshold": str(self.admin_threshold),
                "flag_score": self.flag_score,
                "critical_score": self.critical_score,
            },
        )

    def is_sensitive(self, category: str) -> bool:
        return category.strip().lower() in self.sensitive_categories
