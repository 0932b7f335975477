"""
claims_engines.risk -- Pure risk annotation engine.

Responsibility:
    Score a submitted claim 0-100 from its own attributes and the same
    employee's recent claims, list the scored flags, derive ``is_flagged``
    and the risk level, and report unscored advisory indicators.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  ``submitted_at`` and the
    prior claims are parameters; the engine never reads a clock or a store.

Invariants enforced:
    - Additive scoring capped at 100.
    - ``is_flagged`` = score >= flag_score OR missing receipt on a
      high-value claim.
    - Advisory indicators never change the score.
    - Determinism: the same inputs always give the same assessment.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from claims_config.schema import RiskLevelThresholds, WorkflowConfig
from claims_engines.tracer import traced_engine
from claims_kernel.domain.claim import Claim, ClaimSubmission, RiskLevel
from claims_kernel.domain.risk import RiskAssessment, RiskFlag, RiskIndicator

MAX_SCORE = 100
ROUND_AMOUNT_UNIT = Decimal("100")
ROUND_AMOUNT_MINIMUM = Decimal("500")
VAGUE_DESCRIPTION_LENGTH = 10

PATTERN_WINDOW_DAYS = 30
HIGH_FREQUENCY_LIMIT = 15
THRESHOLD_GAMING_BAND = Decimal("100")
THRESHOLD_GAMING_COUNT = 3
REPEATED_AMOUNT_COUNT = 3
DUPLICATE_DESCRIPTION_COUNT = 2
# Inclusive UTC hours outside which a submission is out of hours.
WORKING_HOURS = (6, 22)


def risk_level_for(score: int, levels: RiskLevelThresholds) -> RiskLevel:
    if score >= levels.critical:
        return RiskLevel.CRITICAL
    if score >= levels.high:
        return RiskLevel.HIGH
    if score >= levels.medium:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def _normalize_vendor(vendor: str | None) -> str | None:
    if vendor is None:
        return None
    vendor = vendor.strip().casefold()
    return vendor or None


def find_duplicates(
    submission: ClaimSubmission,
    submitted_at: datetime,
    prior_claims: Sequence[Claim],
    lookback_days: int,
) -> list[Claim]:
    """Prior claims by the same employee with the same vendor, date and amount.

    Claims without a vendor never match.
    """
    vendor = _normalize_vendor(submission.vendor)
    if vendor is None:
        return []
    window_start = submitted_at - timedelta(days=lookback_days)
    return [
        prior
        for prior in prior_claims
        if prior.employee_id == submission.employee_id
        and _normalize_vendor(prior.vendor) == vendor
        and prior.expense_date == submission.expense_date
        and prior.amount == submission.amount
        and window_start <= prior.submitted_at <= submitted_at
    ]


def advisory_indicators(submission: ClaimSubmission) -> tuple[RiskIndicator, ...]:
    """Indicators that depend on the claim alone."""
    indicators: list[RiskIndicator] = []
    amount = submission.amount
    if amount >= ROUND_AMOUNT_MINIMUM and amount % ROUND_AMOUNT_UNIT == 0:
        indicators.append(RiskIndicator.ROUND_AMOUNT)
    if len(submission.description.strip()) < VAGUE_DESCRIPTION_LENGTH:
        indicators.append(RiskIndicator.VAGUE_DESCRIPTION)
    return tuple(indicators)


def timing_indicators(submitted_at: datetime) -> tuple[RiskIndicator, ...]:
    """Weekend and out-of-hours submissions, judged in UTC."""
    at = submitted_at.astimezone(timezone.utc)
    indicators: list[RiskIndicator] = []
    if at.weekday() >= 5:
        indicators.append(RiskIndicator.WEEKEND_SUBMISSION)
    if at.hour < WORKING_HOURS[0] or at.hour > WORKING_HOURS[1]:
        indicators.append(RiskIndicator.UNUSUAL_TIME)
    return tuple(indicators)


def pattern_indicators(
    submission: ClaimSubmission,
    submitted_at: datetime,
    prior_claims: Sequence[Claim],
    config: WorkflowConfig,
) -> tuple[RiskIndicator, ...]:
    """Indicators drawn from the employee's earlier claims.

    Frequency and threshold gaming look at the last ``PATTERN_WINDOW_DAYS``
    and count the claim being submitted; repeated amounts and descriptions
    look back ``config.duplicate_lookback_days``.
    """
    own = [p for p in prior_claims if p.employee_id == submission.employee_id]
    window_start = submitted_at - timedelta(days=PATTERN_WINDOW_DAYS)
    recent = [p for p in own if window_start <= p.submitted_at <= submitted_at]
    lookback_start = submitted_at - timedelta(days=config.duplicate_lookback_days)
    lookback = [p for p in own if lookback_start <= p.submitted_at <= submitted_at]

    indicators: list[RiskIndicator] = []
    if len(recent) + 1 > HIGH_FREQUENCY_LIMIT:
        indicators.append(RiskIndicator.HIGH_FREQUENCY)

    band_floor = config.hr_threshold - THRESHOLD_GAMING_BAND
    amounts = [p.amount for p in recent] + [submission.amount]
    near_threshold = [a for a in amounts if band_floor <= a <= config.hr_threshold]
    if len(near_threshold) >= THRESHOLD_GAMING_COUNT:
        indicators.append(RiskIndicator.THRESHOLD_GAMING)

    if sum(1 for p in lookback if p.amount == submission.amount) >= REPEATED_AMOUNT_COUNT:
        indicators.append(RiskIndicator.REPEATED_AMOUNTS)

    description = submission.description.strip()
    if description and (
        sum(1 for p in lookback if p.description.strip() == description)
        >= DUPLICATE_DESCRIPTION_COUNT
    ):
        indicators.append(RiskIndicator.DUPLICATE_DESCRIPTION)
    return tuple(indicators)


@traced_engine("risk", "1.0", fingerprint_fields=("submission", "submitted_at"))
def annotate_risk(
    *,
    submission: ClaimSubmission,
    submitted_at: datetime,
    prior_claims: Sequence[Claim] = (),
    config: WorkflowConfig,
) -> RiskAssessment:
    """Compute the risk assessment for a claim being submitted.

    Args:
        submission: The claim attributes.
        submitted_at: Submission time (late-submission and lookback anchor).
        prior_claims: The employee's earlier claims (duplicate detection and
            pattern indicators).
        config: Thresholds and weights.
    """
    weights = config.weights
    flags: list[RiskFlag] = []
    score = 0

    missing_receipt = len(submission.receipt_refs) == 0
    high_value = submission.amount > config.high_value_threshold

    if missing_receipt:
        flags.append(RiskFlag.MISSING_RECEIPT)
        score += weights.missing_receipt
    if high_value:
        flags.append(RiskFlag.HIGH_VALUE)
        score += weights.high_value
    days_late = (submitted_at.date() - submission.expense_date).days
    if days_late > config.late_submission_days:
        flags.append(RiskFlag.LATE_SUBMISSION)
        score += weights.late_submission
    if config.is_sensitive(submission.category):
        flags.append(RiskFlag.SENSITIVE_CATEGORY)
        score += weights.sensitive_category
    if find_duplicates(
        submission, submitted_at, prior_claims, config.duplicate_lookback_days
    ):
        flags.append(RiskFlag.DUPLICATE)
        score += weights.duplicate

    score = min(score, MAX_SCORE)
    is_flagged = score >= config.flag_score or (missing_receipt and high_value)

    return RiskAssessment(
        score=score,
        flags=tuple(flags),
        is_flagged=is_flagged,
        level=risk_level_for(score, config.risk_levels),
        indicators=(
            advisory_indicators(submission)
            + timing_indicators(submitted_at)
            + pattern_indicators(submission, submitted_at, prior_claims, config)
        ),
    )
