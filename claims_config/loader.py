"""
Configuration Loader (``claims_config.loader``).

Responsibility
--------------
Loads a YAML workflow configuration file and parses it into a frozen
``WorkflowConfig``.  Runtime callers use ``claims_config.get_workflow_config()``;
this module is the parsing layer underneath it.

Invariants enforced
-------------------
* Unknown keys at any level raise ``ValueError``; a typo never silently
  falls back to a default.
* Missing keys take the ``WorkflowConfig`` defaults.
* Money thresholds are parsed as ``Decimal`` from their string form, never
  through float.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown key or invalid value  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from claims_config.schema import RiskLevelThresholds, RiskWeights, WorkflowConfig

_SECTIONS = {
    "routing": {"hr_threshold", "admin_threshold", "critical_score"},
    "risk": {
        "high_value_threshold",
        "flag_score",
        "sensitive_categories",
        "late_submission_days",
        "duplicate_lookback_days",
        "weights",
        "levels",
    },
    "locking": {"lock_ttl_seconds"},
}
_WEIGHT_KEYS = {
    "missing_receipt",
    "high_value",
    "late_submission",
    "sensitive_category",
    "duplicate",
}
_LEVEL_KEYS = {"medium", "high", "critical"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _check_keys(section: str, data: dict[str, Any], allowed: set[str]) -> None:
    if not isinstance(data, dict):
        raise ValueError(f"{section}: expected a mapping, got {type(data).__name__}")
    unknown = sorted(set(data) - allowed)
    if unknown:
        raise ValueError(f"{section}: unknown key(s) {', '.join(unknown)}")


def parse_amount(value: Any, name: str) -> Decimal:
    """Parse a money threshold from YAML (string or number)."""
    if isinstance(value, bool):
        raise ValueError(f"{name}: expected an amount, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{name}: invalid amount {value!r}") from exc


def parse_workflow_config(data: dict[str, Any]) -> WorkflowConfig:
    """Build a ``WorkflowConfig`` from a parsed YAML mapping."""
    _check_keys("config", data, set(_SECTIONS))
    routing = data.get("routing") or {}
    risk = data.get("risk") or {}
    locking = data.get("locking") or {}
    _check_keys("routing", routing, _SECTIONS["routing"])
    _check_keys("risk", risk, _SECTIONS["risk"])
    _check_keys("locking", locking, _SECTIONS["locking"])

    kwargs: dict[str, Any] = {}
    for key in ("hr_threshold", "admin_threshold"):
        if key in routing:
            kwargs[key] = parse_amount(routing[key], f"routing.{key}")
    if "critical_score" in routing:
        kwargs["critical_score"] = int(routing["critical_score"])

    if "high_value_threshold" in risk:
        kwargs["high_value_threshold"] = parse_amount(
            risk["high_value_threshold"], "risk.high_value_threshold"
        )
    for key in ("flag_score", "late_submission_days", "duplicate_lookback_days"):
        if key in risk:
            kwargs[key] = int(risk[key])
    if "sensitive_categories" in risk:
        categories = risk["sensitive_categories"] or []
        if isinstance(categories, str):
            raise ValueError("risk.sensitive_categories: expected a list")
        kwargs["sensitive_categories"] = frozenset(str(c) for c in categories)
    if "weights" in risk:
        weights = risk["weights"] or {}
        _check_keys("risk.weights", weights, _WEIGHT_KEYS)
        kwargs["weights"] = RiskWeights(**{k: int(v) for k, v in weights.items()})
    if "levels" in risk:
        levels = risk["levels"] or {}
        _check_keys("risk.levels", levels, _LEVEL_KEYS)
        kwargs["risk_levels"] = RiskLevelThresholds(
            **{k: int(v) for k, v in levels.items()}
        )

    if "lock_ttl_seconds" in locking:
        kwargs["lock_ttl_seconds"] = float(locking["lock_ttl_seconds"])

    return WorkflowConfig(**kwargs)


def load_workflow_config(path: Path | str) -> WorkflowConfig:
    """Load and validate a workflow configuration file."""
    return parse_workflow_config(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed configuration mapping."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
