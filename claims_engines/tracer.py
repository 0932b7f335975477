"""
claims_engines.tracer -- CLAIMS_ENGINE_TRACE records for engine calls.

Responsibility:
    ``@traced_engine`` logs one DEBUG record per engine call with the
    engine name and version, a fingerprint of the selected keyword inputs,
    a one-line summary of the result and the elapsed time.  Two calls with
    the same fingerprint and version must produce the same result, so a
    routing or scoring decision can be matched to its inputs later.

Architecture position:
    Engines -- support code for the pure calculation layer.  Emits a log
    record and nothing else.

Invariants enforced:
    - The fingerprint is the first 16 hex chars of a SHA-256 over the
      canonical JSON of the selected inputs (``claims_kernel.utils.hashing``).
    - Only ``time.monotonic`` is read; engines never see the wall clock.
"""

from __future__ import annotations

import dataclasses
import functools
import logging
import time
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from claims_kernel.logging_config import get_logger
from claims_kernel.utils.hashing import hash_payload

logger = get_logger("engines.tracer")

FINGERPRINT_LENGTH = 16


def _plain(value: Any) -> Any:
    """Reduce dataclasses and collections to JSON-friendly structures."""
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {f.name: _plain(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted((_plain(v) for v in value), key=str)
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    if isinstance(value, Mapping):
        return {str(k): _plain(v) for k, v in value.items()}
    return value


def input_fingerprint(fields: tuple[str, ...], kwargs: dict[str, Any]) -> str:
    """Fingerprint of ``kwargs`` restricted to ``fields``; absent fields hash as null."""
    selected = {name: _plain(kwargs.get(name)) for name in fields}
    return hash_payload(selected)[:FINGERPRINT_LENGTH]


def _summarize(result: Any) -> str:
    if isinstance(result, tuple):
        return f"{len(result)} item(s)"
    score = getattr(result, "score", None)
    if score is not None:
        return f"score={score}"
    return type(result).__name__


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            started = time.monotonic()
            result = func(*args, **kwargs)
            elapsed_ms = round((time.monotonic() - started) * 1000, 3)

            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(
                    "CLAIMS_ENGINE_TRACE",
                    extra={
                        "trace_type": "CLAIMS_ENGINE_TRACE",
                        "engine_name": engine_name,
                        "engine_version": engine_version,
                        "input_fingerprint": (
                            input_fingerprint(fingerprint_fields, kwargs)
                            if fingerprint_fields
                            else ""
                        ),
                        "result_summary": _summarize(result),
                        "duration_ms": elapsed_ms,
                    },
                )
            return result

        return wrapper

    return decorator
