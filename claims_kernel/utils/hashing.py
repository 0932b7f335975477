"""
Hashing for the approval history chain.

One canonical JSON form (sorted keys, no whitespace, normalised decimals)
is used for every hash in the kernel, so that a chain written today still
verifies after a reload from any store.
"""

import hashlib
import json
from dataclasses import replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from claims_kernel.domain.claim import ApprovalHistoryEntry

GENESIS = "GENESIS"


def _encode_extra(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # 12.50 and 12.5 must hash the same.
        return str(obj.normalize())
    if isinstance(obj, date):  # datetime included
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"cannot canonicalize {type(obj).__name__}")


def canonicalize_json(data: Any) -> str:
    """Canonical JSON text for ``data``.  Unknown types raise TypeError."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode_extra)


def hash_payload(payload: dict) -> str:
    """Hex-encoded SHA-256 of the canonical JSON form of ``payload``."""
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def history_entry_payload(entry: ApprovalHistoryEntry) -> dict:
    """The fields of a history entry covered by its hash."""
    return {
        "entry_id": entry.entry_id,
        "claim_id": entry.claim_id,
        "sequence": entry.sequence,
        "actor_id": entry.actor_id,
        "actor_role": entry.actor_role,
        "action": entry.action,
        "step_number": entry.step_number,
        "decision": entry.decision,
        "comments": entry.comments,
        "error_code": entry.error_code,
        "timestamp": entry.timestamp,
    }


def hash_history_entry(entry: ApprovalHistoryEntry, prev_hash: str | None) -> str:
    """
    Compute the chained hash of one history entry.

    The hash covers the entry payload plus the previous entry's hash for
    the same claim, creating a tamper-evident chain.
    """
    components = [
        entry.claim_id,
        str(entry.sequence),
        hash_payload(history_entry_payload(entry)),
        prev_hash or GENESIS,
    ]
    return hashlib.sha256("|".join(components).encode("utf-8")).hexdigest()


def chain_entry(
    entry: ApprovalHistoryEntry, previous: ApprovalHistoryEntry | None
) -> ApprovalHistoryEntry:
    """Return ``entry`` with sequence, prev_hash and entry_hash assigned."""
    sequence = 1 if previous is None else previous.sequence + 1
    prev_hash = None if previous is None else previous.entry_hash
    sequenced = replace(entry, sequence=sequence, prev_hash=prev_hash)
    return replace(sequenced, entry_hash=hash_history_entry(sequenced, prev_hash))
