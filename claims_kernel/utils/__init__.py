"""Kernel utilities."""

from claims_kernel.utils.hashing import (
    canonicalize_json,
    chain_entry,
    hash_history_entry,
    hash_payload,
)

__all__ = [
    "canonicalize_json",
    "chain_entry",
    "hash_history_entry",
    "hash_payload",
]
