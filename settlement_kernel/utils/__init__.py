"""Utility functions for the settlement kernel."""

from settlement_kernel.utils.hashing import canonicalize_json, hash_audit_event, hash_payload
from settlement_kernel.utils.idempotency import (
    generate_idempotency_key,
    parse_idempotency_key,
)

__all__ = [
    "canonicalize_json",
    "hash_payload",
    "hash_audit_event",
    "generate_idempotency_key",
    "parse_idempotency_key",
]
