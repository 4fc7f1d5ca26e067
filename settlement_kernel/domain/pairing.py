"""
Pairing codes -- the shared token both parties confirm to mark work started.

Pure helpers: code generation, the generation window, expiry and matching.
Randomness comes from ``secrets`` unless a deterministic chooser is given.
"""

from __future__ import annotations

import hmac
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta

from settlement_kernel.domain.clock import ensure_utc
from settlement_kernel.domain.policy import DEFAULT_POLICY, SettlementPolicy


def generate_pairing_code(
    policy: SettlementPolicy = DEFAULT_POLICY,
    choose: Callable[[str], str] = secrets.choice,
) -> str:
    """Fixed-length code from an alphabet without ambiguous glyphs (no 0/O/1/I)."""
    alphabet = policy.pairing_code_alphabet
    return "".join(choose(alphabet) for _ in range(policy.pairing_code_length))


def pairing_window_open(
    start_date: datetime | None,
    now: datetime,
    policy: SettlementPolicy = DEFAULT_POLICY,
) -> bool:
    """A code may be generated from ``pairing_window_hours`` before start onward."""
    if start_date is None:
        return False
    hours_until_start = (ensure_utc(start_date) - ensure_utc(now)) / timedelta(hours=1)
    return hours_until_start <= policy.pairing_window_hours


def pairing_expiry(generated_at: datetime, policy: SettlementPolicy = DEFAULT_POLICY) -> datetime:
    return ensure_utc(generated_at) + timedelta(hours=policy.pairing_code_ttl_hours)


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    return expires_at is None or ensure_utc(now) > ensure_utc(expires_at)


def codes_match(stored: str | None, submitted: str | None) -> bool:
    """Case-insensitive, whitespace-trimmed, constant-time comparison."""
    if not stored or not submitted:
        return False
    return hmac.compare_digest(
        stored.strip().upper().encode(), submitted.strip().upper().encode()
    )
