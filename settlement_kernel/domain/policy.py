"""
Settlement policy -- the tunable constants of the engine.

The kernel owns this dataclass and its defaults.  ``settlement_config``
builds instances from YAML; the kernel never imports ``settlement_config``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal


@dataclass(frozen=True)
class CommissionSchedule:
    """Commission percentages by payer standing plus the fixed floor."""

    family_plan_percent: Decimal = Decimal("0")
    super_pro_percent: Decimal = Decimal("2")
    pro_percent: Decimal = Decimal("3")
    referral_percent: Decimal = Decimal("3")
    default_percent: Decimal = Decimal("8")
    minimum_commission: Decimal = Decimal("1000")


@dataclass(frozen=True)
class SettlementPolicy:
    """
    Engine-wide constants.

    Minimum floors are fixed amounts in the deployment currency; they are
    configuration, not code, so a deployment may scale them per region.
    """

    commission: CommissionSchedule = field(default_factory=CommissionSchedule)
    min_worker_allocation: Decimal = Decimal("5000")
    max_workers: int = 5
    pairing_code_length: int = 10
    pairing_code_alphabet: str = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
    pairing_code_ttl_hours: int = 72
    pairing_window_hours: int = 24
    cancellation_notice_hours: int = 24
    auto_confirm_after_hours: int = 2
    price_change_reason_min_length: int = 10
    outbox_max_attempts: int = 5
    outbox_backoff_seconds: int = 60
    default_currency: str = "ARS"
    config_checksum: str | None = None


DEFAULT_POLICY = SettlementPolicy()
