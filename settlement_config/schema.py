"""
Configuration schema (``settlement_config.schema``).

Frozen dataclasses mirroring the sections of ``settlement.yaml``.  They
carry no behaviour; ``bridges`` turns a ``SettlementConfiguration`` into
the kernel's ``SettlementPolicy``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class CommissionDef:
    family_plan_percent: Decimal
    super_pro_percent: Decimal
    pro_percent: Decimal
    referral_percent: Decimal
    default_percent: Decimal
    minimum_commission: Decimal


@dataclass(frozen=True)
class AllocationDef:
    min_worker_allocation: Decimal
    max_workers: int


@dataclass(frozen=True)
class PairingDef:
    code_length: int
    code_alphabet: str
    code_ttl_hours: int
    window_hours: int


@dataclass(frozen=True)
class ContractDef:
    cancellation_notice_hours: int
    auto_confirm_after_hours: int


@dataclass(frozen=True)
class PricingDef:
    change_reason_min_length: int


@dataclass(frozen=True)
class OutboxDef:
    max_attempts: int
    backoff_seconds: int


@dataclass(frozen=True)
class SettlementConfiguration:
    """One parsed configuration file plus its checksum."""

    config_id: str
    version: int
    currency: str
    commission: CommissionDef
    allocation: AllocationDef
    pairing: PairingDef
    contract: ContractDef
    pricing: PricingDef
    outbox: OutboxDef
    checksum: str
