"""
Bridges from parsed configuration to kernel inputs.

The kernel owns ``SettlementPolicy``; this module is the only place that
knows both shapes.
"""

from __future__ import annotations

from settlement_config.schema import SettlementConfiguration
from settlement_kernel.domain.policy import CommissionSchedule, SettlementPolicy


def build_settlement_policy(config: SettlementConfiguration) -> SettlementPolicy:
    commission = config.commission
    return SettlementPolicy(
        commission=CommissionSchedule(
            family_plan_percent=commission.family_plan_percent,
            super_pro_percent=commission.super_pro_percent,
            pro_percent=commission.pro_percent,
            referral_percent=commission.referral_percent,
            default_percent=commission.default_percent,
            minimum_commission=commission.minimum_commission,
        ),
        min_worker_allocation=config.allocation.min_worker_allocation,
        max_workers=config.allocation.max_workers,
        pairing_code_length=config.pairing.code_length,
        pairing_code_alphabet=config.pairing.code_alphabet,
        pairing_code_ttl_hours=config.pairing.code_ttl_hours,
        pairing_window_hours=config.pairing.window_hours,
        cancellation_notice_hours=config.contract.cancellation_notice_hours,
        auto_confirm_after_hours=config.contract.auto_confirm_after_hours,
        price_change_reason_min_length=config.pricing.change_reason_min_length,
        outbox_max_attempts=config.outbox.max_attempts,
        outbox_backoff_seconds=config.outbox.backoff_seconds,
        default_currency=config.currency,
        config_checksum=config.checksum,
    )
