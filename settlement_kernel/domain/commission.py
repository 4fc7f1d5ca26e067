"""
Commission Calculator -- pure platform-fee computation.

Responsibility:
    Computes the platform commission on an amount delta given the payer's
    standing.  Used identically for a new contract's price and for the
    incremental part of a budget increase.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Identity lookup is
    done by ``services.commission_service``.

Invariants enforced:
    - Callers pass only the delta being charged, never a full new price
      that includes amounts already commissioned.
    - Any positive delta pays at least the schedule's ``minimum_commission``,
      the 0% family plan included.
    - Non-positive deltas carry no commission.

Rate precedence (first match wins):
    family plan 0% > super_pro 2% > pro 3% > referral discount 3% > default 8%
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from settlement_kernel.db.types import ZERO, round_money, to_decimal
from settlement_kernel.domain.policy import DEFAULT_POLICY, SettlementPolicy
from settlement_kernel.domain.values import CommissionRate


class PayerTier(str, Enum):
    """Membership standing of the paying user."""

    FREE = "free"
    PRO = "pro"
    SUPER_PRO = "super_pro"


@dataclass(frozen=True)
class CommissionProfile:
    """What the identity service knows about a payer, for commission purposes."""

    tier: PayerTier = PayerTier.FREE
    has_family_plan: bool = False
    has_referral_discount: bool = False


@dataclass(frozen=True)
class CommissionQuote:
    """Commission on one delta, with the rate used and whether the floor applied."""

    amount_delta: Decimal
    rate: CommissionRate
    commission: Decimal
    minimum_applied: bool

    @property
    def total(self) -> Decimal:
        return self.amount_delta + self.commission


def commission_rate(
    payer_tier: PayerTier | str,
    has_family_plan: bool = False,
    has_referral_discount: bool = False,
    *,
    policy: SettlementPolicy = DEFAULT_POLICY,
) -> CommissionRate:
    """Select the rate for a payer per the precedence above."""
    schedule = policy.commission
    tier = PayerTier(payer_tier)

    if has_family_plan:
        return CommissionRate.from_percent(schedule.family_plan_percent, "family_plan")
    if tier is PayerTier.SUPER_PRO:
        return CommissionRate.from_percent(schedule.super_pro_percent, "super_pro")
    if tier is PayerTier.PRO:
        return CommissionRate.from_percent(schedule.pro_percent, "pro")
    if has_referral_discount:
        return CommissionRate.from_percent(schedule.referral_percent, "referral")
    return CommissionRate.from_percent(schedule.default_percent, "default")


def quote_commission(
    amount_delta: object,
    payer_tier: PayerTier | str = PayerTier.FREE,
    has_family_plan: bool = False,
    has_referral_discount: bool = False,
    *,
    policy: SettlementPolicy = DEFAULT_POLICY,
) -> CommissionQuote:
    """Full commission quote for ``amount_delta``."""
    delta = to_decimal(amount_delta)
    rate = commission_rate(
        payer_tier, has_family_plan, has_referral_discount, policy=policy
    )

    if delta <= ZERO:
        return CommissionQuote(delta, rate, ZERO, minimum_applied=False)

    calculated = rate.apply(delta)
    floor = round_money(policy.commission.minimum_commission)
    if calculated < floor:
        return CommissionQuote(delta, rate, floor, minimum_applied=True)
    return CommissionQuote(delta, rate, calculated, minimum_applied=False)


def calculate_commission(
    amount_delta: object,
    payer_tier: PayerTier | str = PayerTier.FREE,
    has_family_plan: bool = False,
    has_referral_discount: bool = False,
    *,
    policy: SettlementPolicy = DEFAULT_POLICY,
) -> Decimal:
    """Commission amount on ``amount_delta``.

    >>> calculate_commission(Decimal("100000"))
    Decimal('8000.00')
    >>> calculate_commission(Decimal("5000"))
    Decimal('1000.00')
    """
    return quote_commission(
        amount_delta,
        payer_tier,
        has_family_plan,
        has_referral_discount,
        policy=policy,
    ).commission


def commission_for_profile(
    amount_delta: object,
    profile: CommissionProfile,
    *,
    policy: SettlementPolicy = DEFAULT_POLICY,
) -> CommissionQuote:
    return quote_commission(
        amount_delta,
        profile.tier,
        profile.has_family_plan,
        profile.has_referral_discount,
        policy=policy,
    )
