"""
Price negotiation math (``settlement_kernel.domain.pricing``).

Responsibility:
    Pure rules for client-initiated budget changes on a job.

    - Increase: the client pays only the part above the highest price
      ever paid, plus commission on that delta.
    - Decrease: every active worker must accept; one rejection cancels it.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
"""

from __future__ import annotations

from collections.abc import Collection
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID

from settlement_kernel.db.types import ZERO, round_money
from settlement_kernel.domain.commission import (
    CommissionProfile,
    CommissionQuote,
    commission_for_profile,
)
from settlement_kernel.domain.policy import DEFAULT_POLICY, SettlementPolicy


class PriceChangeKind(str, Enum):
    INCREASE_REQUIRES_PAYMENT = "increase_requires_payment"
    INCREASE_ALREADY_PAID = "increase_already_paid"
    DECREASE = "decrease"
    UNCHANGED = "unchanged"


class DecreaseOutcome(str, Enum):
    PENDING = "pending"
    APPLIED = "applied"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class PriceChangePlan:
    kind: PriceChangeKind
    current_price: Decimal
    new_price: Decimal
    max_paid_price: Decimal
    price_difference: Decimal
    commission: Decimal
    amount_required: Decimal
    quote: CommissionQuote | None = None


def max_paid_price(original_price: Decimal | None, current_price: Decimal) -> Decimal:
    """Highest budget the client has already paid for."""
    if original_price is None:
        return current_price
    return max(original_price, current_price)


def plan_price_change(
    current_price: Decimal,
    original_price: Decimal | None,
    new_price: Decimal,
    profile: CommissionProfile,
    policy: SettlementPolicy = DEFAULT_POLICY,
) -> PriceChangePlan:
    """
    Classify a requested price and compute what (if anything) must be paid.

    >>> plan = plan_price_change(Decimal("100000"), None, Decimal("150000"),
    ...                          CommissionProfile())
    >>> plan.price_difference, plan.commission, plan.amount_required
    (Decimal('50000'), Decimal('4000.00'), Decimal('54000.00'))
    """
    ceiling = max_paid_price(original_price, current_price)

    if new_price == current_price:
        kind = PriceChangeKind.UNCHANGED
    elif new_price < current_price:
        kind = PriceChangeKind.DECREASE
    elif new_price > ceiling:
        kind = PriceChangeKind.INCREASE_REQUIRES_PAYMENT
    else:
        kind = PriceChangeKind.INCREASE_ALREADY_PAID

    if kind is not PriceChangeKind.INCREASE_REQUIRES_PAYMENT:
        return PriceChangePlan(
            kind=kind,
            current_price=current_price,
            new_price=new_price,
            max_paid_price=ceiling,
            price_difference=new_price - ceiling if new_price > ceiling else ZERO,
            commission=ZERO,
            amount_required=ZERO,
        )

    difference = new_price - ceiling
    quote = commission_for_profile(difference, profile, policy=policy)
    return PriceChangePlan(
        kind=kind,
        current_price=current_price,
        new_price=new_price,
        max_paid_price=ceiling,
        price_difference=difference,
        commission=quote.commission,
        amount_required=round_money(difference + quote.commission),
        quote=quote,
    )


def decrease_outcome(
    participants: Collection[UUID],
    accepted: Collection[UUID],
    rejected: Collection[UUID],
) -> DecreaseOutcome:
    """Unanimity rule: any rejection cancels; all participants accepting applies."""
    if rejected:
        return DecreaseOutcome.CANCELLED
    if set(participants) <= set(accepted):
        return DecreaseOutcome.APPLIED
    return DecreaseOutcome.PENDING


def decrease_credit(old_price: Decimal, new_price: Decimal) -> Decimal:
    """Balance credit owed to the client when an already-paid budget shrinks."""
    return round_money(max(old_price - new_price, ZERO))
