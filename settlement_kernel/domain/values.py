"""
Values -- Immutable, self-validating ledger value objects.

Responsibility:
    The value types every settlement computation uses: Money (an amount
    paired with its currency), CommissionRate, and AllocationShare (one
    worker's slice of a job budget).

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  No imports from
    db/models/services except the rounding helpers in db/types.

Invariants enforced:
    - Amounts are Decimal, never float.
    - Money arithmetic never mixes currencies.
    - Commission rates lie in [0, 1].

Failure modes:
    - ValueError on construction with invalid amounts, currencies or rates.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from settlement_kernel.db.types import (
    PERCENT_DECIMAL_PLACES,
    ZERO,
    round_money,
    to_decimal,
    validate_currency,
)


@dataclass(frozen=True, slots=True)
class Money:
    """
    Monetary amount value object.

    Contract:
        Pairs a Decimal amount with an ISO 4217 currency code.

    Guarantees:
        - amount is always a Decimal.
        - currency is always a normalized, valid code.
        - Addition and subtraction enforce same-currency.

    Non-goals:
        - Does NOT auto-round -- callers call .rounded() explicitly.
    """

    amount: Decimal
    currency: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))
        object.__setattr__(self, "currency", validate_currency(self.currency))

    @classmethod
    def of(cls, amount: object, currency: str) -> Money:
        return cls(to_decimal(amount), currency)

    @classmethod
    def zero(cls, currency: str) -> Money:
        return cls(ZERO, currency)

    @property
    def is_positive(self) -> bool:
        return self.amount > ZERO

    def _check(self, other: Money) -> None:
        if not isinstance(other, Money):
            raise TypeError(f"Cannot combine Money with {type(other).__name__}")
        if other.currency != self.currency:
            raise ValueError(
                f"Currency mismatch: {self.currency} vs {other.currency}"
            )

    def __add__(self, other: Money) -> Money:
        self._check(other)
        return Money(self.amount + other.amount, self.currency)

    def __sub__(self, other: Money) -> Money:
        self._check(other)
        return Money(self.amount - other.amount, self.currency)

    def __lt__(self, other: Money) -> bool:
        self._check(other)
        return self.amount < other.amount

    def __le__(self, other: Money) -> bool:
        self._check(other)
        return self.amount <= other.amount

    def rounded(self) -> Money:
        return Money(round_money(self.amount), self.currency)

    def __str__(self) -> str:
        return f"{self.amount} {self.currency}"


@dataclass(frozen=True, slots=True)
class CommissionRate:
    """A platform commission rate expressed as a fraction (0.08 == 8%)."""

    rate: Decimal
    label: str = ""

    def __post_init__(self) -> None:
        rate = to_decimal(self.rate)
        if rate < ZERO or rate > Decimal("1"):
            raise ValueError(f"Commission rate must be within [0, 1]: {rate}")
        object.__setattr__(self, "rate", rate)

    @classmethod
    def from_percent(cls, percent: object, label: str = "") -> CommissionRate:
        return cls(to_decimal(percent) / Decimal("100"), label)

    @property
    def percent(self) -> Decimal:
        return self.rate * Decimal("100")

    @property
    def is_zero(self) -> bool:
        return self.rate == ZERO

    def apply(self, amount: Decimal) -> Decimal:
        """Unfloored, rounded commission on ``amount``."""
        return round_money(to_decimal(amount) * self.rate)


@dataclass(frozen=True, slots=True)
class AllocationRequest:
    """Client input: give ``amount`` of the job budget to ``worker_id``."""

    worker_id: UUID
    amount: Decimal

    def __post_init__(self) -> None:
        object.__setattr__(self, "amount", to_decimal(self.amount))


@dataclass(frozen=True, slots=True)
class AllocationShare:
    """One worker's validated slice of a job budget."""

    worker_id: UUID
    amount: Decimal
    percentage: Decimal

    @classmethod
    def of(cls, worker_id: UUID, amount: Decimal, budget: Decimal) -> AllocationShare:
        if budget <= ZERO:
            raise ValueError(f"Budget must be positive to allocate: {budget}")
        percentage = round_money(amount / budget * Decimal("100"), PERCENT_DECIMAL_PLACES)
        return cls(worker_id=worker_id, amount=amount, percentage=percentage)
