"""
Module: settlement_kernel.db.types
Responsibility: Annotated type aliases and utility functions for money
    columns.  Centralizes precision, rounding and currency validation so that
    every model and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/
    and services/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere: all monetary amounts are Decimal.
    - round_money() is the ONLY sanctioned rounding function for amounts
      (ROUND_HALF_UP, 2 places by default).
    - validate_currency() rejects anything that is not a known ISO 4217 code.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Annotated

from sqlalchemy import Enum as SAEnum, Numeric, String

Money = Annotated[Decimal, Numeric(38, 9)]

# Percentages and rates, e.g. 37.50 (%) or 0.08 (rate)
Rate = Annotated[Decimal, Numeric(18, 9)]

Currency = Annotated[str, String(3)]

ShortCode = Annotated[str, String(50)]

PayloadHash = Annotated[str, String(64)]

MONEY_DECIMAL_PLACES = 2
PERCENT_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: object) -> Decimal:
    """
    Convert an int, str or Decimal to Decimal.

    Floats are converted through ``str`` so that ``0.1`` becomes
    ``Decimal("0.1")`` rather than its binary expansion.

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError) as e:
            raise ValueError(f"Invalid amount: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to ``decimal_places`` (ROUND_HALF_UP)."""
    quantum = Decimal(1).scaleb(-decimal_places)
    return value.quantize(quantum, rounding=rounding)


ISO_4217_CURRENCIES: frozenset[str] = frozenset({
    "USD", "EUR", "GBP", "JPY", "CHF", "CAD", "AUD", "NZD",
    "ARS", "BOB", "BRL", "CLP", "COP", "CRC", "DOP", "GTQ", "HNL",
    "MXN", "NIO", "PAB", "PEN", "PYG", "UYU", "VES",
    "CNY", "HKD", "INR", "KRW", "SGD", "ZAR", "SEK", "NOK", "DKK", "PLN",
})


def validate_currency(code: str) -> str:
    """
    Validate and normalize an ISO 4217 currency code.

    Raises:
        ValueError: If the code is not a supported ISO 4217 currency.
    """
    normalized = (code or "").strip().upper()
    if normalized not in ISO_4217_CURRENCIES:
        raise ValueError(f"Invalid ISO 4217 currency code: {code!r}")
    return normalized


def status_column_type(enum_cls: type[Enum], length: int = 32) -> SAEnum:
    """
    VARCHAR-backed column type for a ``str`` Enum.

    Stores the member's value, loads back the member itself, and accepts
    either form on write.  No native DB enum and no CHECK constraint, so
    adding a member never needs a migration.
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=False,
        length=length,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
