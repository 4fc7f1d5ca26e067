"""
Configuration Loader (``settlement_config.loader``).

Responsibility
--------------
Loads ``settlement.yaml`` and parses it into the frozen dataclasses of
``settlement_config.schema``.  Runtime callers go through
``settlement_config.get_active_policy()`` instead.

Invariants enforced
-------------------
* Missing sections or keys raise ``KeyError``; there are no silent
  defaults for required fields.
* Money and percentages are parsed into ``Decimal`` from their string
  form, never through ``float``.
* ``compute_checksum`` is a deterministic SHA-256 of the canonical JSON
  of the raw document.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Out-of-range values  -> ``ValueError`` with the offending key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from settlement_config.schema import (
    AllocationDef,
    CommissionDef,
    ContractDef,
    OutboxDef,
    PairingDef,
    PricingDef,
    SettlementConfiguration,
)


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_decimal(value: Any, key: str) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ValueError(f"{key}: cannot parse decimal from {value!r}") from e


def _non_negative(value: Decimal, key: str) -> Decimal:
    if value < 0:
        raise ValueError(f"{key} must be >= 0, got {value}")
    return value


def _positive_int(value: Any, key: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ValueError(f"{key} must be a positive integer, got {value!r}")
    return value


def parse_commission(data: dict[str, Any]) -> CommissionDef:
    values = {
        key: _non_negative(parse_decimal(data[key], f"commission.{key}"), f"commission.{key}")
        for key in (
            "family_plan_percent",
            "super_pro_percent",
            "pro_percent",
            "referral_percent",
            "default_percent",
            "minimum_commission",
        )
    }
    for key, value in values.items():
        if key.endswith("_percent") and value > 100:
            raise ValueError(f"commission.{key} must be <= 100, got {value}")
    return CommissionDef(**values)


def parse_pairing(data: dict[str, Any]) -> PairingDef:
    alphabet = data["code_alphabet"]
    if not isinstance(alphabet, str) or len(set(alphabet)) < 2:
        raise ValueError("pairing.code_alphabet needs at least two distinct characters")
    return PairingDef(
        code_length=_positive_int(data["code_length"], "pairing.code_length"),
        code_alphabet=alphabet,
        code_ttl_hours=_positive_int(data["code_ttl_hours"], "pairing.code_ttl_hours"),
        window_hours=_positive_int(data["window_hours"], "pairing.window_hours"),
    )


def parse_configuration(data: dict[str, Any]) -> SettlementConfiguration:
    """
    Parse a raw YAML document into a ``SettlementConfiguration``.

    Raises:
        KeyError: if a required section or key is missing.
        ValueError: if a value is out of range.
    """
    allocation = data["allocation"]
    contract = data["contract"]
    outbox = data["outbox"]
    currency = data["currency"]
    if not isinstance(currency, str) or len(currency) != 3:
        raise ValueError(f"currency must be a 3-letter code, got {currency!r}")

    return SettlementConfiguration(
        config_id=data["config_id"],
        version=_positive_int(data["version"], "version"),
        currency=currency.upper(),
        commission=parse_commission(data["commission"]),
        allocation=AllocationDef(
            min_worker_allocation=_non_negative(
                parse_decimal(allocation["min_worker_allocation"], "allocation.min_worker_allocation"),
                "allocation.min_worker_allocation",
            ),
            max_workers=_positive_int(allocation["max_workers"], "allocation.max_workers"),
        ),
        pairing=parse_pairing(data["pairing"]),
        contract=ContractDef(
            cancellation_notice_hours=_positive_int(
                contract["cancellation_notice_hours"], "contract.cancellation_notice_hours"
            ),
            auto_confirm_after_hours=_positive_int(
                contract["auto_confirm_after_hours"], "contract.auto_confirm_after_hours"
            ),
        ),
        pricing=PricingDef(
            change_reason_min_length=_positive_int(
                data["pricing"]["change_reason_min_length"], "pricing.change_reason_min_length"
            ),
        ),
        outbox=OutboxDef(
            max_attempts=_positive_int(outbox["max_attempts"], "outbox.max_attempts"),
            backoff_seconds=_positive_int(outbox["backoff_seconds"], "outbox.backoff_seconds"),
        ),
        checksum=compute_checksum(data),
    )


def load_configuration(path: Path) -> SettlementConfiguration:
    return parse_configuration(load_yaml_file(path))
