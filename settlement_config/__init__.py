"""
settlement_config -- single public entrypoint for settlement configuration.

Responsibility:
    Provides the only way to obtain the engine's tunable constants at
    runtime through ``get_active_policy()``.  Returns the kernel's
    ``SettlementPolicy``; YAML parsing stays internal.

Architecture position:
    Configuration.  This package sits above ``settlement_kernel``; the
    kernel never imports from ``settlement_config``.

Failure modes:
    - ``FileNotFoundError`` -- the configuration file does not exist.
    - ``KeyError`` / ``ValueError`` -- missing or out-of-range values.

Audit relevance:
    Every successful call emits a ``SETTLEMENT_CONFIG_TRACE`` log entry
    with the config id, version and checksum.  The checksum is also
    carried on the returned policy.
"""

from __future__ import annotations

import logging
from pathlib import Path

from settlement_config.bridges import build_settlement_policy
from settlement_config.loader import load_configuration
from settlement_kernel.domain.policy import SettlementPolicy

_logger = logging.getLogger("settlement_kernel.config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults" / "settlement.yaml"


def get_active_policy(path: Path | str | None = None) -> SettlementPolicy:
    """The only public configuration entrypoint.

    Args:
        path: Override path to a settlement YAML file.  Defaults to
            ``settlement_config/defaults/settlement.yaml``.

    Raises:
        FileNotFoundError: If the file does not exist.
        KeyError: If a required key is missing.
        ValueError: If a value is out of range.
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    config = load_configuration(config_path)
    policy = build_settlement_policy(config)

    _logger.info(
        "SETTLEMENT_CONFIG_TRACE",
        extra={
            "trace_type": "SETTLEMENT_CONFIG_TRACE",
            "config_id": config.config_id,
            "config_version": config.version,
            "checksum": config.checksum,
            "currency": config.currency,
        },
    )
    return policy


__all__ = ["DEFAULT_CONFIG_PATH", "get_active_policy"]
