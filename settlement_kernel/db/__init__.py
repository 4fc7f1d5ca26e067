"""Database layer - engine, base classes, types, and append-only guards."""

from settlement_kernel.db.base import UUID, Base, TrackedBase, UUIDString, VersionedBase
from settlement_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)
from settlement_kernel.db.types import Currency, Money, PayloadHash, round_money, to_decimal

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "drop_tables",
    "Base",
    "TrackedBase",
    "VersionedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Currency",
    "PayloadHash",
    "round_money",
    "to_decimal",
]
