"""
Module: settlement_kernel.models.outbox
Responsibility: ORM persistence for side effects queued inside a financial
    transaction and delivered after it commits (notifications, provider
    refunds).
Architecture position: Kernel > Models.

Invariants enforced:
    - idempotency_key is unique: re-queuing the same effect is a no-op and
      the key is handed to the collaborator so redelivery is deduplicated.
    - A message leaves ``pending`` only through OutboxDispatcher.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UUIDString
from settlement_kernel.db.types import status_column_type
from settlement_kernel.domain.dtos import OutboxKind, OutboxMessageInfo, OutboxStatus


class OutboxMessage(Base):
    __tablename__ = "outbox_messages"

    __table_args__ = (
        Index("idx_outbox_due", "status", "next_attempt_at"),
    )

    idempotency_key: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    kind: Mapped[OutboxKind] = mapped_column(status_column_type(OutboxKind), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    status: Mapped[OutboxStatus] = mapped_column(
        status_column_type(OutboxStatus), nullable=False, default=OutboxStatus.PENDING
    )
    attempts: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    next_attempt_at: Mapped[datetime | None] = mapped_column(nullable=True)
    delivered_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Entity the effect belongs to, for operators
    entity_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    entity_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return f"<OutboxMessage {self.kind} {self.idempotency_key} {self.status}>"

    def to_dto(self) -> OutboxMessageInfo:
        return OutboxMessageInfo(
            id=self.id,
            idempotency_key=self.idempotency_key,
            kind=OutboxKind(self.kind),
            payload=dict(self.payload or {}),
            status=OutboxStatus(self.status),
            attempts=self.attempts,
            last_error=self.last_error,
            next_attempt_at=self.next_attempt_at,
            delivered_at=self.delivered_at,
        )
