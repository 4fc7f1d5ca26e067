"""
Module: settlement_kernel.models.dispute
Responsibility: ORM persistence for disputes over a contract's outcome and
    their append-only activity log and message thread.
Architecture position: Kernel > Models.

Invariants enforced:
    - At most one active (open / in_review / awaiting_info) dispute per
      contract: checked by DisputeService and backed by a partial unique
      index on PostgreSQL and SQLite.
    - dispute_logs and dispute_messages are append-only.
    - platform_fee_refunded is always false; commission is never returned.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, UUIDString, VersionedBase
from settlement_kernel.db.types import status_column_type
from settlement_kernel.domain.dispute_lifecycle import (
    ACTIVE_DISPUTE_STATUSES,
    DisputeCategory,
    DisputePriority,
    DisputeStatus,
    ResolutionType,
)
from settlement_kernel.domain.dtos import DisputeInfo, DisputeLogInfo, DisputeMessageInfo

_ACTIVE_PREDICATE = "status IN ({})".format(
    ", ".join(f"'{s.value}'" for s in sorted(ACTIVE_DISPUTE_STATUSES, key=lambda s: s.value))
)


class Dispute(VersionedBase):
    """
    An escalation over one contract's outcome, decided by an admin.

    Contract:
        initiator and defendant are the two contract parties.  The linked
        payment (if any) is the contract's latest escrow/contract payment at
        the time the dispute was opened.
    """

    __tablename__ = "disputes"

    __table_args__ = (
        Index("idx_dispute_contract", "contract_id"),
        Index("idx_dispute_status", "status"),
        Index(
            "uq_dispute_active_per_contract",
            "contract_id",
            unique=True,
            postgresql_where=text(_ACTIVE_PREDICATE),
            sqlite_where=text(_ACTIVE_PREDICATE),
        ),
    )

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False
    )
    payment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=True
    )
    initiator_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    defendant_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    category: Mapped[DisputeCategory] = mapped_column(
        status_column_type(DisputeCategory), nullable=False
    )
    priority: Mapped[DisputePriority] = mapped_column(
        status_column_type(DisputePriority), nullable=False, default=DisputePriority.MEDIUM
    )
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[DisputeStatus] = mapped_column(
        status_column_type(DisputeStatus), nullable=False, default=DisputeStatus.OPEN
    )
    resolution_type: Mapped[ResolutionType | None] = mapped_column(
        status_column_type(ResolutionType), nullable=True
    )
    resolution: Mapped[str | None] = mapped_column(Text, nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    assigned_to_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    resolved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    platform_fee_refunded: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    logs: Mapped[list[DisputeLog]] = relationship(
        "DisputeLog", order_by="DisputeLog.seq", lazy="selectin"
    )
    messages: Mapped[list[DisputeMessage]] = relationship(
        "DisputeMessage", order_by="DisputeMessage.seq", lazy="selectin"
    )

    @property
    def is_active(self) -> bool:
        return DisputeStatus(self.status) in ACTIVE_DISPUTE_STATUSES

    def __repr__(self) -> str:
        return f"<Dispute {self.id} {self.status} contract={self.contract_id}>"

    def to_dto(self) -> DisputeInfo:
        return DisputeInfo(
            id=self.id,
            contract_id=self.contract_id,
            payment_id=self.payment_id,
            initiator_id=self.initiator_id,
            defendant_id=self.defendant_id,
            category=DisputeCategory(self.category),
            priority=DisputePriority(self.priority),
            reason=self.reason,
            description=self.description,
            status=DisputeStatus(self.status),
            resolution_type=ResolutionType(self.resolution_type) if self.resolution_type else None,
            resolution=self.resolution,
            refund_amount=self.refund_amount,
            assigned_to_id=self.assigned_to_id,
            resolved_by_id=self.resolved_by_id,
            resolved_at=self.resolved_at,
            platform_fee_refunded=self.platform_fee_refunded,
            logs=tuple(
                DisputeLogInfo(log.action, log.actor_id, log.details, log.occurred_at)
                for log in self.logs
            ),
            messages=tuple(
                DisputeMessageInfo(m.sender_id, m.message, m.is_admin, m.sent_at)
                for m in self.messages
            ),
        )


class DisputeLog(Base):
    __tablename__ = "dispute_logs"

    __table_args__ = (Index("idx_dispute_log", "dispute_id", "seq"),)

    dispute_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("disputes.id"), nullable=False
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    details: Mapped[str | None] = mapped_column(Text, nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)


class DisputeMessage(Base):
    __tablename__ = "dispute_messages"

    __table_args__ = (Index("idx_dispute_message", "dispute_id", "seq"),)

    dispute_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("disputes.id"), nullable=False
    )
    seq: Mapped[int] = mapped_column(nullable=False)
    sender_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    sent_at: Mapped[datetime] = mapped_column(nullable=False)
