"""
Module: settlement_kernel.models.balance
Responsibility: ORM persistence for internal balance movements (credits to
    a user's platform balance).  This is a record of credits, not a general
    ledger; there are no accounts, periods or double entries here.
Architecture position: Kernel > Models.
"""

from __future__ import annotations

from decimal import Decimal
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import TrackedBase, UUIDString
from settlement_kernel.db.types import status_column_type
from settlement_kernel.domain.dtos import (
    BalanceTransactionInfo,
    BalanceTransactionStatus,
    BalanceTransactionType,
)


class BalanceTransaction(TrackedBase):
    __tablename__ = "balance_transactions"

    __table_args__ = (
        Index("idx_balance_user", "user_id"),
        Index("idx_balance_job", "job_id"),
    )

    user_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    type: Mapped[BalanceTransactionType] = mapped_column(
        status_column_type(BalanceTransactionType), nullable=False
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[BalanceTransactionStatus] = mapped_column(
        status_column_type(BalanceTransactionStatus),
        nullable=False,
        default=BalanceTransactionStatus.PENDING,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    job_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("jobs.id"), nullable=True
    )
    contract_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=True
    )
    payment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=True
    )

    def to_dto(self) -> BalanceTransactionInfo:
        return BalanceTransactionInfo(
            id=self.id,
            user_id=self.user_id,
            type=BalanceTransactionType(self.type),
            amount=self.amount,
            currency=self.currency,
            status=BalanceTransactionStatus(self.status),
            description=self.description,
            job_id=self.job_id,
            contract_id=self.contract_id,
            payment_id=self.payment_id,
        )
