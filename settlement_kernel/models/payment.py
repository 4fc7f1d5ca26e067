"""
Module: settlement_kernel.models.payment
Responsibility: ORM persistence for payments and the receipts (proofs)
    submitted against them.
Architecture position: Kernel > Models.  May import from db/ and the pure
    domain enums only.

Invariants enforced:
    - status is only written by services after transition_payment() accepted
      the edge; the mapper's version_id_col rejects lost updates.
    - Commission is never refunded: refund_amount <= amount - commission
      (checked by domain.dispute_lifecycle before the write).
    - At most one pending proof per payment (checked by PaymentService).

Failure modes:
    - StaleDataError on flush when another transaction updated the row
      first; services translate it to OptimisticLockError.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, UUIDString, VersionedBase
from settlement_kernel.db.types import ZERO, status_column_type
from settlement_kernel.domain.dtos import PaymentInfo, PaymentProofInfo
from settlement_kernel.domain.payment_lifecycle import (
    ESCROW_PAYMENT_TYPES,
    PaymentStatus,
    PaymentType,
    ProofStatus,
    RefundStatus,
)


class Payment(VersionedBase):
    """
    A sum of money moving from a payer into platform custody.

    Contract:
        One row per charge: job publication fee, contract payment, escrow
        deposit, budget increase or membership.  Escrow-capable rows also
        track custody (verified -> held_escrow -> confirmed_for_payout ->
        completed).

    Guarantees:
        - amount and commission are Decimal; commission is part of amount.
        - status_before_dispute is set exactly while status is disputed.

    Non-goals:
        - Does NOT validate transitions; payment_lifecycle does.
    """

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payment_contract", "contract_id"),
        Index("idx_payment_job", "job_id"),
        Index("idx_payment_status", "status"),
        Index("idx_payment_provider_tx", "provider_transaction_id"),
    )

    payer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    recipient_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    contract_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=True
    )
    job_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("jobs.id"), nullable=True
    )

    amount: Mapped[Decimal] = mapped_column(nullable=False)
    commission: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    payment_type: Mapped[PaymentType] = mapped_column(
        status_column_type(PaymentType), nullable=False
    )
    status: Mapped[PaymentStatus] = mapped_column(
        status_column_type(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    is_escrow: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    provider_transaction_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    admin_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status_before_dispute: Mapped[PaymentStatus | None] = mapped_column(
        status_column_type(PaymentStatus), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    approved_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    escrow_verified_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    escrow_verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    payout_confirmed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    payout_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    released_at: Mapped[datetime | None] = mapped_column(nullable=True)

    refunded_at: Mapped[datetime | None] = mapped_column(nullable=True)
    refund_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    refund_status: Mapped[RefundStatus] = mapped_column(
        status_column_type(RefundStatus), nullable=False, default=RefundStatus.NONE
    )
    provider_refund_id: Mapped[str | None] = mapped_column(String(100), nullable=True)

    proofs: Mapped[list[PaymentProof]] = relationship(
        "PaymentProof",
        back_populates="payment",
        order_by="PaymentProof.submitted_at",
        lazy="selectin",
        cascade="all, delete-orphan",
    )

    @property
    def is_escrow_type(self) -> bool:
        return PaymentType(self.payment_type) in ESCROW_PAYMENT_TYPES

    @property
    def pending_proofs(self) -> list[PaymentProof]:
        return [p for p in self.proofs if p.status == ProofStatus.PENDING]

    def append_admin_note(self, note: str) -> None:
        self.admin_notes = f"{self.admin_notes}\n{note}" if self.admin_notes else note

    def __repr__(self) -> str:
        return f"<Payment {self.id} {self.payment_type} {self.status} {self.amount}>"

    def to_dto(self) -> PaymentInfo:
        return PaymentInfo(
            id=self.id,
            payer_id=self.payer_id,
            recipient_id=self.recipient_id,
            contract_id=self.contract_id,
            job_id=self.job_id,
            amount=self.amount,
            commission=self.commission,
            currency=self.currency,
            payment_type=PaymentType(self.payment_type),
            status=PaymentStatus(self.status),
            is_escrow=self.is_escrow,
            provider_transaction_id=self.provider_transaction_id,
            admin_notes=self.admin_notes,
            status_before_dispute=(
                PaymentStatus(self.status_before_dispute)
                if self.status_before_dispute
                else None
            ),
            rejection_reason=self.rejection_reason,
            approved_by_id=self.approved_by_id,
            approved_at=self.approved_at,
            escrow_verified_at=self.escrow_verified_at,
            payout_confirmed_at=self.payout_confirmed_at,
            released_at=self.released_at,
            refunded_at=self.refunded_at,
            refund_amount=self.refund_amount,
            refund_status=RefundStatus(self.refund_status),
            provider_refund_id=self.provider_refund_id,
            version=self.version,
            proofs=tuple(p.to_dto() for p in self.proofs),
        )


class PaymentProof(Base):
    """An uploaded receipt awaiting (or past) admin review."""

    __tablename__ = "payment_proofs"

    __table_args__ = (Index("idx_proof_payment", "payment_id"),)

    payment_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("payments.id"), nullable=False
    )
    submitted_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    # Storage location of the receipt file
    reference: Mapped[str] = mapped_column(String(500), nullable=False)
    status: Mapped[ProofStatus] = mapped_column(
        status_column_type(ProofStatus), nullable=False, default=ProofStatus.PENDING
    )
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    reviewed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    payment: Mapped[Payment] = relationship("Payment", back_populates="proofs")

    def to_dto(self) -> PaymentProofInfo:
        return PaymentProofInfo(
            id=self.id,
            payment_id=self.payment_id,
            submitted_by_id=self.submitted_by_id,
            reference=self.reference,
            status=ProofStatus(self.status),
            submitted_at=self.submitted_at,
            reviewed_by_id=self.reviewed_by_id,
            reviewed_at=self.reviewed_at,
            rejection_reason=self.rejection_reason,
        )
