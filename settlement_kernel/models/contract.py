"""
Module: settlement_kernel.models.contract
Responsibility: ORM persistence for contracts between a client and one doer,
    plus the append-only history of price modifications and extensions.
Architecture position: Kernel > Models.  May import from db/ and the pure
    domain enums only.

Invariants enforced:
    - total_price = price + commission (maintained by the services on every
      price write through ``Contract.set_price``).
    - Price modification and extension rows are append-only (ORM listeners
      in db/immutability.py).
    - version_id_col on the contract row rejects lost updates.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, UUIDString, VersionedBase
from settlement_kernel.db.types import ZERO, round_money, status_column_type
from settlement_kernel.domain.contract_lifecycle import (
    ContractPaymentStatus,
    ContractStatus,
    DisputeFlag,
    EscrowStatus,
)
from settlement_kernel.domain.dtos import ContractInfo


class Contract(VersionedBase):
    """
    Execution record of one doer's engagement on a job.

    Contract:
        Holds the agreed price and commission, both parties' terms
        acceptance, the pairing handshake, completion confirmations,
        a single pending extension request, and mirrors of the linked
        payment's custody (payment_status / escrow_status).

    Guarantees:
        - status_before_dispute is set exactly while status is disputed.
        - The pending extension fields are either all set or all cleared.

    Non-goals:
        - Does NOT validate transitions; contract_lifecycle does.
    """

    __tablename__ = "contracts"

    __table_args__ = (
        Index("idx_contract_job", "job_id"),
        Index("idx_contract_doer", "doer_id"),
        Index("idx_contract_status", "status"),
    )

    job_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("jobs.id"), nullable=False)
    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    doer_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    price: Mapped[Decimal] = mapped_column(nullable=False)
    commission: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_price: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[ContractStatus] = mapped_column(
        status_column_type(ContractStatus), nullable=False, default=ContractStatus.PENDING
    )
    payment_status: Mapped[ContractPaymentStatus] = mapped_column(
        status_column_type(ContractPaymentStatus),
        nullable=False,
        default=ContractPaymentStatus.PENDING,
    )
    escrow_status: Mapped[EscrowStatus] = mapped_column(
        status_column_type(EscrowStatus), nullable=False, default=EscrowStatus.PENDING
    )
    dispute_status: Mapped[DisputeFlag] = mapped_column(
        status_column_type(DisputeFlag), nullable=False, default=DisputeFlag.NONE
    )
    status_before_dispute: Mapped[ContractStatus | None] = mapped_column(
        status_column_type(ContractStatus), nullable=True
    )

    # Terms
    terms_accepted_by_client: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    terms_accepted_by_doer: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    terms_accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Dates
    start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    original_end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    actual_start_date: Mapped[datetime | None] = mapped_column(nullable=True)
    actual_end_date: Mapped[datetime | None] = mapped_column(nullable=True)

    # Completion confirmation
    client_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    client_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    doer_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    doer_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    awaiting_confirmation_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Pairing
    pairing_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    pairing_generated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    pairing_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)
    client_pairing_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    client_pairing_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    doer_pairing_confirmed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    doer_pairing_confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Extension
    has_been_extended: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    extension_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    extension_requested_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    extension_requested_at: Mapped[datetime | None] = mapped_column(nullable=True)
    extension_days: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    extension_proposed_end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    extension_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    extension_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Multi-worker allocation
    allocated_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    percentage_of_budget: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Cancellation
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    cancelled_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    price_modifications: Mapped[list[ContractPriceModification]] = relationship(
        "ContractPriceModification",
        order_by="ContractPriceModification.seq",
        lazy="selectin",
    )
    extensions: Mapped[list[ContractExtension]] = relationship(
        "ContractExtension",
        order_by="ContractExtension.approved_at",
        lazy="selectin",
    )

    def is_participant(self, user_id: UUID) -> bool:
        return user_id in (self.client_id, self.doer_id)

    def party_of(self, user_id: UUID) -> str | None:
        if user_id == self.client_id:
            return "client"
        if user_id == self.doer_id:
            return "doer"
        return None

    def counterparty_of(self, user_id: UUID) -> UUID:
        return self.doer_id if user_id == self.client_id else self.client_id

    def set_price(self, price: Decimal, commission: Decimal) -> None:
        """Write price and commission together so total_price never drifts."""
        self.price = round_money(price)
        self.commission = round_money(commission)
        self.total_price = self.price + self.commission

    def clear_extension_request(self) -> None:
        self.extension_requested_by_id = None
        self.extension_requested_at = None
        self.extension_days = None
        self.extension_proposed_end_date = None
        self.extension_amount = None
        self.extension_notes = None

    def __repr__(self) -> str:
        return f"<Contract {self.id} {self.status} price={self.price}>"

    def to_dto(self) -> ContractInfo:
        return ContractInfo(
            id=self.id,
            job_id=self.job_id,
            client_id=self.client_id,
            doer_id=self.doer_id,
            price=self.price,
            commission=self.commission,
            total_price=self.total_price,
            currency=self.currency,
            status=ContractStatus(self.status),
            payment_status=ContractPaymentStatus(self.payment_status),
            escrow_status=EscrowStatus(self.escrow_status),
            dispute_status=DisputeFlag(self.dispute_status),
            terms_accepted_by_client=self.terms_accepted_by_client,
            terms_accepted_by_doer=self.terms_accepted_by_doer,
            terms_accepted_at=self.terms_accepted_at,
            start_date=self.start_date,
            end_date=self.end_date,
            original_end_date=self.original_end_date,
            actual_start_date=self.actual_start_date,
            actual_end_date=self.actual_end_date,
            client_confirmed=self.client_confirmed,
            doer_confirmed=self.doer_confirmed,
            awaiting_confirmation_at=self.awaiting_confirmation_at,
            pairing_code=self.pairing_code,
            pairing_expires_at=self.pairing_expires_at,
            client_pairing_confirmed=self.client_pairing_confirmed,
            doer_pairing_confirmed=self.doer_pairing_confirmed,
            has_been_extended=self.has_been_extended,
            extension_count=self.extension_count,
            extension_requested_by_id=self.extension_requested_by_id,
            extension_days=self.extension_days,
            extension_amount=self.extension_amount,
            allocated_amount=self.allocated_amount,
            percentage_of_budget=self.percentage_of_budget,
            cancellation_reason=self.cancellation_reason,
            cancelled_by_id=self.cancelled_by_id,
            status_before_dispute=(
                ContractStatus(self.status_before_dispute)
                if self.status_before_dispute
                else None
            ),
            version=self.version,
        )


class ContractPriceModification(Base):
    """Append-only price history of a contract, read back in ``seq`` order."""

    __tablename__ = "contract_price_modifications"

    __table_args__ = (Index("idx_price_mod_contract", "contract_id", "seq"),)

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False
    )
    # Position within the contract's history
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    old_price: Mapped[Decimal] = mapped_column(nullable=False)
    new_price: Mapped[Decimal] = mapped_column(nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)


class ContractExtension(Base):
    """One approved extension of a contract's end date (and possibly price)."""

    __tablename__ = "contract_extensions"

    __table_args__ = (Index("idx_extension_contract", "contract_id"),)

    contract_id: Mapped[UUID] = mapped_column(
        UUIDString(), ForeignKey("contracts.id"), nullable=False
    )
    previous_end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    new_end_date: Mapped[datetime | None] = mapped_column(nullable=True)
    extension_days: Mapped[int] = mapped_column(BigInteger, nullable=False)
    extension_amount: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    requested_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approved_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    approved_at: Mapped[datetime] = mapped_column(nullable=False)
