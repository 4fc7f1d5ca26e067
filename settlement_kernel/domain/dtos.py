"""
Data Transfer Objects for the settlement kernel.

Services return these frozen snapshots instead of ORM entities so callers
never hold a live row outside the transaction that loaded it.  Each model
has a ``to_dto()`` that builds the matching object here.

Status enums that have no transition table of their own (job, balance
transaction, outbox) live here as well.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from settlement_kernel.db.types import ZERO
from settlement_kernel.domain.contract_lifecycle import (
    ContractPaymentStatus,
    ContractStatus,
    DisputeFlag,
    EscrowStatus,
)
from settlement_kernel.domain.dispute_lifecycle import (
    ACTIVE_DISPUTE_STATUSES,
    DisputeCategory,
    DisputePriority,
    DisputeStatus,
    ResolutionType,
)
from settlement_kernel.domain.payment_lifecycle import (
    PaymentStatus,
    PaymentType,
    ProofStatus,
    RefundStatus,
)
from settlement_kernel.domain.values import AllocationShare


class JobStatus(str, Enum):
    DRAFT = "draft"
    PENDING_PAYMENT = "pending_payment"
    OPEN = "open"
    PAUSED = "paused"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


CLOSED_JOB_STATUSES: frozenset[JobStatus] = frozenset({
    JobStatus.COMPLETED,
    JobStatus.CANCELLED,
})


class BalanceTransactionType(str, Enum):
    REFUND = "refund"
    PAYMENT = "payment"
    WITHDRAWAL = "withdrawal"
    BONUS = "bonus"
    ADJUSTMENT = "adjustment"


class BalanceTransactionStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class OutboxKind(str, Enum):
    NOTIFICATION = "notification"
    PROVIDER_REFUND = "provider_refund"


class OutboxStatus(str, Enum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"


@dataclass(frozen=True)
class PaymentProofInfo:
    id: UUID
    payment_id: UUID
    submitted_by_id: UUID
    reference: str
    status: ProofStatus
    submitted_at: datetime
    reviewed_by_id: UUID | None = None
    reviewed_at: datetime | None = None
    rejection_reason: str | None = None


@dataclass(frozen=True)
class PaymentInfo:
    """Snapshot of a Payment row."""

    id: UUID
    payer_id: UUID
    recipient_id: UUID | None
    contract_id: UUID | None
    job_id: UUID | None
    amount: Decimal
    commission: Decimal
    currency: str
    payment_type: PaymentType
    status: PaymentStatus
    is_escrow: bool
    provider_transaction_id: str | None
    admin_notes: str | None
    status_before_dispute: PaymentStatus | None
    rejection_reason: str | None
    approved_by_id: UUID | None
    approved_at: datetime | None
    escrow_verified_at: datetime | None
    payout_confirmed_at: datetime | None
    released_at: datetime | None
    refunded_at: datetime | None
    refund_amount: Decimal | None
    refund_status: RefundStatus
    provider_refund_id: str | None
    version: int
    proofs: tuple[PaymentProofInfo, ...] = ()

    @property
    def refundable(self) -> Decimal:
        return max(self.amount - self.commission, ZERO)


@dataclass(frozen=True)
class ContractInfo:
    """Snapshot of a Contract row (pending request fields included)."""

    id: UUID
    job_id: UUID
    client_id: UUID
    doer_id: UUID
    price: Decimal
    commission: Decimal
    total_price: Decimal
    currency: str
    status: ContractStatus
    payment_status: ContractPaymentStatus
    escrow_status: EscrowStatus
    dispute_status: DisputeFlag
    terms_accepted_by_client: bool
    terms_accepted_by_doer: bool
    terms_accepted_at: datetime | None
    start_date: datetime | None
    end_date: datetime | None
    original_end_date: datetime | None
    actual_start_date: datetime | None
    actual_end_date: datetime | None
    client_confirmed: bool
    doer_confirmed: bool
    awaiting_confirmation_at: datetime | None
    pairing_code: str | None
    pairing_expires_at: datetime | None
    client_pairing_confirmed: bool
    doer_pairing_confirmed: bool
    has_been_extended: bool
    extension_count: int
    extension_requested_by_id: UUID | None
    extension_days: int | None
    extension_amount: Decimal | None
    allocated_amount: Decimal | None
    percentage_of_budget: Decimal | None
    cancellation_reason: str | None
    cancelled_by_id: UUID | None
    status_before_dispute: ContractStatus | None
    version: int

    def is_participant(self, user_id: UUID) -> bool:
        return user_id in (self.client_id, self.doer_id)

    @property
    def has_pending_extension(self) -> bool:
        return self.extension_requested_by_id is not None


@dataclass(frozen=True)
class JobInfo:
    id: UUID
    client_id: UUID
    title: str
    price: Decimal
    currency: str
    status: JobStatus
    max_workers: int
    publication_paid: bool
    allocated_total: Decimal
    remaining_budget: Decimal
    original_price: Decimal | None
    pending_new_price: Decimal | None
    pending_payment_amount: Decimal | None
    previous_status: JobStatus | None
    pending_price_decrease: Decimal | None
    pending_price_decrease_reason: str | None
    selected_workers: tuple[UUID, ...] = ()
    allocations: tuple[AllocationShare, ...] = ()
    version: int = 1

    def allocation_for(self, worker_id: UUID) -> AllocationShare | None:
        for share in self.allocations:
            if share.worker_id == worker_id:
                return share
        return None


@dataclass(frozen=True)
class DisputeLogInfo:
    action: str
    actor_id: UUID
    details: str | None
    occurred_at: datetime


@dataclass(frozen=True)
class DisputeMessageInfo:
    sender_id: UUID
    message: str
    is_admin: bool
    sent_at: datetime


@dataclass(frozen=True)
class DisputeInfo:
    id: UUID
    contract_id: UUID
    payment_id: UUID | None
    initiator_id: UUID
    defendant_id: UUID
    category: DisputeCategory
    priority: DisputePriority
    reason: str
    description: str | None
    status: DisputeStatus
    resolution_type: ResolutionType | None
    resolution: str | None
    refund_amount: Decimal | None
    assigned_to_id: UUID | None
    resolved_by_id: UUID | None
    resolved_at: datetime | None
    platform_fee_refunded: bool
    logs: tuple[DisputeLogInfo, ...] = ()
    messages: tuple[DisputeMessageInfo, ...] = ()

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_DISPUTE_STATUSES


@dataclass(frozen=True)
class DisputeSettlement:
    """Everything a resolution touched, as committed together."""

    dispute: DisputeInfo
    contract: ContractInfo
    payment: PaymentInfo | None


@dataclass(frozen=True)
class BalanceTransactionInfo:
    id: UUID
    user_id: UUID
    type: BalanceTransactionType
    amount: Decimal
    currency: str
    status: BalanceTransactionStatus
    description: str | None
    job_id: UUID | None = None
    contract_id: UUID | None = None
    payment_id: UUID | None = None


@dataclass(frozen=True)
class OutboxMessageInfo:
    id: UUID
    idempotency_key: str
    kind: OutboxKind
    payload: dict[str, Any]
    status: OutboxStatus
    attempts: int
    last_error: str | None
    next_attempt_at: datetime | None
    delivered_at: datetime | None


@dataclass(frozen=True)
class PriceChangeResult:
    """Outcome of a client price-change request on a job."""

    job: JobInfo
    applied: bool
    awaiting_payment: PaymentInfo | None = None
    awaiting_workers: tuple[UUID, ...] = ()


@dataclass(frozen=True)
class DispatchReport:
    delivered: int = 0
    retried: int = 0
    failed: int = 0
    errors: tuple[str, ...] = field(default_factory=tuple)

    @property
    def attempted(self) -> int:
        return self.delivered + self.retried + self.failed
