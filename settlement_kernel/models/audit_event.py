"""
Module: settlement_kernel.models.audit_event
Responsibility: ORM persistence for the tamper-evident audit hash chain.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - Audit records are append-only; no UPDATE or DELETE (ORM listeners).
    - Hash chain integrity: hash = H(entity_type | entity_id | action |
      payload_hash | prev_hash).  Validated by AuditorService.
    - seq is monotonically increasing, allocated by SequenceService.

Failure modes:
    - ImmutabilityViolationError on any UPDATE/DELETE attempt.
    - AuditChainBrokenError when chain validation detects a hash mismatch.

Audit relevance:
    AuditEvent IS the audit trail.  Every money-affecting transition --
    proof approval, escrow custody, payout, dispute resolution, allocation
    change, price change -- produces an AuditEvent whose payload carries
    the before/after status, the actor and the reason.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UTCDateTime, UUIDString
from settlement_kernel.db.types import status_column_type


class AuditAction(str, Enum):
    """Types of auditable actions."""

    # Payment lifecycle
    PAYMENT_CREATED = "payment_created"
    PROOF_SUBMITTED = "proof_submitted"
    PAYMENT_APPROVED = "payment_approved"
    PAYMENT_REJECTED = "payment_rejected"
    PAYMENT_REJECTION_CANCELLED = "payment_rejection_cancelled"
    ESCROW_VERIFIED = "escrow_verified"
    PAYOUT_CONFIRMED = "payout_confirmed"
    PAYOUT_RELEASED = "payout_released"
    REFUND_ISSUED = "refund_issued"
    PAYMENT_REFUNDED = "payment_refunded"
    REFUND_FAILED = "refund_failed"

    # Contract lifecycle
    CONTRACT_CREATED = "contract_created"
    TERMS_ACCEPTED = "terms_accepted"
    CONTRACT_REJECTED = "contract_rejected"
    PAIRING_CODE_GENERATED = "pairing_code_generated"
    PAIRING_CONFIRMED = "pairing_confirmed"
    CONTRACT_STARTED = "contract_started"
    COMPLETION_CONFIRMED = "completion_confirmed"
    CONTRACT_COMPLETED = "contract_completed"
    CONTRACT_CANCELLED = "contract_cancelled"
    EXTENSION_REQUESTED = "extension_requested"
    EXTENSION_APPROVED = "extension_approved"
    EXTENSION_REJECTED = "extension_rejected"

    # Job
    JOB_STATUS_CHANGED = "job_status_changed"

    # Allocation
    ALLOCATIONS_SET = "allocations_set"
    WORKER_REMOVED = "worker_removed"

    # Disputes
    DISPUTE_OPENED = "dispute_opened"
    DISPUTE_ASSIGNED = "dispute_assigned"
    DISPUTE_PRIORITY_CHANGED = "dispute_priority_changed"
    DISPUTE_INFO_REQUESTED = "dispute_info_requested"
    DISPUTE_RESOLVED = "dispute_resolved"

    # Price negotiation
    PRICE_INCREASE_REQUESTED = "price_increase_requested"
    PRICE_CHANGED = "price_changed"
    PRICE_DECREASE_PROPOSED = "price_decrease_proposed"
    PRICE_DECREASE_RESPONDED = "price_decrease_responded"
    PRICE_DECREASE_CANCELLED = "price_decrease_cancelled"
    BUDGET_CHANGE_CANCELLED = "budget_change_cancelled"
    BALANCE_CREDITED = "balance_credited"


class AuditEvent(Base):
    """
    Audit event with hash chain for tamper evidence.

    Contract:
        AuditEvent rows are append-only, never updated or deleted.  Each
        row's hash includes the previous row's hash, creating a
        tamper-evident chain.

    Guarantees:
        - seq is globally unique and monotonically increasing.
        - prev_hash is None only for the genesis event.

    Non-goals:
        - This model does NOT compute hashes; AuditorService does.
    """

    __tablename__ = "audit_events"

    __table_args__ = (
        Index("idx_audit_entity", "entity_type", "entity_id"),
        Index("idx_audit_action", "action"),
        Index("idx_audit_occurred", "occurred_at"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    # "Payment", "Contract", "Job", "Dispute", ...
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)

    entity_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    action: Mapped[AuditAction] = mapped_column(
        status_column_type(AuditAction, 50), nullable=False
    )

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    occurred_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    payload: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    def __repr__(self) -> str:
        return f"<AuditEvent {self.action.value} on {self.entity_type}:{self.entity_id}>"

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None
