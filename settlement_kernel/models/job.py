"""
Module: settlement_kernel.models.job
Responsibility: ORM persistence for jobs and their multi-worker budget
    ledger: selected workers, per-worker allocations, responses to a
    proposed price decrease, and the append-only price history.
Architecture position: Kernel > Models.  May import from db/ and the pure
    domain types only.

Invariants enforced:
    - sum(worker_allocations.allocated_amount) == allocated_total <= price
      (maintained by AllocationService from a validated AllocationPlan).
    - Every allocation's worker is a selected worker.
    - (job, worker) is unique on job_workers, worker_allocations and
      price_decrease_responses.
    - job_price_changes rows are append-only.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from settlement_kernel.db.base import Base, UUIDString, VersionedBase
from settlement_kernel.db.types import ZERO, status_column_type
from settlement_kernel.domain.dtos import JobInfo, JobStatus
from settlement_kernel.domain.values import AllocationShare


class Job(VersionedBase):
    """
    A piece of paid work posted by a client.

    Contract:
        ``price`` is the current budget.  ``original_price`` is the highest
        budget the client has already paid for; an increase only charges
        the part above it.  Pending increase and pending decrease fields
        are mutually exclusive.

    Non-goals:
        - Search, categories, media and proposals are not modelled.
    """

    __tablename__ = "jobs"

    __table_args__ = (
        Index("idx_job_client", "client_id"),
        Index("idx_job_status", "status"),
    )

    client_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    price: Mapped[Decimal] = mapped_column(nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        status_column_type(JobStatus), nullable=False, default=JobStatus.DRAFT
    )
    max_workers: Mapped[int] = mapped_column(BigInteger, nullable=False, default=1)
    publication_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    allocated_total: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    remaining_budget: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    original_price: Mapped[Decimal | None] = mapped_column(nullable=True)

    # Pending increase (awaiting a budget_increase payment)
    pending_new_price: Mapped[Decimal | None] = mapped_column(nullable=True)
    pending_payment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    previous_status: Mapped[JobStatus | None] = mapped_column(
        status_column_type(JobStatus), nullable=True
    )

    # Pending decrease (awaiting every active worker)
    pending_price_decrease: Mapped[Decimal | None] = mapped_column(nullable=True)
    pending_price_decrease_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    pending_price_decrease_at: Mapped[datetime | None] = mapped_column(nullable=True)

    workers: Mapped[list[JobWorker]] = relationship(
        "JobWorker",
        order_by="JobWorker.selected_at",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    allocations: Mapped[list[WorkerAllocation]] = relationship(
        "WorkerAllocation",
        order_by="WorkerAllocation.position",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    decrease_responses: Mapped[list[PriceDecreaseResponse]] = relationship(
        "PriceDecreaseResponse",
        lazy="selectin",
        cascade="all, delete-orphan",
    )
    price_changes: Mapped[list[JobPriceChange]] = relationship(
        "JobPriceChange",
        order_by="JobPriceChange.seq",
        lazy="selectin",
    )

    @property
    def selected_worker_ids(self) -> list[UUID]:
        return [w.worker_id for w in self.workers]

    @property
    def allocation_shares(self) -> list[AllocationShare]:
        return [
            AllocationShare(a.worker_id, a.allocated_amount, a.percentage)
            for a in self.allocations
        ]

    @property
    def has_pending_increase(self) -> bool:
        return self.pending_new_price is not None

    @property
    def has_pending_decrease(self) -> bool:
        return self.pending_price_decrease is not None

    def __repr__(self) -> str:
        return f"<Job {self.id} {self.status} price={self.price}>"

    def to_dto(self) -> JobInfo:
        return JobInfo(
            id=self.id,
            client_id=self.client_id,
            title=self.title,
            price=self.price,
            currency=self.currency,
            status=JobStatus(self.status),
            max_workers=self.max_workers,
            publication_paid=self.publication_paid,
            allocated_total=self.allocated_total,
            remaining_budget=self.remaining_budget,
            original_price=self.original_price,
            pending_new_price=self.pending_new_price,
            pending_payment_amount=self.pending_payment_amount,
            previous_status=JobStatus(self.previous_status) if self.previous_status else None,
            pending_price_decrease=self.pending_price_decrease,
            pending_price_decrease_reason=self.pending_price_decrease_reason,
            selected_workers=tuple(self.selected_worker_ids),
            allocations=tuple(self.allocation_shares),
            version=self.version,
        )


class JobWorker(Base):
    __tablename__ = "job_workers"

    __table_args__ = (UniqueConstraint("job_id", "worker_id", name="uq_job_worker"),)

    job_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("jobs.id"), nullable=False)
    worker_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    selected_at: Mapped[datetime] = mapped_column(nullable=False)


class WorkerAllocation(Base):
    __tablename__ = "worker_allocations"

    __table_args__ = (
        UniqueConstraint("job_id", "worker_id", name="uq_worker_allocation"),
    )

    job_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("jobs.id"), nullable=False)
    worker_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    allocated_amount: Mapped[Decimal] = mapped_column(nullable=False)
    percentage: Mapped[Decimal] = mapped_column(nullable=False)
    # Order the client listed the workers in; the redistribution remainder
    # goes to the last one.
    position: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)


class PriceDecreaseResponse(Base):
    __tablename__ = "price_decrease_responses"

    __table_args__ = (
        UniqueConstraint("job_id", "worker_id", name="uq_price_decrease_response"),
    )

    job_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("jobs.id"), nullable=False)
    worker_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    accepted: Mapped[bool] = mapped_column(Boolean, nullable=False)
    responded_at: Mapped[datetime] = mapped_column(nullable=False)


class JobPriceChange(Base):
    """Append-only history of a job's budget."""

    __tablename__ = "job_price_changes"

    __table_args__ = (Index("idx_job_price_change", "job_id", "seq"),)

    job_id: Mapped[UUID] = mapped_column(UUIDString(), ForeignKey("jobs.id"), nullable=False)
    seq: Mapped[int] = mapped_column(BigInteger, nullable=False)
    old_price: Mapped[Decimal] = mapped_column(nullable=False)
    new_price: Mapped[Decimal] = mapped_column(nullable=False)
    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
