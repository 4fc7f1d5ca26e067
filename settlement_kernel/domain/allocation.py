"""
Worker allocation math (``settlement_kernel.domain.allocation``).

Responsibility:
    Validates and computes how a multi-worker job's budget is split across
    workers, and what happens to a removed worker's share.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  The service layer
    applies a plan to rows only after the plan was built successfully, so a
    rejected request never leaves a partial write.

Invariants enforced:
    - sum(shares) == allocated_total <= price.
    - Every share belongs to a selected worker.
    - Every explicit share meets the per-worker floor.
    - Redistribution is exact: the freed amount is split evenly and the
      rounding remainder goes to the last remaining worker.

Failure modes (checked in this order):
    - UnknownWorkerError
    - BelowMinimumAllocationError
    - BudgetExceededError
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from uuid import UUID

from settlement_kernel.db.types import ZERO, round_money
from settlement_kernel.domain.values import AllocationRequest, AllocationShare
from settlement_kernel.exceptions import (
    BelowMinimumAllocationError,
    BudgetExceededError,
    InvalidAmountError,
    UnknownWorkerError,
)


@dataclass(frozen=True)
class AllocationPlan:
    shares: tuple[AllocationShare, ...]
    allocated_total: Decimal
    remaining_budget: Decimal

    def share_for(self, worker_id: UUID) -> AllocationShare | None:
        for share in self.shares:
            if share.worker_id == worker_id:
                return share
        return None


@dataclass(frozen=True)
class RemovalPlan:
    removed_worker_id: UUID
    freed_amount: Decimal
    shares: tuple[AllocationShare, ...]
    allocated_total: Decimal
    remaining_budget: Decimal
    increases: dict[UUID, Decimal] = field(default_factory=dict)


def plan_allocations(
    price: Decimal,
    selected_workers: Iterable[UUID],
    requests: Sequence[AllocationRequest],
    minimum: Decimal,
    job_id: object = None,
) -> AllocationPlan:
    """Validate ``requests`` against the job and build the new allocation."""
    selected = set(selected_workers)
    job_ref = str(job_id) if job_id is not None else None

    seen: set[UUID] = set()
    for req in requests:
        if req.worker_id not in selected:
            raise UnknownWorkerError(job_ref, str(req.worker_id))
        if req.worker_id in seen:
            raise InvalidAmountError(
                "allocations", str(req.worker_id), "worker listed more than once"
            )
        seen.add(req.worker_id)

    for req in requests:
        if req.amount < minimum:
            raise BelowMinimumAllocationError(str(req.worker_id), req.amount, minimum)

    total = sum((req.amount for req in requests), ZERO)
    if total > price:
        raise BudgetExceededError(job_ref, total, price)

    shares = tuple(
        AllocationShare.of(req.worker_id, round_money(req.amount), price)
        for req in requests
    )
    allocated_total = round_money(total)
    return AllocationPlan(
        shares=shares,
        allocated_total=allocated_total,
        remaining_budget=round_money(price - allocated_total),
    )


def split_evenly(amount: Decimal, parts: int) -> list[Decimal]:
    """Split ``amount`` into ``parts`` 2dp pieces whose sum is exactly ``amount``."""
    if parts <= 0:
        return []
    base = (amount / parts).quantize(Decimal("0.01"), rounding=ROUND_DOWN)
    pieces = [base] * parts
    pieces[-1] = round_money(amount - base * (parts - 1))
    return pieces


def plan_worker_removal(
    price: Decimal,
    current_shares: Sequence[AllocationShare],
    worker_id: UUID,
    redistribute: bool,
) -> RemovalPlan:
    """Drop ``worker_id``'s share and either spread it or return it to the budget."""
    freed = ZERO
    remaining: list[AllocationShare] = []
    for share in current_shares:
        if share.worker_id == worker_id:
            freed += share.amount
        else:
            remaining.append(share)

    increases: dict[UUID, Decimal] = {}
    if redistribute and remaining and freed > ZERO:
        pieces = split_evenly(freed, len(remaining))
        rebuilt = []
        for share, extra in zip(remaining, pieces):
            increases[share.worker_id] = extra
            rebuilt.append(AllocationShare.of(share.worker_id, share.amount + extra, price))
        remaining = rebuilt

    allocated_total = round_money(sum((s.amount for s in remaining), ZERO))
    return RemovalPlan(
        removed_worker_id=worker_id,
        freed_amount=round_money(freed),
        shares=tuple(remaining),
        allocated_total=allocated_total,
        remaining_budget=round_money(price - allocated_total),
        increases=increases,
    )
