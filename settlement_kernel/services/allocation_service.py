"""
AllocationService -- the multi-worker budget ledger of a job.

Responsibility:
    Applies validated allocation plans (``domain.allocation``) to a job's
    allocation rows and to the price of each affected worker's contract.

Architecture position:
    Kernel > Services -- imperative shell.

Invariants enforced:
    - sum(allocated_amount) == allocated_total <= price after every call.
    - The plan is built, and therefore validated, before the first write;
      a rejected request leaves the job untouched.
    - Every contract price rewrite appends a price-modification row.
    - Removing a worker always cancels that worker's active contract.

Failure modes:
    - UnknownWorkerError, BelowMinimumAllocationError, BudgetExceededError
      from the plan.
    - PermissionDeniedError when the actor is not the job's client.
    - InvalidStateTransitionError on a closed job.
"""

from collections.abc import Iterable, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.allocation import plan_allocations, plan_worker_removal
from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.contract_lifecycle import ACTIVE_CONTRACT_STATUSES
from settlement_kernel.domain.dtos import CLOSED_JOB_STATUSES, JobInfo, JobStatus
from settlement_kernel.domain.policy import SettlementPolicy
from settlement_kernel.domain.values import AllocationRequest
from settlement_kernel.exceptions import (
    InvalidStateTransitionError,
    JobNotFoundError,
    PermissionDeniedError,
    UnknownWorkerError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.contract import Contract
from settlement_kernel.models.job import Job, WorkerAllocation
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.base import BaseService, parse_uuid
from settlement_kernel.services.commission_service import CommissionService
from settlement_kernel.services.contract_service import ContractService
from settlement_kernel.services.outbox_service import OutboxWriter

logger = get_logger("services.allocation")

REALLOCATION_REASON = "budget reallocation"
REDISTRIBUTION_REASON = "budget redistribution"
REMOVAL_REASON = "removed by client"


def _as_request(item: object) -> AllocationRequest:
    if isinstance(item, AllocationRequest):
        return item
    if isinstance(item, Mapping):
        return AllocationRequest(parse_uuid(item["worker_id"], "worker_id"), item["amount"])
    worker_id, amount = item  # type: ignore[misc]
    return AllocationRequest(parse_uuid(worker_id, "worker_id"), amount)


class AllocationService(BaseService[Job]):
    """
    Contract:
        Only the job's client changes the ledger, and only while the job
        is not completed or cancelled.

    Guarantees:
        - Allocation rows are rewritten as a whole; rows keep the order
          the client listed the workers in.
    """

    def __init__(
        self,
        session: Session,
        auditor: AuditorService | None = None,
        outbox: OutboxWriter | None = None,
        clock: Clock | None = None,
        policy: SettlementPolicy | None = None,
        commission: CommissionService | None = None,
    ):
        super().__init__(session, auditor, outbox, clock, policy)
        self._contracts = ContractService(
            session, self._auditor, self._outbox, self._clock, self._policy, commission
        )

    def _load_for_client(self, job_id: object, actor_id: UUID, action: str) -> Job:
        job = self._lock(Job, job_id, JobNotFoundError, field="job_id")
        if actor_id != job.client_id:
            raise PermissionDeniedError("Job", str(job.id), str(actor_id), action)
        if job.status in CLOSED_JOB_STATUSES:
            raise InvalidStateTransitionError(
                "Job", str(job.id), JobStatus(job.status).value, action
            )
        return job

    def _active_contracts(self, job: Job) -> dict[UUID, Contract]:
        rows = self.session.execute(
            select(Contract)
            .where(
                Contract.job_id == job.id,
                Contract.status.in_(list(ACTIVE_CONTRACT_STATUSES)),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars()
        return {contract.doer_id: contract for contract in rows}

    def set_worker_allocations(
        self,
        job_id: object,
        allocations: Iterable[object],
        *,
        actor_id: UUID,
    ) -> JobInfo:
        """
        Replace the job's allocation with ``allocations``.

        Each item is an ``AllocationRequest``, a ``{"worker_id", "amount"}``
        mapping or a ``(worker_id, amount)`` pair.

        Raises:
            UnknownWorkerError: A worker is not selected on the job.
            BelowMinimumAllocationError: An amount is under the floor.
            BudgetExceededError: The amounts add up to more than the price.
        """
        job = self._load_for_client(job_id, actor_id, "set_worker_allocations")
        requests = [_as_request(item) for item in allocations]
        plan = plan_allocations(
            job.price,
            job.selected_worker_ids,
            requests,
            self.policy.min_worker_allocation,
            job_id=job.id,
        )

        job.allocations.clear()
        self._flush("Job", job.id)
        for position, share in enumerate(plan.shares):
            job.allocations.append(
                WorkerAllocation(
                    worker_id=share.worker_id,
                    allocated_amount=share.amount,
                    percentage=share.percentage,
                    position=position,
                )
            )
        job.allocated_total = plan.allocated_total
        job.remaining_budget = plan.remaining_budget
        job.updated_by_id = actor_id

        contracts = self._active_contracts(job)
        for doer_id, contract in contracts.items():
            share = plan.share_for(doer_id)
            if share is None:
                contract.allocated_amount = None
                contract.percentage_of_budget = None
                continue
            contract.allocated_amount = share.amount
            contract.percentage_of_budget = share.percentage
            self._contracts.reprice(contract, share.amount, actor_id, REALLOCATION_REASON)

        self._record(
            "Job",
            job.id,
            AuditAction.ALLOCATIONS_SET,
            actor_id,
            reason=REALLOCATION_REASON,
            notify=[share.worker_id for share in plan.shares],
            allocations={str(s.worker_id): s.amount for s in plan.shares},
            allocated_total=plan.allocated_total,
            remaining_budget=plan.remaining_budget,
        )
        logger.info(
            "worker_allocations_set",
            extra={
                "job_id": str(job.id),
                "workers": len(plan.shares),
                "allocated_total": str(plan.allocated_total),
                "remaining_budget": str(plan.remaining_budget),
            },
        )
        return job.to_dto()

    def remove_worker(
        self,
        job_id: object,
        worker_id: object,
        redistribute: bool,
        *,
        actor_id: UUID,
    ) -> JobInfo:
        """
        Drop a worker from the job and cancel their contract.

        With ``redistribute`` the freed share is split evenly over the
        remaining allocated workers; otherwise it returns to
        ``remaining_budget``.
        """
        job = self._load_for_client(job_id, actor_id, "remove_worker")
        worker = parse_uuid(worker_id, "worker_id")
        if worker not in job.selected_worker_ids:
            raise UnknownWorkerError(str(job.id), str(worker))

        plan = plan_worker_removal(job.price, job.allocation_shares, worker, redistribute)

        job.workers[:] = [w for w in job.workers if w.worker_id != worker]
        job.allocations[:] = [a for a in job.allocations if a.worker_id != worker]
        job.decrease_responses[:] = [r for r in job.decrease_responses if r.worker_id != worker]
        shares = {s.worker_id: s for s in plan.shares}
        for row in job.allocations:
            share = shares[row.worker_id]
            row.allocated_amount = share.amount
            row.percentage = share.percentage
        job.allocated_total = plan.allocated_total
        job.remaining_budget = plan.remaining_budget
        job.updated_by_id = actor_id

        contracts = self._active_contracts(job)
        removed_contract = contracts.pop(worker, None)
        if removed_contract is not None:
            self._contracts.cancel_for_removal(removed_contract, actor_id, REMOVAL_REASON)

        for doer_id in plan.increases:
            contract = contracts.get(doer_id)
            if contract is None:
                continue
            share = shares[doer_id]
            contract.allocated_amount = share.amount
            contract.percentage_of_budget = share.percentage
            self._contracts.reprice(contract, share.amount, actor_id, REDISTRIBUTION_REASON)

        self._record(
            "Job",
            job.id,
            AuditAction.WORKER_REMOVED,
            actor_id,
            reason=REMOVAL_REASON,
            notify=[worker],
            worker_id=worker,
            redistributed=bool(plan.increases),
            freed_amount=plan.freed_amount,
            allocated_total=plan.allocated_total,
            remaining_budget=plan.remaining_budget,
        )
        logger.info(
            "worker_removed",
            extra={
                "job_id": str(job.id),
                "worker_id": str(worker),
                "freed_amount": str(plan.freed_amount),
                "redistributed": bool(plan.increases),
            },
        )
        return job.to_dto()
