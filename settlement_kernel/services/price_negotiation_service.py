"""
PriceNegotiationService -- client-initiated changes to a job's budget.

Responsibility:
    Increases that need a new payment (the job is paused until the
    budget_increase payment is approved), increases already covered by an
    earlier payment, and decreases that every active worker must accept.

Architecture position:
    Kernel > Services -- imperative shell over ``domain.pricing``.

Invariants enforced:
    - A pending price is never applied before its payment is approved.
    - Commission on an increase is charged on the delta above the highest
      price already paid, never on the full new price.
    - A decrease is applied only on unanimous acceptance; one rejection
      clears the proposal.
    - Increase and decrease proposals are mutually exclusive.
    - price never drops below the allocated total.

Failure modes:
    - PermissionDeniedError when the actor is not the job's client (or,
      for responses, not a participating worker).
    - PriceChangePendingError while another change is pending.
    - ValidationError / InvalidAmountError on bad input.
    - BudgetExceededError when a decrease would go below allocations.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.types import ZERO, round_money, to_decimal
from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.contract_lifecycle import ACTIVE_CONTRACT_STATUSES
from settlement_kernel.domain.dtos import (
    CLOSED_JOB_STATUSES,
    JobStatus,
    PriceChangeResult,
)
from settlement_kernel.domain.payment_lifecycle import (
    AWAITING_DECISION,
    PaymentType,
)
from settlement_kernel.domain.policy import SettlementPolicy
from settlement_kernel.domain.pricing import (
    DecreaseOutcome,
    PriceChangeKind,
    decrease_credit,
    decrease_outcome,
    max_paid_price,
    plan_price_change,
)
from settlement_kernel.exceptions import (
    BudgetExceededError,
    InvalidAmountError,
    InvalidStateTransitionError,
    JobNotFoundError,
    PermissionDeniedError,
    PriceChangePendingError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.contract import Contract
from settlement_kernel.models.job import Job, JobPriceChange, PriceDecreaseResponse
from settlement_kernel.models.payment import Payment
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.balance_service import BalanceService
from settlement_kernel.services.base import BaseService, parse_uuid
from settlement_kernel.services.commission_service import CommissionService
from settlement_kernel.services.outbox_service import OutboxWriter

logger = get_logger("services.price_negotiation")

BUDGET_CHANGE_CANCELLED = "budget change cancelled"


class PriceNegotiationService(BaseService[Job]):
    """
    Contract:
        Every operation returns a ``PriceChangeResult``: the job as
        written, whether the price was applied, and what it is waiting for
        (a payment, or the listed workers).

    Non-goals:
        - Does NOT reprice contracts; the job budget and the per-worker
          allocation are changed separately by the client.
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
        self._commission = commission or CommissionService(policy=self._policy)

    # Helpers

    def _load_for_client(self, job_id: object, actor_id: UUID, action: str) -> Job:
        job = self._lock(Job, job_id, JobNotFoundError, field="job_id")
        if actor_id != job.client_id:
            raise PermissionDeniedError("Job", str(job.id), str(actor_id), action)
        return job

    def _participants(self, job: Job) -> list[UUID]:
        """Doers holding an active contract on the job."""
        rows = self.session.execute(
            select(Contract.doer_id)
            .where(
                Contract.job_id == job.id,
                Contract.status.in_(list(ACTIVE_CONTRACT_STATUSES)),
            )
            .distinct()
        ).scalars()
        return list(rows)

    def _payments(self):
        # Local import: PaymentService calls back into this service when a
        # budget_increase payment is approved.
        from settlement_kernel.services.payment_service import PaymentService

        return PaymentService(self.session, self._auditor, self._outbox, self._clock, self._policy)

    def _validate_request(self, job: Job, new_price: object, reason: str | None) -> Decimal:
        status = JobStatus(job.status)
        if status in CLOSED_JOB_STATUSES:
            raise PriceChangePendingError(str(job.id), status.value, "job is closed")
        if job.has_pending_increase:
            raise PriceChangePendingError(str(job.id), status.value, "budget increase awaiting payment")
        if job.has_pending_decrease:
            raise PriceChangePendingError(str(job.id), status.value, "price decrease awaiting workers")

        minimum = self.policy.price_change_reason_min_length
        if len((reason or "").strip()) < minimum:
            raise ValidationError(
                f"Reason must be at least {minimum} characters", field="reason"
            )
        try:
            price = round_money(to_decimal(new_price))
        except ValueError as e:
            raise InvalidAmountError("new_price", new_price, "not a number") from e
        if price <= ZERO:
            raise InvalidAmountError("new_price", new_price, "must be positive")
        return price

    def _apply_price(
        self,
        job: Job,
        new_price: Decimal,
        actor_id: UUID,
        reason: str,
        *,
        paid: bool,
    ) -> Decimal:
        """Write the new budget and its history row; returns the old price."""
        old_price = job.price
        ceiling = max_paid_price(job.original_price, old_price)
        job.original_price = max(ceiling, new_price) if paid else ceiling
        job.price = new_price
        job.remaining_budget = round_money(new_price - job.allocated_total)
        job.updated_by_id = actor_id
        job.price_changes.append(
            JobPriceChange(
                seq=len(job.price_changes) + 1,
                old_price=old_price,
                new_price=new_price,
                actor_id=actor_id,
                reason=reason,
                occurred_at=self._now(),
            )
        )
        self._record(
            "Job",
            job.id,
            AuditAction.PRICE_CHANGED,
            actor_id,
            before=old_price,
            after=new_price,
            reason=reason,
            notify=[job.client_id, *job.selected_worker_ids],
            original_price=job.original_price,
        )
        logger.info(
            "job_price_changed",
            extra={
                "job_id": str(job.id),
                "old_price": str(old_price),
                "new_price": str(new_price),
            },
        )
        return old_price

    def _restore_status(self, job: Job) -> None:
        job.status = job.previous_status or JobStatus.OPEN
        job.previous_status = None
        job.pending_new_price = None
        job.pending_payment_amount = None

    def _clear_decrease(self, job: Job) -> None:
        job.pending_price_decrease = None
        job.pending_price_decrease_reason = None
        job.pending_price_decrease_at = None
        job.decrease_responses.clear()

    # Increase

    def request_price_change(
        self,
        job_id: object,
        new_price: object,
        reason: str | None,
        *,
        actor_id: UUID,
    ) -> PriceChangeResult:
        """
        Ask for a new job budget.

        - Above the highest price already paid: the job pauses and a
          budget_increase payment for the delta plus its commission is
          created.
        - Above the current price but already paid for: applied at once.
        - Below the current price: becomes a decrease proposal.

        Raises:
            PriceChangePendingError: Another change is pending or job closed.
            ValidationError: Reason shorter than the configured minimum, or
                the price is unchanged.
        """
        job = self._load_for_client(job_id, actor_id, "request_price_change")
        price = self._validate_request(job, new_price, reason)
        reason = (reason or "").strip()

        profile = self._commission.profile_for(job.client_id)
        plan = plan_price_change(job.price, job.original_price, price, profile, self.policy)

        if plan.kind is PriceChangeKind.UNCHANGED:
            raise ValidationError("New price equals the current price", field="new_price")
        if plan.kind is PriceChangeKind.DECREASE:
            return self._propose_decrease(job, price, reason, actor_id)
        if plan.kind is PriceChangeKind.INCREASE_ALREADY_PAID:
            self._apply_price(job, price, actor_id, reason, paid=False)
            return PriceChangeResult(job=job.to_dto(), applied=True)

        before = JobStatus(job.status)
        job.original_price = plan.max_paid_price
        job.pending_new_price = price
        job.pending_payment_amount = plan.amount_required
        job.previous_status = before
        job.status = JobStatus.PAUSED
        job.updated_by_id = actor_id
        self._flush("Job", job.id)

        payment = self._payments().create_payment(
            PaymentType.BUDGET_INCREASE,
            plan.amount_required,
            job.client_id,
            actor_id=actor_id,
            job_id=job.id,
            commission=plan.commission,
            currency=job.currency,
        )
        self._record(
            "Job",
            job.id,
            AuditAction.PRICE_INCREASE_REQUESTED,
            actor_id,
            before=before,
            after=JobStatus.PAUSED,
            reason=reason,
            notify=[job.client_id],
            current_price=plan.current_price,
            new_price=price,
            price_difference=plan.price_difference,
            commission=plan.commission,
            amount_required=plan.amount_required,
            payment_id=payment.id,
        )
        logger.info(
            "price_increase_requested",
            extra={
                "job_id": str(job.id),
                "price_difference": str(plan.price_difference),
                "commission": str(plan.commission),
                "amount_required": str(plan.amount_required),
            },
        )
        return PriceChangeResult(job=job.to_dto(), applied=False, awaiting_payment=payment)

    def apply_approved_budget_increase(self, payment: Payment, actor_id: UUID) -> None:
        """Apply the pending price once its budget_increase payment is approved."""
        if payment.job_id is None:
            return
        job = self._lock(Job, payment.job_id, JobNotFoundError, field="job_id")
        if job.pending_new_price is None:
            logger.warning(
                "budget_increase_without_pending_price",
                extra={"job_id": str(job.id), "payment_id": str(payment.id)},
            )
            return

        before = JobStatus(job.status)
        self._apply_price(job, job.pending_new_price, actor_id, "budget increase paid", paid=True)
        self._restore_status(job)
        self._record(
            "Job",
            job.id,
            AuditAction.JOB_STATUS_CHANGED,
            actor_id,
            before=before,
            after=job.status,
            reason="budget increase paid",
            payment_id=payment.id,
        )

    def cancel_budget_change(self, job_id: object, *, actor_id: UUID) -> PriceChangeResult:
        """Drop a pending increase; its unpaid payment is rejected."""
        job = self._load_for_client(job_id, actor_id, "cancel_budget_change")
        before = JobStatus(job.status)
        if not job.has_pending_increase:
            raise InvalidStateTransitionError(
                "Job", str(job.id), before.value, "cancel_budget_change"
            )

        pending = self.session.execute(
            select(Payment.id).where(
                Payment.job_id == job.id,
                Payment.payment_type == PaymentType.BUDGET_INCREASE,
                Payment.status.in_(list(AWAITING_DECISION)),
            )
        ).scalars().all()
        payments = self._payments()
        for payment_id in pending:
            payments.reject_payment(payment_id, BUDGET_CHANGE_CANCELLED, actor_id=actor_id)

        cancelled_price = job.pending_new_price
        self._restore_status(job)
        job.updated_by_id = actor_id
        self._record(
            "Job",
            job.id,
            AuditAction.BUDGET_CHANGE_CANCELLED,
            actor_id,
            before=before,
            after=job.status,
            reason=BUDGET_CHANGE_CANCELLED,
            notify=[job.client_id],
            cancelled_price=cancelled_price,
            rejected_payments=list(pending),
        )
        return PriceChangeResult(job=job.to_dto(), applied=False)

    # Decrease

    def propose_price_decrease(
        self,
        job_id: object,
        new_price: object,
        reason: str | None,
        *,
        actor_id: UUID,
    ) -> PriceChangeResult:
        """Propose a lower budget to every worker with an active contract."""
        job = self._load_for_client(job_id, actor_id, "propose_price_decrease")
        price = self._validate_request(job, new_price, reason)
        if price >= job.price:
            raise InvalidAmountError("new_price", new_price, "must be below the current price")
        return self._propose_decrease(job, price, (reason or "").strip(), actor_id)

    def _propose_decrease(
        self, job: Job, price: Decimal, reason: str, actor_id: UUID
    ) -> PriceChangeResult:
        if price < job.allocated_total:
            raise BudgetExceededError(str(job.id), job.allocated_total, price)

        participants = self._participants(job)
        if not participants:
            self._apply_decrease(job, price, reason, actor_id)
            return PriceChangeResult(job=job.to_dto(), applied=True)

        job.decrease_responses.clear()
        job.pending_price_decrease = price
        job.pending_price_decrease_reason = reason
        job.pending_price_decrease_at = self._now()
        job.updated_by_id = actor_id
        self._record(
            "Job",
            job.id,
            AuditAction.PRICE_DECREASE_PROPOSED,
            actor_id,
            before=job.price,
            after=price,
            reason=reason,
            notify=participants,
            participants=participants,
        )
        return PriceChangeResult(
            job=job.to_dto(), applied=False, awaiting_workers=tuple(participants)
        )

    def _apply_decrease(self, job: Job, price: Decimal, reason: str, actor_id: UUID) -> None:
        old_price = self._apply_price(job, price, actor_id, reason, paid=False)
        self._clear_decrease(job)
        if job.publication_paid:
            BalanceService(
                self.session, self._auditor, self._outbox, self._clock, self._policy
            ).credit(
                job.client_id,
                decrease_credit(old_price, price),
                job.currency,
                actor_id=actor_id,
                description=f"Budget reduced on job {job.id}",
                job_id=job.id,
            )

    def respond_to_price_decrease(
        self,
        job_id: object,
        worker_id: object,
        accept: bool,
    ) -> PriceChangeResult:
        """
        Record one worker's answer.

        A rejection cancels the proposal for everyone; the last acceptance
        applies it (with a balance credit to the client if the job was
        already paid for).
        """
        job = self._lock(Job, job_id, JobNotFoundError, field="job_id")
        worker = parse_uuid(worker_id, "worker_id")
        status = JobStatus(job.status)
        if not job.has_pending_decrease:
            raise InvalidStateTransitionError(
                "Job", str(job.id), status.value, "respond_to_price_decrease"
            )
        participants = self._participants(job)
        if worker not in participants:
            raise PermissionDeniedError(
                "Job", str(job.id), str(worker), "respond_to_price_decrease"
            )
        if any(r.worker_id == worker for r in job.decrease_responses):
            raise InvalidStateTransitionError(
                "Job",
                str(job.id),
                status.value,
                "respond_to_price_decrease",
                message=f"Worker {worker} already responded on job {job.id}",
            )

        job.decrease_responses.append(
            PriceDecreaseResponse(worker_id=worker, accepted=bool(accept), responded_at=self._now())
        )
        accepted = [r.worker_id for r in job.decrease_responses if r.accepted]
        rejected = [r.worker_id for r in job.decrease_responses if not r.accepted]
        outcome = decrease_outcome(participants, accepted, rejected)
        proposed = job.pending_price_decrease
        reason = job.pending_price_decrease_reason or "price decrease accepted"

        self._record(
            "Job",
            job.id,
            AuditAction.PRICE_DECREASE_RESPONDED,
            worker,
            before=job.price,
            after=proposed,
            notify=[job.client_id],
            accepted=bool(accept),
            outcome=outcome,
        )
        if outcome is DecreaseOutcome.CANCELLED:
            self._clear_decrease(job)
            job.updated_by_id = worker
            self._flush("Job", job.id)
        elif outcome is DecreaseOutcome.APPLIED:
            self._apply_decrease(job, proposed, reason, worker)

        logger.info(
            "price_decrease_response",
            extra={
                "job_id": str(job.id),
                "worker_id": str(worker),
                "accepted": bool(accept),
                "outcome": outcome.value,
            },
        )
        waiting = tuple(p for p in participants if p not in accepted)
        return PriceChangeResult(
            job=job.to_dto(),
            applied=outcome is DecreaseOutcome.APPLIED,
            awaiting_workers=waiting if outcome is DecreaseOutcome.PENDING else (),
        )

    def cancel_price_decrease(self, job_id: object, *, actor_id: UUID) -> PriceChangeResult:
        job = self._load_for_client(job_id, actor_id, "cancel_price_decrease")
        if not job.has_pending_decrease:
            raise InvalidStateTransitionError(
                "Job", str(job.id), JobStatus(job.status).value, "cancel_price_decrease"
            )
        proposed = job.pending_price_decrease
        self._clear_decrease(job)
        job.updated_by_id = actor_id
        self._record(
            "Job",
            job.id,
            AuditAction.PRICE_DECREASE_CANCELLED,
            actor_id,
            before=proposed,
            after=job.price,
            notify=self._participants(job),
        )
        return PriceChangeResult(job=job.to_dto(), applied=False)
