"""
ContractService -- execution lifecycle of a contract.

Responsibility:
    Terms acceptance, the pairing handshake, completion confirmation,
    cancellation, one-shot extension, and repricing with history.  The
    escrow gate is applied here too (``start_if_ready``), on behalf of
    ``PaymentService.verify_escrow``.

Architecture position:
    Kernel > Services -- imperative shell over
    ``domain.contract_lifecycle`` and ``domain.pairing``.

Invariants enforced:
    - total_price = price + commission on every price write, and every
      price change appends a ContractPriceModification row.
    - ``accepted -> in_progress`` needs both terms plus either both
      pairing confirmations or escrow held.  The two gates are
      independent; whichever is satisfied first starts the contract.
    - Completion only when both parties confirmed.
    - A contract is extended at most once.

Failure modes:
    - PermissionDeniedError when the actor is not the right party.
    - AlreadyAcceptedError / AlreadyConfirmedError on repeated actions.
    - PairingError and its subclasses for the handshake.
    - CancellationNotAllowedError after work started or inside the
      notice window.
    - ExtensionNotAllowedError for a second or out-of-state extension.
"""

from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.db.types import ZERO, round_money, to_decimal
from settlement_kernel.domain.clock import Clock
from settlement_kernel.domain.contract_lifecycle import (
    ACTIVE_CONTRACT_STATUSES,
    ContractAction,
    ContractPaymentStatus,
    ContractStatus,
    EscrowStatus,
    check_cancellation,
    completion_payment_status,
    start_gate_satisfied,
    transition_contract,
)
from settlement_kernel.domain.dtos import CLOSED_JOB_STATUSES, ContractInfo
from settlement_kernel.domain.pairing import (
    codes_match,
    generate_pairing_code,
    is_expired,
    pairing_expiry,
    pairing_window_open,
)
from settlement_kernel.domain.policy import SettlementPolicy
from settlement_kernel.exceptions import (
    AlreadyAcceptedError,
    AlreadyConfirmedError,
    ContractNotFoundError,
    ExtensionNotAllowedError,
    InvalidAmountError,
    InvalidStateTransitionError,
    JobNotFoundError,
    MaxWorkersReachedError,
    PairingCodeExpiredError,
    PairingCodeMismatchError,
    PairingError,
    PermissionDeniedError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.contract import (
    Contract,
    ContractExtension,
    ContractPriceModification,
)
from settlement_kernel.models.job import Job, JobWorker
from settlement_kernel.services.auditor_service import AuditorService
from settlement_kernel.services.base import (
    SYSTEM_ACTOR_ID,
    BaseService,
    parse_uuid,
    require_reason,
)
from settlement_kernel.services.commission_service import CommissionService
from settlement_kernel.services.outbox_service import OutboxWriter

logger = get_logger("services.contract")

EXTENDABLE_STATUSES = (ContractStatus.ACCEPTED, ContractStatus.IN_PROGRESS)


class ContractService(BaseService[Contract]):
    """
    Contract:
        Each operation loads the contract under lock, validates the actor
        and the stored status, writes, audits and queues notifications.

    Non-goals:
        - Does NOT move money itself.  Payment custody is PaymentService's
          (including the refund on cancellation); dispute payouts are
          DisputeService's.
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

    def _load(self, contract_id: object) -> Contract:
        return self._lock(Contract, contract_id, ContractNotFoundError, field="contract_id")

    @staticmethod
    def _require_party(contract: Contract, actor_id: UUID, action: str) -> str:
        party = contract.party_of(actor_id)
        if party is None:
            raise PermissionDeniedError("Contract", str(contract.id), str(actor_id), action)
        return party

    @staticmethod
    def _require_role(contract: Contract, actor_id: UUID, role: str, action: str) -> None:
        if contract.party_of(actor_id) != role:
            raise PermissionDeniedError("Contract", str(contract.id), str(actor_id), action)

    @staticmethod
    def _parties(contract: Contract) -> list[UUID]:
        return [contract.client_id, contract.doer_id]

    def get_contract(self, contract_id: object) -> ContractInfo:
        row_id = parse_uuid(contract_id, "contract_id")
        contract = self.session.get(Contract, row_id)
        if contract is None:
            raise ContractNotFoundError(str(row_id))
        return contract.to_dto()

    # Creation and terms

    def create_contract(
        self,
        job_id: object,
        doer_id: object,
        price: object,
        *,
        actor_id: UUID,
        start_date: datetime | None = None,
        end_date: datetime | None = None,
    ) -> ContractInfo:
        """
        Create a pending contract for a selected doer.

        Commission is computed for the client on the contract price.

        Raises:
            PermissionDeniedError: Actor is not the job's client.
            MaxWorkersReachedError: Job already has ``max_workers`` workers.
        """
        job = self._lock(Job, job_id, JobNotFoundError, field="job_id")
        doer = parse_uuid(doer_id, "doer_id")
        if actor_id != job.client_id:
            raise PermissionDeniedError("Job", str(job.id), str(actor_id), "create_contract")
        if doer == job.client_id:
            raise ValidationError("A client cannot contract themselves", field="doer_id")
        if job.status in CLOSED_JOB_STATUSES:
            raise InvalidStateTransitionError(
                "Job", str(job.id), job.status.value, "create_contract"
            )
        try:
            value = round_money(to_decimal(price))
        except ValueError as e:
            raise InvalidAmountError("price", price, "not a number") from e
        if value <= ZERO:
            raise InvalidAmountError("price", price, "must be positive")
        if start_date is not None and end_date is not None and end_date < start_date:
            raise ValidationError("end_date is before start_date", field="end_date")

        existing = self.session.execute(
            select(Contract).where(
                Contract.job_id == job.id,
                Contract.doer_id == doer,
                Contract.status.in_(list(ACTIVE_CONTRACT_STATUSES)),
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise InvalidStateTransitionError(
                "Contract",
                str(existing.id),
                existing.status.value,
                "create_contract",
                message=f"Doer {doer} already has active contract {existing.id} on job {job.id}",
            )

        if doer not in job.selected_worker_ids:
            if len(job.workers) >= min(job.max_workers, self.policy.max_workers):
                raise MaxWorkersReachedError(str(job.id), job.max_workers)
            job.workers.append(JobWorker(worker_id=doer, selected_at=self._now()))

        commission = self._commission.commission_for(job.client_id, value)
        contract = Contract(
            job_id=job.id,
            client_id=job.client_id,
            doer_id=doer,
            currency=job.currency,
            status=ContractStatus.PENDING,
            payment_status=ContractPaymentStatus.PENDING,
            escrow_status=EscrowStatus.PENDING,
            start_date=start_date,
            end_date=end_date,
            created_by_id=actor_id,
        )
        contract.set_price(value, commission)
        self.session.add(contract)
        self._flush("Contract", None)
        self._record(
            "Contract",
            contract.id,
            AuditAction.CONTRACT_CREATED,
            actor_id,
            after=ContractStatus.PENDING,
            notify=self._parties(contract),
            job_id=job.id,
            price=contract.price,
            commission=contract.commission,
            total_price=contract.total_price,
        )
        logger.info(
            "contract_created",
            extra={
                "contract_id": str(contract.id),
                "job_id": str(job.id),
                "price": str(contract.price),
                "commission": str(contract.commission),
            },
        )
        return contract.to_dto()

    def accept_terms(self, contract_id: object, actor_id: UUID) -> ContractInfo:
        """Record one party's acceptance; both make the contract accepted."""
        contract = self._load(contract_id)
        party = self._require_party(contract, actor_id, "accept_terms")
        status = ContractStatus(contract.status)
        if status is not ContractStatus.PENDING:
            raise InvalidStateTransitionError(
                "Contract", str(contract.id), status.value, "accept_terms"
            )

        if party == "client":
            if contract.terms_accepted_by_client:
                raise AlreadyAcceptedError(str(contract.id), party)
            contract.terms_accepted_by_client = True
        else:
            if contract.terms_accepted_by_doer:
                raise AlreadyAcceptedError(str(contract.id), party)
            contract.terms_accepted_by_doer = True
        contract.updated_by_id = actor_id

        after = status
        if contract.terms_accepted_by_client and contract.terms_accepted_by_doer:
            transition = transition_contract(
                status, ContractAction.ACCEPT, contract_id=contract.id
            )
            after = transition.to_status
            contract.status = after
            contract.terms_accepted_at = self._now()
            if contract.payment_status == ContractPaymentStatus.PENDING:
                contract.payment_status = ContractPaymentStatus.HELD

        self._record(
            "Contract",
            contract.id,
            AuditAction.TERMS_ACCEPTED,
            actor_id,
            before=status,
            after=after,
            notify=self._parties(contract),
            party=party,
        )
        self.start_if_ready(contract, actor_id, reason="terms accepted with escrow held")
        return contract.to_dto()

    def reject_contract(
        self, contract_id: object, actor_id: UUID, reason: str | None
    ) -> ContractInfo:
        """The doer declines a pending contract."""
        reason = require_reason(reason, "reject_contract")
        contract = self._load(contract_id)
        self._require_role(contract, actor_id, "doer", "reject_contract")
        transition = transition_contract(
            contract.status, ContractAction.REJECT, contract_id=contract.id
        )

        contract.status = transition.to_status
        contract.cancellation_reason = reason
        contract.cancelled_by_id = actor_id
        contract.cancelled_at = self._now()
        contract.updated_by_id = actor_id
        self._record(
            "Contract",
            contract.id,
            AuditAction.CONTRACT_REJECTED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=reason,
            notify=self._parties(contract),
        )
        return contract.to_dto()

    # Start gates

    def start_if_ready(
        self, contract: Contract, actor_id: UUID, reason: str, *, notify: bool = True
    ) -> bool:
        """Start an accepted contract whose start gate is satisfied."""
        if contract.status != ContractStatus.ACCEPTED:
            return False
        if not start_gate_satisfied(
            contract.terms_accepted_by_client,
            contract.terms_accepted_by_doer,
            contract.client_pairing_confirmed,
            contract.doer_pairing_confirmed,
            contract.escrow_status,
        ):
            return False

        transition = transition_contract(
            contract.status, ContractAction.START, contract_id=contract.id
        )
        contract.status = transition.to_status
        contract.actual_start_date = self._now()
        contract.updated_by_id = actor_id
        self._record(
            "Contract",
            contract.id,
            AuditAction.CONTRACT_STARTED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=reason,
            notify=self._parties(contract) if notify else (),
        )
        logger.info(
            "contract_started",
            extra={"contract_id": str(contract.id), "gate": reason},
        )
        return True

    def generate_pairing_code(self, contract_id: object, actor_id: UUID) -> ContractInfo:
        """
        Issue the shared start code.

        Available once both parties accepted the terms and the start date
        is within ``pairing_window_hours``.  A new code replaces one that
        nobody confirmed yet, or one that expired.
        """
        contract = self._load(contract_id)
        self._require_party(contract, actor_id, "generate_pairing_code")
        status = ContractStatus(contract.status)
        if status is not ContractStatus.ACCEPTED:
            raise PairingError(str(contract.id), status.value, "terms not mutually accepted")

        now = self._now()
        if not pairing_window_open(contract.start_date, now, self.policy):
            raise PairingError(
                str(contract.id),
                status.value,
                f"code available from {self.policy.pairing_window_hours}h before start date",
            )
        partly_confirmed = contract.client_pairing_confirmed or contract.doer_pairing_confirmed
        if partly_confirmed and not is_expired(contract.pairing_expires_at, now):
            raise PairingError(str(contract.id), status.value, "pairing already in progress")

        contract.pairing_code = generate_pairing_code(self.policy)
        contract.pairing_generated_at = now
        contract.pairing_expires_at = pairing_expiry(now, self.policy)
        contract.client_pairing_confirmed = False
        contract.client_pairing_confirmed_at = None
        contract.doer_pairing_confirmed = False
        contract.doer_pairing_confirmed_at = None
        contract.updated_by_id = actor_id
        self._record(
            "Contract",
            contract.id,
            AuditAction.PAIRING_CODE_GENERATED,
            actor_id,
            before=status,
            after=status,
            notify=self._parties(contract),
            expires_at=contract.pairing_expires_at,
        )
        return contract.to_dto()

    def confirm_pairing(
        self, contract_id: object, actor_id: UUID, code: str | None
    ) -> ContractInfo:
        """Record one party's pairing confirmation; both start the contract."""
        contract = self._load(contract_id)
        party = self._require_party(contract, actor_id, "confirm_pairing")
        status = ContractStatus(contract.status)
        if status is not ContractStatus.ACCEPTED:
            raise PairingError(str(contract.id), status.value, "contract is not awaiting start")
        if contract.pairing_code is None:
            raise PairingError(str(contract.id), status.value, "no pairing code generated")
        if is_expired(contract.pairing_expires_at, self._now()):
            raise PairingCodeExpiredError(str(contract.id), status.value)
        if not codes_match(contract.pairing_code, code):
            logger.warning(
                "pairing_code_mismatch",
                extra={"contract_id": str(contract.id), "party": party},
            )
            raise PairingCodeMismatchError(str(contract.id), status.value)

        now = self._now()
        if party == "client":
            if contract.client_pairing_confirmed:
                raise AlreadyConfirmedError(str(contract.id), party, "pairing")
            contract.client_pairing_confirmed = True
            contract.client_pairing_confirmed_at = now
        else:
            if contract.doer_pairing_confirmed:
                raise AlreadyConfirmedError(str(contract.id), party, "pairing")
            contract.doer_pairing_confirmed = True
            contract.doer_pairing_confirmed_at = now
        contract.updated_by_id = actor_id

        self._record(
            "Contract",
            contract.id,
            AuditAction.PAIRING_CONFIRMED,
            actor_id,
            before=status,
            after=status,
            notify=[contract.counterparty_of(actor_id)],
            party=party,
        )
        self.start_if_ready(contract, actor_id, reason="pairing confirmed")
        return contract.to_dto()

    # Completion

    def confirm_completion(self, contract_id: object, actor_id: UUID) -> ContractInfo:
        """One party confirms the work is done; both complete the contract."""
        contract = self._load(contract_id)
        party = self._require_party(contract, actor_id, "confirm_completion")
        status = ContractStatus(contract.status)
        if status not in (ContractStatus.IN_PROGRESS, ContractStatus.AWAITING_CONFIRMATION):
            raise InvalidStateTransitionError(
                "Contract", str(contract.id), status.value, "confirm_completion"
            )

        now = self._now()
        if party == "client":
            if contract.client_confirmed:
                raise AlreadyConfirmedError(str(contract.id), party, "completion")
            contract.client_confirmed = True
            contract.client_confirmed_at = now
        else:
            if contract.doer_confirmed:
                raise AlreadyConfirmedError(str(contract.id), party, "completion")
            contract.doer_confirmed = True
            contract.doer_confirmed_at = now
        contract.updated_by_id = actor_id

        if contract.client_confirmed and contract.doer_confirmed:
            self._complete(contract, actor_id, reason="both parties confirmed")
        else:
            transition = transition_contract(
                status, ContractAction.AWAIT_CONFIRMATION, contract_id=contract.id
            )
            contract.status = transition.to_status
            if contract.awaiting_confirmation_at is None:
                contract.awaiting_confirmation_at = now
            self._record(
                "Contract",
                contract.id,
                AuditAction.COMPLETION_CONFIRMED,
                actor_id,
                before=transition.from_status,
                after=transition.to_status,
                notify=[contract.counterparty_of(actor_id)],
                party=party,
            )
        return contract.to_dto()

    def _complete(self, contract: Contract, actor_id: UUID, reason: str) -> None:
        transition = transition_contract(
            contract.status, ContractAction.COMPLETE, contract_id=contract.id
        )
        contract.status = transition.to_status
        contract.actual_end_date = self._now()
        contract.payment_status = completion_payment_status(contract.escrow_status)
        self._record(
            "Contract",
            contract.id,
            AuditAction.CONTRACT_COMPLETED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=reason,
            notify=self._parties(contract),
            payment_status=contract.payment_status,
        )
        logger.info(
            "contract_completed",
            extra={
                "contract_id": str(contract.id),
                "payment_status": ContractPaymentStatus(contract.payment_status).value,
            },
        )

    def auto_confirm_stale(
        self, as_of: datetime | None = None, *, actor_id: UUID = SYSTEM_ACTOR_ID
    ) -> list[ContractInfo]:
        """
        Complete contracts left in ``awaiting_confirmation`` too long.

        Batch operation: the missing party's confirmation is forced after
        ``auto_confirm_after_hours``.
        """
        now = as_of or self._now()
        cutoff = now - timedelta(hours=self.policy.auto_confirm_after_hours)
        stale = self.session.execute(
            select(Contract)
            .where(
                Contract.status == ContractStatus.AWAITING_CONFIRMATION,
                Contract.awaiting_confirmation_at <= cutoff,
            )
            .order_by(Contract.awaiting_confirmation_at)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

        completed = []
        for contract in stale:
            if not contract.client_confirmed:
                contract.client_confirmed = True
                contract.client_confirmed_at = now
            if not contract.doer_confirmed:
                contract.doer_confirmed = True
                contract.doer_confirmed_at = now
            contract.updated_by_id = actor_id
            self._complete(contract, actor_id, reason="auto-confirmed")
            completed.append(contract.to_dto())

        if completed:
            logger.info("contracts_auto_confirmed", extra={"count": len(completed)})
        return completed

    # Cancellation

    def cancel_contract(
        self, contract_id: object, actor_id: UUID, reason: str | None
    ) -> ContractInfo:
        """
        A party cancels before work started.

        Funds already captured for the contract are refunded (minus
        commission) through the outbox; the contract is only marked
        ``refunded`` when that happens.

        Raises:
            CancellationNotAllowedError: Work started, or within the notice
                window before ``start_date``.
        """
        reason = require_reason(reason, "cancel_contract")
        contract = self._load(contract_id)
        self._require_party(contract, actor_id, "cancel_contract")
        transition = check_cancellation(
            contract.status,
            contract.start_date,
            self._now(),
            self.policy.cancellation_notice_hours,
            contract_id=contract.id,
        )
        self._cancel(contract, actor_id, reason, transition.from_status, transition.to_status)
        return contract.to_dto()

    def _cancel(
        self,
        contract: Contract,
        actor_id: UUID,
        reason: str,
        before: ContractStatus,
        after: ContractStatus,
    ) -> None:
        contract.status = after
        contract.cancellation_reason = reason
        contract.cancelled_by_id = actor_id
        contract.cancelled_at = self._now()
        contract.updated_by_id = actor_id
        contract.clear_extension_request()

        # Local import: PaymentService starts contracts through us.
        from settlement_kernel.services.payment_service import PaymentService

        refunded = PaymentService(
            self.session, self._auditor, self._outbox, self._clock, self._policy
        ).refund_for_cancellation(contract, actor_id=actor_id, reason=reason)
        if refunded is not None:
            contract.payment_status = ContractPaymentStatus.REFUNDED
            contract.escrow_status = EscrowStatus.REFUNDED
        self._record(
            "Contract",
            contract.id,
            AuditAction.CONTRACT_CANCELLED,
            actor_id,
            before=before,
            after=after,
            reason=reason,
            notify=self._parties(contract),
            payment_status=contract.payment_status,
            refund_payment_id=refunded.id if refunded is not None else None,
        )
        logger.info(
            "contract_cancelled",
            extra={
                "contract_id": str(contract.id),
                "reason": reason,
                "refunded": refunded is not None,
            },
        )

    def cancel_for_removal(self, contract: Contract, actor_id: UUID, reason: str) -> None:
        """Cancel a worker's active contract when the client removes them."""
        transition = transition_contract(
            contract.status, ContractAction.REMOVE_WORKER, contract_id=contract.id
        )
        self._cancel(contract, actor_id, reason, transition.from_status, transition.to_status)

    # Pricing

    def reprice(
        self,
        contract: Contract,
        new_price: Decimal,
        actor_id: UUID,
        reason: str,
        *,
        notify: bool = True,
    ) -> None:
        """Set a new price, recompute commission and append the history row."""
        old_price = contract.price
        commission = self._commission.commission_for(contract.client_id, new_price)
        contract.set_price(new_price, commission)
        contract.updated_by_id = actor_id
        contract.price_modifications.append(
            ContractPriceModification(
                seq=len(contract.price_modifications) + 1,
                old_price=old_price,
                new_price=contract.price,
                actor_id=actor_id,
                reason=reason,
                occurred_at=self._now(),
            )
        )
        self._record(
            "Contract",
            contract.id,
            AuditAction.PRICE_CHANGED,
            actor_id,
            before=old_price,
            after=contract.price,
            reason=reason,
            notify=self._parties(contract) if notify else (),
            commission=contract.commission,
            total_price=contract.total_price,
        )

    # Extension

    def request_extension(
        self,
        contract_id: object,
        actor_id: UUID,
        extension_days: int,
        extension_amount: object = ZERO,
        notes: str | None = None,
    ) -> ContractInfo:
        """The client proposes a later end date and optional extra payment."""
        contract = self._load(contract_id)
        self._require_role(contract, actor_id, "client", "request_extension")
        status = ContractStatus(contract.status)
        if status not in EXTENDABLE_STATUSES:
            raise ExtensionNotAllowedError(str(contract.id), status.value, "contract not running")
        if contract.has_been_extended:
            raise ExtensionNotAllowedError(str(contract.id), status.value, "already extended once")
        if contract.extension_requested_at is not None:
            raise ExtensionNotAllowedError(str(contract.id), status.value, "request already pending")
        if contract.end_date is None:
            raise ExtensionNotAllowedError(str(contract.id), status.value, "contract has no end date")
        if not isinstance(extension_days, int) or extension_days < 1:
            raise ValidationError("extension_days must be at least 1", field="extension_days")
        try:
            amount = round_money(to_decimal(extension_amount or ZERO))
        except ValueError as e:
            raise InvalidAmountError("extension_amount", extension_amount, "not a number") from e
        if amount < ZERO:
            raise InvalidAmountError("extension_amount", extension_amount, "must not be negative")

        now = self._now()
        contract.extension_requested_by_id = actor_id
        contract.extension_requested_at = now
        contract.extension_days = extension_days
        contract.extension_proposed_end_date = contract.end_date + timedelta(days=extension_days)
        contract.extension_amount = amount
        contract.extension_notes = notes
        contract.updated_by_id = actor_id
        self._record(
            "Contract",
            contract.id,
            AuditAction.EXTENSION_REQUESTED,
            actor_id,
            before=status,
            after=status,
            reason=notes,
            notify=[contract.doer_id],
            extension_days=extension_days,
            extension_amount=amount,
            proposed_end_date=contract.extension_proposed_end_date,
        )
        return contract.to_dto()

    def approve_extension(self, contract_id: object, actor_id: UUID) -> ContractInfo:
        """The doer accepts the pending extension; dates and price move."""
        contract = self._load(contract_id)
        self._require_role(contract, actor_id, "doer", "approve_extension")
        status = ContractStatus(contract.status)
        if status not in EXTENDABLE_STATUSES:
            raise ExtensionNotAllowedError(str(contract.id), status.value, "contract not running")
        if contract.extension_requested_at is None:
            raise ExtensionNotAllowedError(str(contract.id), status.value, "no pending request")
        if contract.has_been_extended:
            raise ExtensionNotAllowedError(str(contract.id), status.value, "already extended once")

        now = self._now()
        previous_end = contract.end_date
        days = contract.extension_days or 0
        amount = contract.extension_amount or ZERO

        contract.original_end_date = contract.original_end_date or previous_end
        contract.end_date = contract.extension_proposed_end_date
        contract.extensions.append(
            ContractExtension(
                previous_end_date=previous_end,
                new_end_date=contract.end_date,
                extension_days=days,
                extension_amount=amount,
                requested_by_id=contract.extension_requested_by_id,
                approved_by_id=actor_id,
                approved_at=now,
            )
        )
        if amount > ZERO:
            self.reprice(
                contract, contract.price + amount, actor_id, "contract extension", notify=False
            )

        contract.has_been_extended = True
        contract.extension_count += 1
        contract.clear_extension_request()
        contract.updated_by_id = actor_id
        self._record(
            "Contract",
            contract.id,
            AuditAction.EXTENSION_APPROVED,
            actor_id,
            before=status,
            after=status,
            notify=self._parties(contract),
            extension_days=days,
            extension_amount=amount,
            previous_end_date=previous_end,
            new_end_date=contract.end_date,
        )
        return contract.to_dto()

    def reject_extension(
        self, contract_id: object, actor_id: UUID, reason: str | None
    ) -> ContractInfo:
        """The doer declines; the request fields are cleared, nothing else moves."""
        reason = require_reason(reason, "reject_extension")
        contract = self._load(contract_id)
        self._require_role(contract, actor_id, "doer", "reject_extension")
        status = ContractStatus(contract.status)
        if contract.extension_requested_at is None:
            raise ExtensionNotAllowedError(str(contract.id), status.value, "no pending request")

        days = contract.extension_days
        contract.clear_extension_request()
        contract.updated_by_id = actor_id
        self._record(
            "Contract",
            contract.id,
            AuditAction.EXTENSION_REJECTED,
            actor_id,
            before=status,
            after=status,
            reason=reason,
            notify=[contract.client_id],
            extension_days=days,
        )
        return contract.to_dto()
