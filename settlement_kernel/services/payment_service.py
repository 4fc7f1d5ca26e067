"""
PaymentService -- admin and provider actions on a payment's custody.

Responsibility:
    Drives a Payment through ``domain.payment_lifecycle`` and applies the
    consequences of each step to the linked job or contract: publication
    fee approval opens the job, contract payment approval marks the
    contract's funds held, escrow verification may start the contract,
    and so on.

Architecture position:
    Kernel > Services -- imperative shell.  The transition rules are pure
    (``transition_payment``); this module loads rows under lock, writes,
    audits and queues notifications.

Invariants enforced:
    - Preconditions are checked against the payment as loaded under
      ``SELECT ... FOR UPDATE``.  A retried approve/reject finds the row
      already decided and raises ``PaymentAlreadyProcessedError``; no side
      effect fires twice.
    - Escrow-type payments reach ``held_escrow`` only from ``verified``
      through the separate ``verify_escrow`` action.
    - At most one pending proof per payment.
    - Each transition writes one audit event and one notification per
      affected party.

Failure modes:
    - InvalidUUIDError, PaymentNotFoundError, ProofNotFoundError.
    - PaymentAlreadyProcessedError on approve/reject of a decided payment.
    - WrongPaymentTypeError when escrow actions target a non-escrow type.
    - InvalidStateTransitionError for any other illegal edge.
    - MissingReasonError when a rejection has no reason.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from settlement_kernel.db.types import ZERO, round_money, to_decimal, validate_currency
from settlement_kernel.domain.contract_lifecycle import (
    ContractPaymentStatus,
    EscrowStatus,
)
from settlement_kernel.domain.dispute_lifecycle import refundable_amount
from settlement_kernel.domain.dtos import JobStatus, PaymentInfo
from settlement_kernel.domain.payment_lifecycle import (
    ESCROW_PAYMENT_TYPES,
    FUNDED_PAYMENT_STATUSES,
    PaymentAction,
    PaymentStatus,
    PaymentType,
    ProofStatus,
    RefundStatus,
    transition_payment,
)
from settlement_kernel.exceptions import (
    ContractNotFoundError,
    InvalidAmountError,
    InvalidStateTransitionError,
    JobNotFoundError,
    PaymentAlreadyProcessedError,
    PaymentNotFoundError,
    PermissionDeniedError,
    ProofNotFoundError,
    ValidationError,
    WrongPaymentTypeError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.contract import Contract
from settlement_kernel.models.job import Job
from settlement_kernel.models.payment import Payment, PaymentProof
from settlement_kernel.services.base import BaseService, parse_uuid, require_reason
from settlement_kernel.services.contract_service import ContractService

logger = get_logger("services.payment")


class PaymentService(BaseService[Payment]):
    """
    Contract:
        Every public method takes the acting user explicitly and returns a
        ``PaymentInfo`` snapshot of the row after the write.

    Guarantees:
        - Flushes only; the caller commits.  Notifications are queued in
          the outbox and delivered after commit.

    Non-goals:
        - Does NOT call the payment provider.  Refunds are queued here
          (for disputes and cancellations) and executed by
          ``OutboxDispatcher``.
    """

    # Helpers

    def _load(self, payment_id: object) -> Payment:
        return self._lock(Payment, payment_id, PaymentNotFoundError, field="payment_id")

    def _linked_contract(self, payment: Payment) -> Contract | None:
        if payment.contract_id is None:
            return None
        return self._lock(Contract, payment.contract_id, ContractNotFoundError, "contract_id")

    def _linked_job(self, payment: Payment) -> Job | None:
        if payment.job_id is None:
            return None
        return self._lock(Job, payment.job_id, JobNotFoundError, "job_id")

    @staticmethod
    def _parties(payment: Payment, contract: Contract | None) -> list[UUID | None]:
        parties: list[UUID | None] = [payment.payer_id]
        if payment.is_escrow_type:
            parties.append(payment.recipient_id)
        if contract is not None:
            parties.extend([contract.client_id, contract.doer_id])
        return parties

    def load_for_update(self, payment_id: object) -> Payment:
        return self._load(payment_id)

    def get_payment(self, payment_id: object) -> PaymentInfo:
        row_id = parse_uuid(payment_id, "payment_id")
        payment = self.session.get(Payment, row_id)
        if payment is None:
            raise PaymentNotFoundError(str(row_id))
        return payment.to_dto()

    # Creation and proofs

    def create_payment(
        self,
        payment_type: PaymentType | str,
        amount: object,
        payer_id: object,
        *,
        actor_id: UUID,
        recipient_id: object = None,
        contract_id: object = None,
        job_id: object = None,
        commission: object = None,
        currency: str | None = None,
        provider_transaction_id: str | None = None,
    ) -> PaymentInfo:
        """
        Create a pending payment.

        Contract-type payments take commission, recipient, job and currency
        from the linked contract unless given explicitly.

        Raises:
            ValidationError: Unknown type, bad amount or identifiers.
            ContractNotFoundError / JobNotFoundError: Dangling reference.
        """
        try:
            ptype = PaymentType(payment_type)
        except ValueError as e:
            raise ValidationError(
                f"Unknown payment type {payment_type!r}", field="payment_type"
            ) from e

        try:
            value = round_money(to_decimal(amount))
        except ValueError as e:
            raise InvalidAmountError("amount", amount, "not a number") from e
        if value <= ZERO:
            raise InvalidAmountError("amount", amount, "must be positive")

        payer = parse_uuid(payer_id, "payer_id")
        recipient = parse_uuid(recipient_id, "recipient_id") if recipient_id else None
        job_ref = parse_uuid(job_id, "job_id") if job_id else None

        contract = None
        if contract_id:
            contract = self._lock(Contract, contract_id, ContractNotFoundError, "contract_id")
            job_ref = job_ref or contract.job_id
            if recipient is None and ptype in ESCROW_PAYMENT_TYPES:
                recipient = contract.doer_id
            currency = currency or contract.currency
            if commission is None and ptype in ESCROW_PAYMENT_TYPES:
                commission = contract.commission

        if job_ref is not None:
            job = self._lock(Job, job_ref, JobNotFoundError, "job_id")
            currency = currency or job.currency

        try:
            fee = round_money(to_decimal(commission)) if commission is not None else ZERO
        except ValueError as e:
            raise InvalidAmountError("commission", commission, "not a number") from e
        if fee < ZERO or fee > value:
            raise InvalidAmountError("commission", commission, "must be within [0, amount]")

        try:
            code = validate_currency(currency or self.policy.default_currency)
        except ValueError as e:
            raise ValidationError(str(e), field="currency") from e

        payment = Payment(
            payer_id=payer,
            recipient_id=recipient,
            contract_id=contract.id if contract is not None else None,
            job_id=job_ref,
            amount=value,
            commission=fee,
            currency=code,
            payment_type=ptype,
            status=PaymentStatus.PENDING,
            is_escrow=ptype in ESCROW_PAYMENT_TYPES,
            provider_transaction_id=provider_transaction_id,
            created_by_id=actor_id,
        )
        self.session.add(payment)
        self._flush("Payment", None)
        self._record(
            "Payment",
            payment.id,
            AuditAction.PAYMENT_CREATED,
            actor_id,
            after=PaymentStatus.PENDING,
            notify=[payer],
            payment_type=ptype,
            amount=value,
            commission=fee,
            currency=code,
            contract_id=payment.contract_id,
            job_id=job_ref,
        )
        logger.info(
            "payment_created",
            extra={
                "payment_id": str(payment.id),
                "payment_type": ptype.value,
                "amount": str(value),
                "commission": str(fee),
            },
        )
        return payment.to_dto()

    def submit_proof(
        self,
        payment_id: object,
        submitted_by: UUID,
        reference: str,
    ) -> PaymentInfo:
        """Attach a receipt; the payment waits for admin verification."""
        if not (reference or "").strip():
            raise ValidationError("Proof reference is required", field="reference")
        payment = self._load(payment_id)
        if submitted_by != payment.payer_id:
            raise PermissionDeniedError("Payment", str(payment.id), str(submitted_by), "submit_proof")

        transition = transition_payment(
            payment.status, PaymentAction.SUBMIT_PROOF, payment_id=payment.id
        )
        if payment.pending_proofs:
            raise InvalidStateTransitionError(
                "Payment",
                str(payment.id),
                transition.from_status.value,
                PaymentAction.SUBMIT_PROOF.value,
                message=f"Payment {payment.id} already has a proof awaiting review",
            )

        now = self._now()
        payment.proofs.append(
            PaymentProof(
                submitted_by_id=submitted_by,
                reference=reference.strip(),
                status=ProofStatus.PENDING,
                submitted_at=now,
            )
        )
        payment.status = transition.to_status
        payment.updated_by_id = submitted_by
        self._record(
            "Payment",
            payment.id,
            AuditAction.PROOF_SUBMITTED,
            submitted_by,
            before=transition.from_status,
            after=transition.to_status,
            notify=[payment.payer_id],
        )
        return payment.to_dto()

    # Verification

    def approve_proof(
        self,
        payment_id: object,
        *,
        actor_id: UUID,
        proof_id: object = None,
        notes: str | None = None,
    ) -> PaymentInfo:
        """
        Approve a payment (and its proof, if any).

        Escrow-capable types stop at ``verified``; custody is a separate
        ``verify_escrow`` step.  Other types complete immediately.

        Raises:
            InvalidUUIDError: payment_id or proof_id is not a UUID.
            PaymentNotFoundError / ProofNotFoundError.
            PaymentAlreadyProcessedError: Payment or proof already decided.
        """
        proof_ref = parse_uuid(proof_id, "proof_id") if proof_id is not None else None
        payment = self._load(payment_id)

        try:
            transition = transition_payment(
                payment.status,
                PaymentAction.APPROVE,
                payment_type=payment.payment_type,
                payment_id=payment.id,
            )
        except InvalidStateTransitionError as e:
            logger.warning(
                "payment_already_processed",
                extra={
                    "payment_id": str(payment.id),
                    "status": PaymentStatus(payment.status).value,
                },
            )
            raise PaymentAlreadyProcessedError(
                str(payment.id), PaymentStatus(payment.status).value, "approve"
            ) from e

        proof = self._proof_to_review(payment, proof_ref)
        now = self._now()
        if proof is not None:
            proof.status = ProofStatus.APPROVED
            proof.reviewed_by_id = actor_id
            proof.reviewed_at = now

        payment.status = transition.to_status
        payment.approved_by_id = actor_id
        payment.approved_at = now
        payment.updated_by_id = actor_id
        if notes:
            payment.append_admin_note(notes)

        contract = self._apply_approval_effects(payment, actor_id)
        self._record(
            "Payment",
            payment.id,
            AuditAction.PAYMENT_APPROVED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=notes,
            notify=self._parties(payment, contract),
            proof_id=proof.id if proof is not None else None,
            payment_type=payment.payment_type,
        )
        logger.info(
            "payment_approved",
            extra={
                "payment_id": str(payment.id),
                "from_status": transition.from_status.value,
                "to_status": transition.to_status.value,
            },
        )
        return payment.to_dto()

    def _proof_to_review(self, payment: Payment, proof_id: UUID | None) -> PaymentProof | None:
        if proof_id is None:
            pending = payment.pending_proofs
            return pending[-1] if pending else None
        for proof in payment.proofs:
            if proof.id == proof_id:
                if proof.status != ProofStatus.PENDING:
                    raise PaymentAlreadyProcessedError(
                        str(payment.id), PaymentStatus(payment.status).value, "approve"
                    )
                return proof
        raise ProofNotFoundError(str(proof_id))

    def _apply_approval_effects(self, payment: Payment, actor_id: UUID) -> Contract | None:
        ptype = PaymentType(payment.payment_type)
        contract = None

        if ptype is PaymentType.JOB_PUBLICATION:
            job = self._linked_job(payment)
            if job is not None:
                before = job.status
                job.status = JobStatus.OPEN
                job.publication_paid = True
                job.updated_by_id = actor_id
                self._record(
                    "Job",
                    job.id,
                    AuditAction.JOB_STATUS_CHANGED,
                    actor_id,
                    before=before,
                    after=JobStatus.OPEN,
                    reason="publication fee approved",
                    payment_id=payment.id,
                )
        elif ptype is PaymentType.BUDGET_INCREASE:
            # Local import: the negotiation service creates payments through us.
            from settlement_kernel.services.price_negotiation_service import (
                PriceNegotiationService,
            )

            PriceNegotiationService(
                self.session, self._auditor, self._outbox, self._clock, self._policy
            ).apply_approved_budget_increase(payment, actor_id)
        elif ptype in ESCROW_PAYMENT_TYPES:
            contract = self._linked_contract(payment)
            if contract is not None:
                contract.payment_status = ContractPaymentStatus.HELD
                contract.updated_by_id = actor_id
                self._flush("Contract", contract.id)
        return contract

    def reject_payment(
        self,
        payment_id: object,
        reason: str | None,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> PaymentInfo:
        """
        Reject a payment awaiting decision; pending proofs are rejected too.

        Raises:
            MissingReasonError: ``reason`` is blank.
            PaymentAlreadyProcessedError: Payment already decided.
        """
        row_id = parse_uuid(payment_id, "payment_id")
        reason = require_reason(reason, "reject_payment")
        payment = self._load(row_id)

        try:
            transition = transition_payment(
                payment.status, PaymentAction.REJECT, payment_id=payment.id
            )
        except InvalidStateTransitionError as e:
            raise PaymentAlreadyProcessedError(
                str(payment.id), PaymentStatus(payment.status).value, "reject"
            ) from e

        now = self._now()
        for proof in payment.pending_proofs:
            proof.status = ProofStatus.REJECTED
            proof.reviewed_by_id = actor_id
            proof.reviewed_at = now
            proof.rejection_reason = reason

        payment.status = transition.to_status
        payment.rejection_reason = reason
        payment.updated_by_id = actor_id
        note = f"[Rejected] {reason}"
        if notes:
            note = f"{note}\nNotes: {notes}"
        payment.append_admin_note(note)

        contract = None
        ptype = PaymentType(payment.payment_type)
        if ptype is PaymentType.JOB_PUBLICATION:
            job = self._linked_job(payment)
            if job is not None and job.status != JobStatus.PENDING_PAYMENT:
                before = job.status
                job.status = JobStatus.PENDING_PAYMENT
                job.updated_by_id = actor_id
                self._record(
                    "Job",
                    job.id,
                    AuditAction.JOB_STATUS_CHANGED,
                    actor_id,
                    before=before,
                    after=JobStatus.PENDING_PAYMENT,
                    reason="publication fee rejected",
                    payment_id=payment.id,
                )
        elif ptype in ESCROW_PAYMENT_TYPES:
            contract = self._linked_contract(payment)
            if contract is not None:
                contract.payment_status = ContractPaymentStatus.FAILED
                contract.updated_by_id = actor_id

        self._record(
            "Payment",
            payment.id,
            AuditAction.PAYMENT_REJECTED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=reason,
            notify=self._parties(payment, contract),
        )
        logger.info(
            "payment_rejected",
            extra={"payment_id": str(payment.id), "reason": reason},
        )
        return payment.to_dto()

    def cancel_reject(
        self,
        payment_id: object,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> PaymentInfo:
        """Revert a mistaken rejection; rejected proofs go back to pending."""
        payment = self._load(payment_id)
        transition = transition_payment(
            payment.status, PaymentAction.CANCEL_REJECT, payment_id=payment.id
        )

        for proof in payment.proofs:
            if proof.status == ProofStatus.REJECTED:
                proof.status = ProofStatus.PENDING
                proof.reviewed_by_id = None
                proof.reviewed_at = None
                proof.rejection_reason = None

        previous_reason = payment.rejection_reason
        payment.status = transition.to_status
        payment.rejection_reason = None
        payment.updated_by_id = actor_id
        payment.append_admin_note(
            f"[Rejection cancelled] {notes or 'Reverted to pending verification'}"
        )

        contract = None
        if payment.is_escrow_type:
            contract = self._linked_contract(payment)
            if contract is not None and contract.payment_status == ContractPaymentStatus.FAILED:
                contract.payment_status = ContractPaymentStatus.PENDING
                contract.updated_by_id = actor_id

        self._record(
            "Payment",
            payment.id,
            AuditAction.PAYMENT_REJECTION_CANCELLED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=notes,
            notify=self._parties(payment, contract),
            previous_rejection_reason=previous_reason,
        )
        return payment.to_dto()

    # Escrow custody

    def verify_escrow(
        self,
        payment_id: object,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> PaymentInfo:
        """
        Second verification step: funds are committed to escrow.

        The contract mirrors custody and, if it is already accepted with
        both parties' terms, starts (the escrow gate).

        Raises:
            WrongPaymentTypeError: Not a contract_payment/escrow_deposit.
            InvalidStateTransitionError: Payment is not ``verified``.
        """
        payment = self._load(payment_id)
        if not payment.is_escrow_type:
            raise WrongPaymentTypeError(
                str(payment.id), PaymentType(payment.payment_type).value, "verify_escrow"
            )
        transition = transition_payment(
            payment.status, PaymentAction.VERIFY_ESCROW, payment_id=payment.id
        )

        now = self._now()
        payment.status = transition.to_status
        payment.escrow_verified_by_id = actor_id
        payment.escrow_verified_at = now
        payment.updated_by_id = actor_id
        if notes:
            payment.append_admin_note(f"[Escrow] {notes}")

        contract = self._linked_contract(payment)
        contract_started = False
        if contract is not None:
            contract.escrow_status = EscrowStatus.HELD_ESCROW
            if contract.client_confirmed and contract.doer_confirmed:
                contract.payment_status = ContractPaymentStatus.PENDING_PAYOUT
            else:
                contract.payment_status = ContractPaymentStatus.ESCROW
            contract.updated_by_id = actor_id
            contract_started = ContractService(
                self.session, self._auditor, self._outbox, self._clock, self._policy
            ).start_if_ready(contract, actor_id, "escrow held", notify=False)

        self._record(
            "Payment",
            payment.id,
            AuditAction.ESCROW_VERIFIED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=notes,
            notify=self._parties(payment, contract),
            contract_started=contract_started,
        )
        logger.info(
            "escrow_verified",
            extra={
                "payment_id": str(payment.id),
                "contract_id": str(contract.id) if contract is not None else None,
                "contract_started": contract_started,
            },
        )
        return payment.to_dto()

    def confirm_for_payout(
        self,
        payment_id: object,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> PaymentInfo:
        """Funds in escrow are ready to be released to the worker."""
        payment = self._load(payment_id)
        transition = transition_payment(
            payment.status, PaymentAction.CONFIRM_PAYOUT, payment_id=payment.id
        )

        payment.status = transition.to_status
        payment.payout_confirmed_by_id = actor_id
        payment.payout_confirmed_at = self._now()
        payment.updated_by_id = actor_id
        if notes:
            payment.append_admin_note(f"[Confirmed for payout] {notes}")

        contract = self._linked_contract(payment)
        if contract is not None:
            contract.payment_status = ContractPaymentStatus.PENDING_PAYOUT
            contract.updated_by_id = actor_id

        self._record(
            "Payment",
            payment.id,
            AuditAction.PAYOUT_CONFIRMED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=notes,
            notify=self._parties(payment, contract),
        )
        return payment.to_dto()

    def release_payout(
        self,
        payment_id: object,
        *,
        actor_id: UUID,
        notes: str | None = None,
    ) -> PaymentInfo:
        """Pay the worker out; the payment completes."""
        payment = self._load(payment_id)
        transition = transition_payment(
            payment.status, PaymentAction.RELEASE, payment_id=payment.id
        )

        payment.status = transition.to_status
        payment.released_at = self._now()
        payment.updated_by_id = actor_id
        if notes:
            payment.append_admin_note(f"[Released] {notes}")

        contract = self._linked_contract(payment)
        if contract is not None:
            contract.payment_status = ContractPaymentStatus.RELEASED
            contract.escrow_status = EscrowStatus.RELEASED
            contract.updated_by_id = actor_id

        self._record(
            "Payment",
            payment.id,
            AuditAction.PAYOUT_RELEASED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=notes,
            notify=self._parties(payment, contract),
            amount=payment.amount - payment.commission,
        )
        logger.info(
            "payout_released",
            extra={"payment_id": str(payment.id), "amount": str(payment.amount)},
        )
        return payment.to_dto()

    # Refunds

    def refund_for_cancellation(
        self, contract: Contract, *, actor_id: UUID, reason: str
    ) -> Payment | None:
        """
        Give captured funds back when a contract is cancelled before work.

        Only a payment holding funds (verified, held in escrow or confirmed
        for payout) is refunded, minus commission.  Anything else is left
        alone and ``None`` is returned.
        """
        payment = self.latest_contract_payment(contract.id)
        if payment is None or PaymentStatus(payment.status) not in FUNDED_PAYMENT_STATUSES:
            return None
        transition = transition_payment(
            payment.status, PaymentAction.CANCEL_REFUND, payment_id=payment.id
        )
        amount = refundable_amount(payment.amount, payment.commission)

        payment.status = transition.to_status
        payment.updated_by_id = actor_id
        payment.append_admin_note(f"[Contract cancelled] {reason}")
        self.queue_refund(payment, amount, cause_id=contract.id, actor_id=actor_id)

        self._record(
            "Payment",
            payment.id,
            AuditAction.PAYMENT_REFUNDED,
            actor_id,
            before=transition.from_status,
            after=transition.to_status,
            reason=reason,
            notify=[payment.payer_id],
            contract_id=contract.id,
            refund_amount=amount,
            refund_status=payment.refund_status,
        )
        return payment

    def queue_refund(
        self, payment: Payment, amount: Decimal, *, cause_id: UUID, actor_id: UUID
    ) -> None:
        """
        Store the refund on the payment and hand it to the outbox.

        A payment made outside the provider has no transaction to refund
        against; it is flagged ``manual`` for an operator instead.
        """
        payment.refund_amount = amount
        if payment.provider_transaction_id is None:
            payment.refund_status = RefundStatus.MANUAL
            logger.warning(
                "refund_requires_manual_action",
                extra={"payment_id": str(payment.id), "amount": str(amount)},
            )
            return
        payment.refund_status = RefundStatus.PENDING
        self._outbox.queue_refund(
            payment.id,
            payment.provider_transaction_id,
            amount,
            payment.currency,
            cause_id=cause_id,
            requested_by=actor_id,
        )
        logger.info(
            "refund_queued",
            extra={
                "payment_id": str(payment.id),
                "cause_id": str(cause_id),
                "amount": str(amount),
                "currency": payment.currency,
            },
        )

    # Refund bookkeeping (called after the provider answered)

    def mark_refund_issued(
        self,
        payment_id: object,
        provider_refund_id: str,
        *,
        actor_id: UUID,
    ) -> PaymentInfo:
        """Record a confirmed provider refund.  A replay of the same id is a no-op."""
        payment = self._load(payment_id)
        if (
            payment.refund_status == RefundStatus.ISSUED
            and payment.provider_refund_id == provider_refund_id
        ):
            logger.info(
                "refund_already_recorded",
                extra={"payment_id": str(payment.id), "provider_refund_id": provider_refund_id},
            )
            return payment.to_dto()

        before = payment.refund_status
        payment.refund_status = RefundStatus.ISSUED
        payment.provider_refund_id = provider_refund_id
        payment.refunded_at = payment.refunded_at or self._now()
        payment.updated_by_id = actor_id
        self._record(
            "Payment",
            payment.id,
            AuditAction.REFUND_ISSUED,
            actor_id,
            before=before,
            after=RefundStatus.ISSUED,
            notify=[payment.payer_id],
            provider_refund_id=provider_refund_id,
            refund_amount=payment.refund_amount,
        )
        logger.info(
            "refund_issued",
            extra={
                "payment_id": str(payment.id),
                "provider_refund_id": provider_refund_id,
                "refund_amount": str(payment.refund_amount),
            },
        )
        return payment.to_dto()

    def mark_refund_failed(
        self,
        payment_id: object,
        error: str,
        *,
        actor_id: UUID,
    ) -> PaymentInfo:
        """The provider refused the refund for good; an operator must step in."""
        payment = self._load(payment_id)
        before = payment.refund_status
        payment.refund_status = RefundStatus.FAILED
        payment.updated_by_id = actor_id
        payment.append_admin_note(f"[Refund failed] {error}")
        self._record(
            "Payment",
            payment.id,
            AuditAction.REFUND_FAILED,
            actor_id,
            before=before,
            after=RefundStatus.FAILED,
            reason=error,
            refund_amount=payment.refund_amount,
        )
        logger.error(
            "refund_failed",
            extra={"payment_id": str(payment.id), "error": error},
        )
        return payment.to_dto()

    def find_by_provider_transaction(self, provider_transaction_id: str) -> Payment | None:
        return self.session.execute(
            select(Payment)
            .where(Payment.provider_transaction_id == provider_transaction_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def latest_contract_payment(self, contract_id: UUID) -> Payment | None:
        """The contract's most recent escrow-capable payment, if any."""
        return self.session.execute(
            select(Payment)
            .where(
                Payment.contract_id == contract_id,
                Payment.payment_type.in_(list(ESCROW_PAYMENT_TYPES)),
            )
            .order_by(Payment.created_at.desc(), Payment.id.desc())
            .limit(1)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
