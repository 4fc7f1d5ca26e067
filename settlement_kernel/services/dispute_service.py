"""
DisputeService -- escalation and admin resolution of a contract.

Responsibility:
    Opens disputes (freezing the contract and its payment), runs the admin
    workflow (assignment, priority, information requests, messages) and
    applies a resolution to Payment, Contract and Dispute together.

Architecture position:
    Kernel > Services -- imperative shell over ``domain.dispute_lifecycle``.
    The resolution table and refund arithmetic are pure; this module only
    applies a ``ResolutionPlan`` to locked rows.

Invariants enforced:
    - At most one active dispute per contract.
    - Resolution happens only from an active status and is final.
    - A refund never includes commission.  The amount is decided once,
      here, and stored; the outbox only executes it.
    - Payment, contract and dispute are written in the caller's single
      transaction; the provider refund runs after commit.

Failure modes:
    - DisputeNotFoundError, ContractNotFoundError.
    - DisputeAlreadyActiveError when a second dispute is opened.
    - DisputeAlreadyResolvedError when resolving a closed dispute.
    - MissingReasonError, InvalidAmountError, RefundExceedsRefundableError.
"""

from uuid import UUID

from sqlalchemy import select

from settlement_kernel.domain.contract_lifecycle import (
    ContractAction,
    ContractStatus,
    DisputeFlag,
    transition_contract,
)
from settlement_kernel.domain.dispute_lifecycle import (
    ACTIVE_DISPUTE_STATUSES,
    DisputeCategory,
    DisputePriority,
    DisputeStatus,
    RefundKind,
    ResolutionType,
    check_dispute_transition,
    plan_resolution,
)
from settlement_kernel.domain.dtos import DisputeInfo, DisputeSettlement
from settlement_kernel.domain.payment_lifecycle import (
    FUNDED_PAYMENT_STATUSES,
    PaymentAction,
    PaymentStatus,
    can_transition,
    transition_payment,
)
from settlement_kernel.exceptions import (
    ContractNotFoundError,
    DisputeAlreadyActiveError,
    DisputeAlreadyResolvedError,
    DisputeNotFoundError,
    PaymentNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.contract import Contract
from settlement_kernel.models.dispute import Dispute, DisputeLog, DisputeMessage
from settlement_kernel.models.payment import Payment
from settlement_kernel.services.base import BaseService, parse_uuid, require_reason
from settlement_kernel.services.payment_service import PaymentService

logger = get_logger("services.dispute")


def _enum(enum_cls, value, field):
    try:
        return enum_cls(value)
    except ValueError as e:
        raise ValidationError(f"Unknown {field}: {value!r}", field=field) from e


class DisputeService(BaseService[Dispute]):
    """
    Contract:
        ``resolve_dispute`` returns a ``DisputeSettlement`` with the
        dispute, contract and payment exactly as written.

    Guarantees:
        - Every dispute action appends a ``DisputeLog`` row and an audit
          event.
        - ``platform_fee_refunded`` is never set.

    Non-goals:
        - Does NOT call the payment provider; refunds are queued.
    """

    def _load(self, dispute_id: object) -> Dispute:
        return self._lock(Dispute, dispute_id, DisputeNotFoundError, field="dispute_id")

    def _require_active(self, dispute: Dispute) -> DisputeStatus:
        status = DisputeStatus(dispute.status)
        if status not in ACTIVE_DISPUTE_STATUSES:
            raise DisputeAlreadyResolvedError(str(dispute.id), status.value)
        return status

    def _log(self, dispute: Dispute, action: str, actor_id: UUID, details: str | None) -> None:
        dispute.logs.append(
            DisputeLog(
                seq=len(dispute.logs) + 1,
                action=action,
                actor_id=actor_id,
                details=details,
                occurred_at=self._now(),
            )
        )

    def get_dispute(self, dispute_id: object) -> DisputeInfo:
        row_id = parse_uuid(dispute_id, "dispute_id")
        dispute = self.session.get(Dispute, row_id)
        if dispute is None:
            raise DisputeNotFoundError(str(row_id))
        return dispute.to_dto()

    def active_dispute_for(self, contract_id: UUID) -> Dispute | None:
        return self.session.execute(
            select(Dispute).where(
                Dispute.contract_id == contract_id,
                Dispute.status.in_(list(ACTIVE_DISPUTE_STATUSES)),
            )
        ).scalar_one_or_none()

    # Opening

    def open_dispute(
        self,
        contract_id: object,
        initiator_id: UUID,
        category: DisputeCategory | str,
        reason: str | None,
        description: str | None = None,
        priority: DisputePriority | str = DisputePriority.MEDIUM,
    ) -> DisputeInfo:
        """
        Escalate a contract.  The contract and its latest escrow payment
        are frozen in ``disputed`` until an admin resolves.

        Raises:
            PermissionDeniedError: Initiator is not a contract party.
            DisputeAlreadyActiveError: Another dispute is still active.
            InvalidStateTransitionError: Contract is not disputable.
        """
        reason = require_reason(reason, "open_dispute")
        dispute_category = _enum(DisputeCategory, category, "category")
        dispute_priority = _enum(DisputePriority, priority, "priority")

        contract = self._lock(Contract, contract_id, ContractNotFoundError, "contract_id")
        if not contract.is_participant(initiator_id):
            raise PermissionDeniedError(
                "Contract", str(contract.id), str(initiator_id), "open_dispute"
            )
        existing = self.active_dispute_for(contract.id)
        if existing is not None:
            raise DisputeAlreadyActiveError(str(contract.id), str(existing.id))

        contract_transition = transition_contract(
            contract.status, ContractAction.OPEN_DISPUTE, contract_id=contract.id
        )
        contract.status_before_dispute = contract_transition.from_status
        contract.status = contract_transition.to_status
        contract.dispute_status = DisputeFlag.ACTIVE
        contract.clear_extension_request()
        contract.updated_by_id = initiator_id

        payment = self._payments().latest_contract_payment(contract.id)
        payment_before = None
        if payment is not None and can_transition(payment.status, PaymentAction.OPEN_DISPUTE):
            payment_transition = transition_payment(
                payment.status, PaymentAction.OPEN_DISPUTE, payment_id=payment.id
            )
            payment_before = payment_transition.from_status
            payment.status_before_dispute = payment_before
            payment.status = payment_transition.to_status
            payment.updated_by_id = initiator_id

        dispute = Dispute(
            contract_id=contract.id,
            payment_id=payment.id if payment is not None else None,
            initiator_id=initiator_id,
            defendant_id=contract.counterparty_of(initiator_id),
            category=dispute_category,
            priority=dispute_priority,
            reason=reason,
            description=description,
            status=DisputeStatus.OPEN,
            created_by_id=initiator_id,
        )
        self.session.add(dispute)
        self._flush("Dispute", None)
        self._log(dispute, "opened", initiator_id, reason)

        self._record(
            "Contract",
            contract.id,
            AuditAction.DISPUTE_OPENED,
            initiator_id,
            before=contract_transition.from_status,
            after=contract_transition.to_status,
            reason=reason,
            dispute_id=dispute.id,
        )
        if payment_before is not None:
            self._record(
                "Payment",
                payment.id,
                AuditAction.DISPUTE_OPENED,
                initiator_id,
                before=payment_before,
                after=PaymentStatus.DISPUTED,
                reason=reason,
                dispute_id=dispute.id,
            )
        self._record(
            "Dispute",
            dispute.id,
            AuditAction.DISPUTE_OPENED,
            initiator_id,
            after=DisputeStatus.OPEN,
            reason=reason,
            notify=[contract.client_id, contract.doer_id],
            contract_id=contract.id,
            category=dispute_category,
            priority=dispute_priority,
        )
        logger.info(
            "dispute_opened",
            extra={
                "dispute_id": str(dispute.id),
                "contract_id": str(contract.id),
                "payment_frozen": payment_before is not None,
                "category": dispute_category.value,
            },
        )
        return dispute.to_dto()

    # Admin workflow

    def assign(self, dispute_id: object, admin_id: UUID) -> DisputeInfo:
        dispute = self._load(dispute_id)
        status = self._require_active(dispute)
        if status is not DisputeStatus.IN_REVIEW:
            check_dispute_transition(status, DisputeStatus.IN_REVIEW, dispute.id)
        dispute.status = DisputeStatus.IN_REVIEW
        dispute.assigned_to_id = admin_id
        dispute.updated_by_id = admin_id
        self._log(dispute, "assigned", admin_id, str(admin_id))
        self._record(
            "Dispute",
            dispute.id,
            AuditAction.DISPUTE_ASSIGNED,
            admin_id,
            before=status,
            after=DisputeStatus.IN_REVIEW,
            notify=[dispute.initiator_id, dispute.defendant_id],
            assigned_to_id=admin_id,
        )
        return dispute.to_dto()

    def set_priority(
        self, dispute_id: object, priority: DisputePriority | str, admin_id: UUID
    ) -> DisputeInfo:
        dispute = self._load(dispute_id)
        status = self._require_active(dispute)
        new_priority = _enum(DisputePriority, priority, "priority")
        before = DisputePriority(dispute.priority)
        dispute.priority = new_priority
        dispute.updated_by_id = admin_id
        self._log(dispute, "priority_changed", admin_id, f"{before.value} -> {new_priority.value}")
        self._record(
            "Dispute",
            dispute.id,
            AuditAction.DISPUTE_PRIORITY_CHANGED,
            admin_id,
            before=status,
            after=status,
            priority_before=before,
            priority_after=new_priority,
        )
        return dispute.to_dto()

    def request_info(
        self, dispute_id: object, admin_id: UUID, details: str | None
    ) -> DisputeInfo:
        """Ask the parties for more information; the dispute waits on them."""
        details = require_reason(details, "request_info", field="details")
        dispute = self._load(dispute_id)
        status = self._require_active(dispute)
        check_dispute_transition(status, DisputeStatus.AWAITING_INFO, dispute.id)
        dispute.status = DisputeStatus.AWAITING_INFO
        dispute.updated_by_id = admin_id
        self._log(dispute, "info_requested", admin_id, details)
        self._record(
            "Dispute",
            dispute.id,
            AuditAction.DISPUTE_INFO_REQUESTED,
            admin_id,
            before=status,
            after=DisputeStatus.AWAITING_INFO,
            reason=details,
            notify=[dispute.initiator_id, dispute.defendant_id],
        )
        return dispute.to_dto()

    def add_message(
        self,
        dispute_id: object,
        sender_id: UUID,
        message: str | None,
        is_admin: bool = False,
    ) -> DisputeInfo:
        """
        Append to the dispute thread.

        A party answering an information request puts the dispute back
        in review.
        """
        text = require_reason(message, "add_message", field="message")
        dispute = self._load(dispute_id)
        status = self._require_active(dispute)
        parties = (dispute.initiator_id, dispute.defendant_id)
        if not is_admin and sender_id not in parties:
            raise PermissionDeniedError("Dispute", str(dispute.id), str(sender_id), "add_message")

        dispute.messages.append(
            DisputeMessage(
                seq=len(dispute.messages) + 1,
                sender_id=sender_id,
                message=text,
                is_admin=is_admin,
                sent_at=self._now(),
            )
        )
        if status is DisputeStatus.AWAITING_INFO and not is_admin:
            dispute.status = DisputeStatus.IN_REVIEW
            self._log(dispute, "info_provided", sender_id, None)
        dispute.updated_by_id = sender_id
        self._flush("Dispute", dispute.id)

        recipients = [p for p in parties if p != sender_id]
        if dispute.assigned_to_id is not None and dispute.assigned_to_id != sender_id:
            recipients.append(dispute.assigned_to_id)
        self._outbox.notify(
            recipients,
            "dispute_message",
            {"dispute_id": dispute.id, "sender_id": sender_id, "is_admin": is_admin},
            entity_type="Dispute",
            entity_id=dispute.id,
            discriminator=f"message:{len(dispute.messages)}",
        )
        return dispute.to_dto()

    # Resolution

    def resolve_dispute(
        self,
        dispute_id: object,
        resolution_type: ResolutionType | str,
        resolution: str | None,
        *,
        admin_id: UUID,
        refund_amount: object = None,
    ) -> DisputeSettlement:
        """
        Decide a dispute and settle the money.

        The payment is only driven when the dispute froze it (its status
        is ``disputed``); a payment that was already settled or rejected
        when the dispute opened is left as it is and nothing is refunded.
        A frozen payment whose funds were never captured (frozen from
        ``pending`` or ``pending_verification``) returns to that status
        with no refund, whatever the resolution type.

        Raises:
            DisputeNotFoundError: No such dispute.
            DisputeAlreadyResolvedError: Dispute is no longer active.
            MissingReasonError: Blank resolution text.
            InvalidAmountError: partial_refund without a positive amount.
            RefundExceedsRefundableError: Amount above amount - commission.
        """
        dispute = self._load(dispute_id)
        status = self._require_active(dispute)
        resolution = require_reason(resolution, "resolve_dispute", field="resolution")
        rtype = _enum(ResolutionType, resolution_type, "resolution_type")

        contract = self._lock(Contract, dispute.contract_id, ContractNotFoundError, "contract_id")
        payment = None
        if dispute.payment_id is not None:
            payment = self._lock(Payment, dispute.payment_id, PaymentNotFoundError, "payment_id")
        frozen = payment is not None and payment.status == PaymentStatus.DISPUTED
        funded = frozen and (
            payment.status_before_dispute is not None
            and PaymentStatus(payment.status_before_dispute) in FUNDED_PAYMENT_STATUSES
        )

        plan = plan_resolution(
            rtype,
            payment.amount if funded else None,
            payment.commission if funded else None,
            refund_amount,
            payment_id=dispute.payment_id,
        )
        outcome = plan.outcome
        target = check_dispute_transition(status, outcome.dispute_status, dispute.id)
        now = self._now()

        # Contract
        contract_transition = transition_contract(
            contract.status,
            outcome.contract_action,
            restore_to=contract.status_before_dispute,
            contract_id=contract.id,
        )
        contract.status = contract_transition.to_status
        # Money sub-statuses only describe funds that were captured.
        if funded and outcome.contract_payment_status is not None:
            contract.payment_status = outcome.contract_payment_status
        if funded and outcome.escrow_status is not None:
            contract.escrow_status = outcome.escrow_status
        if outcome.force_confirmations:
            contract.client_confirmed = True
            contract.client_confirmed_at = contract.client_confirmed_at or now
            contract.doer_confirmed = True
            contract.doer_confirmed_at = contract.doer_confirmed_at or now
        if contract.status == ContractStatus.COMPLETED and contract.actual_end_date is None:
            contract.actual_end_date = now
        if contract.status == ContractStatus.CANCELLED:
            contract.cancelled_at = now
            contract.cancelled_by_id = admin_id
            contract.cancellation_reason = resolution
        contract.dispute_status = DisputeFlag.RESOLVED
        contract.status_before_dispute = None
        contract.updated_by_id = admin_id

        # Payment
        payment_transition = None
        if frozen:
            # An unpaid payment goes back to where it was; it can still be
            # approved or rejected through the normal proof flow.
            payment_action = outcome.payment_action if funded else PaymentAction.RESOLVE_NO_ACTION
            payment_transition = transition_payment(
                payment.status,
                payment_action,
                restore_to=payment.status_before_dispute,
                payment_id=payment.id,
            )
            payment.status = payment_transition.to_status
            payment.status_before_dispute = None
            payment.updated_by_id = admin_id
            payment.append_admin_note(f"[Dispute {rtype.value}] {resolution}")
            if payment.status == PaymentStatus.COMPLETED:
                payment.released_at = payment.released_at or now
            if plan.moves_money_back:
                self._payments().queue_refund(
                    payment, plan.refund_amount, cause_id=dispute.id, actor_id=admin_id
                )

        # Dispute
        dispute.status = target
        dispute.resolution_type = rtype
        dispute.resolution = resolution
        dispute.refund_amount = plan.refund_amount if outcome.refund is not RefundKind.NONE else None
        dispute.resolved_by_id = admin_id
        dispute.resolved_at = now
        dispute.platform_fee_refunded = False
        dispute.updated_by_id = admin_id
        self._log(dispute, "resolved", admin_id, f"{rtype.value}: {resolution}")

        self._record(
            "Contract",
            contract.id,
            AuditAction.DISPUTE_RESOLVED,
            admin_id,
            before=contract_transition.from_status,
            after=contract_transition.to_status,
            reason=resolution,
            dispute_id=dispute.id,
            resolution_type=rtype,
        )
        if payment_transition is not None:
            self._record(
                "Payment",
                payment.id,
                AuditAction.DISPUTE_RESOLVED,
                admin_id,
                before=payment_transition.from_status,
                after=payment_transition.to_status,
                reason=resolution,
                dispute_id=dispute.id,
                refund_amount=plan.refund_amount,
                refund_status=payment.refund_status,
            )
        self._record(
            "Dispute",
            dispute.id,
            AuditAction.DISPUTE_RESOLVED,
            admin_id,
            before=status,
            after=target,
            reason=resolution,
            notify=[dispute.initiator_id, dispute.defendant_id],
            resolution_type=rtype,
            refund_amount=plan.refund_amount,
            contract_status=contract.status,
            payment_status=payment.status if payment is not None else None,
        )
        logger.info(
            "dispute_resolved",
            extra={
                "dispute_id": str(dispute.id),
                "resolution_type": rtype.value,
                "refund_amount": str(plan.refund_amount),
                "contract_status": ContractStatus(contract.status).value,
                "payment_status": (
                    PaymentStatus(payment.status).value if payment is not None else None
                ),
            },
        )
        return DisputeSettlement(
            dispute=dispute.to_dto(),
            contract=contract.to_dto(),
            payment=payment.to_dto() if payment is not None else None,
        )

    def _payments(self) -> PaymentService:
        return PaymentService(self.session, self._auditor, self._outbox, self._clock, self._policy)
