"""
Dispute lifecycle and resolution outcomes.

Responsibility
--------------
Dispute statuses and classifications, plus the table that says, for each
admin resolution type, where the Payment and the Contract must end up and
how much (if anything) goes back to the payer.

Architecture position
---------------------
**Kernel domain layer** -- pure, ZERO I/O.  ``services.dispute_service``
applies a ``ResolutionPlan`` to the rows in one transaction.

Invariants enforced
-------------------
* Resolution is allowed only from an active status and is final.
* Refunds never include commission:
  ``refund_amount <= payment.amount - payment.commission``.
* ``partial_refund`` requires a positive admin-specified amount.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum

from settlement_kernel.db.types import ZERO, round_money, to_decimal
from settlement_kernel.domain.contract_lifecycle import (
    ContractAction,
    ContractPaymentStatus,
    EscrowStatus,
)
from settlement_kernel.domain.payment_lifecycle import PaymentAction
from settlement_kernel.exceptions import (
    InvalidAmountError,
    InvalidStateTransitionError,
    RefundExceedsRefundableError,
)


class DisputeStatus(str, Enum):
    OPEN = "open"
    IN_REVIEW = "in_review"
    AWAITING_INFO = "awaiting_info"
    RESOLVED_RELEASED = "resolved_released"
    RESOLVED_REFUNDED = "resolved_refunded"
    RESOLVED_PARTIAL = "resolved_partial"
    CANCELLED = "cancelled"


class DisputeCategory(str, Enum):
    SERVICE_NOT_DELIVERED = "service_not_delivered"
    INCOMPLETE_WORK = "incomplete_work"
    QUALITY_ISSUES = "quality_issues"
    PAYMENT_ISSUES = "payment_issues"
    BREACH_OF_CONTRACT = "breach_of_contract"
    OTHER = "other"


class DisputePriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class ResolutionType(str, Enum):
    FULL_RELEASE = "full_release"
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"
    NO_ACTION = "no_action"


class RefundKind(str, Enum):
    NONE = "none"
    FULL = "full"
    PARTIAL = "partial"


_D = DisputeStatus

ACTIVE_DISPUTE_STATUSES: frozenset[DisputeStatus] = frozenset({
    _D.OPEN,
    _D.IN_REVIEW,
    _D.AWAITING_INFO,
})

DISPUTE_TRANSITIONS: dict[DisputeStatus, frozenset[DisputeStatus]] = {
    _D.OPEN: frozenset({
        _D.IN_REVIEW,
        _D.AWAITING_INFO,
        _D.RESOLVED_RELEASED,
        _D.RESOLVED_REFUNDED,
        _D.RESOLVED_PARTIAL,
        _D.CANCELLED,
    }),
    _D.IN_REVIEW: frozenset({
        _D.AWAITING_INFO,
        _D.RESOLVED_RELEASED,
        _D.RESOLVED_REFUNDED,
        _D.RESOLVED_PARTIAL,
        _D.CANCELLED,
    }),
    _D.AWAITING_INFO: frozenset({
        _D.IN_REVIEW,
        _D.RESOLVED_RELEASED,
        _D.RESOLVED_REFUNDED,
        _D.RESOLVED_PARTIAL,
        _D.CANCELLED,
    }),
    _D.RESOLVED_RELEASED: frozenset(),
    _D.RESOLVED_REFUNDED: frozenset(),
    _D.RESOLVED_PARTIAL: frozenset(),
    _D.CANCELLED: frozenset(),
}


def check_dispute_transition(
    current: DisputeStatus | str,
    target: DisputeStatus,
    dispute_id: object = None,
) -> DisputeStatus:
    status = DisputeStatus(current)
    if target not in DISPUTE_TRANSITIONS[status]:
        raise InvalidStateTransitionError(
            "Dispute",
            str(dispute_id) if dispute_id is not None else None,
            status.value,
            f"move to {target.value}",
        )
    return target


@dataclass(frozen=True)
class ResolutionOutcome:
    """Target state of every aggregate for one resolution type.

    ``None`` for a contract sub-status means "leave as is".
    """

    dispute_status: DisputeStatus
    payment_action: PaymentAction
    contract_action: ContractAction
    contract_payment_status: ContractPaymentStatus | None
    escrow_status: EscrowStatus | None
    force_confirmations: bool
    refund: RefundKind


RESOLUTION_OUTCOMES: dict[ResolutionType, ResolutionOutcome] = {
    ResolutionType.FULL_RELEASE: ResolutionOutcome(
        dispute_status=_D.RESOLVED_RELEASED,
        payment_action=PaymentAction.RESOLVE_RELEASE,
        contract_action=ContractAction.RESOLVE_RELEASE,
        contract_payment_status=ContractPaymentStatus.RELEASED,
        escrow_status=EscrowStatus.RELEASED,
        force_confirmations=True,
        refund=RefundKind.NONE,
    ),
    ResolutionType.FULL_REFUND: ResolutionOutcome(
        dispute_status=_D.RESOLVED_REFUNDED,
        payment_action=PaymentAction.RESOLVE_REFUND,
        contract_action=ContractAction.RESOLVE_REFUND,
        contract_payment_status=ContractPaymentStatus.REFUNDED,
        escrow_status=EscrowStatus.REFUNDED,
        force_confirmations=False,
        refund=RefundKind.FULL,
    ),
    ResolutionType.PARTIAL_REFUND: ResolutionOutcome(
        dispute_status=_D.RESOLVED_PARTIAL,
        payment_action=PaymentAction.RESOLVE_PARTIAL,
        contract_action=ContractAction.RESOLVE_PARTIAL,
        contract_payment_status=ContractPaymentStatus.PARTIALLY_REFUNDED,
        escrow_status=EscrowStatus.RELEASED,
        force_confirmations=False,
        refund=RefundKind.PARTIAL,
    ),
    ResolutionType.NO_ACTION: ResolutionOutcome(
        dispute_status=_D.RESOLVED_RELEASED,
        payment_action=PaymentAction.RESOLVE_NO_ACTION,
        contract_action=ContractAction.RESOLVE_NO_ACTION,
        contract_payment_status=None,
        escrow_status=None,
        force_confirmations=False,
        refund=RefundKind.NONE,
    ),
}


@dataclass(frozen=True)
class ResolutionPlan:
    resolution_type: ResolutionType
    outcome: ResolutionOutcome
    refund_amount: Decimal

    @property
    def moves_money_back(self) -> bool:
        return self.refund_amount > ZERO


def refundable_amount(amount: Decimal, commission: Decimal) -> Decimal:
    """What can ever go back to the payer: the amount paid minus commission."""
    return max(round_money(to_decimal(amount) - to_decimal(commission)), ZERO)


def plan_resolution(
    resolution_type: ResolutionType | str,
    payment_amount: Decimal | None,
    payment_commission: Decimal | None,
    refund_amount: object = None,
    payment_id: object = None,
) -> ResolutionPlan:
    """
    Decide the refund for a resolution.

    Without a linked payment there is nothing to refund, but a partial
    refund still needs a valid positive amount on input.

    Raises:
        InvalidAmountError: partial_refund without a positive amount.
        RefundExceedsRefundableError: partial amount above the refundable part.
    """
    rtype = ResolutionType(resolution_type)
    outcome = RESOLUTION_OUTCOMES[rtype]

    refundable = (
        refundable_amount(payment_amount, payment_commission or ZERO)
        if payment_amount is not None
        else ZERO
    )

    if outcome.refund is RefundKind.FULL:
        amount = refundable
    elif outcome.refund is RefundKind.PARTIAL:
        if refund_amount is None:
            raise InvalidAmountError("refund_amount", None, "required for partial_refund")
        try:
            requested = round_money(to_decimal(refund_amount))
        except ValueError as e:
            raise InvalidAmountError("refund_amount", refund_amount, "not a number") from e
        if requested <= ZERO:
            raise InvalidAmountError("refund_amount", refund_amount, "must be positive")
        if payment_amount is not None and requested > refundable:
            raise RefundExceedsRefundableError(
                str(payment_id) if payment_id is not None else "",
                requested,
                refundable,
            )
        amount = requested if payment_amount is not None else ZERO
    else:
        amount = ZERO

    return ResolutionPlan(resolution_type=rtype, outcome=outcome, refund_amount=amount)
