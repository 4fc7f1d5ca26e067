"""
Payment lifecycle (``settlement_kernel.domain.payment_lifecycle``).

Responsibility
--------------
The closed set of payment types, statuses and actions, the edge table,
and the pure transition function that every Payment write goes through.

Architecture position
---------------------
**Kernel domain layer** -- pure, ZERO I/O.  ``services.payment_service``
and ``services.dispute_service`` call ``transition_payment`` before they
touch a row.

Invariants enforced
-------------------
* Status only ever moves along ``PAYMENT_TRANSITIONS``.
* Escrow-type payments reach ``held_escrow`` only from ``verified``;
  proof approval and escrow custody are two separate actions.
* ``completed``, ``refunded`` and ``partially_refunded`` have no outgoing
  edges.  ``rejected`` is terminal except for the ``cancel_reject`` revert.
* ``disputed`` is left only through a dispute resolution action.
* Captured funds go back to the payer without a dispute only when the
  contract is cancelled before work started (``cancel_refund``).

Failure modes
-------------
* ``InvalidStateTransitionError`` when the action is not allowed from the
  current status.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from settlement_kernel.exceptions import InvalidStateTransitionError


class PaymentType(str, Enum):
    CONTRACT_PAYMENT = "contract_payment"
    ESCROW_DEPOSIT = "escrow_deposit"
    JOB_PUBLICATION = "job_publication"
    BUDGET_INCREASE = "budget_increase"
    MEMBERSHIP = "membership"


ESCROW_PAYMENT_TYPES: frozenset[PaymentType] = frozenset({
    PaymentType.CONTRACT_PAYMENT,
    PaymentType.ESCROW_DEPOSIT,
})


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PENDING_VERIFICATION = "pending_verification"
    VERIFIED = "verified"
    HELD_ESCROW = "held_escrow"
    CONFIRMED_FOR_PAYOUT = "confirmed_for_payout"
    COMPLETED = "completed"
    REJECTED = "rejected"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    DISPUTED = "disputed"


class PaymentAction(str, Enum):
    SUBMIT_PROOF = "submit_proof"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL_REJECT = "cancel_reject"
    VERIFY_ESCROW = "verify_escrow"
    CONFIRM_PAYOUT = "confirm_payout"
    RELEASE = "release"
    OPEN_DISPUTE = "open_dispute"
    RESOLVE_RELEASE = "resolve_release"
    RESOLVE_REFUND = "resolve_refund"
    RESOLVE_PARTIAL = "resolve_partial"
    RESOLVE_NO_ACTION = "resolve_no_action"
    CANCEL_REFUND = "cancel_refund"


class ProofStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RefundStatus(str, Enum):
    NONE = "none"
    PENDING = "pending"
    ISSUED = "issued"
    FAILED = "failed"
    MANUAL = "manual"


_S = PaymentStatus

AWAITING_DECISION: frozenset[PaymentStatus] = frozenset({
    _S.PENDING,
    _S.PENDING_VERIFICATION,
})

DISPUTABLE_PAYMENT_STATUSES: frozenset[PaymentStatus] = frozenset({
    _S.PENDING,
    _S.PENDING_VERIFICATION,
    _S.VERIFIED,
    _S.HELD_ESCROW,
    _S.CONFIRMED_FOR_PAYOUT,
})

# Funds have been captured; only these can be refunded or released.
FUNDED_PAYMENT_STATUSES: frozenset[PaymentStatus] = frozenset({
    _S.VERIFIED,
    _S.HELD_ESCROW,
    _S.CONFIRMED_FOR_PAYOUT,
})

PAYMENT_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    _S.PENDING: frozenset({
        _S.PENDING_VERIFICATION,
        _S.VERIFIED,
        _S.COMPLETED,
        _S.REJECTED,
        _S.DISPUTED,
    }),
    _S.PENDING_VERIFICATION: frozenset({
        _S.PENDING_VERIFICATION,
        _S.VERIFIED,
        _S.COMPLETED,
        _S.REJECTED,
        _S.DISPUTED,
    }),
    _S.VERIFIED: frozenset({_S.HELD_ESCROW, _S.DISPUTED, _S.REFUNDED}),
    _S.HELD_ESCROW: frozenset({_S.CONFIRMED_FOR_PAYOUT, _S.DISPUTED, _S.REFUNDED}),
    _S.CONFIRMED_FOR_PAYOUT: frozenset({_S.COMPLETED, _S.DISPUTED, _S.REFUNDED}),
    _S.REJECTED: frozenset({_S.PENDING_VERIFICATION}),
    _S.DISPUTED: frozenset({
        _S.COMPLETED,
        _S.REFUNDED,
        _S.PARTIALLY_REFUNDED,
    }) | DISPUTABLE_PAYMENT_STATUSES,
    _S.COMPLETED: frozenset(),
    _S.REFUNDED: frozenset(),
    _S.PARTIALLY_REFUNDED: frozenset(),
}

TERMINAL_PAYMENT_STATUSES: frozenset[PaymentStatus] = frozenset({
    _S.COMPLETED,
    _S.REFUNDED,
    _S.PARTIALLY_REFUNDED,
    _S.REJECTED,
})

# action -> (allowed source statuses, fixed target or None when the target
# depends on the payment type / saved pre-dispute status)
_ACTIONS: dict[PaymentAction, tuple[frozenset[PaymentStatus], PaymentStatus | None]] = {
    PaymentAction.SUBMIT_PROOF: (AWAITING_DECISION, _S.PENDING_VERIFICATION),
    PaymentAction.APPROVE: (AWAITING_DECISION, None),
    PaymentAction.REJECT: (AWAITING_DECISION, _S.REJECTED),
    PaymentAction.CANCEL_REJECT: (frozenset({_S.REJECTED}), _S.PENDING_VERIFICATION),
    PaymentAction.VERIFY_ESCROW: (frozenset({_S.VERIFIED}), _S.HELD_ESCROW),
    PaymentAction.CONFIRM_PAYOUT: (frozenset({_S.HELD_ESCROW}), _S.CONFIRMED_FOR_PAYOUT),
    PaymentAction.RELEASE: (frozenset({_S.CONFIRMED_FOR_PAYOUT}), _S.COMPLETED),
    PaymentAction.OPEN_DISPUTE: (DISPUTABLE_PAYMENT_STATUSES, _S.DISPUTED),
    PaymentAction.RESOLVE_RELEASE: (frozenset({_S.DISPUTED}), _S.COMPLETED),
    PaymentAction.RESOLVE_REFUND: (frozenset({_S.DISPUTED}), _S.REFUNDED),
    PaymentAction.RESOLVE_PARTIAL: (frozenset({_S.DISPUTED}), _S.PARTIALLY_REFUNDED),
    PaymentAction.RESOLVE_NO_ACTION: (frozenset({_S.DISPUTED}), None),
    PaymentAction.CANCEL_REFUND: (FUNDED_PAYMENT_STATUSES, _S.REFUNDED),
}


@dataclass(frozen=True)
class PaymentTransition:
    """A validated edge of the payment machine."""

    action: PaymentAction
    from_status: PaymentStatus
    to_status: PaymentStatus

    @property
    def is_noop(self) -> bool:
        return self.from_status == self.to_status


def approval_target(payment_type: PaymentType | str) -> PaymentStatus:
    """Escrow-capable payments stop at ``verified``; the rest settle immediately."""
    if PaymentType(payment_type) in ESCROW_PAYMENT_TYPES:
        return _S.VERIFIED
    return _S.COMPLETED


def allowed_sources(action: PaymentAction) -> frozenset[PaymentStatus]:
    return _ACTIONS[action][0]


def can_transition(current: PaymentStatus | str, action: PaymentAction) -> bool:
    return PaymentStatus(current) in _ACTIONS[action][0]


def transition_payment(
    current: PaymentStatus | str,
    action: PaymentAction,
    *,
    payment_type: PaymentType | str | None = None,
    restore_to: PaymentStatus | str | None = None,
    payment_id: object = None,
) -> PaymentTransition:
    """
    Validate ``action`` against ``current`` and return the resulting edge.

    Args:
        current: The status currently stored on the row.
        action: What the caller wants to do.
        payment_type: Required for APPROVE (selects verified vs completed).
        restore_to: Required for RESOLVE_NO_ACTION (the pre-dispute status).
        payment_id: Only used to enrich the error.

    Raises:
        InvalidStateTransitionError: If the edge does not exist.
    """
    status = PaymentStatus(current)
    sources, target = _ACTIONS[action]
    entity_id = str(payment_id) if payment_id is not None else None

    if status not in sources:
        raise InvalidStateTransitionError("Payment", entity_id, status.value, action.value)

    if action is PaymentAction.APPROVE:
        if payment_type is None:
            raise ValueError("payment_type is required to approve a payment")
        target = approval_target(payment_type)
    elif action is PaymentAction.RESOLVE_NO_ACTION:
        target = PaymentStatus(restore_to) if restore_to else _S.PENDING

    assert target is not None
    if target not in PAYMENT_TRANSITIONS[status]:
        raise InvalidStateTransitionError("Payment", entity_id, status.value, action.value)

    return PaymentTransition(action=action, from_status=status, to_status=target)
