"""
Contract lifecycle (``settlement_kernel.domain.contract_lifecycle``).

Responsibility
--------------
Contract statuses, the sub-statuses that mirror payment custody on the
contract (``payment_status`` / ``escrow_status``), the edge table, and the
pure rules for the start gates, completion and cancellation.

Architecture position
---------------------
**Kernel domain layer** -- pure, ZERO I/O.

Invariants enforced
-------------------
* ``status`` moves only along ``CONTRACT_TRANSITIONS``; the explicit
  reverts are dispute ``no_action`` (restores the pre-dispute status) and
  extension rejection (which does not touch ``status`` at all).
* ``accepted -> in_progress`` needs both parties' terms plus either gate:
  both pairing confirmations, or escrow held.  The gates are independent.
* Completion fires only when both confirmations are recorded.
* Cancellation is refused once work started, and inside the notice
  window before ``start_date``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from settlement_kernel.domain.clock import ensure_utc
from settlement_kernel.exceptions import (
    CancellationNotAllowedError,
    InvalidStateTransitionError,
)


class ContractStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    AWAITING_CONFIRMATION = "awaiting_confirmation"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REJECTED = "rejected"
    DISPUTED = "disputed"


class ContractPaymentStatus(str, Enum):
    PENDING = "pending"
    HELD = "held"
    ESCROW = "escrow"
    PENDING_PAYOUT = "pending_payout"
    RELEASED = "released"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"
    COMPLETED = "completed"
    FAILED = "failed"
    DISPUTED = "disputed"


class EscrowStatus(str, Enum):
    PENDING = "pending"
    HELD_ESCROW = "held_escrow"
    RELEASED = "released"
    REFUNDED = "refunded"


class DisputeFlag(str, Enum):
    NONE = "none"
    ACTIVE = "active"
    RESOLVED = "resolved"


class ContractAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    START = "start"
    AWAIT_CONFIRMATION = "await_confirmation"
    COMPLETE = "complete"
    CANCEL = "cancel"
    REMOVE_WORKER = "remove_worker"
    OPEN_DISPUTE = "open_dispute"
    RESOLVE_RELEASE = "resolve_release"
    RESOLVE_REFUND = "resolve_refund"
    RESOLVE_PARTIAL = "resolve_partial"
    RESOLVE_NO_ACTION = "resolve_no_action"


_C = ContractStatus

ACTIVE_CONTRACT_STATUSES: frozenset[ContractStatus] = frozenset({
    _C.PENDING,
    _C.ACCEPTED,
    _C.IN_PROGRESS,
    _C.AWAITING_CONFIRMATION,
})

STARTED_CONTRACT_STATUSES: frozenset[ContractStatus] = frozenset({
    _C.IN_PROGRESS,
    _C.AWAITING_CONFIRMATION,
    _C.COMPLETED,
    _C.DISPUTED,
})

DISPUTABLE_CONTRACT_STATUSES: frozenset[ContractStatus] = frozenset({
    _C.ACCEPTED,
    _C.IN_PROGRESS,
    _C.AWAITING_CONFIRMATION,
    _C.COMPLETED,
})

TERMINAL_CONTRACT_STATUSES: frozenset[ContractStatus] = frozenset({
    _C.CANCELLED,
    _C.REJECTED,
})

CONTRACT_TRANSITIONS: dict[ContractStatus, frozenset[ContractStatus]] = {
    _C.PENDING: frozenset({_C.ACCEPTED, _C.REJECTED, _C.CANCELLED}),
    _C.ACCEPTED: frozenset({_C.IN_PROGRESS, _C.CANCELLED, _C.DISPUTED}),
    _C.IN_PROGRESS: frozenset({
        _C.AWAITING_CONFIRMATION,
        _C.COMPLETED,
        _C.CANCELLED,
        _C.DISPUTED,
    }),
    _C.AWAITING_CONFIRMATION: frozenset({_C.COMPLETED, _C.CANCELLED, _C.DISPUTED}),
    _C.COMPLETED: frozenset({_C.DISPUTED}),
    _C.DISPUTED: frozenset({_C.COMPLETED, _C.CANCELLED}) | DISPUTABLE_CONTRACT_STATUSES,
    _C.CANCELLED: frozenset(),
    _C.REJECTED: frozenset(),
}

_ACTIONS: dict[ContractAction, tuple[frozenset[ContractStatus], ContractStatus | None]] = {
    ContractAction.ACCEPT: (frozenset({_C.PENDING}), _C.ACCEPTED),
    ContractAction.REJECT: (frozenset({_C.PENDING}), _C.REJECTED),
    ContractAction.START: (frozenset({_C.ACCEPTED}), _C.IN_PROGRESS),
    ContractAction.AWAIT_CONFIRMATION: (
        frozenset({_C.IN_PROGRESS, _C.AWAITING_CONFIRMATION}),
        _C.AWAITING_CONFIRMATION,
    ),
    ContractAction.COMPLETE: (
        frozenset({_C.IN_PROGRESS, _C.AWAITING_CONFIRMATION}),
        _C.COMPLETED,
    ),
    ContractAction.CANCEL: (frozenset({_C.PENDING, _C.ACCEPTED}), _C.CANCELLED),
    ContractAction.REMOVE_WORKER: (ACTIVE_CONTRACT_STATUSES, _C.CANCELLED),
    ContractAction.OPEN_DISPUTE: (DISPUTABLE_CONTRACT_STATUSES, _C.DISPUTED),
    ContractAction.RESOLVE_RELEASE: (frozenset({_C.DISPUTED}), _C.COMPLETED),
    ContractAction.RESOLVE_REFUND: (frozenset({_C.DISPUTED}), _C.CANCELLED),
    ContractAction.RESOLVE_PARTIAL: (frozenset({_C.DISPUTED}), _C.COMPLETED),
    ContractAction.RESOLVE_NO_ACTION: (frozenset({_C.DISPUTED}), None),
}


@dataclass(frozen=True)
class ContractTransition:
    action: ContractAction
    from_status: ContractStatus
    to_status: ContractStatus


def can_transition(current: ContractStatus | str, action: ContractAction) -> bool:
    return ContractStatus(current) in _ACTIONS[action][0]


def transition_contract(
    current: ContractStatus | str,
    action: ContractAction,
    *,
    restore_to: ContractStatus | str | None = None,
    contract_id: object = None,
) -> ContractTransition:
    """Validate ``action`` against ``current`` and return the edge.

    Raises:
        InvalidStateTransitionError: If the edge does not exist.
    """
    status = ContractStatus(current)
    sources, target = _ACTIONS[action]
    entity_id = str(contract_id) if contract_id is not None else None

    if status not in sources:
        raise InvalidStateTransitionError("Contract", entity_id, status.value, action.value)

    if action is ContractAction.RESOLVE_NO_ACTION:
        target = ContractStatus(restore_to) if restore_to else _C.IN_PROGRESS

    assert target is not None
    if target not in CONTRACT_TRANSITIONS[status] and target != status:
        raise InvalidStateTransitionError("Contract", entity_id, status.value, action.value)

    return ContractTransition(action=action, from_status=status, to_status=target)


def start_gate_satisfied(
    terms_accepted_by_client: bool,
    terms_accepted_by_doer: bool,
    client_pairing_confirmed: bool,
    doer_pairing_confirmed: bool,
    escrow_status: EscrowStatus | str,
) -> bool:
    """Both terms accepted, and either both pairing confirmations or escrow held."""
    if not (terms_accepted_by_client and terms_accepted_by_doer):
        return False
    paired = client_pairing_confirmed and doer_pairing_confirmed
    escrow_held = EscrowStatus(escrow_status) is EscrowStatus.HELD_ESCROW
    return paired or escrow_held


def completion_payment_status(escrow_status: EscrowStatus | str) -> ContractPaymentStatus:
    """Payment sub-status once both parties confirmed completion."""
    if EscrowStatus(escrow_status) is EscrowStatus.HELD_ESCROW:
        return ContractPaymentStatus.PENDING_PAYOUT
    return ContractPaymentStatus.ESCROW


def check_cancellation(
    current: ContractStatus | str,
    start_date: datetime | None,
    now: datetime,
    notice_hours: int,
    contract_id: object = None,
) -> ContractTransition:
    """
    Validate a party-initiated cancellation.

    Raises:
        CancellationNotAllowedError: Work already started, contract closed,
            or the notice window before ``start_date`` has been reached.
    """
    status = ContractStatus(current)
    entity_id = str(contract_id) if contract_id is not None else ""

    if status in STARTED_CONTRACT_STATUSES:
        raise CancellationNotAllowedError(
            entity_id, status.value, "work already started; open a dispute instead"
        )
    if status not in _ACTIONS[ContractAction.CANCEL][0]:
        raise CancellationNotAllowedError(entity_id, status.value, "contract is closed")
    if start_date is not None:
        deadline = ensure_utc(start_date) - timedelta(hours=notice_hours)
        if ensure_utc(now) >= deadline:
            raise CancellationNotAllowedError(
                entity_id,
                status.value,
                f"less than {notice_hours}h before start date; open a dispute instead",
            )
    return ContractTransition(ContractAction.CANCEL, status, _C.CANCELLED)
