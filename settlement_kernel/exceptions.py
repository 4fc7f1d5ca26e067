"""
Typed Exception Hierarchy for the Settlement Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (admin HTTP surface, webhook receiver, batch jobs) must react to a
failure by its kind, not by parsing its message. Every exception here has:

  1. A TYPED class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA attributes (payment_id, current_status, ...)

Example:
    try:
        payments.verify_escrow(payment_id, actor_id=admin_id)
    except WrongPaymentTypeError as e:
        api_response(status=409, code=e.code, payment_type=e.payment_type)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SettlementKernelError (base)
    |
    +-- ValidationError                 -> caller error, never retried
    |   +-- InvalidUUIDError
    |   +-- MissingReasonError
    |   +-- InvalidAmountError
    |
    +-- NotFoundError
    |   +-- PaymentNotFoundError
    |   +-- ProofNotFoundError
    |   +-- ContractNotFoundError
    |   +-- JobNotFoundError
    |   +-- DisputeNotFoundError
    |
    +-- PermissionDeniedError
    |
    +-- InvalidStateTransitionError     -> conflict, never retried blindly
    |   +-- PaymentAlreadyProcessedError
    |   +-- WrongPaymentTypeError
    |   +-- DisputeAlreadyResolvedError
    |   +-- DisputeAlreadyActiveError
    |   +-- CancellationNotAllowedError
    |   +-- AlreadyAcceptedError
    |   +-- AlreadyConfirmedError
    |   +-- ExtensionNotAllowedError
    |   +-- PriceChangePendingError
    |   +-- PairingError
    |       +-- PairingCodeExpiredError
    |       +-- PairingCodeMismatchError
    |
    +-- ConsistencyViolationError       -> rejected before any write
    |   +-- BudgetExceededError
    |   +-- UnknownWorkerError
    |   +-- BelowMinimumAllocationError
    |   +-- RefundExceedsRefundableError
    |   +-- MaxWorkersReachedError
    |
    +-- ExternalProviderError           -> retried by the outbox dispatcher
    |
    +-- AuditError
    |   +-- AuditChainBrokenError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
        +-- ImmutabilityViolationError
"""

from __future__ import annotations

from decimal import Decimal


class SettlementKernelError(Exception):
    """
    Base exception for all settlement kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "SETTLEMENT_KERNEL_ERROR"


# Validation errors


class ValidationError(SettlementKernelError):
    """Malformed caller input."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class InvalidUUIDError(ValidationError):
    """An identifier is not a valid UUID."""

    code: str = "INVALID_UUID"

    def __init__(self, field: str, value: object):
        self.value = str(value)
        super().__init__(f"{field} is not a valid UUID: {value!r}", field=field)


class MissingReasonError(ValidationError):
    """A mandatory reason or resolution note was blank."""

    code: str = "MISSING_REASON"

    def __init__(self, action: str, field: str = "reason"):
        self.action = action
        super().__init__(f"{action} requires a non-empty {field}", field=field)


class InvalidAmountError(ValidationError):
    """Amount is missing, non-positive, or not a valid decimal."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, value: object, reason: str):
        self.value = str(value)
        self.reason = reason
        super().__init__(f"Invalid {field} {value!r}: {reason}", field=field)


# Not-found errors


class NotFoundError(SettlementKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"
    entity_type: str = "Entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class PaymentNotFoundError(NotFoundError):
    code: str = "PAYMENT_NOT_FOUND"
    entity_type = "Payment"


class ProofNotFoundError(NotFoundError):
    code: str = "PROOF_NOT_FOUND"
    entity_type = "PaymentProof"


class ContractNotFoundError(NotFoundError):
    code: str = "CONTRACT_NOT_FOUND"
    entity_type = "Contract"


class JobNotFoundError(NotFoundError):
    code: str = "JOB_NOT_FOUND"
    entity_type = "Job"


class DisputeNotFoundError(NotFoundError):
    code: str = "DISPUTE_NOT_FOUND"
    entity_type = "Dispute"


class PermissionDeniedError(SettlementKernelError):
    """Actor is not allowed to perform the action on this entity."""

    code: str = "NOT_A_PARTICIPANT"

    def __init__(self, entity_type: str, entity_id: str, actor_id: str, action: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.actor_id = actor_id
        self.action = action
        super().__init__(
            f"Actor {actor_id} may not {action} on {entity_type} {entity_id}"
        )


# State transition errors


class InvalidStateTransitionError(SettlementKernelError):
    """Precondition on the current stored status failed."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str | None,
        current_status: str,
        action: str,
        message: str | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.current_status = current_status
        self.action = action
        target = f"{entity_type} {entity_id}" if entity_id else entity_type
        super().__init__(
            message or f"Cannot {action} {target} in status '{current_status}'"
        )


class PaymentAlreadyProcessedError(InvalidStateTransitionError):
    """Approve/reject retried against a payment or proof already decided."""

    code: str = "ALREADY_PROCESSED"

    def __init__(self, payment_id: str, current_status: str, action: str = "approve"):
        super().__init__(
            "Payment",
            payment_id,
            current_status,
            action,
            message=f"Payment {payment_id} already processed (status '{current_status}')",
        )


class WrongPaymentTypeError(InvalidStateTransitionError):
    """Action only applies to escrow-capable payment types."""

    code: str = "WRONG_PAYMENT_TYPE"

    def __init__(self, payment_id: str, payment_type: str, action: str):
        self.payment_type = payment_type
        super().__init__(
            "Payment",
            payment_id,
            payment_type,
            action,
            message=f"Cannot {action} payment {payment_id} of type '{payment_type}'",
        )


class DisputeAlreadyResolvedError(InvalidStateTransitionError):
    code: str = "ALREADY_RESOLVED"

    def __init__(self, dispute_id: str, current_status: str):
        super().__init__(
            "Dispute",
            dispute_id,
            current_status,
            "resolve",
            message=f"Dispute {dispute_id} is already closed (status '{current_status}')",
        )


class DisputeAlreadyActiveError(InvalidStateTransitionError):
    code: str = "DISPUTE_ALREADY_ACTIVE"

    def __init__(self, contract_id: str, dispute_id: str):
        self.dispute_id = dispute_id
        super().__init__(
            "Contract",
            contract_id,
            "disputed",
            "open_dispute",
            message=f"Contract {contract_id} already has active dispute {dispute_id}",
        )


class CancellationNotAllowedError(InvalidStateTransitionError):
    code: str = "CANCELLATION_NOT_ALLOWED"

    def __init__(self, contract_id: str, current_status: str, reason: str):
        self.reason = reason
        super().__init__(
            "Contract",
            contract_id,
            current_status,
            "cancel",
            message=f"Contract {contract_id} cannot be cancelled: {reason}",
        )


class AlreadyAcceptedError(InvalidStateTransitionError):
    code: str = "ALREADY_ACCEPTED"

    def __init__(self, contract_id: str, party: str):
        self.party = party
        super().__init__(
            "Contract",
            contract_id,
            "pending",
            "accept_terms",
            message=f"The {party} already accepted contract {contract_id}",
        )


class AlreadyConfirmedError(InvalidStateTransitionError):
    code: str = "ALREADY_CONFIRMED"

    def __init__(self, contract_id: str, party: str, what: str):
        self.party = party
        self.what = what
        super().__init__(
            "Contract",
            contract_id,
            what,
            f"confirm_{what}",
            message=f"The {party} already confirmed {what} on contract {contract_id}",
        )


class ExtensionNotAllowedError(InvalidStateTransitionError):
    code: str = "EXTENSION_NOT_ALLOWED"

    def __init__(self, contract_id: str, current_status: str, reason: str):
        self.reason = reason
        super().__init__(
            "Contract",
            contract_id,
            current_status,
            "extend",
            message=f"Extension not allowed on contract {contract_id}: {reason}",
        )


class PriceChangePendingError(InvalidStateTransitionError):
    code: str = "PRICE_CHANGE_PENDING"

    def __init__(self, job_id: str, current_status: str, reason: str):
        self.reason = reason
        super().__init__(
            "Job",
            job_id,
            current_status,
            "change_price",
            message=f"Price change not allowed on job {job_id}: {reason}",
        )


class PairingError(InvalidStateTransitionError):
    code: str = "PAIRING_ERROR"

    def __init__(self, contract_id: str, current_status: str, reason: str):
        self.reason = reason
        super().__init__(
            "Contract",
            contract_id,
            current_status,
            "pair",
            message=f"Pairing failed on contract {contract_id}: {reason}",
        )


class PairingCodeExpiredError(PairingError):
    code: str = "PAIRING_CODE_EXPIRED"

    def __init__(self, contract_id: str, current_status: str):
        super().__init__(contract_id, current_status, "pairing code expired")


class PairingCodeMismatchError(PairingError):
    code: str = "PAIRING_CODE_MISMATCH"

    def __init__(self, contract_id: str, current_status: str):
        super().__init__(contract_id, current_status, "pairing code does not match")


# Consistency violations


class ConsistencyViolationError(SettlementKernelError):
    """A money-conservation invariant would be broken by the request."""

    code: str = "CONSISTENCY_VIOLATION"


class BudgetExceededError(ConsistencyViolationError):
    code: str = "BUDGET_EXCEEDED"

    def __init__(self, job_id: str | None, requested_total: Decimal, budget: Decimal):
        self.job_id = job_id
        self.requested_total = requested_total
        self.budget = budget
        super().__init__(
            f"Allocations total {requested_total} exceeds job budget {budget}"
        )


class UnknownWorkerError(ConsistencyViolationError):
    code: str = "UNKNOWN_WORKER"

    def __init__(self, job_id: str | None, worker_id: str):
        self.job_id = job_id
        self.worker_id = worker_id
        super().__init__(f"Worker {worker_id} is not selected on job {job_id}")


class BelowMinimumAllocationError(ConsistencyViolationError):
    code: str = "BELOW_MINIMUM"

    def __init__(self, worker_id: str, amount: Decimal, minimum: Decimal):
        self.worker_id = worker_id
        self.amount = amount
        self.minimum = minimum
        super().__init__(
            f"Allocation {amount} for worker {worker_id} is below minimum {minimum}"
        )


class RefundExceedsRefundableError(ConsistencyViolationError):
    code: str = "REFUND_EXCEEDS_REFUNDABLE"

    def __init__(self, payment_id: str, requested: Decimal, refundable: Decimal):
        self.payment_id = payment_id
        self.requested = requested
        self.refundable = refundable
        super().__init__(
            f"Refund {requested} exceeds refundable amount {refundable} "
            f"on payment {payment_id}"
        )


class MaxWorkersReachedError(ConsistencyViolationError):
    code: str = "MAX_WORKERS_REACHED"

    def __init__(self, job_id: str, max_workers: int):
        self.job_id = job_id
        self.max_workers = max_workers
        super().__init__(f"Job {job_id} already has {max_workers} selected workers")


# External collaborators


class ExternalProviderError(SettlementKernelError):
    """The payment provider (or notification transport) call failed."""

    code: str = "EXTERNAL_PROVIDER_ERROR"

    def __init__(self, operation: str, message: str, retryable: bool = True):
        self.operation = operation
        self.retryable = retryable
        super().__init__(f"{operation} failed: {message}")


# Audit


class AuditError(SettlementKernelError):
    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Concurrency


class ConcurrencyError(SettlementKernelError):
    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Optimistic locking conflict detected."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"Optimistic lock conflict on {entity_type} {entity_id}: "
            "entity was modified by another transaction"
        )


# Immutability


class ImmutabilityError(SettlementKernelError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
