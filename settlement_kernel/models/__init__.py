"""ORM models for the settlement kernel."""

from settlement_kernel.models.audit_event import AuditAction, AuditEvent
from settlement_kernel.models.balance import BalanceTransaction
from settlement_kernel.models.contract import (
    Contract,
    ContractExtension,
    ContractPriceModification,
)
from settlement_kernel.models.dispute import Dispute, DisputeLog, DisputeMessage
from settlement_kernel.models.job import (
    Job,
    JobPriceChange,
    JobWorker,
    PriceDecreaseResponse,
    WorkerAllocation,
)
from settlement_kernel.models.outbox import OutboxMessage
from settlement_kernel.models.payment import Payment, PaymentProof
from settlement_kernel.models.sequence import SequenceCounter


def import_all_models() -> list[type]:
    """Return every mapped class; importing this package registers them all."""
    return [
        AuditEvent,
        BalanceTransaction,
        Contract,
        ContractExtension,
        ContractPriceModification,
        Dispute,
        DisputeLog,
        DisputeMessage,
        Job,
        JobPriceChange,
        JobWorker,
        OutboxMessage,
        Payment,
        PaymentProof,
        PriceDecreaseResponse,
        SequenceCounter,
        WorkerAllocation,
    ]


__all__ = [
    "AuditAction",
    "AuditEvent",
    "BalanceTransaction",
    "Contract",
    "ContractExtension",
    "ContractPriceModification",
    "Dispute",
    "DisputeLog",
    "DisputeMessage",
    "Job",
    "JobPriceChange",
    "JobWorker",
    "OutboxMessage",
    "Payment",
    "PaymentProof",
    "PriceDecreaseResponse",
    "SequenceCounter",
    "WorkerAllocation",
    "import_all_models",
]
