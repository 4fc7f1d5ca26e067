"""Services for the settlement kernel (write side)."""

from settlement_kernel.services.allocation_service import AllocationService
from settlement_kernel.services.auditor_service import AuditorService, AuditTrace
from settlement_kernel.services.balance_service import BalanceService
from settlement_kernel.services.commission_service import CommissionService
from settlement_kernel.services.contract_service import ContractService
from settlement_kernel.services.dispute_service import DisputeService
from settlement_kernel.services.outbox_dispatcher import OutboxDispatcher
from settlement_kernel.services.outbox_service import OutboxWriter
from settlement_kernel.services.payment_service import PaymentService
from settlement_kernel.services.price_negotiation_service import PriceNegotiationService
from settlement_kernel.services.sequence_service import SequenceService
from settlement_kernel.services.webhook_service import ProviderStatus, ProviderWebhookService

__all__ = [
    "AllocationService",
    "AuditTrace",
    "AuditorService",
    "BalanceService",
    "CommissionService",
    "ContractService",
    "DisputeService",
    "OutboxDispatcher",
    "OutboxWriter",
    "PaymentService",
    "PriceNegotiationService",
    "ProviderStatus",
    "ProviderWebhookService",
    "SequenceService",
]
