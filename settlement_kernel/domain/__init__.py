"""
Pure domain layer.

Status machines, commission and allocation arithmetic, pricing and
dispute resolution rules, with NO dependencies on:
- ORM sessions
- Database
- Wall-clock time (a Clock is injected)
- I/O

Every function here is deterministic given its inputs.
"""

from settlement_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from settlement_kernel.domain.commission import (
    CommissionProfile,
    CommissionQuote,
    PayerTier,
    calculate_commission,
)
from settlement_kernel.domain.contract_lifecycle import (
    ContractAction,
    ContractPaymentStatus,
    ContractStatus,
    DisputeFlag,
    EscrowStatus,
    transition_contract,
)
from settlement_kernel.domain.dispute_lifecycle import (
    DisputeCategory,
    DisputePriority,
    DisputeStatus,
    ResolutionType,
    plan_resolution,
)
from settlement_kernel.domain.payment_lifecycle import (
    PaymentAction,
    PaymentStatus,
    PaymentType,
    ProofStatus,
    RefundStatus,
    transition_payment,
)
from settlement_kernel.domain.policy import DEFAULT_POLICY, CommissionSchedule, SettlementPolicy
from settlement_kernel.domain.values import AllocationRequest, AllocationShare, CommissionRate, Money

__all__ = [
    "AllocationRequest",
    "AllocationShare",
    "Clock",
    "CommissionProfile",
    "CommissionQuote",
    "CommissionRate",
    "CommissionSchedule",
    "ContractAction",
    "ContractPaymentStatus",
    "ContractStatus",
    "DEFAULT_POLICY",
    "DeterministicClock",
    "DisputeCategory",
    "DisputeFlag",
    "DisputePriority",
    "DisputeStatus",
    "EscrowStatus",
    "Money",
    "PayerTier",
    "PaymentAction",
    "PaymentStatus",
    "PaymentType",
    "ProofStatus",
    "RefundStatus",
    "ResolutionType",
    "SettlementPolicy",
    "SystemClock",
    "calculate_commission",
    "plan_resolution",
    "transition_contract",
    "transition_payment",
]
