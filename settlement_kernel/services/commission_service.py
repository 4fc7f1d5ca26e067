"""
CommissionService -- commission lookup for a concrete payer.

Thin shell over ``domain.commission``: resolves the payer's tier and
discounts through the identity collaborator, then applies the pure
calculator to the delta being charged.
"""

from decimal import Decimal
from uuid import UUID

from settlement_kernel.domain.collaborators import IdentityProvider
from settlement_kernel.domain.commission import (
    CommissionProfile,
    CommissionQuote,
    commission_for_profile,
)
from settlement_kernel.domain.policy import DEFAULT_POLICY, SettlementPolicy
from settlement_kernel.logging_config import get_logger

logger = get_logger("services.commission")


class CommissionService:
    """
    Contract:
        ``commission_for(payer_id, amount_delta)`` returns the commission on
        the delta only.  Callers never pass a full price that already
        carried commission.
    """

    def __init__(
        self,
        identity: IdentityProvider | None = None,
        policy: SettlementPolicy | None = None,
    ):
        self._identity = identity
        self._policy = policy or DEFAULT_POLICY

    def profile_for(self, payer_id: UUID) -> CommissionProfile:
        if self._identity is None:
            return CommissionProfile()
        return self._identity.get_commission_profile(payer_id)

    def quote_for(self, payer_id: UUID, amount_delta: Decimal) -> CommissionQuote:
        profile = self.profile_for(payer_id)
        quote = commission_for_profile(amount_delta, profile, policy=self._policy)
        logger.debug(
            "commission_quoted",
            extra={
                "payer_id": str(payer_id),
                "amount_delta": str(amount_delta),
                "rate": str(quote.rate.rate),
                "rate_label": quote.rate.label,
                "commission": str(quote.commission),
                "minimum_applied": quote.minimum_applied,
            },
        )
        return quote

    def commission_for(self, payer_id: UUID, amount_delta: Decimal) -> Decimal:
        return self.quote_for(payer_id, amount_delta).commission
