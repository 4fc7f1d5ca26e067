"""
Collaborator protocols -- what the engine needs from the outside world.

The engine never talks to the identity service, the notification transport
or the payment provider directly.  It receives objects satisfying these
protocols and, for anything with side effects, only ever calls them from
``OutboxDispatcher`` after the financial transaction committed.

Implementations raise ``ExternalProviderError`` on failure.  Every side
effecting call carries an idempotency key so a redelivered message does
not notify or refund twice.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from settlement_kernel.domain.commission import CommissionProfile


@runtime_checkable
class IdentityProvider(Protocol):
    """Answers who a user is, for commission purposes."""

    def get_commission_profile(self, user_id: UUID) -> CommissionProfile: ...


@runtime_checkable
class NotificationSender(Protocol):
    def send(
        self,
        recipient_id: UUID,
        template: str,
        data: dict[str, Any],
        idempotency_key: str,
    ) -> None: ...


@runtime_checkable
class PaymentProviderAdapter(Protocol):
    """The single payment provider the deployment uses."""

    def capture(self, amount: Decimal, currency: str, idempotency_key: str) -> str:
        """Charge the payer; returns the provider transaction id."""
        ...

    def refund(
        self,
        provider_transaction_id: str,
        amount: Decimal,
        idempotency_key: str,
    ) -> str:
        """Return ``amount`` of a captured transaction; returns the refund id."""
        ...
