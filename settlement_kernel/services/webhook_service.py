"""
ProviderWebhookService -- maps payment-provider events onto payment actions.

The provider reports a transaction status; this service finds the payment
(by provider transaction id, or by the id passed along in the event
metadata) and performs the equivalent admin action on behalf of the
provider.  Provider events are delivered at least once, so a replayed
event whose outcome is already recorded is logged and ignored.
"""

from enum import Enum
from uuid import UUID

from settlement_kernel.domain.dtos import PaymentInfo
from settlement_kernel.domain.payment_lifecycle import (
    AWAITING_DECISION,
    PaymentStatus,
    RefundStatus,
)
from settlement_kernel.exceptions import PaymentNotFoundError, ValidationError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.payment import Payment
from settlement_kernel.services.base import SYSTEM_ACTOR_ID, parse_uuid
from settlement_kernel.services.payment_service import PaymentService

logger = get_logger("services.webhook")

PROVIDER_REJECTED = "provider rejected"


class ProviderStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PENDING = "pending"
    IN_PROCESS = "in_process"


class ProviderWebhookService:
    """
    Contract:
        ``handle_event`` returns the payment as written, or ``None`` when
        the event was a no-op (still pending at the provider, or a replay).
        A ``refunded`` event never marks a refund issued: one we did not
        request is only noted on the payment for an admin to review.

    Non-goals:
        - Does NOT verify webhook signatures; the HTTP receiver does.
    """

    def __init__(self, payments: PaymentService, actor_id: UUID = SYSTEM_ACTOR_ID):
        self._payments = payments
        self._actor_id = actor_id

    def _find(self, provider_tx_id: str, payment_id: object) -> Payment:
        payment = self._payments.find_by_provider_transaction(provider_tx_id)
        if payment is not None:
            return payment
        if payment_id is None:
            raise PaymentNotFoundError(provider_tx_id)
        payment = self._payments.load_for_update(payment_id)
        if payment.provider_transaction_id is None:
            payment.provider_transaction_id = provider_tx_id
        return payment

    def handle_event(
        self,
        provider_tx_id: str,
        provider_status: ProviderStatus | str,
        payment_id: object = None,
    ) -> PaymentInfo | None:
        try:
            status = ProviderStatus(provider_status)
        except ValueError as e:
            raise ValidationError(
                f"Unknown provider status {provider_status!r}", field="provider_status"
            ) from e
        if payment_id is not None:
            payment_id = parse_uuid(payment_id, "payment_id")

        payment = self._find(provider_tx_id, payment_id)
        current = PaymentStatus(payment.status)
        logger.info(
            "provider_webhook_received",
            extra={
                "provider_tx_id": provider_tx_id,
                "provider_status": status.value,
                "payment_id": str(payment.id),
                "payment_status": current.value,
            },
        )

        if status in (ProviderStatus.PENDING, ProviderStatus.IN_PROCESS):
            return None

        if status is ProviderStatus.APPROVED:
            approved = current in AWAITING_DECISION
            if approved:
                self._payments.approve_proof(payment.id, actor_id=self._actor_id)
                current = PaymentStatus(payment.status)
            if payment.is_escrow_type and current is PaymentStatus.VERIFIED:
                return self._payments.verify_escrow(payment.id, actor_id=self._actor_id)
            if approved:
                return payment.to_dto()
            return self._replay(payment, status)

        if status in (ProviderStatus.REJECTED, ProviderStatus.CANCELLED):
            if current not in AWAITING_DECISION:
                return self._replay(payment, status)
            return self._payments.reject_payment(
                payment.id, PROVIDER_REJECTED, actor_id=self._actor_id
            )

        # REFUNDED: refunds requested here are recorded by the outbox
        # dispatcher with the provider's refund id, never by this event.
        if payment.refund_status in (RefundStatus.PENDING, RefundStatus.ISSUED):
            return self._replay(payment, status)
        payment.append_admin_note(
            f"[Provider] refund reported on {provider_tx_id} without a request; review"
        )
        payment.updated_by_id = self._actor_id
        self._payments.session.flush()
        logger.warning(
            "unsolicited_provider_refund",
            extra={
                "payment_id": str(payment.id),
                "provider_tx_id": provider_tx_id,
                "payment_status": current.value,
                "refund_status": RefundStatus(payment.refund_status).value,
            },
        )
        return None

    @staticmethod
    def _replay(payment: Payment, status: ProviderStatus) -> None:
        logger.info(
            "provider_webhook_replay_ignored",
            extra={
                "payment_id": str(payment.id),
                "provider_status": status.value,
                "payment_status": PaymentStatus(payment.status).value,
            },
        )
        return None
