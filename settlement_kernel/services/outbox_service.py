"""
OutboxWriter -- side effects queued inside the financial transaction.

Responsibility:
    Writes ``OutboxMessage`` rows for notifications and provider refunds in
    the same transaction as the state change that caused them.  Nothing
    here talks to a collaborator; ``OutboxDispatcher`` delivers after the
    caller commits.

Architecture position:
    Kernel > Services -- imperative shell, used by every write service.

Invariants enforced:
    - One notification per affected party per transition: recipients are
      de-duplicated and the key embeds the audit sequence of the
      transition, so a retried action that fails its precondition never
      reaches the writer and a re-queue of the same key is a no-op.
    - A message is committed or rolled back together with the financial
      write it belongs to.
"""

from collections.abc import Iterable
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.dtos import OutboxKind, OutboxStatus
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.outbox import OutboxMessage
from settlement_kernel.utils.hashing import to_json_safe
from settlement_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("services.outbox")


class OutboxWriter:
    """
    Queues notifications and refunds for after-commit delivery.

    Guarantees:
        - Idempotent per key: queuing an existing key returns the
          existing row and writes nothing.

    Non-goals:
        - Does NOT deliver anything and does NOT commit.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self._session = session
        self._clock = clock or SystemClock()

    def _existing(self, key: str) -> OutboxMessage | None:
        return self._session.execute(
            select(OutboxMessage).where(OutboxMessage.idempotency_key == key)
        ).scalar_one_or_none()

    def _enqueue(
        self,
        key: str,
        kind: OutboxKind,
        payload: dict[str, Any],
        entity_type: str | None,
        entity_id: UUID | None,
    ) -> OutboxMessage:
        existing = self._existing(key)
        if existing is not None:
            logger.debug("outbox_duplicate_ignored", extra={"idempotency_key": key})
            return existing

        now = self._clock.now()
        message = OutboxMessage(
            idempotency_key=key,
            kind=kind,
            payload=to_json_safe(payload),
            status=OutboxStatus.PENDING,
            attempts=0,
            created_at=now,
            next_attempt_at=now,
            entity_type=entity_type,
            entity_id=entity_id,
        )
        self._session.add(message)
        self._session.flush()
        logger.info(
            "outbox_message_queued",
            extra={"kind": kind.value, "idempotency_key": key},
        )
        return message

    def notify(
        self,
        recipients: Iterable[UUID | None],
        template: str,
        data: dict[str, Any],
        *,
        entity_type: str,
        entity_id: UUID,
        discriminator: object,
    ) -> list[OutboxMessage]:
        """
        Queue one notification per distinct recipient.

        ``discriminator`` identifies the transition (normally the audit
        event's ``seq``) so two different transitions using the same
        template are not collapsed.
        """
        seen: list[UUID] = []
        for recipient in recipients:
            if recipient is not None and recipient not in seen:
                seen.append(recipient)

        messages = []
        for recipient in seen:
            key = generate_idempotency_key(
                "notify", entity_id, template, f"{discriminator}:{recipient}"
            )
            payload = {
                "recipient_id": recipient,
                "template": template,
                "data": data,
            }
            messages.append(
                self._enqueue(key, OutboxKind.NOTIFICATION, payload, entity_type, entity_id)
            )
        return messages

    def queue_refund(
        self,
        payment_id: UUID,
        provider_transaction_id: str,
        amount: Decimal,
        currency: str,
        *,
        cause_id: UUID,
        requested_by: UUID,
    ) -> OutboxMessage:
        """Queue a provider refund; ``cause_id`` (the dispute) keys it."""
        key = generate_idempotency_key("refund", payment_id, "provider_refund", cause_id)
        payload = {
            "payment_id": payment_id,
            "provider_transaction_id": provider_transaction_id,
            "amount": amount,
            "currency": currency,
            "cause_id": cause_id,
            "requested_by": requested_by,
        }
        return self._enqueue(key, OutboxKind.PROVIDER_REFUND, payload, "Payment", payment_id)

    def pending(self) -> list[OutboxMessage]:
        return list(
            self._session.execute(
                select(OutboxMessage)
                .where(OutboxMessage.status == OutboxStatus.PENDING)
                .order_by(OutboxMessage.created_at, OutboxMessage.idempotency_key)
            ).scalars()
        )
