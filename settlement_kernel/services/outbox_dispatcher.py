"""
OutboxDispatcher -- after-commit delivery of queued side effects.

Responsibility:
    Delivers pending ``OutboxMessage`` rows to the notification sender and
    the payment provider, and records the result of each attempt.

Architecture position:
    Kernel > Services -- imperative shell.  Run by the caller after the
    financial transaction committed (and by a periodic job for retries).

Invariants enforced:
    - At-least-once delivery: a message stays pending until a delivery
      succeeded; the idempotency key is passed to the collaborator so a
      redelivery is recognized on its side.
    - Failure of a side effect never touches the financial state that
      caused it.  Only a confirmed refund (``refund_status = issued``) or
      a permanently failed one (``refund_status = failed``) writes back to
      the payment.
    - Retry limit: after ``outbox_max_attempts`` the message is failed.

Failure modes:
    - Each message is delivered inside its own SAVEPOINT.  Any error from
      a collaborator (ExternalProviderError or otherwise) rolls back that
      message only; it is logged and scheduled for retry with exponential
      backoff, so one bad message never undoes the rest of the batch.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.collaborators import NotificationSender, PaymentProviderAdapter
from settlement_kernel.domain.dtos import DispatchReport, OutboxKind, OutboxStatus
from settlement_kernel.domain.policy import DEFAULT_POLICY, SettlementPolicy
from settlement_kernel.exceptions import ExternalProviderError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.outbox import OutboxMessage
from settlement_kernel.services.payment_service import PaymentService

logger = get_logger("services.outbox_dispatcher")


class OutboxDispatcher:
    """
    Contract:
        ``dispatch_pending()`` attempts every due message once and returns a
        ``DispatchReport``.  The caller commits afterwards.

    Guarantees:
        - A delivered message is never attempted again.
        - ``attempts`` counts every delivery attempt.

    Non-goals:
        - Does NOT re-derive any financial decision; the refund amount is
          the one stored when the dispute was resolved or the contract was
          cancelled.
    """

    def __init__(
        self,
        session: Session,
        notifier: NotificationSender,
        provider: PaymentProviderAdapter | None = None,
        clock: Clock | None = None,
        policy: SettlementPolicy | None = None,
    ):
        self._session = session
        self._notifier = notifier
        self._provider = provider
        self._clock = clock or SystemClock()
        self._policy = policy or DEFAULT_POLICY

    def _due(self, limit: int) -> list[OutboxMessage]:
        now = self._clock.now()
        return list(
            self._session.execute(
                select(OutboxMessage)
                .where(
                    OutboxMessage.status == OutboxStatus.PENDING,
                    or_(
                        OutboxMessage.next_attempt_at.is_(None),
                        OutboxMessage.next_attempt_at <= now,
                    ),
                )
                .order_by(OutboxMessage.created_at, OutboxMessage.idempotency_key)
                .limit(limit)
                .with_for_update(skip_locked=True)
            ).scalars()
        )

    def dispatch_pending(self, limit: int = 100) -> DispatchReport:
        delivered = retried = failed = 0
        errors: list[str] = []

        for message in self._due(limit):
            message.attempts += 1
            self._session.flush()
            error, retryable = self._attempt(message)
            if error is None:
                message.status = OutboxStatus.DELIVERED
                message.delivered_at = self._clock.now()
                message.last_error = None
                delivered += 1
            else:
                message.last_error = error
                errors.append(f"{message.idempotency_key}: {error}")
                if not retryable or message.attempts >= self._policy.outbox_max_attempts:
                    self._give_up(message)
                    failed += 1
                else:
                    self._schedule_retry(message)
                    retried += 1
            self._session.flush()

        report = DispatchReport(
            delivered=delivered, retried=retried, failed=failed, errors=tuple(errors)
        )
        if report.attempted:
            logger.info(
                "outbox_dispatched",
                extra={"delivered": delivered, "retried": retried, "failed": failed},
            )
        return report

    def _attempt(self, message: OutboxMessage) -> tuple[str | None, bool]:
        """Deliver one message inside a SAVEPOINT; return ``(error, retryable)``."""
        key = message.idempotency_key
        savepoint = self._session.begin_nested()
        try:
            self._deliver(message)
        except ExternalProviderError as e:
            savepoint.rollback()
            return str(e), e.retryable
        except Exception as e:
            logger.error(
                "outbox_delivery_crashed",
                extra={"idempotency_key": key},
                exc_info=True,
            )
            savepoint.rollback()
            return f"{type(e).__name__}: {e}", True
        savepoint.commit()
        return None, True

    def _deliver(self, message: OutboxMessage) -> None:
        payload = message.payload
        if OutboxKind(message.kind) is OutboxKind.NOTIFICATION:
            self._notifier.send(
                UUID(payload["recipient_id"]),
                payload["template"],
                payload.get("data") or {},
                message.idempotency_key,
            )
            return

        if self._provider is None:
            raise ExternalProviderError(
                "refund", "no payment provider configured", retryable=True
            )
        refund_id = self._provider.refund(
            payload["provider_transaction_id"],
            Decimal(payload["amount"]),
            message.idempotency_key,
        )
        self._payments().mark_refund_issued(
            payload["payment_id"],
            refund_id,
            actor_id=UUID(payload["requested_by"]),
        )

    def _schedule_retry(self, message: OutboxMessage) -> None:
        delay = self._policy.outbox_backoff_seconds * (2 ** (message.attempts - 1))
        message.next_attempt_at = self._clock.now() + timedelta(seconds=delay)
        logger.warning(
            "outbox_delivery_failed",
            extra={
                "idempotency_key": message.idempotency_key,
                "attempts": message.attempts,
                "retry_in_seconds": delay,
                "error": message.last_error,
            },
        )

    def _give_up(self, message: OutboxMessage) -> None:
        message.status = OutboxStatus.FAILED
        message.next_attempt_at = None
        logger.error(
            "outbox_delivery_abandoned",
            extra={
                "idempotency_key": message.idempotency_key,
                "attempts": message.attempts,
                "error": message.last_error,
            },
        )
        if OutboxKind(message.kind) is OutboxKind.PROVIDER_REFUND:
            payload = message.payload
            self._payments().mark_refund_failed(
                payload["payment_id"],
                message.last_error or "refund failed",
                actor_id=UUID(payload["requested_by"]),
            )

    def _payments(self) -> PaymentService:
        return PaymentService(self._session, clock=self._clock, policy=self._policy)
