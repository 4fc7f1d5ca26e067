"""
Tests for OutboxDispatcher.

Covers:
- Notification delivery with the idempotency key handed to the sender
- Exponential backoff on retryable failures
- Giving up after the attempt limit
- Provider refunds: issued, permanently failed, no provider configured
- One crashing message never undoes the rest of the batch
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from settlement_kernel.domain.dtos import OutboxStatus
from settlement_kernel.domain.payment_lifecycle import RefundStatus
from settlement_kernel.models.outbox import OutboxMessage
from settlement_kernel.services.outbox_dispatcher import OutboxDispatcher


@pytest.fixture
def single_notification(outbox_writer):
    recipient = uuid4()
    [message] = outbox_writer.notify(
        [recipient, recipient],
        "payment_approved",
        {"amount": Decimal("108000")},
        entity_type="Payment",
        entity_id=uuid4(),
        discriminator=1,
    )
    return recipient, message


@pytest.fixture
def resolved_refund(make_contract, held_escrow, dispute_service, client_id, doer_id, admin_id):
    """Full refund of a 50000 escrow payment (commission 5000) queued for the provider."""
    contract = make_contract(doer_id)
    payment = held_escrow(contract, Decimal("50000"), commission=Decimal("5000"))
    dispute = dispute_service.open_dispute(contract.id, client_id, "other", "nothing was done")
    dispute_service.resolve_dispute(dispute.id, "full_refund", "refund the client", admin_id=admin_id)
    return payment


class TestNotifications:

    def test_delivers_once(self, dispatcher, notifier, single_notification):
        recipient, message = single_notification
        report = dispatcher.dispatch_pending()

        assert report.delivered == 1
        assert notifier.sent[0]["recipient_id"] == recipient
        assert notifier.sent[0]["template"] == "payment_approved"
        assert notifier.sent[0]["data"] == {"amount": "108000"}
        assert notifier.sent[0]["idempotency_key"] == message.idempotency_key
        assert message.status == OutboxStatus.DELIVERED
        assert message.attempts == 1

        assert dispatcher.dispatch_pending().attempted == 0

    def test_contract_events_reach_both_parties(self, make_contract, dispatcher, notifier, client_id, doer_id):
        make_contract(doer_id, accepted=False)
        dispatcher.dispatch_pending()
        assert "contract_created" in notifier.templates_for(client_id)
        assert "contract_created" in notifier.templates_for(doer_id)

    def test_retry_with_backoff(self, dispatcher, notifier, single_notification, deterministic_clock):
        _, message = single_notification
        notifier.fail_next = 2
        start = deterministic_clock.now()

        report = dispatcher.dispatch_pending()
        assert report.retried == 1
        assert "transport unavailable" in report.errors[0]
        assert message.next_attempt_at == start + timedelta(seconds=60)

        # not due yet
        assert dispatcher.dispatch_pending().attempted == 0

        deterministic_clock.advance(60)
        second = dispatcher.dispatch_pending()
        assert second.retried == 1
        assert message.attempts == 2
        assert message.next_attempt_at == start + timedelta(seconds=60 + 120)

        deterministic_clock.advance(120)
        third = dispatcher.dispatch_pending()
        assert third.delivered == 1
        assert message.status == OutboxStatus.DELIVERED
        assert message.last_error is None

    def test_gives_up_after_max_attempts(self, dispatcher, notifier, single_notification, deterministic_clock):
        _, message = single_notification
        notifier.fail_next = 100

        reports = []
        for _ in range(5):
            reports.append(dispatcher.dispatch_pending())
            deterministic_clock.advance(3600)

        assert [r.retried for r in reports] == [1, 1, 1, 1, 0]
        assert reports[-1].failed == 1
        assert message.status == OutboxStatus.FAILED
        assert message.attempts == 5
        assert dispatcher.dispatch_pending().attempted == 0


class TestRefunds:

    def test_refund_issued(self, dispatcher, provider, resolved_refund, payment_service):
        report = dispatcher.dispatch_pending()
        assert report.failed == 0

        [refund] = provider.refunds.values()
        assert refund["provider_transaction_id"] == "tx-escrow-1"
        assert refund["amount"] == Decimal("45000")

        payment = payment_service.get_payment(resolved_refund.id)
        assert payment.refund_status is RefundStatus.ISSUED
        assert payment.provider_refund_id == "rf-1"
        assert payment.refunded_at is not None

    def test_transient_provider_error_retries(self, dispatcher, provider, resolved_refund, payment_service, deterministic_clock):
        provider.fail_refunds = 1
        dispatcher.dispatch_pending()
        assert payment_service.get_payment(resolved_refund.id).refund_status is RefundStatus.PENDING

        deterministic_clock.advance(60)
        dispatcher.dispatch_pending()
        assert payment_service.get_payment(resolved_refund.id).refund_status is RefundStatus.ISSUED
        assert len(provider.refunds) == 1

    def test_permanent_failure_marks_refund_failed(self, dispatcher, provider, resolved_refund, payment_service):
        provider.permanent_failure = True
        report = dispatcher.dispatch_pending()
        assert report.failed == 1

        payment = payment_service.get_payment(resolved_refund.id)
        assert payment.refund_status is RefundStatus.FAILED
        assert "not refundable" in payment.admin_notes

    def test_no_provider_configured_is_retryable(self, session, notifier, resolved_refund, deterministic_clock):
        dispatcher = OutboxDispatcher(session, notifier, None, deterministic_clock)
        report = dispatcher.dispatch_pending()
        assert report.retried == 1
        assert report.failed == 0

    def test_crashing_notifier_does_not_undo_refund(
        self, dispatcher, notifier, provider, resolved_refund, payment_service, session
    ):
        notifier.crash_next = 1
        report = dispatcher.dispatch_pending(limit=500)

        assert report.retried == 1
        assert report.failed == 0
        assert "RuntimeError" in report.errors[0]

        assert len(provider.refunds) == 1
        payment = payment_service.get_payment(resolved_refund.id)
        assert payment.refund_status is RefundStatus.ISSUED

        [stuck] = session.execute(
            select(OutboxMessage).where(
                OutboxMessage.status == OutboxStatus.PENDING,
                OutboxMessage.last_error.is_not(None),
            )
        ).scalars().all()
        assert stuck.last_error.startswith("RuntimeError")
        assert stuck.attempts == 1
