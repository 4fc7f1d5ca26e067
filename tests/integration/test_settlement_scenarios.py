"""
End-to-end settlement scenarios across services.

Verifies, on one session and one audit chain:
- Contract from creation through escrow, completion and payout
- Budget increase paid through the normal proof flow, then a decrease credit
- Dispute full refund carried out by the outbox dispatcher
- Worker removal with redistribution
- Approval idempotence between the webhook and the admin path
- Price decrease vetoed by a single worker
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from settlement_kernel.domain.contract_lifecycle import (
    ContractPaymentStatus,
    ContractStatus,
    EscrowStatus,
)
from settlement_kernel.domain.dispute_lifecycle import DisputeStatus
from settlement_kernel.domain.dtos import JobStatus
from settlement_kernel.domain.payment_lifecycle import PaymentStatus, RefundStatus
from settlement_kernel.exceptions import PaymentAlreadyProcessedError
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.contract import Contract


class TestContractToPayout:

    def test_full_happy_path(
        self,
        make_contract,
        make_escrow_payment,
        payment_service,
        contract_service,
        dispatcher,
        notifier,
        auditor_service,
        client_id,
        doer_id,
        admin_id,
    ):
        contract = make_contract(doer_id)
        assert (contract.price, contract.commission, contract.total_price) == (
            Decimal("100000"),
            Decimal("8000"),
            Decimal("108000"),
        )

        payment = make_escrow_payment(contract)
        payment_service.approve_proof(payment.id, actor_id=admin_id)
        payment_service.verify_escrow(payment.id, actor_id=admin_id)
        assert contract_service.get_contract(contract.id).status is ContractStatus.IN_PROGRESS

        contract_service.confirm_completion(contract.id, doer_id)
        done = contract_service.confirm_completion(contract.id, client_id)
        assert done.status is ContractStatus.COMPLETED
        assert done.payment_status is ContractPaymentStatus.PENDING_PAYOUT

        payment_service.confirm_for_payout(payment.id, actor_id=admin_id)
        released = payment_service.release_payout(payment.id, actor_id=admin_id)
        assert released.status is PaymentStatus.COMPLETED

        final = contract_service.get_contract(contract.id)
        assert final.payment_status is ContractPaymentStatus.RELEASED
        assert final.escrow_status is EscrowStatus.RELEASED

        report = dispatcher.dispatch_pending(limit=500)
        assert report.failed == 0
        assert "contract_completed" in notifier.templates_for(doer_id)
        assert auditor_service.validate_chain() is True


class TestBudgetChanges:

    def test_increase_then_decrease(
        self, price_service, payment_service, balance_service, make_job, client_id, admin_id, session
    ):
        job = make_job(Decimal("100000"))
        increase = price_service.request_price_change(
            job.id, "150000", "scope grew to the garage", actor_id=client_id
        )
        assert increase.awaiting_payment.amount == Decimal("54000")

        payment_service.approve_proof(increase.awaiting_payment.id, actor_id=admin_id)
        session.refresh(job)
        assert job.price == Decimal("150000")
        assert job.status == JobStatus.OPEN

        decrease = price_service.request_price_change(
            job.id, "120000", "garage done by a neighbour", actor_id=client_id
        )
        assert decrease.applied
        assert balance_service.balance_of(client_id) == Decimal("30000")

    def test_single_rejection_vetoes_decrease(self, price_service, make_job, make_contract, client_id):
        job = make_job(Decimal("90000"))
        workers = [uuid4() for _ in range(3)]
        for worker in workers:
            make_contract(worker, Decimal("20000"), job=job)

        price_service.request_price_change(job.id, "70000", "less wall to paint", actor_id=client_id)
        price_service.respond_to_price_decrease(job.id, workers[0], True)
        price_service.respond_to_price_decrease(job.id, workers[1], True)
        result = price_service.respond_to_price_decrease(job.id, workers[2], False)

        assert not result.applied
        assert result.job.price == Decimal("90000")
        assert result.job.pending_price_decrease is None


class TestDisputeRefund:

    def test_refund_reaches_provider(
        self,
        make_contract,
        held_escrow,
        dispute_service,
        payment_service,
        contract_service,
        dispatcher,
        provider,
        client_id,
        doer_id,
        admin_id,
    ):
        contract = make_contract(doer_id)
        payment = held_escrow(contract, Decimal("50000"), commission=Decimal("5000"))

        dispute = dispute_service.open_dispute(
            contract.id, client_id, "service_not_delivered", "nobody showed up"
        )
        dispute_service.assign(dispute.id, admin_id)
        settlement = dispute_service.resolve_dispute(
            dispute.id, "full_refund", "doer never arrived", admin_id=admin_id
        )
        assert settlement.dispute.status is DisputeStatus.RESOLVED_REFUNDED

        report = dispatcher.dispatch_pending(limit=500)
        assert report.failed == 0

        [refund] = provider.refunds.values()
        assert refund["amount"] == Decimal("45000")

        paid = payment_service.get_payment(payment.id)
        assert paid.status is PaymentStatus.REFUNDED
        assert paid.refund_status is RefundStatus.ISSUED
        assert contract_service.get_contract(contract.id).status is ContractStatus.CANCELLED

        # a second dispatch never refunds twice
        dispatcher.dispatch_pending(limit=500)
        assert len(provider.refunds) == 1


class TestWorkerRemoval:

    def test_removed_share_goes_to_remaining_worker(
        self, allocation_service, make_job, make_contract, client_id, session
    ):
        job = make_job(Decimal("20000"))
        worker_a, worker_b = uuid4(), uuid4()
        removed = make_contract(worker_a, Decimal("12000"), job=job)
        kept = make_contract(worker_b, Decimal("8000"), job=job)
        allocation_service.set_worker_allocations(
            job.id, [(worker_a, "12000"), (worker_b, "8000")], actor_id=client_id
        )

        info = allocation_service.remove_worker(job.id, worker_a, True, actor_id=client_id)
        assert info.selected_workers == (worker_b,)
        assert info.allocated_total == Decimal("20000")
        assert info.remaining_budget == Decimal("0")

        assert session.get(Contract, removed.id).status == ContractStatus.CANCELLED
        row = session.get(Contract, kept.id)
        assert row.price == Decimal("20000")
        assert row.total_price == Decimal("21600")


class TestApprovalIdempotence:

    def test_webhook_then_admin_approval(
        self, make_contract, make_escrow_payment, webhook_service, payment_service, auditor_service, doer_id, admin_id
    ):
        contract = make_contract(doer_id)
        payment = make_escrow_payment(contract, provider_transaction_id="tx-idem-1")

        webhook_service.handle_event("tx-idem-1", "approved")
        assert webhook_service.handle_event("tx-idem-1", "approved") is None
        with pytest.raises(PaymentAlreadyProcessedError):
            payment_service.approve_proof(payment.id, actor_id=admin_id)

        trace = auditor_service.get_trace("Payment", payment.id)
        assert trace.actions.count(AuditAction.PAYMENT_APPROVED) == 1
        assert payment_service.get_payment(payment.id).status is PaymentStatus.HELD_ESCROW
