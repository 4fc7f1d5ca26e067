"""
Tests for ContractService.

Covers:
- Creation: commission, worker cap, duplicate guard, permissions
- Terms acceptance by both parties
- The pairing handshake and its window, expiry and mismatch errors
- Completion confirmation and the auto-confirm sweep
- Cancellation rules and the one-shot extension
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from settlement_kernel.domain.commission import CommissionProfile, PayerTier
from settlement_kernel.domain.contract_lifecycle import (
    ContractPaymentStatus,
    ContractStatus,
    EscrowStatus,
)
from settlement_kernel.domain.dtos import OutboxKind
from settlement_kernel.domain.payment_lifecycle import PaymentStatus, RefundStatus
from settlement_kernel.exceptions import (
    AlreadyAcceptedError,
    AlreadyConfirmedError,
    CancellationNotAllowedError,
    ContractNotFoundError,
    ExtensionNotAllowedError,
    InvalidStateTransitionError,
    MaxWorkersReachedError,
    MissingReasonError,
    PairingCodeExpiredError,
    PairingCodeMismatchError,
    PairingError,
    PermissionDeniedError,
    ValidationError,
)
from settlement_kernel.models.audit_event import AuditAction
from settlement_kernel.models.contract import Contract
from settlement_kernel.models.outbox import OutboxMessage


@pytest.fixture
def soon_contract(make_contract, doer_id):
    """Accepted contract starting in 12 hours: the pairing window is open."""
    return make_contract(doer_id, start_in=timedelta(hours=12))


def _start_by_pairing(contract_service, contract, client_id, doer_id):
    code = contract_service.generate_pairing_code(contract.id, client_id).pairing_code
    contract_service.confirm_pairing(contract.id, client_id, code)
    return contract_service.confirm_pairing(contract.id, doer_id, code)


def _refund_messages(session):
    stmt = select(OutboxMessage).where(OutboxMessage.kind == OutboxKind.PROVIDER_REFUND)
    return list(session.execute(stmt).scalars())


# =============================================================================
# Creation and terms
# =============================================================================


class TestCreateContract:

    def test_free_tier_commission(self, make_contract, doer_id):
        info = make_contract(doer_id, accepted=False)
        assert info.status is ContractStatus.PENDING
        assert info.price == Decimal("100000")
        assert info.commission == Decimal("8000")
        assert info.total_price == Decimal("108000")

    def test_commission_follows_client_profile(self, make_contract, identity, client_id, doer_id):
        identity.profiles[client_id] = CommissionProfile(tier=PayerTier.SUPER_PRO)
        info = make_contract(doer_id, accepted=False)
        assert info.commission == Decimal("2000")

    def test_doer_becomes_selected_worker(self, make_job, contract_service, client_id, doer_id, session):
        job = make_job()
        contract_service.create_contract(job.id, doer_id, "50000", actor_id=client_id)
        session.refresh(job)
        assert job.selected_worker_ids == [doer_id]

    def test_worker_cap(self, make_job, contract_service, client_id):
        job = make_job(max_workers=1)
        contract_service.create_contract(job.id, uuid4(), "50000", actor_id=client_id)
        with pytest.raises(MaxWorkersReachedError):
            contract_service.create_contract(job.id, uuid4(), "50000", actor_id=client_id)

    def test_duplicate_active_contract(self, make_job, contract_service, client_id, doer_id):
        job = make_job()
        contract_service.create_contract(job.id, doer_id, "50000", actor_id=client_id)
        with pytest.raises(InvalidStateTransitionError):
            contract_service.create_contract(job.id, doer_id, "60000", actor_id=client_id)

    def test_only_job_client_creates(self, make_job, contract_service, doer_id):
        job = make_job()
        with pytest.raises(PermissionDeniedError):
            contract_service.create_contract(job.id, doer_id, "50000", actor_id=uuid4())

    def test_client_cannot_hire_themselves(self, make_job, contract_service, client_id):
        job = make_job()
        with pytest.raises(ValidationError):
            contract_service.create_contract(job.id, client_id, "50000", actor_id=client_id)

    def test_end_before_start(self, make_job, contract_service, client_id, doer_id, deterministic_clock):
        job = make_job()
        now = deterministic_clock.now()
        with pytest.raises(ValidationError):
            contract_service.create_contract(
                job.id, doer_id, "50000", actor_id=client_id, start_date=now, end_date=now - timedelta(days=1)
            )

    def test_unknown_contract(self, contract_service):
        with pytest.raises(ContractNotFoundError):
            contract_service.get_contract(uuid4())


class TestTerms:

    def test_both_parties_accept(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id, accepted=False)
        after_client = contract_service.accept_terms(contract.id, client_id)
        assert after_client.status is ContractStatus.PENDING
        assert after_client.terms_accepted_by_client

        info = contract_service.accept_terms(contract.id, doer_id)
        assert info.status is ContractStatus.ACCEPTED
        assert info.terms_accepted_at is not None
        assert info.payment_status is ContractPaymentStatus.HELD

    def test_same_party_twice(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id, accepted=False)
        contract_service.accept_terms(contract.id, client_id)
        with pytest.raises(AlreadyAcceptedError):
            contract_service.accept_terms(contract.id, client_id)

    def test_stranger_cannot_accept(self, make_contract, contract_service, doer_id):
        contract = make_contract(doer_id, accepted=False)
        with pytest.raises(PermissionDeniedError):
            contract_service.accept_terms(contract.id, uuid4())

    def test_doer_rejects_pending_contract(self, make_contract, contract_service, doer_id):
        contract = make_contract(doer_id, accepted=False)
        info = contract_service.reject_contract(contract.id, doer_id, "schedule conflict")
        assert info.status is ContractStatus.REJECTED
        assert info.cancellation_reason == "schedule conflict"

    def test_client_cannot_reject(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id, accepted=False)
        with pytest.raises(PermissionDeniedError):
            contract_service.reject_contract(contract.id, client_id, "changed my mind")


# =============================================================================
# Pairing
# =============================================================================


class TestPairing:

    def test_both_confirmations_start_contract(self, contract_service, soon_contract, client_id, doer_id):
        info = _start_by_pairing(contract_service, soon_contract, client_id, doer_id)
        assert info.status is ContractStatus.IN_PROGRESS
        assert info.client_pairing_confirmed and info.doer_pairing_confirmed

    def test_one_confirmation_does_not_start(self, contract_service, soon_contract, client_id):
        code = contract_service.generate_pairing_code(soon_contract.id, client_id).pairing_code
        info = contract_service.confirm_pairing(soon_contract.id, client_id, code.lower())
        assert info.status is ContractStatus.ACCEPTED

    def test_code_shape_and_expiry(self, contract_service, soon_contract, client_id, deterministic_clock):
        info = contract_service.generate_pairing_code(soon_contract.id, client_id)
        assert len(info.pairing_code) == 10
        assert info.pairing_expires_at == deterministic_clock.now() + timedelta(hours=72)

    def test_window_closed_far_from_start(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id, start_in=timedelta(days=3))
        with pytest.raises(PairingError):
            contract_service.generate_pairing_code(contract.id, client_id)

    def test_window_closed_without_start_date(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id, start_in=None)
        with pytest.raises(PairingError):
            contract_service.generate_pairing_code(contract.id, client_id)

    def test_needs_accepted_terms(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id, accepted=False, start_in=timedelta(hours=2))
        with pytest.raises(PairingError):
            contract_service.generate_pairing_code(contract.id, client_id)

    def test_wrong_code(self, contract_service, soon_contract, client_id, doer_id):
        contract_service.generate_pairing_code(soon_contract.id, client_id)
        with pytest.raises(PairingCodeMismatchError):
            contract_service.confirm_pairing(soon_contract.id, doer_id, "WRONGCODE2")

    def test_expired_code(self, contract_service, soon_contract, client_id, doer_id, deterministic_clock):
        code = contract_service.generate_pairing_code(soon_contract.id, client_id).pairing_code
        deterministic_clock.advance(0, hours=73)
        with pytest.raises(PairingCodeExpiredError):
            contract_service.confirm_pairing(soon_contract.id, doer_id, code)

    def test_double_confirmation(self, contract_service, soon_contract, client_id):
        code = contract_service.generate_pairing_code(soon_contract.id, client_id).pairing_code
        contract_service.confirm_pairing(soon_contract.id, client_id, code)
        with pytest.raises(AlreadyConfirmedError):
            contract_service.confirm_pairing(soon_contract.id, client_id, code)

    def test_no_regeneration_mid_handshake(self, contract_service, soon_contract, client_id, doer_id):
        code = contract_service.generate_pairing_code(soon_contract.id, client_id).pairing_code
        contract_service.confirm_pairing(soon_contract.id, client_id, code)
        with pytest.raises(PairingError):
            contract_service.generate_pairing_code(soon_contract.id, doer_id)

    def test_regeneration_after_expiry(self, contract_service, soon_contract, client_id, doer_id, deterministic_clock):
        first = contract_service.generate_pairing_code(soon_contract.id, client_id).pairing_code
        contract_service.confirm_pairing(soon_contract.id, client_id, first)
        deterministic_clock.advance(0, hours=73)
        info = contract_service.generate_pairing_code(soon_contract.id, doer_id)
        assert not info.client_pairing_confirmed

    def test_code_is_not_written_to_audit(self, contract_service, soon_contract, client_id, auditor_service):
        code = contract_service.generate_pairing_code(soon_contract.id, client_id).pairing_code
        trace = auditor_service.get_trace("Contract", soon_contract.id)
        assert AuditAction.PAIRING_CODE_GENERATED in trace.actions
        assert all(code not in str(entry.payload) for entry in trace.entries)


# =============================================================================
# Completion
# =============================================================================


class TestCompletion:

    @pytest.fixture
    def running(self, contract_service, soon_contract, client_id, doer_id):
        return _start_by_pairing(contract_service, soon_contract, client_id, doer_id)

    def test_first_confirmation_awaits_counterparty(self, contract_service, running, client_id, notifications, doer_id):
        info = contract_service.confirm_completion(running.id, client_id)
        assert info.status is ContractStatus.AWAITING_CONFIRMATION
        assert info.awaiting_confirmation_at is not None
        latest = [
            m.payload for m in notifications(running.id) if m.payload["template"] == "completion_confirmed"
        ]
        assert [p["recipient_id"] for p in latest] == [str(doer_id)]

    def test_both_confirmations_complete(self, contract_service, running, client_id, doer_id):
        contract_service.confirm_completion(running.id, doer_id)
        info = contract_service.confirm_completion(running.id, client_id)
        assert info.status is ContractStatus.COMPLETED
        assert info.actual_end_date is not None
        # no escrow was held on this contract
        assert info.payment_status is ContractPaymentStatus.ESCROW

    def test_escrow_contract_completes_to_pending_payout(
        self, make_contract, held_escrow, contract_service, client_id, doer_id
    ):
        contract = make_contract(doer_id)
        held_escrow(contract)
        contract_service.confirm_completion(contract.id, client_id)
        info = contract_service.confirm_completion(contract.id, doer_id)
        assert info.payment_status is ContractPaymentStatus.PENDING_PAYOUT

    def test_double_confirmation(self, contract_service, running, client_id):
        contract_service.confirm_completion(running.id, client_id)
        with pytest.raises(AlreadyConfirmedError):
            contract_service.confirm_completion(running.id, client_id)

    def test_cannot_complete_before_start(self, contract_service, soon_contract, client_id):
        with pytest.raises(InvalidStateTransitionError):
            contract_service.confirm_completion(soon_contract.id, client_id)

    def test_auto_confirm_after_grace_period(self, contract_service, running, doer_id, deterministic_clock):
        contract_service.confirm_completion(running.id, doer_id)

        deterministic_clock.advance(0, hours=1)
        assert contract_service.auto_confirm_stale() == []

        deterministic_clock.advance(0, hours=2)
        completed = contract_service.auto_confirm_stale()
        assert [c.id for c in completed] == [running.id]
        assert completed[0].status is ContractStatus.COMPLETED
        assert completed[0].client_confirmed


# =============================================================================
# Cancellation
# =============================================================================


class TestCancellation:

    def test_cancel_before_notice_window(self, make_contract, contract_service, client_id, doer_id, session):
        contract = make_contract(doer_id, start_in=timedelta(days=3))
        info = contract_service.cancel_contract(contract.id, client_id, "project postponed")
        assert info.status is ContractStatus.CANCELLED
        assert info.cancelled_by_id == client_id
        assert info.payment_status is ContractPaymentStatus.HELD
        assert _refund_messages(session) == []

    def test_inside_notice_window(self, soon_contract, contract_service, doer_id):
        with pytest.raises(CancellationNotAllowedError):
            contract_service.cancel_contract(soon_contract.id, doer_id, "cannot make it")

    def test_after_start(self, contract_service, soon_contract, client_id, doer_id):
        _start_by_pairing(contract_service, soon_contract, client_id, doer_id)
        with pytest.raises(CancellationNotAllowedError):
            contract_service.cancel_contract(soon_contract.id, client_id, "not needed")

    def test_reason_required(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id)
        with pytest.raises(MissingReasonError):
            contract_service.cancel_contract(contract.id, client_id, "")

    def test_escrowed_funds_are_refunded(
        self,
        make_contract,
        held_escrow,
        contract_service,
        payment_service,
        auditor_service,
        dispatcher,
        provider,
        client_id,
        doer_id,
        session,
    ):
        contract = make_contract(doer_id, accepted=False)
        payment = held_escrow(contract)
        assert payment.status is PaymentStatus.HELD_ESCROW

        info = contract_service.cancel_contract(contract.id, client_id, "found someone closer")
        assert info.status is ContractStatus.CANCELLED
        assert info.payment_status is ContractPaymentStatus.REFUNDED
        assert info.escrow_status is EscrowStatus.REFUNDED

        refunded = payment_service.get_payment(payment.id)
        assert refunded.status is PaymentStatus.REFUNDED
        assert refunded.refund_amount == Decimal("100000")
        assert refunded.refund_status is RefundStatus.PENDING
        assert auditor_service.get_trace("Payment", payment.id).last_action is AuditAction.PAYMENT_REFUNDED

        [message] = _refund_messages(session)
        assert message.idempotency_key == f"refund:{payment.id}:provider_refund:{contract.id}"

        dispatcher.dispatch_pending(limit=500)
        assert len(provider.refunds) == 1
        assert payment_service.get_payment(payment.id).refund_status is RefundStatus.ISSUED

    def test_unverified_payment_is_left_alone(
        self, make_contract, make_escrow_payment, contract_service, payment_service, client_id, doer_id, session
    ):
        contract = make_contract(doer_id)
        payment = make_escrow_payment(contract)

        info = contract_service.cancel_contract(contract.id, client_id, "changed plans")
        assert info.payment_status is ContractPaymentStatus.HELD
        assert info.escrow_status is not EscrowStatus.REFUNDED
        assert payment_service.get_payment(payment.id).status is PaymentStatus.PENDING
        assert _refund_messages(session) == []


# =============================================================================
# Extension
# =============================================================================


class TestExtension:

    def test_approved_extension_moves_end_date_and_price(
        self, make_contract, contract_service, client_id, doer_id, session
    ):
        contract = make_contract(doer_id)
        original_end = contract.end_date
        requested = contract_service.request_extension(contract.id, client_id, 5, "20000", "more rooms")
        assert requested.extension_days == 5

        info = contract_service.approve_extension(contract.id, doer_id)
        assert info.end_date == original_end + timedelta(days=5)
        assert info.original_end_date == original_end
        assert info.has_been_extended
        assert info.extension_count == 1
        assert info.price == Decimal("120000")
        assert info.commission == Decimal("9600")
        assert info.total_price == Decimal("129600")
        assert info.extension_days is None

        row = session.get(Contract, contract.id)
        assert [m.new_price for m in row.price_modifications] == [Decimal("120000")]
        assert len(row.extensions) == 1

    def test_only_one_extension(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id)
        contract_service.request_extension(contract.id, client_id, 2)
        contract_service.approve_extension(contract.id, doer_id)
        with pytest.raises(ExtensionNotAllowedError):
            contract_service.request_extension(contract.id, client_id, 2)

    def test_rejection_clears_request(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id)
        contract_service.request_extension(contract.id, client_id, 3)
        info = contract_service.reject_extension(contract.id, doer_id, "booked elsewhere")
        assert info.extension_requested_by_id is None
        assert not info.has_been_extended
        assert info.status is ContractStatus.ACCEPTED

    def test_doer_cannot_request(self, make_contract, contract_service, doer_id):
        contract = make_contract(doer_id)
        with pytest.raises(PermissionDeniedError):
            contract_service.request_extension(contract.id, doer_id, 3)

    def test_needs_end_date(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id, start_in=None)
        with pytest.raises(ExtensionNotAllowedError):
            contract_service.request_extension(contract.id, client_id, 3)

    def test_pending_request_blocks_another(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id)
        contract_service.request_extension(contract.id, client_id, 3)
        with pytest.raises(ExtensionNotAllowedError):
            contract_service.request_extension(contract.id, client_id, 4)

    @pytest.mark.parametrize("days", [0, -1])
    def test_days_must_be_positive(self, make_contract, contract_service, client_id, doer_id, days):
        contract = make_contract(doer_id)
        with pytest.raises(ValidationError):
            contract_service.request_extension(contract.id, client_id, days)

    def test_cancelled_contract_cannot_approve(self, make_contract, contract_service, client_id, doer_id):
        contract = make_contract(doer_id)
        contract_service.request_extension(contract.id, client_id, 5, "20000")
        cancelled = contract_service.cancel_contract(contract.id, client_id, "no longer needed")
        assert cancelled.extension_requested_by_id is None
        assert cancelled.extension_days is None

        with pytest.raises(ExtensionNotAllowedError):
            contract_service.approve_extension(contract.id, doer_id)
        info = contract_service.get_contract(contract.id)
        assert info.price == Decimal("100000")
        assert not info.has_been_extended

    def test_dispute_drops_pending_request(
        self, make_contract, contract_service, dispute_service, client_id, doer_id
    ):
        contract = make_contract(doer_id)
        contract_service.request_extension(contract.id, client_id, 5, "20000")
        disputed = dispute_service.open_dispute(contract.id, doer_id, "other", "scope keeps growing")
        assert disputed.contract_id == contract.id

        info = contract_service.get_contract(contract.id)
        assert info.status is ContractStatus.DISPUTED
        assert info.extension_requested_by_id is None
        with pytest.raises(ExtensionNotAllowedError):
            contract_service.approve_extension(contract.id, doer_id)
