"""
Tests for the batch transition table and the versioned batch metadata.
"""

from datetime import datetime
from decimal import Decimal

import pytest

from donation_kernel.exceptions import InvalidStateTransitionError, StateError

from donation_batch.domain.batch import (
    BatchMetadata,
    ErrorDetail,
    FeePayment,
    GrossDeposit,
    OperationalFee,
    SettlementReserve,
)
from donation_batch.domain.transitions import (
    BATCH_TRANSITIONS,
    TERMINAL_BATCH_STATUSES,
    can_transition,
    can_transition_donation,
    is_terminal,
    require_transition,
)
from donation_batch.domain.types import BatchStatus, DonationStatus


# =============================================================================
# Transition table
# =============================================================================


class TestBatchTransitions:
    def test_every_status_has_an_entry(self):
        assert set(BATCH_TRANSITIONS) == set(BatchStatus)

    def test_terminal_states_have_no_exits(self):
        for status in TERMINAL_BATCH_STATUSES:
            assert BATCH_TRANSITIONS[status] == frozenset()
            assert is_terminal(status)

    def test_every_non_terminal_state_can_cancel(self):
        for status in BatchStatus:
            if not is_terminal(status):
                assert can_transition(status, BatchStatus.CANCELLED), status

    @pytest.mark.parametrize("current,target", [
        (BatchStatus.DRAFT, BatchStatus.PROCESSING),
        (BatchStatus.PENDING, BatchStatus.PROCESSING),
        (BatchStatus.DRAFT, BatchStatus.SENDING),
        (BatchStatus.DRAFT, BatchStatus.AWAITING_SETTLEMENT),
        (BatchStatus.PROCESSING, BatchStatus.AWAITING_SETTLEMENT),
        (BatchStatus.AWAITING_SETTLEMENT, BatchStatus.SENDING),
        (BatchStatus.SENDING, BatchStatus.SENDING),
        (BatchStatus.SENDING, BatchStatus.COMPLETED),
        (BatchStatus.SENDING, BatchStatus.NEEDS_RECONCILIATION),
        (BatchStatus.NEEDS_RECONCILIATION, BatchStatus.SENDING),
    ])
    def test_allowed(self, current, target):
        assert can_transition(current, target)

    @pytest.mark.parametrize("current,target", [
        (BatchStatus.DRAFT, BatchStatus.COMPLETED),
        (BatchStatus.PROCESSING, BatchStatus.COMPLETED),
        (BatchStatus.AWAITING_SETTLEMENT, BatchStatus.COMPLETED),
        (BatchStatus.NEEDS_RECONCILIATION, BatchStatus.COMPLETED),
        (BatchStatus.COMPLETED, BatchStatus.CANCELLED),
        (BatchStatus.FAILED, BatchStatus.DRAFT),
    ])
    def test_rejected(self, current, target):
        assert not can_transition(current, target)
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            require_transition("b-1", current, target)
        assert isinstance(exc_info.value, StateError)
        assert exc_info.value.current_status == current.value


class TestDonationTransitions:
    def test_monotonic(self):
        assert can_transition_donation(DonationStatus.PENDING, DonationStatus.BATCHED)
        assert can_transition_donation(DonationStatus.BATCHED, DonationStatus.SENT)
        assert can_transition_donation(DonationStatus.PENDING, DonationStatus.FAILED)
        assert not can_transition_donation(DonationStatus.SENT, DonationStatus.PENDING)
        assert not can_transition_donation(DonationStatus.BATCHED, DonationStatus.PENDING)


# =============================================================================
# Metadata
# =============================================================================


class TestBatchMetadata:
    def test_empty_defaults(self):
        metadata = BatchMetadata.from_dict(None)
        assert metadata.version == 1
        assert metadata.gross_deposit is None
        assert metadata.operational_fee.due_eur == 0
        assert not metadata.manual_intervention_required

    def test_serialized_form_keeps_amounts_exact(self):
        recorded = datetime(2026, 2, 1, 12, 0, 0)
        metadata = BatchMetadata(
            gross_deposit=GrossDeposit(Decimal("150"), "wire 42", recorded),
            operational_fee=OperationalFee(
                current_eur=Decimal("15.00"),
                paid_eur=Decimal("5"),
                due_eur=Decimal("10.00"),
                payments=(FeePayment(Decimal("5"), None, recorded),),
            ),
            settlement_reserve=SettlementReserve(Decimal("44"), Decimal("0")),
            error=ErrorDetail("ON_CHAIN_FAILURE", "reverted", recorded),
            manual_intervention_required=True,
        ).with_refs(tx_hash="0xabc", bank_references=("BANK-1",))

        data = metadata.to_dict()
        assert data["version"] == 1
        assert data["gross_deposit"]["amount_eur"] == "150"
        assert data["operational_fee"]["current_eur"] == "15.00"
        assert data["external_refs"]["bank_references"] == ["BANK-1"]

        restored = BatchMetadata.from_dict(data)
        assert restored.operational_fee.payments[0].amount_eur == Decimal("5")
        assert restored.external_refs.tx_hash == "0xabc"
        assert restored.error.recorded_at == recorded

    def test_future_version_rejected(self):
        with pytest.raises(ValueError):
            BatchMetadata.from_dict({"version": 2})
