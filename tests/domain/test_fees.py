"""
Tests for donation_batch.domain.fees.

Fee breakdown arithmetic, batch totals, allocation specs and the
settlement reserve.
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from donation_kernel.domain.money import FEE_TOLERANCE
from donation_kernel.exceptions import (
    EmptyInputError,
    InvalidAmountError,
    InvalidFeePercentagesError,
    ValidationError,
)
from donation_config.schema import FeeSchedule

from donation_batch.domain.fees import (
    allocations_for,
    calculate_batch_fees,
    calculate_fees,
    calculate_fees_for_schedule,
    settlement_reserve,
    validate_fee_percentages,
)
from donation_batch.domain.types import DonationRecord, DonationStatus, FeeType


def _record(gross) -> DonationRecord:
    b = calculate_fees(gross)
    return DonationRecord(
        donation_id=uuid4(),
        gross_amount=b.gross_amount,
        currency="EUR",
        gross_amount_eur=b.gross_amount,
        net_amount_eur=b.net_amount,
        debt_fee_percent=b.debt_fee_percent,
        operational_fee_percent=b.operational_fee_percent,
        transaction_fee_percent=b.transaction_fee_percent,
        debt_fee_amount=b.debt_fee_amount,
        operational_fee_amount=b.operational_fee_amount,
        transaction_fee_amount=b.transaction_fee_amount,
        status=DonationStatus.PENDING,
    )


# =============================================================================
# calculate_fees
# =============================================================================


class TestCalculateFees:
    def test_default_schedule_is_25_percent(self):
        b = calculate_fees(Decimal("100"))
        assert b.debt_fee_amount == Decimal("10")
        assert b.operational_fee_amount == Decimal("10")
        assert b.transaction_fee_amount == Decimal("5")
        assert b.total_fee_amount == Decimal("25")
        assert b.net_amount == Decimal("75")
        assert b.total_fee_percent == Decimal("25")

    @pytest.mark.parametrize("gross,net", [("50", "37.5"), ("60", "45"), ("40", "30")])
    def test_reference_donations(self, gross, net):
        assert calculate_fees(Decimal(gross)).net_amount == Decimal(net)

    def test_rounds_half_away_from_zero_to_8_places(self):
        b = calculate_fees(Decimal("0.00000005"), 10, 0, 0)
        # 0.000000005 rounds up
        assert b.debt_fee_amount == Decimal("0.00000001")

    @pytest.mark.parametrize("amount", [0, -5, Decimal("-0.01")])
    def test_non_positive_amount_rejected(self, amount):
        with pytest.raises(InvalidAmountError) as exc_info:
            calculate_fees(amount)
        assert isinstance(exc_info.value, ValidationError)

    def test_non_numeric_amount_rejected(self):
        with pytest.raises(InvalidAmountError):
            calculate_fees("abc")

    def test_percent_sum_above_100_rejected(self):
        with pytest.raises(InvalidFeePercentagesError):
            calculate_fees(Decimal("10"), 50, 40, 20)

    def test_zero_fees_allowed(self):
        b = calculate_fees(Decimal("10"), 0, 0, 0)
        assert b.net_amount == Decimal("10")

    def test_schedule_variant(self):
        schedule = FeeSchedule(debt_percent=Decimal("5"), operational_percent=Decimal("5"),
                               transaction_percent=Decimal("0"))
        assert calculate_fees_for_schedule(Decimal("200"), schedule).net_amount == Decimal("180")

    @settings(max_examples=200)
    @given(
        amount=st.decimals(min_value=Decimal("0.01"), max_value=Decimal("1000000"), places=2),
        debt=st.integers(min_value=0, max_value=40),
        op=st.integers(min_value=0, max_value=40),
        tx=st.integers(min_value=0, max_value=20),
    )
    def test_fees_reconcile_with_net(self, amount, debt, op, tx):
        b = calculate_fees(amount, debt, op, tx)
        fees = b.debt_fee_amount + b.operational_fee_amount + b.transaction_fee_amount
        assert abs(fees - (b.gross_amount - b.net_amount)) <= FEE_TOLERANCE
        assert b.net_amount >= 0


class TestValidateFeePercentages:
    def test_bounds(self):
        assert validate_fee_percentages(10, 10, 5)
        assert validate_fee_percentages(0, 0, 0)
        assert validate_fee_percentages(50, 50, 0)
        assert not validate_fee_percentages(50, 50, 1)
        assert not validate_fee_percentages(-1, 10, 5)


# =============================================================================
# calculate_batch_fees
# =============================================================================


class TestBatchFees:
    def test_sums_stored_fields(self):
        donations = [_record(Decimal(v)) for v in ("50", "60", "40")]
        totals = calculate_batch_fees(donations)
        assert totals.total_gross_eur == Decimal("150")
        assert totals.total_net_eur == Decimal("112.5")
        assert totals.total_debt_fee_eur == sum(d.debt_fee_amount for d in donations)
        assert totals.total_fee_eur == Decimal("37.5")
        assert totals.donation_count == 3

    def test_empty_rejected(self):
        with pytest.raises(EmptyInputError):
            calculate_batch_fees([])

    @given(st.lists(st.decimals(min_value=Decimal("1"), max_value=Decimal("5000"), places=2),
                    min_size=1, max_size=25))
    def test_totals_equal_per_donation_sums(self, amounts):
        donations = [_record(a) for a in amounts]
        totals = calculate_batch_fees(donations)
        assert totals.total_net_eur == sum(d.net_amount_eur for d in donations)
        assert totals.total_gross_eur == sum(d.gross_amount_eur for d in donations)


class TestAllocations:
    def test_three_allocations_match_donation(self):
        donation = _record(Decimal("80"))
        specs = allocations_for(donation)
        assert [s.fee_type for s in specs] == [FeeType.DEBT, FeeType.OPERATIONAL, FeeType.TRANSACTION]
        assert sum(s.amount for s in specs) == donation.gross_amount_eur - donation.net_amount_eur
        assert specs[0].destination == "debt_account"


# =============================================================================
# Settlement reserve
# =============================================================================


class TestSettlementReserve:
    def test_eligible_at_minimum(self):
        r = settlement_reserve(Decimal("44"))
        assert r.eligible
        assert r.required_eur == 0

    def test_shortfall_rounded_to_cents(self):
        r = settlement_reserve(Decimal("30.123"))
        assert not r.eligible
        assert r.required_eur == Decimal("13.88")

    def test_custom_minimum(self):
        assert settlement_reserve(Decimal("90"), Decimal("100")).required_eur == Decimal("10.00")

    @given(st.decimals(min_value=Decimal("0"), max_value=Decimal("500"), places=4))
    def test_required_zero_iff_total_meets_minimum(self, total):
        r = settlement_reserve(total)
        assert (r.required_eur == 0) == (total >= Decimal("44"))
