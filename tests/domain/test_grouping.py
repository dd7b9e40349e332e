"""
Tests for donation_batch.domain.grouping.
"""

from decimal import Decimal
from uuid import uuid4

from hypothesis import given
from hypothesis import strategies as st

from donation_config.schema import GroupingThresholds

from donation_batch.domain.grouping import (
    group_by_wallet,
    group_for_bank_transfers,
    group_for_optimal_fees,
    group_total,
    optimize_group_merging,
)
from donation_batch.domain.types import DonationRecord, DonationStatus


def _donation(net, wallet="TWallet") -> DonationRecord:
    net = Decimal(str(net))
    return DonationRecord(
        donation_id=uuid4(),
        gross_amount=net,
        currency="EUR",
        gross_amount_eur=net,
        net_amount_eur=net,
        debt_fee_percent=Decimal("0"),
        operational_fee_percent=Decimal("0"),
        transaction_fee_percent=Decimal("0"),
        debt_fee_amount=Decimal("0"),
        operational_fee_amount=Decimal("0"),
        transaction_fee_amount=Decimal("0"),
        status=DonationStatus.PENDING,
        wallet_address=wallet,
    )


def _nets(groups):
    return [[d.net_amount_eur for d in g] for g in groups]


# =============================================================================
# group_for_optimal_fees
# =============================================================================


class TestOptimalGrouping:
    def test_small_batch_forms_one_group(self):
        donations = [_donation(v) for v in ("37.5", "45", "30")]
        groups = group_for_optimal_fees(donations)
        assert len(groups) == 1
        assert _nets(groups) == [[Decimal("45"), Decimal("37.5"), Decimal("30")]]

    def test_ceiling_closes_group(self):
        groups = group_for_optimal_fees([_donation(v) for v in (900, 800, 50)])
        assert _nets(groups) == [[Decimal("900")], [Decimal("800"), Decimal("50")]]

    def test_undersized_group_keeps_accumulating(self):
        groups = group_for_optimal_fees(
            [_donation(v) for v in (40, 40, 40, 30)],
            optimal_size_eur=100, min_size_eur=50, flexibility=1,
        )
        assert _nets(groups) == [[Decimal("40"), Decimal("40")], [Decimal("40"), Decimal("30")]]

    def test_trailing_remainder_allowed(self):
        groups = group_for_optimal_fees(
            [_donation(v) for v in (90, 30)],
            optimal_size_eur=100, min_size_eur=50, flexibility=1,
        )
        assert _nets(groups) == [[Decimal("90")], [Decimal("30")]]

    def test_stable_on_ties(self):
        donations = [_donation(10) for _ in range(5)]
        groups = group_for_optimal_fees(donations)
        assert [d.donation_id for d in groups[0]] == [d.donation_id for d in donations]

    def test_empty_input(self):
        assert group_for_optimal_fees([]) == []

    @given(st.lists(st.decimals(min_value=Decimal("0.01"), max_value=Decimal("3000"), places=2),
                    max_size=40))
    def test_partition_and_minimum(self, amounts):
        donations = [_donation(a) for a in amounts]
        groups = group_for_optimal_fees(donations)

        emitted = [d.donation_id for g in groups for d in g]
        assert sorted(emitted) == sorted(d.donation_id for d in donations)
        assert sum((group_total(g) for g in groups), Decimal("0")) == sum(
            (d.net_amount_eur for d in donations), Decimal("0"),
        )
        for group in groups[:-1]:
            assert group_total(group) >= Decimal("100")
        assert all(groups)


class TestGroupMerging:
    def test_run_of_small_groups_folds_forward(self):
        groups = [[_donation(20)], [_donation(30)], [_donation(200)]]
        merged = optimize_group_merging(groups, Decimal("100"))
        assert _nets(merged) == [[Decimal("20"), Decimal("30"), Decimal("200")]]

    def test_large_groups_untouched(self):
        groups = [[_donation(150)], [_donation(120)]]
        assert _nets(optimize_group_merging(groups, Decimal("100"))) == [
            [Decimal("150")], [Decimal("120")],
        ]


# =============================================================================
# Wallet and bank grouping
# =============================================================================


class TestWalletGrouping:
    def test_first_seen_order_and_missing_wallet_skipped(self):
        a1, b1, a2 = _donation(10, "A"), _donation(20, "B"), _donation(30, "A")
        orphan = _donation(40, None)
        grouped = group_by_wallet([a1, b1, orphan, a2])
        assert list(grouped) == ["A", "B"]
        assert grouped["A"] == [a1, a2]


class TestBankGrouping:
    def test_uses_thresholds(self):
        thresholds = GroupingThresholds(
            optimal_size_eur=Decimal("100"), min_size_eur=Decimal("50"), flexibility=Decimal("1"),
        )
        groups = group_for_bank_transfers([_donation(v) for v in (90, 60)], thresholds)
        assert _nets(groups) == [[Decimal("90")], [Decimal("60")]]
