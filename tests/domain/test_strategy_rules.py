"""
Tests for donation_batch.domain.strategy -- route candidates and selection.
"""

from decimal import Decimal

import pytest

from donation_config.schema import ProviderFee, StrategyConfig

from donation_batch.domain.strategy import (
    ExecutionResult,
    build_candidates,
    decide,
    generate_summary,
    is_valid_tron_address,
    provider_cost,
    select_optimal_provider,
    select_strategy,
)
from donation_batch.domain.types import SettlementRoute, SettlementSpeed

from tests.fakes import VALID_TRON_WALLET

PROVIDERS = (
    ProviderFee("simplex", Decimal("10"), Decimal("3.5"), Decimal("50")),
    ProviderFee("revolut", Decimal("0"), Decimal("1.5"), Decimal("1")),
    ProviderFee("binance", Decimal("0"), Decimal("0.1"), None, requires_kyc=True),
)


@pytest.fixture
def strategy_config():
    return StrategyConfig(providers=PROVIDERS)


class TestTronAddress:
    def test_valid(self):
        assert is_valid_tron_address(VALID_TRON_WALLET)

    @pytest.mark.parametrize("address", [
        None,
        "",
        "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6",  # too short
        "XR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t",  # wrong leading char
        "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj60",  # '0' not in alphabet
        "0x742d35Cc6634C0532925a3b844Bc454e4438f44e",
    ])
    def test_invalid(self, address):
        assert not is_valid_tron_address(address)

    def test_checksum_mismatch(self):
        tampered = VALID_TRON_WALLET[:-1] + ("u" if VALID_TRON_WALLET[-1] != "u" else "v")
        assert not is_valid_tron_address(tampered)


class TestProviders:
    def test_cost_is_max_of_fixed_and_percent(self):
        assert provider_cost(PROVIDERS[0], Decimal("100")) == Decimal("10")
        assert provider_cost(PROVIDERS[0], Decimal("1000")) == Decimal("35")

    def test_kyc_provider_skipped_without_kyc(self):
        assert select_optimal_provider(Decimal("500"), PROVIDERS).name == "revolut"
        assert select_optimal_provider(Decimal("500"), PROVIDERS, kyc_completed=True).name == "binance"

    def test_provider_minimum_respected(self):
        only_simplex = (PROVIDERS[0],)
        assert select_optimal_provider(Decimal("40"), only_simplex) is None


class TestCandidates:
    def test_direct_requires_valid_wallet(self, strategy_config):
        direct, _, _ = build_candidates("not-a-wallet", Decimal("500"), Decimal("0"), strategy_config)
        assert direct.route == SettlementRoute.DIRECT_PURCHASE
        assert not direct.viable

    def test_direct_requires_minimum(self, strategy_config):
        direct, _, _ = build_candidates(VALID_TRON_WALLET, Decimal("49.99"), Decimal("0"), strategy_config)
        assert not direct.viable

    def test_internal_needs_ninety_percent_cover(self, strategy_config):
        _, internal, _ = build_candidates(VALID_TRON_WALLET, Decimal("100"), Decimal("90"), strategy_config)
        assert internal.viable
        assert internal.speed == SettlementSpeed.INSTANT
        _, internal, _ = build_candidates(VALID_TRON_WALLET, Decimal("100"), Decimal("89.99"), strategy_config)
        assert not internal.viable

    def test_p2p_cost_one_percent(self, strategy_config):
        _, _, p2p = build_candidates(VALID_TRON_WALLET, Decimal("200"), Decimal("0"), strategy_config)
        assert p2p.viable
        assert p2p.cost == Decimal("2")


class TestSelection:
    def test_cheapest_viable_wins(self, strategy_config):
        decision = decide(VALID_TRON_WALLET, Decimal("500"), 5, Decimal("0"), strategy_config)
        assert decision.viable
        # p2p 5.00 beats revolut 7.50
        assert decision.strategy.route == SettlementRoute.P2P_PURCHASE

    def test_internal_balance_is_free(self, strategy_config):
        decision = decide(VALID_TRON_WALLET, Decimal("500"), 5, Decimal("1000"), strategy_config)
        assert decision.strategy.route == SettlementRoute.INTERNAL_TRANSFER
        assert decision.strategy.cost == 0

    def test_tie_prefers_instant(self, strategy_config):
        candidates = build_candidates(VALID_TRON_WALLET, Decimal("100"), Decimal("100"), strategy_config)
        zero_cost_slow = candidates[2].__class__(
            route=SettlementRoute.P2P_PURCHASE,
            provider="p2p_market",
            cost=Decimal("0"),
            viable=True,
            speed=SettlementSpeed.DAYS,
        )
        chosen = select_strategy([zero_cost_slow, candidates[1]])
        assert chosen.route == SettlementRoute.INTERNAL_TRANSFER

    def test_nothing_viable_falls_back_to_bank(self, strategy_config):
        decision = decide("bad-wallet", Decimal("20"), 1, Decimal("0"), strategy_config)
        assert not decision.viable
        assert decision.strategy is None
        assert decision.fallback == SettlementRoute.BANK_TRANSFER
        assert len(decision.candidates) == 3


def test_summary_success_rate():
    results = [
        ExecutionResult("A", "p2p_crypto_purchase", 3, "completed"),
        ExecutionResult("B", "bank_transfer", 2, "awaiting_settlement"),
        ExecutionResult("C", "none", 0, "failed"),
    ]
    summary = generate_summary(results)
    assert summary.total_donations == 5
    assert summary.completed_batches == 1
    assert summary.total_batches == 3
    assert summary.success_rate == Decimal("33.3")
    assert generate_summary([]).success_rate == Decimal("0.0")
