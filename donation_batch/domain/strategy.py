"""
donation_batch.domain.strategy -- Pure settlement-route selection.

ZERO I/O.  The service layer supplies the internal balance; everything
here is arithmetic over configuration.

Candidates:
    direct purchase    -- valid TRON wallet and total >= direct minimum;
                          cost from the cheapest eligible provider.
    internal transfer  -- available balance covers the configured ratio of
                          the total; free and instant.
    peer-to-peer       -- total >= p2p minimum; cost total x p2p rate.

Selection is lowest cost first; on a cost tie an instant route wins.
When nothing is viable the decision points at the bank fallback.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from donation_kernel.domain.money import ZERO, quantize_amount, to_decimal
from donation_config.schema import ProviderFee, StrategyConfig

from donation_batch.domain.types import SettlementRoute, SettlementSpeed

INTERNAL_PROVIDER = "internal"
P2P_PROVIDER = "p2p_market"

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {ch: i for i, ch in enumerate(_BASE58_ALPHABET)}
_TRON_PREFIX = 0x41
_TRON_ADDRESS_LENGTH = 34


# =============================================================================
# Wallet validation
# =============================================================================


def is_valid_tron_address(address: str | None) -> bool:
    """Base58check validation of a TRON account address.

    A valid address is 34 characters, starts with ``T`` and decodes to a
    0x41-prefixed 21-byte payload followed by a 4-byte double-SHA256
    checksum.
    """
    if not address or len(address) != _TRON_ADDRESS_LENGTH or address[0] != "T":
        return False

    number = 0
    for ch in address:
        index = _BASE58_INDEX.get(ch)
        if index is None:
            return False
        number = number * 58 + index

    try:
        raw = number.to_bytes(25, "big")
    except OverflowError:
        return False

    payload, checksum = raw[:21], raw[21:]
    if payload[0] != _TRON_PREFIX:
        return False
    digest = hashlib.sha256(hashlib.sha256(payload).digest()).digest()
    return digest[:4] == checksum


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class StrategyCandidate:
    route: SettlementRoute
    provider: str
    cost: Decimal
    viable: bool
    speed: SettlementSpeed
    requires: tuple[str, ...] = ()


@dataclass(frozen=True)
class StrategyDecision:
    """Outcome of ``determine_strategy``.

    ``strategy`` is None iff ``viable`` is False, in which case ``fallback``
    names the bank route.
    """

    viable: bool
    wallet: str
    total_amount: Decimal
    donation_count: int
    strategy: StrategyCandidate | None = None
    candidates: tuple[StrategyCandidate, ...] = ()
    reason: str | None = None
    fallback: SettlementRoute | None = None


@dataclass(frozen=True)
class ExecutionResult:
    """What one wallet's settlement run did."""

    wallet: str
    strategy: str
    donations_processed: int
    status: str
    batch_id: UUID | None = None
    steps: tuple[str, ...] = ()
    error: str | None = None


@dataclass(frozen=True)
class ProcessingSummary:
    total_donations: int
    completed_batches: int
    total_batches: int
    success_rate: Decimal = field(default=Decimal("0.0"))


# =============================================================================
# Cost model
# =============================================================================


def provider_cost(provider: ProviderFee, amount) -> Decimal:
    amount = to_decimal(amount)
    return quantize_amount(max(provider.fixed_fee, amount * provider.fee_percent / 100))


def select_optimal_provider(
    amount, providers: Sequence[ProviderFee], kyc_completed: bool = False,
) -> ProviderFee | None:
    """Cheapest provider whose own minimum the amount meets.

    Providers requiring KYC are skipped unless ``kyc_completed``.  Ties keep
    configuration order.
    """
    amount = to_decimal(amount)
    best: ProviderFee | None = None
    best_cost: Decimal | None = None
    for provider in providers:
        if provider.requires_kyc and not kyc_completed:
            continue
        if provider.min_amount is not None and amount < provider.min_amount:
            continue
        cost = provider_cost(provider, amount)
        if best_cost is None or cost < best_cost:
            best, best_cost = provider, cost
    return best


def build_candidates(
    wallet: str,
    total_amount,
    internal_balance,
    config: StrategyConfig,
) -> tuple[StrategyCandidate, ...]:
    total = to_decimal(total_amount)
    balance = to_decimal(internal_balance)

    provider = select_optimal_provider(total, config.providers, config.kyc_completed)
    direct_viable = (
        provider is not None
        and is_valid_tron_address(wallet)
        and total >= config.direct_minimum_eur
    )
    direct = StrategyCandidate(
        route=SettlementRoute.DIRECT_PURCHASE,
        provider=provider.name if provider is not None else config.default_provider,
        cost=provider_cost(provider, total) if provider is not None else ZERO,
        viable=direct_viable,
        speed=SettlementSpeed.HOURS,
        requires=("valid_wallet", "minimum_amount"),
    )

    internal = StrategyCandidate(
        route=SettlementRoute.INTERNAL_TRANSFER,
        provider=INTERNAL_PROVIDER,
        cost=ZERO,
        viable=balance >= total * config.internal_coverage_ratio,
        speed=SettlementSpeed.INSTANT,
        requires=("sufficient_crypto_balance",),
    )

    p2p = StrategyCandidate(
        route=SettlementRoute.P2P_PURCHASE,
        provider=P2P_PROVIDER,
        cost=quantize_amount(total * config.p2p_fee_rate),
        viable=total >= config.p2p_minimum_eur,
        speed=SettlementSpeed.DAYS,
        requires=("kyc_completed", "trusted_counterparties"),
    )

    return (direct, internal, p2p)


def select_strategy(candidates: Iterable[StrategyCandidate]) -> StrategyCandidate | None:
    best: StrategyCandidate | None = None
    for candidate in candidates:
        if not candidate.viable:
            continue
        if best is None or candidate.cost < best.cost:
            best = candidate
        elif (
            candidate.cost == best.cost
            and candidate.speed == SettlementSpeed.INSTANT
            and best.speed != SettlementSpeed.INSTANT
        ):
            best = candidate
    return best


def decide(
    wallet: str,
    total_amount,
    donation_count: int,
    internal_balance,
    config: StrategyConfig,
) -> StrategyDecision:
    total = to_decimal(total_amount)
    candidates = build_candidates(wallet, total, internal_balance, config)
    chosen = select_strategy(candidates)
    if chosen is None:
        return StrategyDecision(
            viable=False,
            wallet=wallet,
            total_amount=total,
            donation_count=donation_count,
            candidates=candidates,
            reason="No viable crypto strategy available",
            fallback=SettlementRoute.BANK_TRANSFER,
        )
    return StrategyDecision(
        viable=True,
        wallet=wallet,
        total_amount=total,
        donation_count=donation_count,
        strategy=chosen,
        candidates=candidates,
    )


def generate_summary(results: Sequence[ExecutionResult]) -> ProcessingSummary:
    completed = sum(1 for r in results if r.status == "completed")
    rate = Decimal("0.0")
    if results:
        rate = (Decimal(completed) / len(results) * 100).quantize(
            Decimal("0.1"), rounding=ROUND_HALF_UP,
        )
    return ProcessingSummary(
        total_donations=sum(r.donations_processed for r in results),
        completed_batches=completed,
        total_batches=len(results),
        success_rate=rate,
    )
