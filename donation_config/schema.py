"""
PipelineConfig schema.

Typed, frozen view of the settlement pipeline configuration.  YAML
documents are parsed into these types by ``donation_config.loader``;
services receive the resulting ``PipelineConfig`` via constructor
injection and never read files or environment variables themselves.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeeSchedule:
    """Per-donation fee percentages (25% total by default)."""

    debt_percent: Decimal = Decimal("10")
    operational_percent: Decimal = Decimal("10")
    transaction_percent: Decimal = Decimal("5")
    debt_destination: str = "debt_account"
    operational_destination: str = "operational_account"
    transaction_destination: str = "transaction_account"
    # Withholding computed against the operator-confirmed gross deposit
    operational_withholding_rate: Decimal = Decimal("0.10")

    @property
    def total_percent(self) -> Decimal:
        return self.debt_percent + self.operational_percent + self.transaction_percent


# ---------------------------------------------------------------------------
# Grouping
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GroupingThresholds:
    optimal_size_eur: Decimal = Decimal("1000")
    min_size_eur: Decimal = Decimal("100")
    flexibility: Decimal = Decimal("1.2")  # optimal x 1.2 ceiling


# ---------------------------------------------------------------------------
# Settlement
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SettlementConfig:
    base_currency: str = "EUR"
    settlement_currency: str = "USDT"
    network: str = "TRON"
    minimum_purchase_eur: Decimal = Decimal("44")


@dataclass(frozen=True)
class ProviderFee:
    """Fee structure of one direct crypto-purchase provider."""

    name: str
    fixed_fee: Decimal
    fee_percent: Decimal
    min_amount: Decimal | None = None
    requires_kyc: bool = False


@dataclass(frozen=True)
class BankFee:
    name: str
    fixed_fee: Decimal = Decimal("0")
    fee_percent: Decimal = Decimal("0")


@dataclass(frozen=True)
class StrategyConfig:
    direct_minimum_eur: Decimal = Decimal("50")
    internal_coverage_ratio: Decimal = Decimal("0.9")
    p2p_minimum_eur: Decimal = Decimal("100")
    p2p_fee_rate: Decimal = Decimal("0.01")
    kyc_completed: bool = False
    default_provider: str = "simplex"
    providers: tuple[ProviderFee, ...] = ()
    bank_fees: tuple[BankFee, ...] = ()
    bank_grouping: GroupingThresholds = field(default_factory=GroupingThresholds)


# ---------------------------------------------------------------------------
# Cycles
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CycleConfig:
    default_cycle: str = "weekly"
    tick_interval_seconds: int = 3600
    minimum_batch_amount_eur: Decimal = Decimal("100")
    trigger_on_chain: bool = False
    trigger_banking: bool = True


# ---------------------------------------------------------------------------
# Workers and timeouts
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class MonitorConfig:
    interval_seconds: int = 60
    batch_limit: int = 10


@dataclass(frozen=True)
class TimeoutConfig:
    rate_seconds: float = 10.0
    payment_seconds: float = 30.0
    blockchain_seconds: float = 30.0
    bank_seconds: float = 30.0
    provider_seconds: float = 60.0


# ---------------------------------------------------------------------------
# Root
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PipelineConfig:
    """Root configuration object handed to the orchestrator."""

    fees: FeeSchedule = field(default_factory=FeeSchedule)
    grouping: GroupingThresholds = field(default_factory=GroupingThresholds)
    settlement: SettlementConfig = field(default_factory=SettlementConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    cycles: CycleConfig = field(default_factory=CycleConfig)
    monitor: MonitorConfig = field(default_factory=MonitorConfig)
    timeouts: TimeoutConfig = field(default_factory=TimeoutConfig)
    checksum: str | None = None
