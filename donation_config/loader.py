"""
Configuration Loader (``donation_config.loader``).

Responsibility
--------------
Loads a YAML document and parses it into the frozen ``PipelineConfig``
dataclasses of ``donation_config.schema``.  Runtime code obtains
configuration through ``donation_config.get_active_config()`` only.

Invariants enforced
-------------------
* Every numeric money/percent value is parsed into ``Decimal`` via ``str``
  (never through float arithmetic).
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash for
  configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` with the offending key.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from donation_config.schema import (
    BankFee,
    CycleConfig,
    FeeSchedule,
    GroupingThresholds,
    MonitorConfig,
    PipelineConfig,
    ProviderFee,
    SettlementConfig,
    StrategyConfig,
    TimeoutConfig,
)

VALID_CYCLES = ("daily", "weekly", "biweekly", "monthly", "manual")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed configuration document."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def parse_decimal(value: Any, key: str) -> Decimal:
    """Parse a YAML scalar into Decimal.

    Raises:
        ValueError: if ``value`` is not numeric.
    """
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected a number, got {value!r}")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"{key}: expected a number, got {value!r}") from exc


def _dec(data: dict[str, Any], key: str, default: Decimal) -> Decimal:
    if key not in data or data[key] is None:
        return default
    return parse_decimal(data[key], key)


def parse_fees(data: dict[str, Any]) -> FeeSchedule:
    d = FeeSchedule()
    fees = FeeSchedule(
        debt_percent=_dec(data, "debt_percent", d.debt_percent),
        operational_percent=_dec(data, "operational_percent", d.operational_percent),
        transaction_percent=_dec(data, "transaction_percent", d.transaction_percent),
        debt_destination=data.get("debt_destination", d.debt_destination),
        operational_destination=data.get(
            "operational_destination", d.operational_destination,
        ),
        transaction_destination=data.get(
            "transaction_destination", d.transaction_destination,
        ),
        operational_withholding_rate=_dec(
            data, "operational_withholding_rate", d.operational_withholding_rate,
        ),
    )
    percents = (fees.debt_percent, fees.operational_percent, fees.transaction_percent)
    if any(p < 0 for p in percents) or fees.total_percent > 100:
        raise ValueError("fees: percentages must be >= 0 and sum to at most 100")
    if not 0 <= fees.operational_withholding_rate <= 1:
        raise ValueError("fees.operational_withholding_rate: must be between 0 and 1")
    return fees


def parse_grouping(data: dict[str, Any]) -> GroupingThresholds:
    d = GroupingThresholds()
    thresholds = GroupingThresholds(
        optimal_size_eur=_dec(data, "optimal_size_eur", d.optimal_size_eur),
        min_size_eur=_dec(data, "min_size_eur", d.min_size_eur),
        flexibility=_dec(data, "flexibility", d.flexibility),
    )
    if thresholds.min_size_eur < 0 or thresholds.optimal_size_eur <= 0:
        raise ValueError("grouping: sizes must be positive")
    return thresholds


def parse_settlement(data: dict[str, Any]) -> SettlementConfig:
    d = SettlementConfig()
    return SettlementConfig(
        base_currency=data.get("base_currency", d.base_currency),
        settlement_currency=data.get("settlement_currency", d.settlement_currency),
        network=data.get("network", d.network),
        minimum_purchase_eur=_dec(data, "minimum_purchase_eur", d.minimum_purchase_eur),
    )


def parse_provider(name: str, data: dict[str, Any]) -> ProviderFee:
    """Parse one provider entry from the ``strategy.providers`` mapping."""
    min_amount = data.get("min_amount")
    return ProviderFee(
        name=name,
        fixed_fee=parse_decimal(data.get("fixed", 0), f"providers.{name}.fixed"),
        fee_percent=parse_decimal(data["percent"], f"providers.{name}.percent"),
        min_amount=(
            parse_decimal(min_amount, f"providers.{name}.min_amount")
            if min_amount is not None
            else None
        ),
        requires_kyc=bool(data.get("requires_kyc", False)),
    )


def parse_strategy(data: dict[str, Any]) -> StrategyConfig:
    d = StrategyConfig()
    providers = tuple(
        parse_provider(name, entry)
        for name, entry in (data.get("providers") or {}).items()
    )
    bank_fees = tuple(
        BankFee(
            name=name,
            fixed_fee=parse_decimal(entry.get("fixed", 0), f"bank_fees.{name}.fixed"),
            fee_percent=parse_decimal(entry.get("percent", 0), f"bank_fees.{name}.percent"),
        )
        for name, entry in (data.get("bank_fees") or {}).items()
    )
    return StrategyConfig(
        direct_minimum_eur=_dec(data, "direct_minimum_eur", d.direct_minimum_eur),
        internal_coverage_ratio=_dec(
            data, "internal_coverage_ratio", d.internal_coverage_ratio,
        ),
        p2p_minimum_eur=_dec(data, "p2p_minimum_eur", d.p2p_minimum_eur),
        p2p_fee_rate=_dec(data, "p2p_fee_rate", d.p2p_fee_rate),
        kyc_completed=bool(data.get("kyc_completed", d.kyc_completed)),
        default_provider=data.get("default_provider", d.default_provider),
        providers=providers,
        bank_fees=bank_fees,
        bank_grouping=parse_grouping(data.get("bank_grouping") or {}),
    )


def parse_cycles(data: dict[str, Any]) -> CycleConfig:
    d = CycleConfig()
    default_cycle = data.get("default_cycle", d.default_cycle)
    if default_cycle not in VALID_CYCLES:
        raise ValueError(f"cycles.default_cycle: invalid cycle {default_cycle!r}")
    return CycleConfig(
        default_cycle=default_cycle,
        tick_interval_seconds=int(data.get("tick_interval_seconds", d.tick_interval_seconds)),
        minimum_batch_amount_eur=_dec(
            data, "minimum_batch_amount_eur", d.minimum_batch_amount_eur,
        ),
        trigger_on_chain=bool(data.get("trigger_on_chain", d.trigger_on_chain)),
        trigger_banking=bool(data.get("trigger_banking", d.trigger_banking)),
    )


def parse_monitor(data: dict[str, Any]) -> MonitorConfig:
    d = MonitorConfig()
    return MonitorConfig(
        interval_seconds=int(data.get("interval_seconds", d.interval_seconds)),
        batch_limit=int(data.get("batch_limit", d.batch_limit)),
    )


def parse_timeouts(data: dict[str, Any]) -> TimeoutConfig:
    d = TimeoutConfig()
    return TimeoutConfig(
        rate_seconds=float(data.get("rate_seconds", d.rate_seconds)),
        payment_seconds=float(data.get("payment_seconds", d.payment_seconds)),
        blockchain_seconds=float(data.get("blockchain_seconds", d.blockchain_seconds)),
        bank_seconds=float(data.get("bank_seconds", d.bank_seconds)),
        provider_seconds=float(data.get("provider_seconds", d.provider_seconds)),
    )


def parse_config(data: dict[str, Any]) -> PipelineConfig:
    """Parse a full configuration document into a ``PipelineConfig``."""
    return PipelineConfig(
        fees=parse_fees(data.get("fees") or {}),
        grouping=parse_grouping(data.get("grouping") or {}),
        settlement=parse_settlement(data.get("settlement") or {}),
        strategy=parse_strategy(data.get("strategy") or {}),
        cycles=parse_cycles(data.get("cycles") or {}),
        monitor=parse_monitor(data.get("monitor") or {}),
        timeouts=parse_timeouts(data.get("timeouts") or {}),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> PipelineConfig:
    """Load and parse a configuration file."""
    return parse_config(load_yaml_file(path))
