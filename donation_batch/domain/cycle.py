"""
donation_batch.domain.cycle -- Pure processing-cycle rules.

Contract:
    Window selection, cadence recommendation, next-run arithmetic and cost
    estimation are PURE -- every timestamp comes from the caller.

Architecture: donation_batch/domain.  ZERO I/O.

Rules:
    - Selection window: daily 1 day, weekly 7, biweekly 14, monthly 30.
      ``manual`` and unknown cadences use the weekly window.
    - Statistics look-back: daily 7 days, weekly 28 days, monthly 3
      calendar months, anything else 30 days.
    - Next processing date: +1 day, +7 days, +14 days or +1 calendar month;
      ``manual`` has none.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal

from donation_kernel.domain.money import ZERO, quantize_amount, to_decimal

from donation_batch.domain.types import CycleCadence

VALID_CYCLES: tuple[str, ...] = tuple(c.value for c in CycleCadence)

_WINDOW_DAYS = {
    CycleCadence.DAILY: 1,
    CycleCadence.WEEKLY: 7,
    CycleCadence.BIWEEKLY: 14,
    CycleCadence.MONTHLY: 30,
}

_LOOKBACK_DAYS = {
    CycleCadence.DAILY: 7,
    CycleCadence.WEEKLY: 28,
}

# Transfers per month for each cadence
FREQUENCY_FACTOR = {
    CycleCadence.DAILY: 22,  # business days
    CycleCadence.WEEKLY: 4,
    CycleCadence.BIWEEKLY: 2,
    CycleCadence.MONTHLY: 1,
}

CRYPTO_MIN_FEE_EUR = Decimal("10")
CRYPTO_FEE_RATE = Decimal("0.035")
BANK_TRANSFER_FEE_EUR = Decimal("0.25")


# =============================================================================
# DTOs
# =============================================================================


@dataclass(frozen=True)
class CycleRecommendation:
    cycle: CycleCadence
    reason: str


@dataclass(frozen=True)
class ProcessingCostEstimate:
    cycle: CycleCadence
    bank_fees: Decimal
    crypto_fees: Decimal
    fixed_costs: Decimal
    total: Decimal


@dataclass(frozen=True)
class OptimizationPotential:
    current_cycle: CycleCadence
    current_cost: ProcessingCostEstimate
    optimal_cycle: CycleCadence
    optimal_cost: ProcessingCostEstimate
    potential_savings: Decimal
    savings_percent: Decimal


@dataclass(frozen=True)
class CycleStatistics:
    """Aggregate over pending donations in a look-back window."""

    cycle: CycleCadence
    window_start: datetime
    donation_count: int
    total_amount: Decimal
    avg_amount: Decimal
    earliest: datetime | None
    latest: datetime | None
    campaign_count: int
    recommendation: CycleRecommendation | None = None
    optimization: OptimizationPotential | None = None


# =============================================================================
# Parsing
# =============================================================================


def coerce_cycle(cycle: CycleCadence | str | None) -> CycleCadence | None:
    """Map a cadence name to the enum; unknown names give None."""
    if cycle is None or isinstance(cycle, CycleCadence):
        return cycle
    try:
        return CycleCadence(cycle)
    except ValueError:
        return None


# =============================================================================
# Date arithmetic
# =============================================================================


def add_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def add_business_days(start: date | datetime, days: int):
    """Advance ``days`` weekdays past ``start``, skipping Saturday and Sunday."""
    result = start
    added = 0
    while added < days:
        result = result + timedelta(days=1)
        if result.weekday() < 5:
            added += 1
    return result


def window_days(cycle: CycleCadence | str | None) -> int:
    cadence = coerce_cycle(cycle)
    return _WINDOW_DAYS.get(cadence, _WINDOW_DAYS[CycleCadence.WEEKLY])


def window_start(cycle: CycleCadence | str | None, now: datetime) -> datetime:
    """Earliest creation time of donations eligible for this run."""
    return now - timedelta(days=window_days(cycle))


def lookback_start(cycle: CycleCadence | str | None, now: datetime) -> datetime:
    """Start of the statistics look-back window."""
    cadence = coerce_cycle(cycle)
    if cadence == CycleCadence.MONTHLY:
        return add_months(now, -3)
    return now - timedelta(days=_LOOKBACK_DAYS.get(cadence, 30))


def calculate_next_processing_date(
    cycle: CycleCadence | str | None, now: datetime,
) -> datetime | None:
    cadence = coerce_cycle(cycle)
    if cadence == CycleCadence.MONTHLY:
        return add_months(now, 1)
    if cadence in (CycleCadence.DAILY, CycleCadence.WEEKLY, CycleCadence.BIWEEKLY):
        return now + timedelta(days=_WINDOW_DAYS[cadence])
    return None


# =============================================================================
# Recommendation and cost
# =============================================================================


def recommend_cycle(total_amount, donation_count: int, avg_amount) -> CycleRecommendation:
    """Pick a cadence from volume statistics.  First matching rule wins."""
    total = to_decimal(total_amount)
    avg = to_decimal(avg_amount)

    if total > 5000 and donation_count > 50:
        return CycleRecommendation(
            CycleCadence.DAILY, "High volume, frequent processing reduces risk",
        )
    if total > 1000 and avg < 100:
        return CycleRecommendation(
            CycleCadence.WEEKLY, "Moderate volume with small donations",
        )
    if total < 1000 and avg > 200:
        return CycleRecommendation(
            CycleCadence.MONTHLY, "Low volume but large donations",
        )
    return CycleRecommendation(CycleCadence.WEEKLY, "Default optimal for most cases")


def estimate_processing_cost(amount, cycle: CycleCadence | str) -> ProcessingCostEstimate:
    """Monthly cost of settling ``amount`` per run at the given cadence."""
    cadence = coerce_cycle(cycle) or CycleCadence.MONTHLY
    factor = Decimal(FREQUENCY_FACTOR.get(cadence, 1))
    crypto_fee = max(CRYPTO_MIN_FEE_EUR, to_decimal(amount) * CRYPTO_FEE_RATE)

    return ProcessingCostEstimate(
        cycle=cadence,
        bank_fees=ZERO,
        crypto_fees=quantize_amount(crypto_fee * factor),
        fixed_costs=quantize_amount(BANK_TRANSFER_FEE_EUR * factor),
        total=quantize_amount((crypto_fee + BANK_TRANSFER_FEE_EUR) * factor),
    )


def calculate_optimization_potential(
    total_amount, donation_count: int, avg_amount,
) -> OptimizationPotential:
    """Compare a weekly cadence against daily and monthly alternatives."""
    total = to_decimal(total_amount)
    avg = to_decimal(avg_amount)

    weekly = estimate_processing_cost(total / 4, CycleCadence.WEEKLY)
    daily = estimate_processing_cost(avg * donation_count / 30, CycleCadence.DAILY)
    monthly = estimate_processing_cost(total, CycleCadence.MONTHLY)

    optimal = daily
    for candidate in (weekly, monthly):
        if candidate.total < optimal.total:
            optimal = candidate

    savings = weekly.total - optimal.total
    if weekly.total > 0:
        percent = (savings / weekly.total * 100).quantize(
            Decimal("0.1"), rounding=ROUND_HALF_UP,
        )
    else:
        percent = Decimal("0.0")

    return OptimizationPotential(
        current_cycle=CycleCadence.WEEKLY,
        current_cost=weekly,
        optimal_cycle=optimal.cycle,
        optimal_cost=optimal,
        potential_savings=savings,
        savings_percent=percent,
    )


@dataclass(frozen=True)
class CycleSettings:
    """Effective cadence and routing flags for the periodic sweep."""

    cycle: CycleCadence
    trigger_on_chain: bool
    trigger_banking: bool
    minimum_amount_eur: Decimal
