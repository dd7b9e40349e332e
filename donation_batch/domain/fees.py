"""
donation_batch.domain.fees -- Fixed-percentage fee arithmetic.

ZERO I/O.

Contract:
    ``calculate_fees`` splits a gross EUR amount into debt, operational and
    transaction fees plus the net remainder.  ``calculate_batch_fees`` sums
    the fee fields already stored on donations; it never recomputes them,
    so batch totals are exactly the sums of what each donation recorded.

Invariants:
    - Each fee is ``amount * pct / 100`` rounded to 8 places, half away
      from zero.
    - net = amount - (debt + operational + transaction), rounded the same way,
      so the three fees always sum to gross - net within 1e-8.

Failure modes:
    - InvalidAmountError when amount <= 0.
    - InvalidFeePercentagesError when the percent sum is outside [0, 100]
      or any single percent is negative.
    - EmptyInputError when ``calculate_batch_fees`` receives no donations.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from donation_kernel.domain.money import ZERO, quantize_amount, quantize_cents, to_decimal
from donation_kernel.exceptions import (
    EmptyInputError,
    InvalidAmountError,
    InvalidFeePercentagesError,
)
from donation_config.schema import FeeSchedule

from donation_batch.domain.types import (
    BatchFeeTotals,
    DonationRecord,
    FeeAllocationSpec,
    FeeBreakdown,
    FeeType,
    ReserveStatus,
)

DEFAULT_DEBT_PERCENT = Decimal("10")
DEFAULT_OPERATIONAL_PERCENT = Decimal("10")
DEFAULT_TRANSACTION_PERCENT = Decimal("5")
DEFAULT_SETTLEMENT_MINIMUM_EUR = Decimal("44")

_HUNDRED = Decimal("100")


def validate_fee_percentages(debt_percent, operational_percent, transaction_percent) -> bool:
    """True when every percent is >= 0 and their sum lies in [0, 100]."""
    percents = [
        to_decimal(debt_percent),
        to_decimal(operational_percent),
        to_decimal(transaction_percent),
    ]
    if any(p < 0 for p in percents):
        return False
    return ZERO <= sum(percents) <= _HUNDRED


def calculate_fees(
    amount,
    debt_percent=DEFAULT_DEBT_PERCENT,
    operational_percent=DEFAULT_OPERATIONAL_PERCENT,
    transaction_percent=DEFAULT_TRANSACTION_PERCENT,
) -> FeeBreakdown:
    """Compute the fee breakdown for one gross EUR amount."""
    try:
        gross = to_decimal(amount)
    except ValueError as exc:
        raise InvalidAmountError(amount) from exc
    if gross <= 0:
        raise InvalidAmountError(amount)

    if not validate_fee_percentages(debt_percent, operational_percent, transaction_percent):
        raise InvalidFeePercentagesError(
            debt_percent, operational_percent, transaction_percent,
        )

    debt_pct = to_decimal(debt_percent)
    op_pct = to_decimal(operational_percent)
    tx_pct = to_decimal(transaction_percent)

    debt_fee = quantize_amount(gross * debt_pct / _HUNDRED)
    op_fee = quantize_amount(gross * op_pct / _HUNDRED)
    tx_fee = quantize_amount(gross * tx_pct / _HUNDRED)
    total_fee = debt_fee + op_fee + tx_fee

    return FeeBreakdown(
        gross_amount=gross,
        total_fee_percent=debt_pct + op_pct + tx_pct,
        debt_fee_percent=debt_pct,
        operational_fee_percent=op_pct,
        transaction_fee_percent=tx_pct,
        debt_fee_amount=debt_fee,
        operational_fee_amount=op_fee,
        transaction_fee_amount=tx_fee,
        total_fee_amount=total_fee,
        net_amount=quantize_amount(gross - total_fee),
    )


def calculate_fees_for_schedule(amount, schedule: FeeSchedule) -> FeeBreakdown:
    return calculate_fees(
        amount,
        schedule.debt_percent,
        schedule.operational_percent,
        schedule.transaction_percent,
    )


def calculate_batch_fees(donations: Iterable[DonationRecord]) -> BatchFeeTotals:
    """Sum stored fee fields across donations."""
    donations = list(donations)
    if not donations:
        raise EmptyInputError("donations")

    gross = debt = op = tx = net = ZERO
    for d in donations:
        gross += d.gross_amount_eur
        debt += d.debt_fee_amount
        op += d.operational_fee_amount
        tx += d.transaction_fee_amount
        net += d.net_amount_eur

    return BatchFeeTotals(
        total_gross_eur=quantize_amount(gross),
        total_debt_fee_eur=quantize_amount(debt),
        total_operational_fee_eur=quantize_amount(op),
        total_transaction_fee_eur=quantize_amount(tx),
        total_fee_eur=quantize_amount(debt + op + tx),
        total_net_eur=quantize_amount(net),
        donation_count=len(donations),
    )


def allocations_for(
    donation: DonationRecord, schedule: FeeSchedule | None = None,
) -> tuple[FeeAllocationSpec, ...]:
    """The three per-type allocation records for one donation."""
    schedule = schedule or FeeSchedule()
    return (
        FeeAllocationSpec(
            fee_type=FeeType.DEBT,
            percent=donation.debt_fee_percent,
            amount=donation.debt_fee_amount,
            destination=schedule.debt_destination,
        ),
        FeeAllocationSpec(
            fee_type=FeeType.OPERATIONAL,
            percent=donation.operational_fee_percent,
            amount=donation.operational_fee_amount,
            destination=schedule.operational_destination,
        ),
        FeeAllocationSpec(
            fee_type=FeeType.TRANSACTION,
            percent=donation.transaction_fee_percent,
            amount=donation.transaction_fee_amount,
            destination=schedule.transaction_destination,
        ),
    )


def settlement_reserve(total_net_eur, minimum_eur=DEFAULT_SETTLEMENT_MINIMUM_EUR) -> ReserveStatus:
    """Top-up needed for a batch to reach the settlement minimum.

    required is 0 iff total >= minimum, else ``round(minimum - total, 2)``.
    """
    total = to_decimal(total_net_eur)
    minimum = to_decimal(minimum_eur)
    if total >= minimum:
        return ReserveStatus(minimum_eur=minimum, required_eur=ZERO, eligible=True)
    return ReserveStatus(
        minimum_eur=minimum,
        required_eur=quantize_cents(minimum - total),
        eligible=False,
    )
