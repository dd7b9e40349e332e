"""
donation_batch.domain.grouping -- Fee-minimizing donation grouping.

ZERO I/O.

Packs donations into transfer groups whose net totals sit near an optimal
size.  Every provider charges a fixed component per transfer, so fewer,
larger transfers are cheaper, up to the point where a single transfer
becomes unwieldy (``optimal * flexibility``).

Invariants:
    - Every input donation appears in exactly one output group.
    - Sum of group totals == sum of input net amounts.
    - Every group except possibly a trailing remainder totals >= min size.
    - Sort is descending by net amount and stable on ties.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from decimal import Decimal

from donation_kernel.domain.money import ZERO, to_decimal
from donation_config.schema import GroupingThresholds

from donation_batch.domain.types import DonationRecord

DEFAULT_OPTIMAL_SIZE_EUR = Decimal("1000")
DEFAULT_MIN_SIZE_EUR = Decimal("100")
DEFAULT_FLEXIBILITY = Decimal("1.2")


def group_total(group: Iterable[DonationRecord]) -> Decimal:
    return sum((d.net_amount_eur for d in group), ZERO)


def group_for_optimal_fees(
    donations: Iterable[DonationRecord],
    optimal_size_eur=DEFAULT_OPTIMAL_SIZE_EUR,
    min_size_eur=DEFAULT_MIN_SIZE_EUR,
    flexibility=DEFAULT_FLEXIBILITY,
) -> list[list[DonationRecord]]:
    """Partition donations into groups near ``optimal_size_eur``.

    A donation that would push the running group past the ceiling closes
    the group only if the group already meets the minimum; otherwise it
    joins the group anyway.  The final open group is emitted as-is.
    """
    ceiling = to_decimal(optimal_size_eur) * to_decimal(flexibility)
    min_size = to_decimal(min_size_eur)

    # sorted() is stable, so equal amounts keep their input order
    ordered = sorted(donations, key=lambda d: d.net_amount_eur, reverse=True)

    groups: list[list[DonationRecord]] = []
    current: list[DonationRecord] = []
    current_total = ZERO

    for donation in ordered:
        amount = donation.net_amount_eur
        if (
            not current
            or current_total + amount <= ceiling
            or current_total < min_size
        ):
            current.append(donation)
            current_total += amount
            continue
        groups.append(current)
        current = [donation]
        current_total = amount

    if current:
        groups.append(current)

    return optimize_group_merging(groups, min_size)


def optimize_group_merging(
    groups: Sequence[list[DonationRecord]], min_size_eur=DEFAULT_MIN_SIZE_EUR,
) -> list[list[DonationRecord]]:
    """Fold runs of undersized groups into the group that follows them.

    A run still below the minimum when the input ends is emitted as the
    trailing remainder.
    """
    min_size = to_decimal(min_size_eur)
    merged: list[list[DonationRecord]] = []
    pending: list[DonationRecord] = []
    pending_total = ZERO

    for group in groups:
        total = group_total(group)
        if pending_total + total < min_size:
            pending.extend(group)
            pending_total += total
            continue
        merged.append(pending + list(group))
        pending = []
        pending_total = ZERO

    if pending:
        merged.append(pending)
    return merged


def group_by_wallet(
    donations: Iterable[DonationRecord],
) -> dict[str, list[DonationRecord]]:
    """Partition donations by destination wallet in first-seen order.

    Donations without a wallet are skipped.
    """
    grouped: dict[str, list[DonationRecord]] = {}
    for donation in donations:
        if not donation.wallet_address:
            continue
        grouped.setdefault(donation.wallet_address, []).append(donation)
    return grouped


def group_for_bank_transfers(
    donations: Iterable[DonationRecord],
    thresholds: GroupingThresholds | None = None,
) -> list[list[DonationRecord]]:
    thresholds = thresholds or GroupingThresholds()
    return group_for_optimal_fees(
        donations,
        optimal_size_eur=thresholds.optimal_size_eur,
        min_size_eur=thresholds.min_size_eur,
        flexibility=thresholds.flexibility,
    )
