"""
Pure domain helpers shared by every pipeline package.

NO dependencies on ORM, database, or I/O (except SystemClock).
"""

from donation_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from donation_kernel.domain.money import (
    AMOUNT_PLACES,
    FEE_TOLERANCE,
    ZERO,
    quantize_amount,
    quantize_cents,
    sum_amounts,
    to_decimal,
)

__all__ = [
    "AMOUNT_PLACES",
    "Clock",
    "DeterministicClock",
    "FEE_TOLERANCE",
    "SystemClock",
    "ZERO",
    "quantize_amount",
    "quantize_cents",
    "sum_amounts",
    "to_decimal",
]
