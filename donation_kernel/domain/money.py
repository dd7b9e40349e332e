"""
Money -- Decimal helpers for settlement amounts.

Responsibility:
    Central place for the rounding rules applied to every EUR and crypto
    amount in the pipeline.  Amounts are never carried as binary floats.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Amounts are quantized to 8 decimal places, ROUND_HALF_UP
      (half away from zero for Decimal).
    - Reserve / display amounts are quantized to 2 decimal places.

Failure modes:
    - ValueError when a value cannot be interpreted as a finite Decimal.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

AMOUNT_PLACES = 8
ZERO = Decimal("0")

_AMOUNT_QUANTUM = Decimal(1).scaleb(-AMOUNT_PLACES)
_CENT_QUANTUM = Decimal("0.01")

# Tolerance for fee-sum reconciliation (debt + op + tx == gross - net)
FEE_TOLERANCE = Decimal("1e-8")


def to_decimal(value: Any) -> Decimal:
    """Convert ``value`` to Decimal without passing through float.

    Floats are converted via ``str()`` so that ``0.1`` becomes
    ``Decimal("0.1")`` rather than its binary expansion.

    Raises:
        ValueError: If the value is None, non-numeric, or not finite.
    """
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise ValueError(f"Cannot interpret {value!r} as an amount")
    elif isinstance(value, (int, str)):
        try:
            result = Decimal(value)
        except InvalidOperation as exc:
            raise ValueError(f"Cannot interpret {value!r} as an amount") from exc
    elif isinstance(value, float):
        result = Decimal(str(value))
    else:
        raise ValueError(f"Cannot interpret {value!r} as an amount")

    if not result.is_finite():
        raise ValueError(f"Amount must be finite, got {value!r}")
    return result


def quantize_amount(value: Any, places: int = AMOUNT_PLACES) -> Decimal:
    """Round to ``places`` decimal places, half away from zero."""
    quantum = _AMOUNT_QUANTUM if places == AMOUNT_PLACES else Decimal(1).scaleb(-places)
    return to_decimal(value).quantize(quantum, rounding=ROUND_HALF_UP)


def quantize_cents(value: Any) -> Decimal:
    """Round to 2 decimal places, half away from zero."""
    return to_decimal(value).quantize(_CENT_QUANTUM, rounding=ROUND_HALF_UP)


def sum_amounts(values) -> Decimal:
    """Exact Decimal sum (no intermediate rounding)."""
    total = ZERO
    for v in values:
        total += to_decimal(v)
    return total
