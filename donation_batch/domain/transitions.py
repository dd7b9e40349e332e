"""
donation_batch.domain.transitions -- Batch and donation state machines.

ZERO I/O.

Invariants:
    - Batch moves follow BATCH_TRANSITIONS; anything else raises
      InvalidStateTransitionError.
    - COMPLETED, FAILED and CANCELLED are terminal.
    - Every non-terminal batch state may move to CANCELLED.
    - Donation status is monotonic (DONATION_TRANSITIONS).
"""

from __future__ import annotations

from uuid import UUID

from donation_kernel.exceptions import InvalidStateTransitionError

from donation_batch.domain.types import BatchStatus, DonationStatus

_DRAFT_EXITS = frozenset({
    BatchStatus.PROCESSING,
    BatchStatus.SENDING,  # automated crypto route
    BatchStatus.AWAITING_SETTLEMENT,  # automated bank route
    BatchStatus.FAILED,
    BatchStatus.CANCELLED,
})

BATCH_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.DRAFT: _DRAFT_EXITS,
    BatchStatus.PENDING: _DRAFT_EXITS,
    BatchStatus.PROCESSING: frozenset({
        BatchStatus.AWAITING_SETTLEMENT,
        BatchStatus.SENDING,
        BatchStatus.FAILED,
        BatchStatus.CANCELLED,
    }),
    BatchStatus.AWAITING_SETTLEMENT: frozenset({
        BatchStatus.SENDING,
        BatchStatus.FAILED,
        BatchStatus.CANCELLED,
    }),
    BatchStatus.SENDING: frozenset({
        BatchStatus.SENDING,  # re-send after reconciliation or resubmission
        BatchStatus.COMPLETED,
        BatchStatus.FAILED,
        BatchStatus.NEEDS_RECONCILIATION,
        BatchStatus.CANCELLED,
    }),
    BatchStatus.NEEDS_RECONCILIATION: frozenset({
        BatchStatus.SENDING,
        BatchStatus.FAILED,
        BatchStatus.CANCELLED,
    }),
    # Terminal
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.FAILED: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
}

TERMINAL_BATCH_STATUSES = frozenset({
    BatchStatus.COMPLETED,
    BatchStatus.FAILED,
    BatchStatus.CANCELLED,
})

DONATION_TRANSITIONS: dict[DonationStatus, frozenset[DonationStatus]] = {
    DonationStatus.PENDING: frozenset({DonationStatus.BATCHED, DonationStatus.FAILED}),
    DonationStatus.BATCHED: frozenset({DonationStatus.SENT, DonationStatus.FAILED}),
    DonationStatus.SENT: frozenset(),
    DonationStatus.FAILED: frozenset(),
}


def is_terminal(status: BatchStatus) -> bool:
    return status in TERMINAL_BATCH_STATUSES


def can_transition(current: BatchStatus, target: BatchStatus) -> bool:
    return target in BATCH_TRANSITIONS.get(current, frozenset())


def require_transition(
    batch_id: UUID | str, current: BatchStatus, target: BatchStatus,
) -> None:
    """Raise InvalidStateTransitionError unless current -> target is allowed."""
    if not can_transition(current, target):
        raise InvalidStateTransitionError(
            str(batch_id), current.value, target.value,
        )


def can_transition_donation(current: DonationStatus, target: DonationStatus) -> bool:
    return target in DONATION_TRANSITIONS.get(current, frozenset())
