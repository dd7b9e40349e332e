"""
donation_batch -- Donation settlement pipeline.

Turns fee-adjusted pending donations into confirmed transfers: an on-chain
crypto purchase and send, or a bank-transfer fallback.

Architecture:
    domain/        pure types and rules (fees, grouping, cycle, strategy,
                   batch state machine).  ZERO I/O.
    models/        SQLAlchemy persistence.
    services/      lifecycle, cycle scheduler, strategy executor,
                   confirmation monitor, gateway contracts.
    orchestrator   DI container and transactional facade.

Invariants:
    - Donation status is monotonic; a donation belongs to at most one batch.
    - Batch totals are exact sums of member donations' stored amounts.
    - Terminal batches (completed, failed, cancelled) are immutable.
    - Status changes happen only after an external call's result is known.
    - Services never commit; the orchestrator commits one unit per call.
"""
