"""
Typed Exception Hierarchy for the Donation Settlement Pipeline.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Settlement moves real money through external providers.  Callers (HTTP
handlers, the cycle runner, the webhook path) must react to errors by TYPE
and by structured DATA, never by parsing messages:

    try:
        pipeline.initiate_settlement(batch_id, user_context)
    except ReserveShortfallError as e:
        return {"error": e.code, "minimum_eur": e.minimum_eur,
                "required_eur": e.required_eur}

Every exception:
  1. Has a class-level ``code`` (machine-readable, API-safe)
  2. Stores its context as attributes (survives logging and serialization)
  3. Belongs to one category so middleware can map categories to responses

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    DonationPipelineError (base)
    |
    +-- ValidationError                       -> 400
    |   +-- InvalidAmountError
    |   +-- EmptyInputError
    |   +-- InvalidFeePercentagesError
    |   +-- MissingWalletError
    |   +-- InvalidCycleError
    |
    +-- StateError                            -> 400 / 409
    |   +-- InvalidStateTransitionError
    |   +-- BatchImmutableError
    |   +-- GrossDepositRequiredError
    |   +-- NoPendingDonationsError
    |
    +-- ReserveShortfallError                 -> 400 (with remediation data)
    |
    +-- ExternalServiceError                  -> 502
    |   +-- ExternalServiceTimeoutError       -> 504
    |
    +-- NotFoundError                         -> 404
        +-- BatchNotFoundError
        +-- DonationNotFoundError
        +-- TransactionNotFoundError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category   | Code                         | When Raised
-----------|------------------------------|---------------------------------------
Validation | INVALID_AMOUNT               | amount <= 0 or not a number
           | EMPTY_INPUT                  | empty donation set
           | INVALID_FEE_PERCENTAGES      | fee percentages outside [0, 100]
           | MISSING_WALLET               | no destination wallet
           | INVALID_CYCLE                | unknown processing cadence
-----------|------------------------------|---------------------------------------
State      | INVALID_STATE_TRANSITION     | operation forbidden in current status
           | BATCH_IMMUTABLE              | mutation of a terminal batch
           | GROSS_DEPOSIT_REQUIRED       | process() before deposit recorded
           | NO_PENDING_DONATIONS         | donations missing or already claimed
-----------|------------------------------|---------------------------------------
Reserve    | RESERVE_SHORTFALL            | net below settlement-provider minimum
-----------|------------------------------|---------------------------------------
External   | EXTERNAL_SERVICE_ERROR       | rate/payment/chain/bank gateway failure
           | EXTERNAL_SERVICE_TIMEOUT     | gateway call exceeded its timeout
-----------|------------------------------|---------------------------------------
Not found  | BATCH_NOT_FOUND              | unknown batch id or quote id
           | DONATION_NOT_FOUND           | unknown donation id
           | TRANSACTION_NOT_FOUND        | unknown blockchain transaction hash

===============================================================================
PROPAGATION
===============================================================================

Validation and state errors are raised before any side effect.  An
ExternalServiceError raised from a WRITE (initiate_settlement,
send_on_chain) is raised AFTER the batch has been moved to ``failed`` and
the error detail recorded; the facade commits that state before re-raising.
An ExternalServiceError raised from a READ (the rate lookup in process())
leaves the batch untouched.
"""

from __future__ import annotations

from decimal import Decimal


class DonationPipelineError(Exception):
    """
    Base exception for all settlement pipeline errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "DONATION_PIPELINE_ERROR"


# =============================================================================
# Validation errors
# =============================================================================


class ValidationError(DonationPipelineError):
    """Bad or missing input."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Amount must be strictly positive."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, amount, field: str = "amount"):
        self.amount = str(amount)
        self.field = field
        super().__init__(f"{field} must be greater than 0, got {amount}")


class EmptyInputError(ValidationError):
    """A required collection was empty."""

    code: str = "EMPTY_INPUT"

    def __init__(self, what: str):
        self.what = what
        super().__init__(f"{what} is required and must not be empty")


class InvalidFeePercentagesError(ValidationError):
    """Fee percentages must each be >= 0 and sum to at most 100."""

    code: str = "INVALID_FEE_PERCENTAGES"

    def __init__(self, debt_percent, operational_percent, transaction_percent):
        self.debt_percent = str(debt_percent)
        self.operational_percent = str(operational_percent)
        self.transaction_percent = str(transaction_percent)
        super().__init__(
            f"Invalid fee percentages: debt={debt_percent}, "
            f"operational={operational_percent}, transaction={transaction_percent}"
        )


class MissingWalletError(ValidationError):
    """Destination wallet address is required."""

    code: str = "MISSING_WALLET"

    def __init__(self):
        super().__init__("Target wallet address is required")


class InvalidCycleError(ValidationError):
    """Unknown processing cycle cadence."""

    code: str = "INVALID_CYCLE"

    def __init__(self, cycle: str, valid: list[str]):
        self.cycle = cycle
        self.valid = valid
        super().__init__(f"Invalid cycle: {cycle}. Valid: {', '.join(valid)}")


# =============================================================================
# State errors
# =============================================================================


class StateError(DonationPipelineError):
    """Operation attempted from a state that forbids it."""

    code: str = "STATE_ERROR"


class InvalidStateTransitionError(StateError):
    """Batch cannot move from its current status to the requested one."""

    code: str = "INVALID_STATE_TRANSITION"

    def __init__(self, batch_id: str, current_status: str, target_status: str):
        self.batch_id = batch_id
        self.current_status = current_status
        self.target_status = target_status
        super().__init__(
            f"Batch {batch_id} cannot move from '{current_status}' "
            f"to '{target_status}'"
        )


class BatchImmutableError(StateError):
    """Batch is terminal and may no longer be mutated."""

    code: str = "BATCH_IMMUTABLE"

    def __init__(self, batch_id: str, status: str, operation: str):
        self.batch_id = batch_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Batch {batch_id} is '{status}' and cannot be modified ({operation})"
        )


class GrossDepositRequiredError(StateError):
    """process() requires an operator-confirmed gross deposit."""

    code: str = "GROSS_DEPOSIT_REQUIRED"

    def __init__(self, batch_id: str):
        self.batch_id = batch_id
        super().__init__(
            f"Gross deposit must be set before processing batch {batch_id}"
        )


class NoPendingDonationsError(StateError):
    """Requested donations are missing or no longer pending."""

    code: str = "NO_PENDING_DONATIONS"

    def __init__(self, unavailable_ids: list[str]):
        self.unavailable_ids = unavailable_ids
        super().__init__(
            f"No pending donations available for batching: "
            f"{len(unavailable_ids)} requested donation(s) not claimable"
        )


# =============================================================================
# Reserve
# =============================================================================


class ReserveShortfallError(DonationPipelineError):
    """Batch net total is below the settlement provider's minimum purchase.

    Carries the remediation amount the operator must top up.
    """

    code: str = "RESERVE_SHORTFALL"

    def __init__(self, batch_id: str, minimum_eur: Decimal, required_eur: Decimal):
        self.batch_id = batch_id
        self.minimum_eur = minimum_eur
        self.required_eur = required_eur
        super().__init__(
            f"Batch {batch_id} total below settlement minimum "
            f"{minimum_eur} EUR: reserve of {required_eur} EUR required"
        )


# =============================================================================
# External services
# =============================================================================


class ExternalServiceError(DonationPipelineError):
    """A rate, payment, blockchain, or bank gateway call failed."""

    code: str = "EXTERNAL_SERVICE_ERROR"

    def __init__(self, service: str, operation: str, detail: str):
        self.service = service
        self.operation = operation
        self.detail = detail
        super().__init__(f"{service}.{operation} failed: {detail}")


class ExternalServiceTimeoutError(ExternalServiceError):
    """A gateway call exceeded its configured timeout."""

    code: str = "EXTERNAL_SERVICE_TIMEOUT"

    def __init__(self, service: str, operation: str, timeout_seconds: float):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            service, operation, f"timed out after {timeout_seconds}s",
        )


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(DonationPipelineError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"


class BatchNotFoundError(NotFoundError):
    """No batch for the given id or external quote id."""

    code: str = "BATCH_NOT_FOUND"

    def __init__(self, batch_id: str | None = None, quote_id: str | None = None):
        self.batch_id = batch_id
        self.quote_id = quote_id
        if quote_id is not None:
            message = f"Batch not found for quote ID: {quote_id}"
        else:
            message = f"Batch not found: {batch_id}"
        super().__init__(message)


class DonationNotFoundError(NotFoundError):
    code: str = "DONATION_NOT_FOUND"

    def __init__(self, donation_id: str):
        self.donation_id = donation_id
        super().__init__(f"Donation not found: {donation_id}")


class TransactionNotFoundError(NotFoundError):
    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, tx_hash: str):
        self.tx_hash = tx_hash
        super().__init__(f"Blockchain transaction not found: {tx_hash}")
