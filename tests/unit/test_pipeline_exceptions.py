"""
Tests for the typed exception hierarchy (donation_kernel.exceptions).

Callers dispatch on category and read structured attributes, so both are
part of the contract.
"""

from decimal import Decimal

import pytest

from donation_kernel.exceptions import (
    BatchImmutableError,
    BatchNotFoundError,
    DonationNotFoundError,
    DonationPipelineError,
    EmptyInputError,
    ExternalServiceError,
    ExternalServiceTimeoutError,
    GrossDepositRequiredError,
    InvalidAmountError,
    InvalidCycleError,
    InvalidFeePercentagesError,
    InvalidStateTransitionError,
    MissingWalletError,
    NoPendingDonationsError,
    NotFoundError,
    ReserveShortfallError,
    StateError,
    TransactionNotFoundError,
    ValidationError,
)


@pytest.mark.parametrize("exc,category,code", [
    (InvalidAmountError(0), ValidationError, "INVALID_AMOUNT"),
    (EmptyInputError("donation_ids"), ValidationError, "EMPTY_INPUT"),
    (InvalidFeePercentagesError(60, 30, 20), ValidationError, "INVALID_FEE_PERCENTAGES"),
    (MissingWalletError(), ValidationError, "MISSING_WALLET"),
    (InvalidCycleError("hourly", ["daily"]), ValidationError, "INVALID_CYCLE"),
    (InvalidStateTransitionError("b", "draft", "completed"), StateError, "INVALID_STATE_TRANSITION"),
    (BatchImmutableError("b", "completed", "cancel"), StateError, "BATCH_IMMUTABLE"),
    (GrossDepositRequiredError("b"), StateError, "GROSS_DEPOSIT_REQUIRED"),
    (NoPendingDonationsError(["d"]), StateError, "NO_PENDING_DONATIONS"),
    (ReserveShortfallError("b", Decimal("44"), Decimal("4")), DonationPipelineError, "RESERVE_SHORTFALL"),
    (ExternalServiceError("bank", "transfer", "503"), DonationPipelineError, "EXTERNAL_SERVICE_ERROR"),
    (ExternalServiceTimeoutError("bank", "transfer", 30.0), ExternalServiceError, "EXTERNAL_SERVICE_TIMEOUT"),
    (BatchNotFoundError("b"), NotFoundError, "BATCH_NOT_FOUND"),
    (DonationNotFoundError("d"), NotFoundError, "DONATION_NOT_FOUND"),
    (TransactionNotFoundError("0x1"), NotFoundError, "TRANSACTION_NOT_FOUND"),
])
def test_category_and_code(exc, category, code):
    assert isinstance(exc, category)
    assert isinstance(exc, DonationPipelineError)
    assert exc.code == code


def test_reserve_shortfall_carries_remediation():
    exc = ReserveShortfallError("b-1", Decimal("44"), Decimal("14.00"))
    assert exc.minimum_eur == Decimal("44")
    assert exc.required_eur == Decimal("14.00")
    assert "14.00" in str(exc)


def test_batch_not_found_by_quote():
    exc = BatchNotFoundError(quote_id="q-1")
    assert exc.batch_id is None
    assert "quote ID: q-1" in str(exc)


def test_timeout_message():
    exc = ExternalServiceTimeoutError("payment_gateway", "initiate", 30.0)
    assert exc.timeout_seconds == 30.0
    assert exc.service == "payment_gateway"
    assert str(exc) == "payment_gateway.initiate failed: timed out after 30.0s"
