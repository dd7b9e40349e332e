"""
Tests for donation_batch.services.gateways.GatewayCaller -- timeout-guarded
collaborator calls.
"""

import threading

import pytest

from donation_config.schema import TimeoutConfig
from donation_kernel.exceptions import (
    ExternalServiceError,
    ExternalServiceTimeoutError,
)

from donation_batch.services.gateways import GatewayCaller, call_with_timeout


@pytest.fixture
def caller():
    c = GatewayCaller(TimeoutConfig(), max_workers=2)
    yield c
    c.shutdown()


def test_returns_result(caller):
    assert caller.call("rates", "get_rate", lambda a, b: f"{a}/{b}", "EUR", "USDT") == "EUR/USDT"


def test_collaborator_error_is_wrapped(caller):
    def boom():
        raise ConnectionError("refused")

    with pytest.raises(ExternalServiceError) as exc_info:
        caller.call("bank", "transfer", boom)
    assert exc_info.value.service == "bank"
    assert exc_info.value.detail == "refused"
    assert isinstance(exc_info.value.__cause__, ConnectionError)


def test_pipeline_error_passes_through(caller):
    original = ExternalServiceError("chain", "send", "nonce too low")

    def raise_original():
        raise original

    with pytest.raises(ExternalServiceError) as exc_info:
        caller.call("chain", "send", raise_original)
    assert exc_info.value is original


def test_timeout(caller):
    release = threading.Event()
    try:
        with pytest.raises(ExternalServiceTimeoutError) as exc_info:
            caller.call("payment_gateway", "initiate", release.wait, 5, timeout=0.05)
        assert exc_info.value.timeout_seconds == 0.05
    finally:
        release.set()


def test_closed_caller_refuses_calls(caller):
    caller.shutdown()
    caller.shutdown()
    with pytest.raises(ExternalServiceError, match="shut down"):
        caller.call("rates", "get_rate", lambda: 1)


def test_call_with_timeout_one_shot():
    assert call_with_timeout("rates", "get_rate", lambda: 42, timeout=1.0) == 42
