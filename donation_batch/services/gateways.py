"""
External collaborator contracts and the timeout guard around them.

Contract:
    Each collaborator is a ``typing.Protocol``; production adapters and test
    fakes satisfy them structurally.  Every call a service makes to a
    collaborator goes through ``GatewayCaller.call``, which bounds it with a
    timeout and converts any failure into ``ExternalServiceError``.

Architecture: donation_batch/services.  Imports domain DTOs and kernel
    exceptions only.

Invariants enforced:
    - No gateway call is retried here.  Sends, purchases and transfers are
      not idempotent; retry policy belongs to the operator.
    - A timed-out call keeps running on its worker thread; its result is
      discarded and the caller sees ``ExternalServiceTimeoutError``.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from decimal import Decimal
from typing import Protocol, TypeVar, runtime_checkable
from uuid import UUID

from donation_kernel.exceptions import (
    ExternalServiceError,
    ExternalServiceTimeoutError,
)
from donation_kernel.logging_config import get_logger
from donation_config.schema import TimeoutConfig

from donation_batch.domain.types import (
    ExchangeRateSnapshot,
    PaymentInitiation,
    PurchaseReceipt,
    SettlementQuote,
    TransactionReceipt,
)

logger = get_logger("batch.gateways")

T = TypeVar("T")


# =============================================================================
# Collaborator protocols
# =============================================================================


@runtime_checkable
class RateProvider(Protocol):
    def get_rate(self, base_currency: str, target_currency: str) -> ExchangeRateSnapshot:
        ...


@runtime_checkable
class PaymentGateway(Protocol):
    """Fiat-to-crypto settlement provider (quote + hosted payment page)."""

    def initiate(self, quote: SettlementQuote) -> PaymentInitiation:
        ...


@runtime_checkable
class BlockchainGateway(Protocol):
    @property
    def source_address(self) -> str:
        ...

    def send(self, wallet: str, amount: Decimal) -> str:
        """Broadcast a transfer and return its transaction hash."""
        ...

    def get_transaction(self, tx_hash: str) -> TransactionReceipt:
        ...


@runtime_checkable
class BankGateway(Protocol):
    def transfer(self, amount: Decimal, destination: str, reference: str) -> str:
        """Submit a bank transfer and return the bank's reference."""
        ...


@runtime_checkable
class CryptoPurchaseGateway(Protocol):
    def purchase(
        self,
        provider: str,
        wallet: str,
        amount: Decimal,
        donation_ids: Sequence[UUID],
    ) -> PurchaseReceipt:
        ...


@runtime_checkable
class InternalBalanceSource(Protocol):
    def available_balance(self, asset: str) -> Decimal:
        ...


# =============================================================================
# Timeout guard
# =============================================================================


class GatewayCaller:
    """Runs collaborator calls on a bounded thread pool with timeouts.

    Contract:
        - ``call()`` returns the collaborator's result or raises
          ``ExternalServiceError`` / ``ExternalServiceTimeoutError``.
        - ``shutdown()`` releases the pool; in-flight calls are not waited on.
    """

    def __init__(self, timeouts: TimeoutConfig | None = None, max_workers: int = 8):
        self._timeouts = timeouts or TimeoutConfig()
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="gateway",
        )
        self._lock = threading.Lock()
        self._closed = False

    @property
    def timeouts(self) -> TimeoutConfig:
        return self._timeouts

    def call(
        self,
        service: str,
        operation: str,
        func: Callable[..., T],
        *args,
        timeout: float | None = None,
    ) -> T:
        with self._lock:
            if self._closed:
                raise ExternalServiceError(service, operation, "gateway caller is shut down")
            future = self._executor.submit(func, *args)

        limit = timeout if timeout is not None else self._timeouts.payment_seconds
        try:
            return future.result(timeout=limit)
        except FutureTimeoutError:
            logger.error(
                "gateway_call_timed_out",
                extra={"service": service, "operation": operation, "timeout_seconds": limit},
            )
            raise ExternalServiceTimeoutError(service, operation, limit) from None
        except ExternalServiceError:
            raise
        except Exception as exc:
            logger.error(
                "gateway_call_failed",
                extra={
                    "service": service,
                    "operation": operation,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            raise ExternalServiceError(service, operation, str(exc)) from exc

    def shutdown(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        self._executor.shutdown(wait=False)


def call_with_timeout(
    service: str,
    operation: str,
    func: Callable[..., T],
    *args,
    timeout: float,
) -> T:
    """One-shot guarded call on a throwaway single-worker pool."""
    caller = GatewayCaller(max_workers=1)
    try:
        return caller.call(service, operation, func, *args, timeout=timeout)
    finally:
        caller.shutdown()
