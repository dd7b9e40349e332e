"""
In-memory collaborator fakes for the settlement pipeline tests.

Each fake records its calls and can be told to fail, so tests can drive
every gateway outcome without network access.
"""

from __future__ import annotations

import itertools
import threading
from datetime import datetime
from decimal import Decimal

from donation_batch.domain.types import (
    ExchangeRateSnapshot,
    PaymentInitiation,
    PurchaseReceipt,
    SettlementQuote,
    TransactionReceipt,
)

# USDT TRC-20 contract address: a well-formed base58check TRON address
VALID_TRON_WALLET = "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"
SECOND_TRON_WALLET = "TLa2f6VPqDgRE67v1736s7bJ8Ray5wYjU7"


class FakeRateProvider:
    def __init__(
        self,
        rate: Decimal = Decimal("1.05"),
        fail: bool = False,
        valid_from: datetime | None = None,
        valid_to: datetime | None = None,
    ):
        self.rate = rate
        self.fail = fail
        self.valid_from = valid_from
        self.valid_to = valid_to
        self.calls: list[tuple[str, str]] = []

    def get_rate(self, base_currency: str, target_currency: str) -> ExchangeRateSnapshot:
        self.calls.append((base_currency, target_currency))
        if self.fail:
            raise ConnectionError("rate service unreachable")
        return ExchangeRateSnapshot(
            base_currency=base_currency,
            target_currency=target_currency,
            rate=self.rate,
            source="fake_rates",
            valid_from=self.valid_from,
            valid_to=self.valid_to,
        )


class FakePaymentGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.quotes: list[SettlementQuote] = []
        self._counter = itertools.count(1)

    def initiate(self, quote: SettlementQuote) -> PaymentInitiation:
        self.quotes.append(quote)
        if self.fail:
            raise RuntimeError("payment gateway rejected the quote")
        n = next(self._counter)
        return PaymentInitiation(
            payment_url=f"https://pay.example.test/checkout/{n}",
            payment_id=f"pay-{n}",
            quote_id=f"quote-{quote.batch_number}-{n}",
        )


class FakeBlockchainGateway:
    def __init__(self, fail_send: bool = False, fail_lookup: bool = False):
        self.fail_send = fail_send
        self.fail_lookup = fail_lookup
        self.sent: list[tuple[str, Decimal]] = []
        self.lookups: list[str] = []
        self.receipts: dict[str, TransactionReceipt] = {}
        self._counter = itertools.count(1)
        self._lock = threading.Lock()

    @property
    def source_address(self) -> str:
        return "THotWalletSource0000000000000000000"

    def send(self, wallet: str, amount: Decimal) -> str:
        if self.fail_send:
            raise ConnectionError("node refused the broadcast")
        self.sent.append((wallet, amount))
        return f"0x{next(self._counter):064x}"

    def get_transaction(self, tx_hash: str) -> TransactionReceipt:
        with self._lock:
            self.lookups.append(tx_hash)
        if self.fail_lookup:
            raise ConnectionError("node unavailable")
        return self.receipts.get(tx_hash, TransactionReceipt(tx_hash=tx_hash, found=False))

    def confirm(self, tx_hash: str, block_number: int = 1000, confirmations: int = 20) -> None:
        self.receipts[tx_hash] = TransactionReceipt(
            tx_hash=tx_hash,
            found=True,
            confirmed=True,
            block_number=block_number,
            confirmations=confirmations,
        )

    def revert(self, tx_hash: str) -> None:
        self.receipts[tx_hash] = TransactionReceipt(tx_hash=tx_hash, found=True, confirmed=False)


class FakeBankGateway:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.transfers: list[tuple[Decimal, str, str]] = []

    def transfer(self, amount: Decimal, destination: str, reference: str) -> str:
        if self.fail:
            raise RuntimeError("bank API returned 503")
        self.transfers.append((amount, destination, reference))
        return f"BANK-{len(self.transfers)}"


class FakePurchaseGateway:
    """Crypto purchase provider.

    ``confirmations`` lists the confirmed flag per call (default all True);
    ``fail_on_call`` makes the n-th call (1-based) raise.
    """

    def __init__(self, confirmations: list[bool] | None = None, fail_on_call: int | None = None):
        self.confirmations = confirmations
        self.fail_on_call = fail_on_call
        self.purchases: list[tuple[str, str, Decimal, tuple]] = []

    def purchase(self, provider: str, wallet: str, amount: Decimal, donation_ids) -> PurchaseReceipt:
        call = len(self.purchases) + 1
        if self.fail_on_call == call:
            raise RuntimeError("provider declined the order")
        self.purchases.append((provider, wallet, amount, tuple(donation_ids)))
        confirmed = True
        if self.confirmations is not None:
            confirmed = self.confirmations[call - 1]
        return PurchaseReceipt(
            provider=provider,
            reference=f"{provider}-order-{call}",
            amount_eur=amount,
            confirmed=confirmed,
        )


class FakeBalanceSource:
    def __init__(self, balance: Decimal = Decimal("0"), fail: bool = False):
        self.balance = balance
        self.fail = fail

    def available_balance(self, asset: str) -> Decimal:
        if self.fail:
            raise ConnectionError("custody API down")
        return self.balance
