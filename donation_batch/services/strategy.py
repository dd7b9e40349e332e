"""
SettlementStrategySelector -- choose and execute a settlement route.

Contract:
    ``determine_strategy`` reads the internal crypto balance and delegates
    the cost model to ``donation_batch.domain.strategy``.  The two executors
    move a draft batch to its next state through BatchLifecycle:

        crypto first  : dispatch every purchase group, then SENDING and
                        COMPLETED (all receipts confirmed) or
                        NEEDS_RECONCILIATION (shortfall).
        bank fallback : one bank transfer per group, then
                        AWAITING_SETTLEMENT; never completes the batch.

Architecture: donation_batch/services.

Invariants enforced:
    - Status changes only after every dispatch result is known.
    - A dispatch failure fails the batch with manual intervention flagged.
    - Nothing is retried.

Failure modes:
    - Executors do NOT raise on gateway failure; they record it on the
      batch and report it in the returned ExecutionResult.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from donation_kernel.domain.clock import Clock, SystemClock
from donation_kernel.domain.money import ZERO, quantize_amount, to_decimal
from donation_kernel.exceptions import ExternalServiceError
from donation_kernel.logging_config import get_logger
from donation_config.schema import BankFee, PipelineConfig

from donation_batch.domain.cycle import add_business_days
from donation_batch.domain.grouping import (
    group_for_bank_transfers,
    group_for_optimal_fees,
    group_total,
)
from donation_batch.domain.strategy import (
    ExecutionResult,
    StrategyDecision,
    decide,
)
from donation_batch.domain.types import (
    BankTransferResult,
    BatchStatus,
    DonationRecord,
    PurchaseReceipt,
    SettlementRoute,
)
from donation_batch.services.gateways import (
    BankGateway,
    CryptoPurchaseGateway,
    GatewayCaller,
    InternalBalanceSource,
)
from donation_batch.services.lifecycle import BatchLifecycle

logger = get_logger("batch.strategy")


def bank_fee_for(amount, fees: tuple[BankFee, ...]) -> Decimal:
    """Cheapest configured bank fee for one transfer of ``amount``."""
    if not fees:
        return ZERO
    amount = to_decimal(amount)
    return min(
        quantize_amount(fee.fixed_fee + amount * fee.fee_percent / 100)
        for fee in fees
    )


def bank_reference(donation: DonationRecord, now: datetime) -> str:
    return f"DON-{donation.donation_id}-{int(now.timestamp())}"


class SettlementStrategySelector:
    """Route selection plus the crypto-first and bank-fallback executors.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        lifecycle: BatchLifecycle,
        config: PipelineConfig | None = None,
        gateways: GatewayCaller | None = None,
        purchase_gateway: CryptoPurchaseGateway | None = None,
        bank_gateway: BankGateway | None = None,
        balance_source: InternalBalanceSource | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._lifecycle = lifecycle
        self._config = config or PipelineConfig()
        self._gateways = gateways or GatewayCaller(self._config.timeouts)
        self._purchases = purchase_gateway
        self._bank = bank_gateway
        self._balances = balance_source
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def _internal_balance(self) -> Decimal:
        if self._balances is None:
            return ZERO
        asset = self._config.settlement.settlement_currency
        try:
            return to_decimal(self._gateways.call(
                "internal_balance",
                "available_balance",
                self._balances.available_balance,
                asset,
                timeout=self._config.timeouts.rate_seconds,
            ))
        except ExternalServiceError as exc:
            logger.warning(
                "internal_balance_unavailable",
                extra={"asset": asset, "error": str(exc)},
            )
            return ZERO

    def determine_strategy(
        self, wallet: str, total_amount, donation_count: int,
    ) -> StrategyDecision:
        decision = decide(
            wallet,
            total_amount,
            donation_count,
            self._internal_balance(),
            self._config.strategy,
        )
        logger.info(
            "strategy_determined",
            extra={
                "wallet": wallet,
                "total_amount": decision.total_amount,
                "viable": decision.viable,
                "route": decision.strategy.route.value if decision.strategy else None,
                "provider": decision.strategy.provider if decision.strategy else None,
                "cost": decision.strategy.cost if decision.strategy else None,
            },
        )
        return decision

    # -------------------------------------------------------------------------
    # Crypto first
    # -------------------------------------------------------------------------

    def execute_crypto_first(
        self, batch_id: UUID, decision: StrategyDecision,
    ) -> ExecutionResult:
        """Dispatch every purchase group, then settle the batch state."""
        details = self._lifecycle.get_batch_details(batch_id)
        batch = details.batch
        steps: list[str] = []

        if not decision.viable or decision.strategy is None:
            return ExecutionResult(
                wallet=batch.target_wallet,
                strategy="none",
                donations_processed=0,
                status="skipped",
                batch_id=batch.batch_id,
                error=decision.reason,
            )

        strategy = decision.strategy
        thresholds = self._config.grouping
        groups = group_for_optimal_fees(
            details.donations,
            optimal_size_eur=thresholds.optimal_size_eur,
            min_size_eur=thresholds.min_size_eur,
            flexibility=thresholds.flexibility,
        )
        steps.append(f"grouped:{len(groups)}")

        receipts: list[PurchaseReceipt] = []
        for index, group in enumerate(groups):
            amount = quantize_amount(group_total(group))
            try:
                receipt = self._dispatch_purchase(
                    strategy.provider, batch.target_wallet, amount, group,
                )
            except ExternalServiceError as exc:
                steps.append(f"dispatch_failed:{index}")
                self._lifecycle.fail(
                    batch.batch_id,
                    "PURCHASE_DISPATCH_FAILED",
                    f"group {index + 1}/{len(groups)}: {exc}",
                    manual_intervention=True,
                )
                return ExecutionResult(
                    wallet=batch.target_wallet,
                    strategy=strategy.route.value,
                    donations_processed=0,
                    status=BatchStatus.FAILED.value,
                    batch_id=batch.batch_id,
                    steps=tuple(steps),
                    error=str(exc),
                )
            receipts.append(receipt)
            steps.append(f"dispatched:{receipt.reference}")

        self._lifecycle.mark_sending(
            batch.batch_id,
            strategy.route,
            provider_references=[r.reference for r in receipts],
        )

        confirmed = sum(1 for r in receipts if r.confirmed)
        if confirmed == len(groups):
            record = self._lifecycle.complete(batch.batch_id)
            steps.append("verified")
            return ExecutionResult(
                wallet=batch.target_wallet,
                strategy=strategy.route.value,
                donations_processed=record.donation_count,
                status=record.status.value,
                batch_id=record.batch_id,
                steps=tuple(steps),
            )

        message = f"{confirmed} of {len(groups)} purchases confirmed"
        record = self._lifecycle.hold_for_reconciliation(batch.batch_id, message)
        steps.append("verification_shortfall")
        return ExecutionResult(
            wallet=batch.target_wallet,
            strategy=strategy.route.value,
            donations_processed=0,
            status=record.status.value,
            batch_id=record.batch_id,
            steps=tuple(steps),
            error=message,
        )

    def _dispatch_purchase(
        self,
        provider: str,
        wallet: str,
        amount: Decimal,
        group: list[DonationRecord],
    ) -> PurchaseReceipt:
        if self._purchases is None:
            raise ExternalServiceError(provider, "purchase", "no purchase gateway configured")
        receipt = self._gateways.call(
            provider,
            "purchase",
            self._purchases.purchase,
            provider,
            wallet,
            amount,
            tuple(d.donation_id for d in group),
            timeout=self._config.timeouts.provider_seconds,
        )
        logger.info(
            "purchase_dispatched",
            extra={
                "provider": provider,
                "reference": receipt.reference,
                "amount_eur": amount,
                "confirmed": receipt.confirmed,
                "donation_count": len(group),
            },
        )
        return receipt

    # -------------------------------------------------------------------------
    # Bank fallback
    # -------------------------------------------------------------------------

    def execute_bank_fallback(self, batch_id: UUID) -> ExecutionResult:
        """One bank transfer per group; the batch waits for the bank."""
        details = self._lifecycle.get_batch_details(batch_id)
        batch = details.batch
        groups = group_for_bank_transfers(
            details.donations, self._config.strategy.bank_grouping,
        )
        steps: list[str] = [f"grouped:{len(groups)}"]

        transfers: list[BankTransferResult] = []
        for index, group in enumerate(groups):
            try:
                transfers.append(self._transfer(batch.target_wallet, group))
            except ExternalServiceError as exc:
                steps.append(f"transfer_failed:{index}")
                self._lifecycle.fail(
                    batch.batch_id,
                    "BANK_TRANSFER_FAILED",
                    f"group {index + 1}/{len(groups)}: {exc}",
                    manual_intervention=True,
                )
                return ExecutionResult(
                    wallet=batch.target_wallet,
                    strategy=SettlementRoute.BANK_TRANSFER.value,
                    donations_processed=0,
                    status=BatchStatus.FAILED.value,
                    batch_id=batch.batch_id,
                    steps=tuple(steps),
                    error=str(exc),
                )
            steps.append(f"transferred:{transfers[-1].reference}")

        record = self._lifecycle.mark_awaiting_settlement(
            batch.batch_id,
            SettlementRoute.BANK_TRANSFER,
            bank_references=[t.reference for t in transfers],
        )
        logger.info(
            "bank_fallback_initiated",
            extra={
                "batch_id": str(record.batch_id),
                "transfer_count": len(transfers),
                "total_fee_eur": sum((t.fee_eur for t in transfers), ZERO),
            },
        )
        return ExecutionResult(
            wallet=batch.target_wallet,
            strategy=SettlementRoute.BANK_TRANSFER.value,
            donations_processed=record.donation_count,
            status=record.status.value,
            batch_id=record.batch_id,
            steps=tuple(steps),
        )

    def _transfer(self, destination: str, group: list[DonationRecord]) -> BankTransferResult:
        if self._bank is None:
            raise ExternalServiceError("bank", "transfer", "no bank gateway configured")
        now = self._clock.now()
        amount = quantize_amount(group_total(group))
        reference = self._gateways.call(
            "bank",
            "transfer",
            self._bank.transfer,
            amount,
            destination,
            bank_reference(group[0], now),
            timeout=self._config.timeouts.bank_seconds,
        )
        return BankTransferResult(
            reference=reference,
            amount_eur=amount,
            fee_eur=bank_fee_for(amount, self._config.strategy.bank_fees),
            donation_ids=tuple(d.donation_id for d in group),
            estimated_completion=add_business_days(now, 1),
        )
