"""
SettlementPipeline -- DI container and transactional facade.

Contract:
    Composes configuration, clock, gateways and services.  Each public batch
    operation runs in its own unit of work:

        success               -> commit
        ExternalServiceError  -> commit the recorded failure state, re-raise
        any other exception   -> rollback, re-raise

    ``run_cycle()`` is the periodic sweep; ``create_cycle_runner()`` and
    ``create_monitor()`` build the background workers.

Architecture: donation_batch (top-level).  The canonical entry point for
    embedding the pipeline in a web app, CLI or worker.

Invariants enforced:
    - Every service receives the same Clock.
    - All gateway calls share one timeout-guarded GatewayCaller.
    - Settlement callbacks are always acknowledged.
"""

from __future__ import annotations

from collections.abc import Callable, Generator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from donation_kernel.domain.clock import Clock, SystemClock
from donation_kernel.exceptions import (
    DonationPipelineError,
    ExternalServiceError,
    InvalidCycleError,
)
from donation_kernel.logging_config import LogContext, get_logger
from donation_config import get_active_config
from donation_config.schema import PipelineConfig

from donation_batch.domain.batch import BatchDetails, BatchPage, BatchRecord, ReserveSummary
from donation_batch.domain.cycle import (
    VALID_CYCLES,
    CycleSettings,
    CycleStatistics,
    coerce_cycle,
)
from donation_batch.domain.grouping import group_by_wallet, group_total
from donation_batch.domain.strategy import (
    ExecutionResult,
    ProcessingSummary,
    generate_summary,
)
from donation_batch.domain.types import (
    BatchStatus,
    BlockchainTransactionRecord,
    CycleCadence,
    CycleChange,
    DonationRecord,
    LandingChecklist,
    OperationalFeeStatus,
    PaymentInitiation,
    ProcessingCycleRecord,
    ReserveStatus,
)
from donation_batch.services.cycle_scheduler import CycleRunner, CycleScheduler
from donation_batch.services.gateways import (
    BankGateway,
    BlockchainGateway,
    CryptoPurchaseGateway,
    GatewayCaller,
    InternalBalanceSource,
    PaymentGateway,
    RateProvider,
)
from donation_batch.services.lifecycle import BatchLifecycle
from donation_batch.services.monitor import ConfirmationMonitor
from donation_batch.services.strategy import SettlementStrategySelector

logger = get_logger("batch.orchestrator")


@dataclass(frozen=True)
class CallbackAcknowledgement:
    """Reply to a settlement provider webhook."""

    acknowledged: bool
    batch: BatchRecord | None = None
    error_code: str | None = None


@dataclass(frozen=True)
class CycleRunResult:
    cycle: CycleCadence
    results: tuple[ExecutionResult, ...]
    summary: ProcessingSummary
    skipped_wallets: tuple[str, ...] = ()


class SettlementPipeline:
    """Facade over the settlement services.

    Non-goals:
        - Does NOT start background workers automatically -- caller decides.
        - Does NOT own the database engine.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        config: PipelineConfig | None = None,
        clock: Clock | None = None,
        rate_provider: RateProvider | None = None,
        payment_gateway: PaymentGateway | None = None,
        blockchain_gateway: BlockchainGateway | None = None,
        bank_gateway: BankGateway | None = None,
        purchase_gateway: CryptoPurchaseGateway | None = None,
        balance_source: InternalBalanceSource | None = None,
        gateways: GatewayCaller | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._config = config or get_active_config()
        self._clock = clock or SystemClock()
        self._rates = rate_provider
        self._payments = payment_gateway
        self._blockchain = blockchain_gateway
        self._bank = bank_gateway
        self._purchases = purchase_gateway
        self._balances = balance_source
        self._gateways = gateways or GatewayCaller(self._config.timeouts)
        self._runner: CycleRunner | None = None
        self._monitor: ConfirmationMonitor | None = None

    # -------------------------------------------------------------------------
    # Wiring
    # -------------------------------------------------------------------------

    @property
    def config(self) -> PipelineConfig:
        return self._config

    @property
    def clock(self) -> Clock:
        return self._clock

    def lifecycle(self, session: Session) -> BatchLifecycle:
        return BatchLifecycle(
            session,
            config=self._config,
            gateways=self._gateways,
            rate_provider=self._rates,
            payment_gateway=self._payments,
            blockchain_gateway=self._blockchain,
            clock=self._clock,
        )

    def strategy(self, session: Session, lifecycle: BatchLifecycle | None = None) -> SettlementStrategySelector:
        return SettlementStrategySelector(
            session,
            lifecycle or self.lifecycle(session),
            config=self._config,
            gateways=self._gateways,
            purchase_gateway=self._purchases,
            bank_gateway=self._bank,
            balance_source=self._balances,
            clock=self._clock,
        )

    def cycles(self, session: Session) -> CycleScheduler:
        return CycleScheduler(session, self._config.cycles, self._clock)

    @contextmanager
    def unit_of_work(self) -> Generator[Session, None, None]:
        """One transaction per operation; external failures are persisted."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except ExternalServiceError:
            session.commit()
            logger.warning("external_failure_state_committed")
            raise
        except Exception:
            session.rollback()
            logger.warning("transaction_rolled_back", exc_info=True)
            raise
        finally:
            session.close()

    # -------------------------------------------------------------------------
    # Batch operations
    # -------------------------------------------------------------------------

    def create_batch(
        self,
        donation_ids: Sequence[UUID],
        target_wallet: str | None,
        campaign_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> BatchRecord:
        with LogContext.bind(actor_id=str(actor_id) if actor_id else None):
            with self.unit_of_work() as session:
                return self.lifecycle(session).create(
                    donation_ids, target_wallet, campaign_id, actor_id,
                )

    def get_reserve(self, batch_id: UUID) -> ReserveStatus:
        with self.unit_of_work() as session:
            return self.lifecycle(session).get_reserve(batch_id)

    def set_gross_deposit(self, batch_id: UUID, amount_eur, note: str | None = None) -> OperationalFeeStatus:
        with LogContext.bind(batch_id=str(batch_id)):
            with self.unit_of_work() as session:
                return self.lifecycle(session).set_gross_deposit(batch_id, amount_eur, note)

    def get_operational_fee(self, batch_id: UUID) -> OperationalFeeStatus:
        with self.unit_of_work() as session:
            return self.lifecycle(session).operational_fee_status(batch_id)

    def record_operational_fee_payment(
        self, batch_id: UUID, amount_eur, note: str | None = None,
    ) -> OperationalFeeStatus:
        with LogContext.bind(batch_id=str(batch_id)):
            with self.unit_of_work() as session:
                return self.lifecycle(session).record_operational_fee_payment(
                    batch_id, amount_eur, note,
                )

    def process(self, batch_id: UUID) -> BatchRecord:
        with LogContext.bind(batch_id=str(batch_id)):
            with self.unit_of_work() as session:
                return self.lifecycle(session).process(batch_id)

    def initiate_settlement(
        self, batch_id: UUID, user_context: Mapping[str, Any] | None = None,
    ) -> PaymentInitiation:
        with LogContext.bind(batch_id=str(batch_id)):
            with self.unit_of_work() as session:
                return self.lifecycle(session).initiate_settlement(batch_id, user_context)

    def receive_settlement_callback(self, payload: Mapping[str, Any]) -> CallbackAcknowledgement:
        """Apply a provider webhook; never raises."""
        try:
            with self.unit_of_work() as session:
                batch = self.lifecycle(session).handle_settlement_callback(payload)
        except DonationPipelineError as exc:
            logger.warning(
                "settlement_callback_rejected",
                extra={"error_code": exc.code, "quote_id": payload.get("quote_id")},
            )
            return CallbackAcknowledgement(acknowledged=True, error_code=exc.code)
        return CallbackAcknowledgement(acknowledged=True, batch=batch)

    def send_on_chain(self, batch_id: UUID) -> BatchRecord:
        with LogContext.bind(batch_id=str(batch_id)):
            with self.unit_of_work() as session:
                return self.lifecycle(session).send_on_chain(batch_id)

    def status(self, batch_id: UUID) -> BatchRecord:
        with self.unit_of_work() as session:
            return self.lifecycle(session).get_batch(batch_id)

    get_batch = status

    def landing_checklist(self, batch_id: UUID) -> LandingChecklist:
        with self.unit_of_work() as session:
            return self.lifecycle(session).landing_checklist(batch_id)

    def cancel(self, batch_id: UUID, reason: str | None = None) -> BatchRecord:
        with LogContext.bind(batch_id=str(batch_id)):
            with self.unit_of_work() as session:
                return self.lifecycle(session).cancel(batch_id, reason)

    def list_batches(
        self,
        status: BatchStatus | str | None = None,
        campaign_id: UUID | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> BatchPage:
        with self.unit_of_work() as session:
            return self.lifecycle(session).list_batches(status, campaign_id, page, limit)

    def get_batch_details(self, batch_id: UUID) -> BatchDetails:
        with self.unit_of_work() as session:
            return self.lifecycle(session).get_batch_details(batch_id)

    def get_donation(self, donation_id: UUID) -> DonationRecord:
        with self.unit_of_work() as session:
            return self.lifecycle(session).get_donation(donation_id)

    def get_transaction(self, tx_hash: str) -> BlockchainTransactionRecord:
        with self.unit_of_work() as session:
            return self.lifecycle(session).get_transaction(tx_hash)

    def reserve_summary(self, day: date | None = None) -> ReserveSummary:
        with self.unit_of_work() as session:
            return self.lifecycle(session).reserve_summary(day)

    # -------------------------------------------------------------------------
    # Cycle operations
    # -------------------------------------------------------------------------

    def cycle_statistics(self, cycle: CycleCadence | str | None = None) -> CycleStatistics:
        with self.unit_of_work() as session:
            return self.cycles(session).get_cycle_statistics(cycle)

    def current_cycle(self) -> ProcessingCycleRecord | None:
        with self.unit_of_work() as session:
            return self.cycles(session).current_cycle()

    def cycle_settings(self) -> CycleSettings:
        with self.unit_of_work() as session:
            return self.cycles(session).current_settings()

    def update_processing_cycle(
        self,
        new_cycle: CycleCadence | str,
        changed_by: str | None = None,
        trigger_on_chain: bool = False,
        trigger_banking: bool = True,
        minimum_amount_eur=None,
        notes: str | None = None,
    ) -> CycleChange:
        with self.unit_of_work() as session:
            return self.cycles(session).update_processing_cycle(
                new_cycle,
                changed_by=changed_by,
                trigger_on_chain=trigger_on_chain,
                trigger_banking=trigger_banking,
                minimum_amount_eur=minimum_amount_eur,
                notes=notes,
            )

    def cycle_history(self, limit: int = 50, offset: int = 0) -> tuple[ProcessingCycleRecord, ...]:
        with self.unit_of_work() as session:
            return self.cycles(session).cycle_history(limit, offset)

    def next_processing_date(self, cycle: CycleCadence | str | None = None) -> datetime | None:
        with self.unit_of_work() as session:
            return self.cycles(session).next_processing_date(cycle)

    def run_cycle(self, cycle: CycleCadence | str | None = None) -> CycleRunResult:
        """Settle every wallet's pending donations in the cycle window.

        Each wallet is its own unit of work; a failure for one wallet is
        recorded in its result and the sweep continues.
        """
        with self.unit_of_work() as session:
            scheduler = self.cycles(session)
            settings = scheduler.current_settings()
            cadence = settings.cycle
            if cycle is not None:
                cadence = coerce_cycle(cycle)
                if cadence is None:
                    raise InvalidCycleError(str(cycle), list(VALID_CYCLES))
            donations = scheduler.get_pending_donations(cadence)

        results: list[ExecutionResult] = []
        skipped: list[str] = []
        with LogContext.bind(cycle=cadence.value):
            for wallet, group in group_by_wallet(donations).items():
                total = group_total(group)
                if total < settings.minimum_amount_eur:
                    skipped.append(wallet)
                    logger.info(
                        "wallet_below_cycle_minimum",
                        extra={
                            "wallet": wallet,
                            "total_amount": total,
                            "minimum_amount_eur": settings.minimum_amount_eur,
                        },
                    )
                    continue
                results.append(self._settle_wallet(wallet, group, settings))

            summary = generate_summary(results)
            logger.info(
                "cycle_run_completed",
                extra={
                    "total_batches": summary.total_batches,
                    "completed_batches": summary.completed_batches,
                    "total_donations": summary.total_donations,
                    "success_rate": summary.success_rate,
                    "skipped_wallets": len(skipped),
                },
            )
        return CycleRunResult(
            cycle=cadence,
            results=tuple(results),
            summary=summary,
            skipped_wallets=tuple(skipped),
        )

    def _settle_wallet(self, wallet, group, settings: CycleSettings) -> ExecutionResult:
        try:
            with self.unit_of_work() as session:
                lifecycle = self.lifecycle(session)
                batch = lifecycle.create(
                    [d.donation_id for d in group], wallet, group[0].campaign_id,
                )
                selector = self.strategy(session, lifecycle)
                decision = selector.determine_strategy(
                    wallet, batch.total_net_eur, batch.donation_count,
                )
                with LogContext.bind(batch_id=str(batch.batch_id)):
                    if decision.viable and settings.trigger_on_chain:
                        return selector.execute_crypto_first(batch.batch_id, decision)
                    if settings.trigger_banking:
                        return selector.execute_bank_fallback(batch.batch_id)
                logger.info("batch_left_for_operator", extra={"batch_id": str(batch.batch_id)})
                return ExecutionResult(
                    wallet=wallet,
                    strategy=decision.strategy.route.value if decision.strategy else "none",
                    donations_processed=0,
                    status=batch.status.value,
                    batch_id=batch.batch_id,
                )
        except DonationPipelineError as exc:
            logger.warning(
                "wallet_settlement_failed",
                extra={"wallet": wallet, "error_code": exc.code, "error": str(exc)},
            )
            return ExecutionResult(
                wallet=wallet,
                strategy="none",
                donations_processed=0,
                status=BatchStatus.FAILED.value,
                error=str(exc),
            )
        except SQLAlchemyError as exc:
            logger.exception(
                "wallet_settlement_db_error",
                extra={"wallet": wallet, "error": str(exc)},
            )
            return ExecutionResult(
                wallet=wallet,
                strategy="none",
                donations_processed=0,
                status=BatchStatus.FAILED.value,
                error=str(exc),
            )

    # -------------------------------------------------------------------------
    # Background workers
    # -------------------------------------------------------------------------

    def create_cycle_runner(self, tick_interval_seconds: int | None = None) -> CycleRunner:
        if self._runner is None:
            self._runner = CycleRunner(
                run_cycle=self.run_cycle,
                settings_provider=self.cycle_settings,
                clock=self._clock,
                tick_interval_seconds=(
                    tick_interval_seconds or self._config.cycles.tick_interval_seconds
                ),
            )
        return self._runner

    def create_monitor(self) -> ConfirmationMonitor:
        if self._blockchain is None:
            raise ValueError("a blockchain gateway is required to monitor confirmations")
        if self._monitor is None:
            self._monitor = ConfirmationMonitor(
                self._session_factory,
                self._blockchain,
                config=self._config,
                gateways=self._gateways,
                clock=self._clock,
            )
        return self._monitor

    def shutdown(self, timeout: float = 30.0) -> None:
        if self._runner is not None:
            self._runner.stop(timeout=timeout)
        if self._monitor is not None:
            self._monitor.stop(timeout=timeout)
        self._gateways.shutdown()
        logger.info("pipeline_shutdown")
