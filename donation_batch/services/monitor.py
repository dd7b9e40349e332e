"""
ConfirmationMonitor -- reconcile blockchain truth into batch state.

Contract:
    ``tick()`` looks up every open on-chain transaction, publishes one
    observation per receipt onto a queue, then ``drain()``s the queue.
    Each observation is reconciled in its own transaction:

        confirmed            -> transaction confirmed, batch completed,
                                donations sent
        found, not confirmed -> transaction failed, batch held in
                                needs_reconciliation (manual intervention)
        not found            -> nothing changes; retried next tick

Architecture: donation_batch/services.  Same thread model as the cycle
    runner: daemon thread, ``threading.Event`` stop, ``tick()`` public for
    tests.

Invariants enforced:
    - A transaction hash is looked up by at most one worker at a time
      (in-flight set guarded by a lock).
    - Lookup failures never change state.
    - Observations for batches that can no longer complete only update the
      transaction row.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from donation_kernel.db.engine import session_scope
from donation_kernel.domain.clock import Clock, SystemClock
from donation_kernel.exceptions import ExternalServiceError
from donation_kernel.logging_config import LogContext, get_logger
from donation_config.schema import PipelineConfig

from donation_batch.domain.transitions import can_transition
from donation_batch.domain.types import (
    BatchStatus,
    TransactionReceipt,
    TransactionStatus,
)
from donation_batch.models.batch import BatchModel
from donation_batch.models.transaction import BlockchainTransactionModel
from donation_batch.services.gateways import BlockchainGateway, GatewayCaller
from donation_batch.services.lifecycle import BatchLifecycle

logger = get_logger("batch.monitor")

_OPEN_STATUSES = (TransactionStatus.PENDING.value, TransactionStatus.PROCESSING.value)


@dataclass(frozen=True)
class Observation:
    """One receipt lookup result awaiting reconciliation."""

    transaction_id: UUID
    batch_id: UUID
    receipt: TransactionReceipt
    observed_at: datetime


class ConfirmationMonitor:
    """Background poller for on-chain confirmations."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        blockchain_gateway: BlockchainGateway,
        config: PipelineConfig | None = None,
        gateways: GatewayCaller | None = None,
        clock: Clock | None = None,
    ):
        self._session_factory = session_factory
        self._blockchain = blockchain_gateway
        self._config = config or PipelineConfig()
        self._gateways = gateways or GatewayCaller(self._config.timeouts)
        self._clock = clock or SystemClock()
        self._observations: queue.Queue[Observation] = queue.Queue()
        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending_observations(self) -> int:
        return self._observations.qsize()

    # -------------------------------------------------------------------------
    # Polling
    # -------------------------------------------------------------------------

    def tick(self) -> int:
        """Poll and reconcile once.  Returns the number of observations applied."""
        self.poll()
        return self.drain()

    def poll(self) -> int:
        """Look up open transactions and queue their receipts."""
        session = self._session_factory()
        try:
            rows = session.execute(
                select(
                    BlockchainTransactionModel.id,
                    BlockchainTransactionModel.batch_id,
                    BlockchainTransactionModel.tx_hash,
                )
                .where(BlockchainTransactionModel.status.in_(_OPEN_STATUSES))
                .order_by(BlockchainTransactionModel.created_at)
                .limit(self._config.monitor.batch_limit)
            ).all()
        finally:
            session.close()

        published = 0
        for transaction_id, batch_id, tx_hash in rows:
            if not self._claim(tx_hash):
                continue
            try:
                receipt = self._gateways.call(
                    "blockchain",
                    "get_transaction",
                    self._blockchain.get_transaction,
                    tx_hash,
                    timeout=self._config.timeouts.blockchain_seconds,
                )
            except ExternalServiceError as exc:
                self._release(tx_hash)
                logger.warning(
                    "transaction_lookup_failed",
                    extra={"tx_hash": tx_hash, "error": str(exc)},
                )
                continue

            if not receipt.found:
                self._release(tx_hash)
                logger.debug("transaction_not_found", extra={"tx_hash": tx_hash})
                continue

            self._observations.put(Observation(
                transaction_id=transaction_id,
                batch_id=batch_id,
                receipt=receipt,
                observed_at=self._clock.now(),
            ))
            published += 1
        return published

    def drain(self) -> int:
        """Reconcile every queued observation, each in its own transaction."""
        applied = 0
        while True:
            try:
                observation = self._observations.get_nowait()
            except queue.Empty:
                break
            try:
                with LogContext.bind(batch_id=str(observation.batch_id)):
                    with session_scope(self._session_factory) as session:
                        self._reconcile(session, observation)
                applied += 1
            except Exception:
                logger.exception(
                    "observation_reconcile_failed",
                    extra={"tx_hash": observation.receipt.tx_hash},
                )
            finally:
                self._release(observation.receipt.tx_hash)
                self._observations.task_done()
        return applied

    def _claim(self, tx_hash: str) -> bool:
        with self._in_flight_lock:
            if tx_hash in self._in_flight:
                return False
            self._in_flight.add(tx_hash)
            return True

    def _release(self, tx_hash: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(tx_hash)

    # -------------------------------------------------------------------------
    # Reconciliation
    # -------------------------------------------------------------------------

    def _reconcile(self, session: Session, observation: Observation) -> None:
        tx = session.get(BlockchainTransactionModel, observation.transaction_id)
        if tx is None or tx.status not in _OPEN_STATUSES:
            return

        receipt = observation.receipt
        batch = session.get(BatchModel, observation.batch_id)
        batch_status = BatchStatus(batch.status) if batch is not None else None
        lifecycle = BatchLifecycle(
            session,
            config=self._config,
            gateways=self._gateways,
            clock=self._clock,
        )

        if receipt.confirmed:
            tx.status = TransactionStatus.CONFIRMED.value
            tx.block_number = receipt.block_number
            tx.confirmations = receipt.confirmations
            tx.confirmed_at = observation.observed_at
            session.flush()
            logger.info(
                "transaction_confirmed",
                extra={"tx_hash": tx.tx_hash, "block_number": receipt.block_number},
            )
            if batch_status is not None and can_transition(batch_status, BatchStatus.COMPLETED):
                lifecycle.complete(observation.batch_id, block_number=receipt.block_number)
            else:
                logger.warning(
                    "confirmed_batch_not_completable",
                    extra={"tx_hash": tx.tx_hash, "batch_status": getattr(batch_status, "value", None)},
                )
            return

        tx.status = TransactionStatus.FAILED.value
        session.flush()
        logger.error("transaction_failed_on_chain", extra={"tx_hash": tx.tx_hash})
        if batch_status is not None and can_transition(
            batch_status, BatchStatus.NEEDS_RECONCILIATION,
        ):
            lifecycle.hold_for_reconciliation(
                observation.batch_id,
                f"transaction {tx.tx_hash} failed on chain",
            )

    # -------------------------------------------------------------------------
    # Thread
    # -------------------------------------------------------------------------

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="confirmation-monitor",
            daemon=True,
        )
        self._thread.start()
        logger.info(
            "confirmation_monitor_started",
            extra={"interval_seconds": self._config.monitor.interval_seconds},
        )

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("confirmation_monitor_stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("confirmation_monitor_tick_failed")
            self._stop_event.wait(timeout=self._config.monitor.interval_seconds)
