"""
CycleScheduler -- donation window selection and cadence management.

Contract:
    ``CycleScheduler`` reads pending donations for a run, aggregates cycle
    statistics, and maintains the append-only ProcessingCycle history.
    ``CycleRunner`` is the background thread that fires the periodic sweep
    when the active cadence says a run is due.

Architecture: donation_batch/services.  Pure rules live in
    donation_batch.domain.cycle; this module adds the queries and the thread.

Invariants enforced:
    - All timestamps come from the injected Clock.
    - A cadence change deactivates the active row and appends a new one;
      rows are never deleted.
    - ``manual`` cadence never fires automatically.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from donation_kernel.domain.clock import Clock, SystemClock
from donation_kernel.domain.money import ZERO, quantize_amount, to_decimal
from donation_kernel.exceptions import InvalidCycleError
from donation_kernel.logging_config import LogContext, get_logger
from donation_config.schema import CycleConfig

from donation_batch.domain.cycle import (
    VALID_CYCLES,
    CycleSettings,
    CycleStatistics,
    calculate_next_processing_date,
    calculate_optimization_potential,
    coerce_cycle,
    lookback_start,
    recommend_cycle,
    window_start,
)
from donation_batch.domain.types import (
    CycleCadence,
    CycleChange,
    DonationRecord,
    DonationStatus,
    ProcessingCycleRecord,
)
from donation_batch.models.cycle import ProcessingCycleModel
from donation_batch.models.donation import DonationModel

logger = get_logger("batch.cycle_scheduler")


class CycleScheduler:
    """Cycle queries and cadence history.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    def __init__(
        self,
        session: Session,
        config: CycleConfig | None = None,
        clock: Clock | None = None,
    ):
        self._session = session
        self._config = config or CycleConfig()
        self._clock = clock or SystemClock()

    # -------------------------------------------------------------------------
    # Selection
    # -------------------------------------------------------------------------

    def get_pending_donations(
        self, cycle: CycleCadence | str | None = None,
    ) -> list[DonationRecord]:
        """Pending donations created inside the cycle's window, oldest first."""
        cycle = cycle or self.current_settings().cycle
        since = window_start(cycle, self._clock.now())
        rows = self._session.execute(
            select(DonationModel)
            .where(
                DonationModel.status == DonationStatus.PENDING.value,
                DonationModel.created_at >= since,
            )
            .order_by(DonationModel.created_at, DonationModel.id)
        ).scalars()
        donations = [row.to_dto() for row in rows]

        logger.info(
            "pending_donations_selected",
            extra={
                "cycle": str(getattr(cycle, "value", cycle)),
                "window_start": since,
                "count": len(donations),
            },
        )
        return donations

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def get_cycle_statistics(
        self, cycle: CycleCadence | str | None = None,
    ) -> CycleStatistics:
        cadence = coerce_cycle(cycle) or self.current_settings().cycle
        since = lookback_start(cadence, self._clock.now())

        row = self._session.execute(
            select(
                func.count(DonationModel.id),
                func.sum(DonationModel.net_amount_eur),
                func.min(DonationModel.created_at),
                func.max(DonationModel.created_at),
                func.count(func.distinct(DonationModel.campaign_id)),
            ).where(
                DonationModel.status == DonationStatus.PENDING.value,
                DonationModel.created_at >= since,
            )
        ).one()

        count = int(row[0] or 0)
        total = quantize_amount(row[1]) if row[1] is not None else ZERO
        avg = quantize_amount(total / count) if count else ZERO

        return CycleStatistics(
            cycle=cadence,
            window_start=since,
            donation_count=count,
            total_amount=total,
            avg_amount=avg,
            earliest=row[2],
            latest=row[3],
            campaign_count=int(row[4] or 0),
            recommendation=recommend_cycle(total, count, avg),
            optimization=calculate_optimization_potential(total, count, avg),
        )

    # -------------------------------------------------------------------------
    # Cadence history
    # -------------------------------------------------------------------------

    def _active_row(self) -> ProcessingCycleModel | None:
        return self._session.execute(
            select(ProcessingCycleModel)
            .where(ProcessingCycleModel.is_active == True)  # noqa: E712
            .order_by(ProcessingCycleModel.effective_from.desc())
            .limit(1)
        ).scalar_one_or_none()

    def current_cycle(self) -> ProcessingCycleRecord | None:
        row = self._active_row()
        return row.to_dto() if row is not None else None

    def current_settings(self) -> CycleSettings:
        """Active cadence row, falling back to configured defaults."""
        row = self._active_row()
        if row is not None:
            return CycleSettings(
                cycle=CycleCadence(row.cycle_type),
                trigger_on_chain=row.trigger_on_chain,
                trigger_banking=row.trigger_banking,
                minimum_amount_eur=row.minimum_amount_eur,
            )
        return CycleSettings(
            cycle=CycleCadence(self._config.default_cycle),
            trigger_on_chain=self._config.trigger_on_chain,
            trigger_banking=self._config.trigger_banking,
            minimum_amount_eur=self._config.minimum_batch_amount_eur,
        )

    def next_processing_date(
        self, cycle: CycleCadence | str | None = None,
    ) -> datetime | None:
        return calculate_next_processing_date(
            cycle or self.current_settings().cycle, self._clock.now(),
        )

    def update_processing_cycle(
        self,
        new_cycle: CycleCadence | str,
        changed_by: str | None = None,
        trigger_on_chain: bool = False,
        trigger_banking: bool = True,
        minimum_amount_eur=None,
        notes: str | None = None,
    ) -> CycleChange:
        """Supersede the active cadence with a new one.

        Raises:
            InvalidCycleError: If ``new_cycle`` is not a known cadence.
        """
        cadence = coerce_cycle(new_cycle)
        if cadence is None:
            raise InvalidCycleError(str(new_cycle), list(VALID_CYCLES))

        minimum = (
            to_decimal(minimum_amount_eur)
            if minimum_amount_eur is not None
            else self._config.minimum_batch_amount_eur
        )
        previous = self.current_settings().cycle
        now = self._clock.now()

        self._session.execute(
            update(ProcessingCycleModel)
            .where(ProcessingCycleModel.is_active == True)  # noqa: E712
            .values(is_active=False)
        )
        row = ProcessingCycleModel(
            cycle_type=cadence.value,
            effective_from=now,
            previous_cycle=previous.value,
            changed_by=changed_by,
            trigger_on_chain=trigger_on_chain,
            trigger_banking=trigger_banking,
            minimum_amount_eur=minimum,
            is_active=True,
            notes=notes,
        )
        row.created_at = now
        self._session.add(row)
        self._session.flush()

        logger.info(
            "processing_cycle_updated",
            extra={
                "previous_cycle": previous.value,
                "new_cycle": cadence.value,
                "changed_by": changed_by,
                "trigger_on_chain": trigger_on_chain,
                "trigger_banking": trigger_banking,
            },
        )
        return CycleChange(
            previous_cycle=previous,
            new_cycle=cadence,
            effective_from=now,
            next_processing=calculate_next_processing_date(cadence, now),
            record=row.to_dto(),
        )

    def cycle_history(self, limit: int = 50, offset: int = 0) -> tuple[ProcessingCycleRecord, ...]:
        rows = self._session.execute(
            select(ProcessingCycleModel)
            .order_by(
                ProcessingCycleModel.effective_from.desc(),
                ProcessingCycleModel.created_at.desc(),
            )
            .offset(max(offset, 0))
            .limit(max(limit, 1))
        ).scalars()
        return tuple(row.to_dto() for row in rows)


class CycleRunner:
    """Background thread firing the periodic settlement sweep.

    Contract:
        - ``tick()`` runs the sweep when the active cadence is due.
        - ``start()`` / ``stop()`` for background thread operation.

    Non-goals:
        - NOT a distributed scheduler (no leader election).
    """

    def __init__(
        self,
        run_cycle: Callable[[CycleCadence], Any],
        settings_provider: Callable[[], CycleSettings],
        clock: Clock | None = None,
        tick_interval_seconds: int = 3600,
    ):
        self._run_cycle = run_cycle
        self._settings_provider = settings_provider
        self._clock = clock or SystemClock()
        self._tick_interval = tick_interval_seconds
        self._next_run_at: datetime | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def next_run_at(self) -> datetime | None:
        return self._next_run_at

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def tick(self) -> bool:
        """Run the sweep if due (public for testing).  Returns True if it ran."""
        settings = self._settings_provider()
        if settings.cycle == CycleCadence.MANUAL:
            return False

        now = self._clock.now()
        if self._next_run_at is not None and now < self._next_run_at:
            return False

        with LogContext.bind(cycle=settings.cycle.value):
            try:
                self._run_cycle(settings.cycle)
            finally:
                self._next_run_at = calculate_next_processing_date(settings.cycle, now)
                logger.info(
                    "cycle_run_finished",
                    extra={"next_run_at": self._next_run_at},
                )
        return True

    def start(self) -> None:
        if self.is_running:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="cycle-runner",
            daemon=True,
        )
        self._thread.start()
        logger.info("cycle_runner_started", extra={"tick_interval": self._tick_interval})

    def stop(self, timeout: float = 30.0) -> None:
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("cycle_runner_stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("cycle_runner_tick_failed")
            self._stop_event.wait(timeout=self._tick_interval)
