"""
ORM model for the processing-cycle history.

Rows are never deleted.  A cadence change deactivates the active row and
appends a new one, so the table is the append-only change history.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from donation_kernel.db.base import TrackedBase

if TYPE_CHECKING:
    from donation_batch.domain.types import ProcessingCycleRecord


class ProcessingCycleModel(TrackedBase):
    __tablename__ = "processing_cycles"

    __table_args__ = (
        Index("ix_processing_cycles_active", "is_active"),
        Index("ix_processing_cycles_effective_from", "effective_from"),
    )

    cycle_type: Mapped[str] = mapped_column(String(20), nullable=False)
    effective_from: Mapped[datetime]
    previous_cycle: Mapped[str | None] = mapped_column(String(20), nullable=True)
    changed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    trigger_on_chain: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    trigger_banking: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    minimum_amount_eur: Mapped[Decimal]
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    def to_dto(self) -> ProcessingCycleRecord:
        from donation_batch.domain.types import CycleCadence, ProcessingCycleRecord

        return ProcessingCycleRecord(
            cycle_id=self.id,
            cycle=CycleCadence(self.cycle_type),
            effective_from=self.effective_from,
            is_active=self.is_active,
            trigger_on_chain=self.trigger_on_chain,
            trigger_banking=self.trigger_banking,
            minimum_amount_eur=self.minimum_amount_eur,
            previous_cycle=(
                CycleCadence(self.previous_cycle) if self.previous_cycle else None
            ),
            changed_by=self.changed_by,
            notes=self.notes,
        )
