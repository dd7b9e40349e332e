"""
ORM models for settlement batches.

Contract:
    BatchModel persists the Batch aggregate; BatchDonationModel is the
    ordered link between a batch and its donations.  ``to_dto()`` returns an
    immutable ``BatchRecord`` snapshot with typed metadata.

Architecture: donation_batch/models. Imports from donation_kernel.db.base only.

Invariants enforced:
    - ``batch_number`` is UNIQUE.
    - A donation appears in at most one batch (UNIQUE donation_id on the
      link table).
    - Aggregate totals are written once at creation and never recomputed.
    - Only BatchLifecycle mutates rows of this table.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy import JSON
from sqlalchemy.orm import Mapped, mapped_column, relationship

from donation_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from donation_batch.domain.batch import BatchMetadata, BatchRecord


class BatchModel(TrackedBase):
    """Persistent settlement batch."""

    __tablename__ = "settlement_batches"

    __table_args__ = (
        Index("ix_settlement_batches_status", "status"),
        Index("ix_settlement_batches_campaign", "campaign_id"),
        Index("ix_settlement_batches_created_at", "created_at"),
    )

    batch_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="draft")
    total_gross_eur: Mapped[Decimal]
    total_debt_fee_eur: Mapped[Decimal]
    total_operational_fee_eur: Mapped[Decimal]
    total_transaction_fee_eur: Mapped[Decimal]
    total_net_eur: Mapped[Decimal]
    donation_count: Mapped[int] = mapped_column(Integer, nullable=False)
    target_wallet: Mapped[str] = mapped_column(String(100), nullable=False)
    network: Mapped[str] = mapped_column(String(20), nullable=False)
    campaign_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    settlement_route: Mapped[str | None] = mapped_column(String(40), nullable=True)
    target_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    settlement_currency: Mapped[str | None] = mapped_column(String(10), nullable=True)
    conversion_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    rate_source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    rate_valid_from: Mapped[datetime | None] = mapped_column(nullable=True)
    rate_valid_to: Mapped[datetime | None] = mapped_column(nullable=True)
    # Payment gateway quote id, indexed for callback lookup
    quote_id: Mapped[str | None] = mapped_column(String(100), nullable=True, unique=True)
    block_number: Mapped[int | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    settlement_initiated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    # "metadata" is reserved on declarative classes
    batch_metadata: Mapped[dict | None] = mapped_column("metadata", JSON, nullable=True)

    links: Mapped[list["BatchDonationModel"]] = relationship(
        "BatchDonationModel",
        back_populates="batch",
        order_by="BatchDonationModel.position",
        cascade="all, delete-orphan",
    )

    @property
    def metadata_record(self) -> BatchMetadata:
        from donation_batch.domain.batch import BatchMetadata

        return BatchMetadata.from_dict(self.batch_metadata)

    @metadata_record.setter
    def metadata_record(self, value: BatchMetadata) -> None:
        self.batch_metadata = value.to_dict()

    def to_dto(self) -> BatchRecord:
        from donation_batch.domain.batch import BatchRecord
        from donation_batch.domain.types import BatchStatus, SettlementRoute

        return BatchRecord(
            batch_id=self.id,
            batch_number=self.batch_number,
            status=BatchStatus(self.status),
            donation_ids=tuple(link.donation_id for link in self.links),
            total_gross_eur=self.total_gross_eur,
            total_debt_fee_eur=self.total_debt_fee_eur,
            total_operational_fee_eur=self.total_operational_fee_eur,
            total_transaction_fee_eur=self.total_transaction_fee_eur,
            total_net_eur=self.total_net_eur,
            donation_count=self.donation_count,
            target_wallet=self.target_wallet,
            network=self.network,
            metadata=self.metadata_record,
            campaign_id=self.campaign_id,
            settlement_route=(
                SettlementRoute(self.settlement_route) if self.settlement_route else None
            ),
            target_amount=self.target_amount,
            settlement_currency=self.settlement_currency,
            conversion_rate=self.conversion_rate,
            rate_source=self.rate_source,
            rate_valid_from=self.rate_valid_from,
            rate_valid_to=self.rate_valid_to,
            block_number=self.block_number,
            created_at=self.created_at,
            processed_at=self.processed_at,
            settlement_initiated_at=self.settlement_initiated_at,
            sent_at=self.sent_at,
            completed_at=self.completed_at,
        )


class BatchDonationModel(TrackedBase):
    """Ordered membership of a donation in a batch."""

    __tablename__ = "batch_donations"

    __table_args__ = (
        UniqueConstraint("donation_id", name="uq_batch_donations_donation"),
        Index("ix_batch_donations_batch_position", "batch_id", "position"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_batches.id", ondelete="CASCADE"),
        nullable=False,
    )
    donation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("donations.id"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    batch: Mapped["BatchModel"] = relationship(
        "BatchModel",
        back_populates="links",
        foreign_keys=[batch_id],
    )
