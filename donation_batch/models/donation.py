"""
ORM models for donations and their fee allocations.

Contract:
    DonationModel holds one fee-adjusted donation as the pipeline sees it.
    FeeAllocationModel holds one per-donation, per-fee-type allocation,
    written when the donation is claimed by a batch.

Architecture: donation_batch/models. Imports from donation_kernel.db.base only.

Invariants enforced:
    - ``batch_id`` is the claim column; it is set exactly once, together
      with the pending -> batched status move, by a conditional UPDATE.
    - debt + operational + transaction amounts == gross_eur - net_eur
      (within 1e-8) for every row written through ``from_breakdown``.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from donation_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from donation_batch.domain.types import (
        DonationRecord,
        FeeAllocationRecord,
        FeeBreakdown,
    )


class DonationModel(TrackedBase):
    """Fee-adjusted donation owned by the pipeline while pending or batched."""

    __tablename__ = "donations"

    __table_args__ = (
        Index("ix_donations_status_created", "status", "created_at"),
        Index("ix_donations_batch", "batch_id"),
        Index("ix_donations_wallet", "wallet_address"),
    )

    gross_amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    gross_amount_eur: Mapped[Decimal]
    net_amount_eur: Mapped[Decimal]
    debt_fee_percent: Mapped[Decimal]
    operational_fee_percent: Mapped[Decimal]
    transaction_fee_percent: Mapped[Decimal]
    debt_fee_amount: Mapped[Decimal]
    operational_fee_amount: Mapped[Decimal]
    transaction_fee_amount: Mapped[Decimal]
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    campaign_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    wallet_address: Mapped[str | None] = mapped_column(String(100), nullable=True)
    batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_batches.id"),
        nullable=True,
    )
    processed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> DonationRecord:
        from donation_batch.domain.types import DonationRecord, DonationStatus

        return DonationRecord(
            donation_id=self.id,
            gross_amount=self.gross_amount,
            currency=self.currency,
            gross_amount_eur=self.gross_amount_eur,
            net_amount_eur=self.net_amount_eur,
            debt_fee_percent=self.debt_fee_percent,
            operational_fee_percent=self.operational_fee_percent,
            transaction_fee_percent=self.transaction_fee_percent,
            debt_fee_amount=self.debt_fee_amount,
            operational_fee_amount=self.operational_fee_amount,
            transaction_fee_amount=self.transaction_fee_amount,
            status=DonationStatus(self.status),
            campaign_id=self.campaign_id,
            wallet_address=self.wallet_address,
            batch_id=self.batch_id,
            created_at=self.created_at,
        )

    @classmethod
    def from_breakdown(
        cls,
        breakdown: FeeBreakdown,
        *,
        currency: str = "EUR",
        gross_amount=None,
        campaign_id: UUID | None = None,
        wallet_address: str | None = None,
        created_at: datetime | None = None,
    ) -> DonationModel:
        """Build a pending donation from a fee breakdown of its EUR amount.

        ``gross_amount`` is the amount in the source currency; it defaults
        to the EUR gross when the donation was made in EUR.
        """
        model = cls(
            gross_amount=(
                breakdown.gross_amount if gross_amount is None else Decimal(str(gross_amount))
            ),
            currency=currency,
            gross_amount_eur=breakdown.gross_amount,
            net_amount_eur=breakdown.net_amount,
            debt_fee_percent=breakdown.debt_fee_percent,
            operational_fee_percent=breakdown.operational_fee_percent,
            transaction_fee_percent=breakdown.transaction_fee_percent,
            debt_fee_amount=breakdown.debt_fee_amount,
            operational_fee_amount=breakdown.operational_fee_amount,
            transaction_fee_amount=breakdown.transaction_fee_amount,
            status="pending",
            campaign_id=campaign_id,
            wallet_address=wallet_address,
        )
        if created_at is not None:
            model.created_at = created_at
        return model


class FeeAllocationModel(TrackedBase):
    """Per-donation, per-fee-type allocation record."""

    __tablename__ = "fee_allocations"

    __table_args__ = (
        Index("ix_fee_allocations_donation", "donation_id"),
        Index("ix_fee_allocations_batch", "batch_id"),
    )

    donation_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("donations.id", ondelete="CASCADE"),
        nullable=False,
    )
    batch_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_batches.id"),
        nullable=True,
    )
    fee_type: Mapped[str] = mapped_column(String(20), nullable=False)
    percent: Mapped[Decimal]
    amount: Mapped[Decimal]
    destination: Mapped[str] = mapped_column(String(100), nullable=False)
    transferred: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def to_dto(self) -> FeeAllocationRecord:
        from donation_batch.domain.types import FeeAllocationRecord, FeeType

        return FeeAllocationRecord(
            allocation_id=self.id,
            donation_id=self.donation_id,
            fee_type=FeeType(self.fee_type),
            percent=self.percent,
            amount=self.amount,
            destination=self.destination,
            transferred=self.transferred,
            batch_id=self.batch_id,
        )
