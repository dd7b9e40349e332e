"""
ORM model for on-chain settlement transactions.

Invariants enforced:
    - ``tx_hash`` is UNIQUE: one row per broadcast transaction.
    - Status moves pending/processing -> confirmed | failed only, driven by
      the confirmation monitor.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from donation_kernel.db.base import TrackedBase, UUIDString

if TYPE_CHECKING:
    from donation_batch.domain.types import BlockchainTransactionRecord


class BlockchainTransactionModel(TrackedBase):
    __tablename__ = "blockchain_transactions"

    __table_args__ = (
        Index("ix_blockchain_transactions_status", "status"),
        Index("ix_blockchain_transactions_batch", "batch_id"),
    )

    batch_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("settlement_batches.id"),
        nullable=False,
    )
    tx_hash: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    from_address: Mapped[str] = mapped_column(String(100), nullable=False)
    to_address: Mapped[str] = mapped_column(String(100), nullable=False)
    amount: Mapped[Decimal]
    currency: Mapped[str] = mapped_column(String(10), nullable=False)
    network: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    block_number: Mapped[int | None] = mapped_column(nullable=True)
    confirmations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def to_dto(self) -> BlockchainTransactionRecord:
        from donation_batch.domain.types import (
            BlockchainTransactionRecord,
            TransactionStatus,
        )

        return BlockchainTransactionRecord(
            transaction_id=self.id,
            batch_id=self.batch_id,
            tx_hash=self.tx_hash,
            from_address=self.from_address,
            to_address=self.to_address,
            amount=self.amount,
            currency=self.currency,
            network=self.network,
            status=TransactionStatus(self.status),
            block_number=self.block_number,
            confirmations=self.confirmations,
            confirmed_at=self.confirmed_at,
            created_at=self.created_at,
        )
