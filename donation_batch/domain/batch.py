"""
donation_batch.domain.batch -- Batch aggregate snapshot and typed metadata.

ZERO I/O.

``BatchMetadata`` replaces a free-form JSON blob with a versioned record
whose every field has a known type and default.  It is stored as JSON via
``to_dict()`` / ``from_dict()``; amounts round-trip as strings so that
Decimal precision survives the database.

Updates are expressed with ``dataclasses.replace`` -- metadata objects are
never mutated in place.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from donation_kernel.domain.money import ZERO

from donation_batch.domain.types import (
    BatchStatus,
    BlockchainTransactionRecord,
    DonationRecord,
    FeeAllocationRecord,
    SettlementRoute,
)

METADATA_VERSION = 1


def _dec(value: Any) -> Decimal | None:
    return Decimal(str(value)) if value is not None else None


def _ts(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(value)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


# =============================================================================
# Sub-records
# =============================================================================


@dataclass(frozen=True)
class GrossDeposit:
    """Operator-confirmed fiat deposit backing the batch."""

    amount_eur: Decimal
    note: str | None = None
    recorded_at: datetime | None = None


@dataclass(frozen=True)
class FeePayment:
    amount_eur: Decimal
    note: str | None = None
    recorded_at: datetime | None = None


@dataclass(frozen=True)
class OperationalFee:
    current_eur: Decimal = ZERO
    paid_eur: Decimal = ZERO
    due_eur: Decimal = ZERO
    payments: tuple[FeePayment, ...] = ()


@dataclass(frozen=True)
class SettlementReserve:
    minimum_eur: Decimal
    required_eur: Decimal


@dataclass(frozen=True)
class ExternalRefs:
    quote_id: str | None = None
    payment_id: str | None = None
    payment_url: str | None = None
    tx_hash: str | None = None
    bank_references: tuple[str, ...] = ()
    provider_references: tuple[str, ...] = ()


@dataclass(frozen=True)
class ErrorDetail:
    code: str
    message: str
    recorded_at: datetime | None = None


# =============================================================================
# Metadata root
# =============================================================================


@dataclass(frozen=True)
class BatchMetadata:
    version: int = METADATA_VERSION
    gross_deposit: GrossDeposit | None = None
    operational_fee: OperationalFee = field(default_factory=OperationalFee)
    settlement_reserve: SettlementReserve | None = None
    external_refs: ExternalRefs = field(default_factory=ExternalRefs)
    error: ErrorDetail | None = None
    manual_intervention_required: bool = False
    callback_status: str | None = None

    def with_refs(self, **changes: Any) -> BatchMetadata:
        return replace(self, external_refs=replace(self.external_refs, **changes))

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        deposit = self.gross_deposit
        fee = self.operational_fee
        reserve = self.settlement_reserve
        refs = self.external_refs
        return {
            "version": self.version,
            "gross_deposit": (
                {
                    "amount_eur": str(deposit.amount_eur),
                    "note": deposit.note,
                    "recorded_at": _iso(deposit.recorded_at),
                }
                if deposit is not None
                else None
            ),
            "operational_fee": {
                "current_eur": str(fee.current_eur),
                "paid_eur": str(fee.paid_eur),
                "due_eur": str(fee.due_eur),
                "payments": [
                    {
                        "amount_eur": str(p.amount_eur),
                        "note": p.note,
                        "recorded_at": _iso(p.recorded_at),
                    }
                    for p in fee.payments
                ],
            },
            "settlement_reserve": (
                {
                    "minimum_eur": str(reserve.minimum_eur),
                    "required_eur": str(reserve.required_eur),
                }
                if reserve is not None
                else None
            ),
            "external_refs": {
                "quote_id": refs.quote_id,
                "payment_id": refs.payment_id,
                "payment_url": refs.payment_url,
                "tx_hash": refs.tx_hash,
                "bank_references": list(refs.bank_references),
                "provider_references": list(refs.provider_references),
            },
            "error": (
                {
                    "code": self.error.code,
                    "message": self.error.message,
                    "recorded_at": _iso(self.error.recorded_at),
                }
                if self.error is not None
                else None
            ),
            "manual_intervention_required": self.manual_intervention_required,
            "callback_status": self.callback_status,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> BatchMetadata:
        if not data:
            return cls()

        version = int(data.get("version", METADATA_VERSION))
        if version > METADATA_VERSION:
            raise ValueError(f"Unsupported batch metadata version: {version}")

        deposit_data = data.get("gross_deposit")
        fee_data = data.get("operational_fee") or {}
        reserve_data = data.get("settlement_reserve")
        refs_data = data.get("external_refs") or {}
        error_data = data.get("error")

        return cls(
            version=METADATA_VERSION,
            gross_deposit=(
                GrossDeposit(
                    amount_eur=_dec(deposit_data["amount_eur"]),
                    note=deposit_data.get("note"),
                    recorded_at=_ts(deposit_data.get("recorded_at")),
                )
                if deposit_data
                else None
            ),
            operational_fee=OperationalFee(
                current_eur=_dec(fee_data.get("current_eur", "0")),
                paid_eur=_dec(fee_data.get("paid_eur", "0")),
                due_eur=_dec(fee_data.get("due_eur", "0")),
                payments=tuple(
                    FeePayment(
                        amount_eur=_dec(p["amount_eur"]),
                        note=p.get("note"),
                        recorded_at=_ts(p.get("recorded_at")),
                    )
                    for p in fee_data.get("payments", ())
                ),
            ),
            settlement_reserve=(
                SettlementReserve(
                    minimum_eur=_dec(reserve_data["minimum_eur"]),
                    required_eur=_dec(reserve_data["required_eur"]),
                )
                if reserve_data
                else None
            ),
            external_refs=ExternalRefs(
                quote_id=refs_data.get("quote_id"),
                payment_id=refs_data.get("payment_id"),
                payment_url=refs_data.get("payment_url"),
                tx_hash=refs_data.get("tx_hash"),
                bank_references=tuple(refs_data.get("bank_references", ())),
                provider_references=tuple(refs_data.get("provider_references", ())),
            ),
            error=(
                ErrorDetail(
                    code=error_data["code"],
                    message=error_data["message"],
                    recorded_at=_ts(error_data.get("recorded_at")),
                )
                if error_data
                else None
            ),
            manual_intervention_required=bool(
                data.get("manual_intervention_required", False)
            ),
            callback_status=data.get("callback_status"),
        )


# =============================================================================
# Batch snapshot
# =============================================================================


@dataclass(frozen=True)
class BatchRecord:
    """Immutable snapshot of a settlement batch.

    Totals are exact sums of member donations' stored amounts, captured
    once at ``create`` and never recomputed.
    """

    batch_id: UUID
    batch_number: str
    status: BatchStatus
    donation_ids: tuple[UUID, ...]
    total_gross_eur: Decimal
    total_debt_fee_eur: Decimal
    total_operational_fee_eur: Decimal
    total_transaction_fee_eur: Decimal
    total_net_eur: Decimal
    donation_count: int
    target_wallet: str
    network: str
    metadata: BatchMetadata = field(default_factory=BatchMetadata)
    campaign_id: UUID | None = None
    settlement_route: SettlementRoute | None = None
    target_amount: Decimal | None = None
    settlement_currency: str | None = None
    conversion_rate: Decimal | None = None
    rate_source: str | None = None
    rate_valid_from: datetime | None = None
    rate_valid_to: datetime | None = None
    block_number: int | None = None
    created_at: datetime | None = None
    processed_at: datetime | None = None
    settlement_initiated_at: datetime | None = None
    sent_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def total_fee_eur(self) -> Decimal:
        return (
            self.total_debt_fee_eur
            + self.total_operational_fee_eur
            + self.total_transaction_fee_eur
        )


@dataclass(frozen=True)
class BatchDetails:
    """Batch with its members, on-chain transactions and fee allocations."""

    batch: BatchRecord
    donations: tuple[DonationRecord, ...]
    transactions: tuple[BlockchainTransactionRecord, ...]
    fee_allocations: tuple[FeeAllocationRecord, ...]


@dataclass(frozen=True)
class BatchPage:
    items: tuple[BatchRecord, ...]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0


@dataclass(frozen=True)
class ReserveSummary:
    """Settlement-reserve position across the batches created on one day."""

    day: date
    batch_count: int
    total_net_eur: Decimal
    total_required_eur: Decimal
    eligible_count: int
    shortfall_batch_ids: tuple[UUID, ...] = ()
