"""
donation_batch.domain.types -- Pure frozen dataclasses for the settlement pipeline.

ZERO I/O.

Frozen dataclasses with enum status fields and tuples for immutable
collections.  ORM models convert to these via ``to_dto()``; services and
callers only ever hand these around.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =============================================================================
# Status enums
# =============================================================================


class DonationStatus(str, Enum):
    """Donation lifecycle status.  Monotonic: never reverts."""

    PENDING = "pending"  # Owned by pipeline, not yet claimed
    BATCHED = "batched"  # Claimed by exactly one batch
    SENT = "sent"  # Settled; ownership returns to source system
    FAILED = "failed"  # Batch failed/cancelled; ownership returns to source


class BatchStatus(str, Enum):
    """Batch lifecycle status.  See domain.transitions for the table."""

    DRAFT = "draft"
    PENDING = "pending"  # Legacy alias of DRAFT accepted by process()
    PROCESSING = "processing"
    AWAITING_SETTLEMENT = "awaiting_settlement"
    SENDING = "sending"
    NEEDS_RECONCILIATION = "needs_reconciliation"  # Held: on-chain failure
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class FeeType(str, Enum):
    DEBT = "debt"
    OPERATIONAL = "operational"
    TRANSACTION = "transaction"


class TransactionStatus(str, Enum):
    """On-chain transaction status."""

    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    FAILED = "failed"


class CycleCadence(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    MANUAL = "manual"


class SettlementRoute(str, Enum):
    """How a batch's EUR reaches the destination wallet."""

    PAYMENT_GATEWAY = "payment_gateway"  # Operator-driven quote + on-chain send
    DIRECT_PURCHASE = "direct_crypto_purchase"
    INTERNAL_TRANSFER = "internal_crypto_transfer"
    P2P_PURCHASE = "p2p_crypto_purchase"
    BANK_TRANSFER = "bank_transfer"


class SettlementSpeed(str, Enum):
    INSTANT = "instant"
    HOURS = "1-24 hours"
    DAYS = "1-48 hours"


# =============================================================================
# Fees
# =============================================================================


@dataclass(frozen=True)
class FeeBreakdown:
    """Result of ``calculate_fees`` for one gross amount."""

    gross_amount: Decimal
    total_fee_percent: Decimal
    debt_fee_percent: Decimal
    operational_fee_percent: Decimal
    transaction_fee_percent: Decimal
    debt_fee_amount: Decimal
    operational_fee_amount: Decimal
    transaction_fee_amount: Decimal
    total_fee_amount: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class BatchFeeTotals:
    """Sums of member donations' stored fee fields."""

    total_gross_eur: Decimal
    total_debt_fee_eur: Decimal
    total_operational_fee_eur: Decimal
    total_transaction_fee_eur: Decimal
    total_fee_eur: Decimal
    total_net_eur: Decimal
    donation_count: int


@dataclass(frozen=True)
class FeeAllocationSpec:
    """One per-donation, per-fee-type allocation."""

    fee_type: FeeType
    percent: Decimal
    amount: Decimal
    destination: str


# =============================================================================
# Donations
# =============================================================================


@dataclass(frozen=True)
class DonationRecord:
    """Immutable snapshot of a donation as the pipeline sees it."""

    donation_id: UUID
    gross_amount: Decimal
    currency: str
    gross_amount_eur: Decimal
    net_amount_eur: Decimal
    debt_fee_percent: Decimal
    operational_fee_percent: Decimal
    transaction_fee_percent: Decimal
    debt_fee_amount: Decimal
    operational_fee_amount: Decimal
    transaction_fee_amount: Decimal
    status: DonationStatus
    campaign_id: UUID | None = None
    wallet_address: str | None = None
    batch_id: UUID | None = None
    created_at: datetime | None = None

    @property
    def total_fee_amount(self) -> Decimal:
        return self.debt_fee_amount + self.operational_fee_amount + self.transaction_fee_amount


# =============================================================================
# External collaborator DTOs
# =============================================================================


@dataclass(frozen=True)
class ExchangeRateSnapshot:
    """Read-only rate quote consumed by ``process``."""

    base_currency: str
    target_currency: str
    rate: Decimal
    source: str
    valid_from: datetime | None = None
    valid_to: datetime | None = None


@dataclass(frozen=True)
class SettlementQuote:
    """Request handed to the payment gateway by ``initiate_settlement``."""

    batch_id: UUID
    batch_number: str
    fiat_amount: Decimal
    fiat_currency: str
    crypto_amount: Decimal
    crypto_currency: str
    destination_wallet: str
    network: str
    user_context: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentInitiation:
    payment_url: str
    payment_id: str
    quote_id: str


@dataclass(frozen=True)
class TransactionReceipt:
    """Blockchain gateway answer for one transaction hash.

    ``found and confirmed``      -> success
    ``found and not confirmed``  -> definitive on-chain failure
    ``not found``                -> still pending
    """

    tx_hash: str
    found: bool
    confirmed: bool = False
    block_number: int | None = None
    confirmations: int = 0


@dataclass(frozen=True)
class PurchaseReceipt:
    """Result of dispatching one donation group to a crypto provider."""

    provider: str
    reference: str
    amount_eur: Decimal
    confirmed: bool


@dataclass(frozen=True)
class BankTransferResult:
    reference: str
    amount_eur: Decimal
    fee_eur: Decimal
    donation_ids: tuple[UUID, ...]
    estimated_completion: datetime | None = None


# =============================================================================
# Batch read models
# =============================================================================


@dataclass(frozen=True)
class ReserveStatus:
    minimum_eur: Decimal
    required_eur: Decimal
    eligible: bool


@dataclass(frozen=True)
class OperationalFeeStatus:
    gross_deposit_eur: Decimal | None
    current_eur: Decimal
    paid_eur: Decimal
    due_eur: Decimal


@dataclass(frozen=True)
class LandingChecklist:
    """Operator visibility only; never drives transitions."""

    deposit_recorded: bool
    operational_fee_computed: bool
    operational_fee_paid: bool
    batch_processed: bool
    settlement_minimum_eligible: bool
    settlement_initiated: bool
    on_chain_sent: bool
    batch_completed: bool

    def steps(self) -> tuple[tuple[str, bool], ...]:
        return (
            ("deposit_recorded", self.deposit_recorded),
            ("operational_fee_computed", self.operational_fee_computed),
            ("operational_fee_paid", self.operational_fee_paid),
            ("batch_processed", self.batch_processed),
            ("settlement_minimum_eligible", self.settlement_minimum_eligible),
            ("settlement_initiated", self.settlement_initiated),
            ("on_chain_sent", self.on_chain_sent),
            ("batch_completed", self.batch_completed),
        )

    @property
    def completed_steps(self) -> int:
        return sum(1 for _, done in self.steps() if done)


# =============================================================================
# Persistence read models
# =============================================================================


@dataclass(frozen=True)
class FeeAllocationRecord:
    allocation_id: UUID
    donation_id: UUID
    fee_type: FeeType
    percent: Decimal
    amount: Decimal
    destination: str
    transferred: bool = False
    batch_id: UUID | None = None


@dataclass(frozen=True)
class BlockchainTransactionRecord:
    transaction_id: UUID
    batch_id: UUID
    tx_hash: str
    from_address: str
    to_address: str
    amount: Decimal
    currency: str
    network: str
    status: TransactionStatus
    block_number: int | None = None
    confirmations: int = 0
    confirmed_at: datetime | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class ProcessingCycleRecord:
    """One row of the append-only cadence history."""

    cycle_id: UUID
    cycle: CycleCadence
    effective_from: datetime
    is_active: bool
    trigger_on_chain: bool
    trigger_banking: bool
    minimum_amount_eur: Decimal
    previous_cycle: CycleCadence | None = None
    changed_by: str | None = None
    notes: str | None = None


@dataclass(frozen=True)
class CycleChange:
    previous_cycle: CycleCadence | None
    new_cycle: CycleCadence
    effective_from: datetime
    next_processing: datetime | None
    record: ProcessingCycleRecord
