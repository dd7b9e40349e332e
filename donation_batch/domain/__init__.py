"""
donation_batch.domain -- Pure types and rules for the settlement pipeline.

ZERO I/O.  All types are frozen dataclasses.
"""

from donation_batch.domain.batch import (
    BatchDetails,
    BatchMetadata,
    BatchPage,
    BatchRecord,
    ErrorDetail,
    ExternalRefs,
    FeePayment,
    GrossDeposit,
    OperationalFee,
    ReserveSummary,
    SettlementReserve,
)
from donation_batch.domain.types import (
    BatchFeeTotals,
    BatchStatus,
    BankTransferResult,
    BlockchainTransactionRecord,
    CycleCadence,
    CycleChange,
    DonationRecord,
    DonationStatus,
    ExchangeRateSnapshot,
    FeeAllocationRecord,
    FeeAllocationSpec,
    FeeBreakdown,
    FeeType,
    LandingChecklist,
    OperationalFeeStatus,
    PaymentInitiation,
    ProcessingCycleRecord,
    PurchaseReceipt,
    ReserveStatus,
    SettlementQuote,
    SettlementRoute,
    SettlementSpeed,
    TransactionReceipt,
    TransactionStatus,
)

__all__ = [
    "BankTransferResult",
    "BatchDetails",
    "BatchFeeTotals",
    "BatchMetadata",
    "BatchPage",
    "BatchRecord",
    "BatchStatus",
    "BlockchainTransactionRecord",
    "CycleCadence",
    "CycleChange",
    "DonationRecord",
    "DonationStatus",
    "ErrorDetail",
    "ExchangeRateSnapshot",
    "ExternalRefs",
    "FeeAllocationRecord",
    "FeeAllocationSpec",
    "FeeBreakdown",
    "FeePayment",
    "FeeType",
    "GrossDeposit",
    "LandingChecklist",
    "OperationalFee",
    "OperationalFeeStatus",
    "PaymentInitiation",
    "ProcessingCycleRecord",
    "PurchaseReceipt",
    "ReserveStatus",
    "ReserveSummary",
    "SettlementQuote",
    "SettlementReserve",
    "SettlementRoute",
    "SettlementSpeed",
    "TransactionReceipt",
    "TransactionStatus",
]
