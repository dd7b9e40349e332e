"""
donation_batch.models -- ORM models for settlement persistence.

Architecture: donation_batch/models. Imports from donation_kernel.db.base only.
"""

from donation_batch.models.batch import BatchDonationModel, BatchModel
from donation_batch.models.cycle import ProcessingCycleModel
from donation_batch.models.donation import DonationModel, FeeAllocationModel
from donation_batch.models.transaction import BlockchainTransactionModel

__all__ = [
    "BatchDonationModel",
    "BatchModel",
    "BlockchainTransactionModel",
    "DonationModel",
    "FeeAllocationModel",
    "ProcessingCycleModel",
]
