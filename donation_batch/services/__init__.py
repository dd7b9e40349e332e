"""
donation_batch.services -- Stateful settlement services.

Each service takes a Session and a Clock by injection and never commits;
``donation_batch.orchestrator.SettlementPipeline`` owns the transaction
boundaries and the background threads.
"""

from donation_batch.services.cycle_scheduler import CycleRunner, CycleScheduler
from donation_batch.services.gateways import (
    BankGateway,
    BlockchainGateway,
    CryptoPurchaseGateway,
    GatewayCaller,
    InternalBalanceSource,
    PaymentGateway,
    RateProvider,
    call_with_timeout,
)
from donation_batch.services.lifecycle import BatchLifecycle
from donation_batch.services.monitor import ConfirmationMonitor, Observation
from donation_batch.services.strategy import SettlementStrategySelector

__all__ = [
    "BankGateway",
    "BatchLifecycle",
    "BlockchainGateway",
    "ConfirmationMonitor",
    "CryptoPurchaseGateway",
    "CycleRunner",
    "CycleScheduler",
    "GatewayCaller",
    "InternalBalanceSource",
    "Observation",
    "PaymentGateway",
    "RateProvider",
    "SettlementStrategySelector",
    "call_with_timeout",
]
