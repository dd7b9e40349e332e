"""
Pytest fixtures for the donation settlement pipeline.

Provides:
- In-memory SQLite engine shared across sessions (StaticPool)
- DeterministicClock pinned to 2026-02-01 12:00
- Donation seeding helpers
- Fake gateways and a fully wired SettlementPipeline
- Structured log capture
"""

import json
import logging
from datetime import datetime, timedelta
from decimal import Decimal
from io import StringIO

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from donation_kernel.db.base import Base
from donation_kernel.db.engine import enable_sqlite_savepoints
from donation_kernel.domain.clock import DeterministicClock
from donation_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from donation_config import get_active_config

import donation_batch.models  # noqa: F401  (registers tables)
from donation_batch.domain.fees import calculate_fees
from donation_batch.models.donation import DonationModel
from donation_batch.orchestrator import SettlementPipeline
from donation_batch.services.gateways import GatewayCaller
from donation_batch.services.lifecycle import BatchLifecycle

from tests.fakes import (
    VALID_TRON_WALLET,
    FakeBalanceSource,
    FakeBankGateway,
    FakeBlockchainGateway,
    FakePaymentGateway,
    FakePurchaseGateway,
    FakeRateProvider,
)

# Naive datetimes for SQLite compatibility (SQLite strips tzinfo)
FIXED_NOW = datetime(2026, 2, 1, 12, 0, 0)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """Capture donation_kernel logs as parsed JSON dicts."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("donation_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(eng)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    return DeterministicClock(fixed_time=FIXED_NOW)


@pytest.fixture
def config():
    return get_active_config()


# =============================================================================
# Donation seeding
# =============================================================================


def make_donation(
    gross_eur,
    *,
    wallet=VALID_TRON_WALLET,
    created_at=None,
    campaign_id=None,
) -> DonationModel:
    breakdown = calculate_fees(Decimal(str(gross_eur)))
    return DonationModel.from_breakdown(
        breakdown,
        wallet_address=wallet,
        campaign_id=campaign_id,
        created_at=created_at or FIXED_NOW - timedelta(hours=1),
    )


@pytest.fixture
def seed_donations(session_factory):
    """Insert pending donations in their own committed transaction.

    Usage::

        ids = seed_donations(50, 60, 40)
        ids = seed_donations(200, wallet=OTHER_WALLET)
    """

    def _seed(*amounts, wallet=VALID_TRON_WALLET, created_at=None, campaign_id=None):
        session = session_factory()
        try:
            rows = [
                make_donation(
                    amount, wallet=wallet, created_at=created_at, campaign_id=campaign_id,
                )
                for amount in amounts
            ]
            session.add_all(rows)
            session.commit()
            return [row.id for row in rows]
        finally:
            session.close()

    return _seed


# =============================================================================
# Gateways and services
# =============================================================================


@pytest.fixture
def rate_provider():
    return FakeRateProvider()


@pytest.fixture
def payment_gateway():
    return FakePaymentGateway()


@pytest.fixture
def blockchain_gateway():
    return FakeBlockchainGateway()


@pytest.fixture
def bank_gateway():
    return FakeBankGateway()


@pytest.fixture
def purchase_gateway():
    return FakePurchaseGateway()


@pytest.fixture
def balance_source():
    return FakeBalanceSource()


@pytest.fixture
def gateways(config):
    caller = GatewayCaller(config.timeouts, max_workers=4)
    yield caller
    caller.shutdown()


@pytest.fixture
def lifecycle(db_session, config, gateways, rate_provider, payment_gateway, blockchain_gateway, clock):
    return BatchLifecycle(
        db_session,
        config=config,
        gateways=gateways,
        rate_provider=rate_provider,
        payment_gateway=payment_gateway,
        blockchain_gateway=blockchain_gateway,
        clock=clock,
    )


@pytest.fixture
def pipeline(
    session_factory,
    config,
    clock,
    gateways,
    rate_provider,
    payment_gateway,
    blockchain_gateway,
    bank_gateway,
    purchase_gateway,
    balance_source,
):
    pipe = SettlementPipeline(
        session_factory,
        config=config,
        clock=clock,
        rate_provider=rate_provider,
        payment_gateway=payment_gateway,
        blockchain_gateway=blockchain_gateway,
        bank_gateway=bank_gateway,
        purchase_gateway=purchase_gateway,
        balance_source=balance_source,
        gateways=gateways,
    )
    yield pipe
    pipe.shutdown(timeout=1.0)
