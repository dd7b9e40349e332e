"""
Tests for donation_batch.services.monitor -- on-chain confirmation polling.

Validates poll/drain reconciliation, the not-found retry path, lookup
failures, in-flight deduplication, and start/stop lifecycle.
"""

from decimal import Decimal

import pytest
from sqlalchemy import select

from donation_batch.domain.types import BatchStatus, DonationStatus, TransactionStatus
from donation_batch.models.donation import DonationModel
from donation_batch.services.monitor import ConfirmationMonitor

from tests.fakes import VALID_TRON_WALLET


@pytest.fixture
def monitor(session_factory, blockchain_gateway, config, gateways, clock):
    mon = ConfirmationMonitor(
        session_factory,
        blockchain_gateway,
        config=config,
        gateways=gateways,
        clock=clock,
    )
    yield mon
    mon.stop(timeout=1.0)


@pytest.fixture
def sent_batch(lifecycle, db_session, seed_donations):
    """A batch in ``sending`` with one open transaction, committed."""
    batch = lifecycle.create(seed_donations(50, 60, 40), VALID_TRON_WALLET)
    lifecycle.set_gross_deposit(batch.batch_id, Decimal("150"))
    lifecycle.process(batch.batch_id)
    initiation = lifecycle.initiate_settlement(batch.batch_id, {})
    lifecycle.handle_settlement_callback({"quote_id": initiation.quote_id, "status": "success"})
    sent = lifecycle.send_on_chain(batch.batch_id)
    db_session.commit()
    return sent


def _reload(lifecycle, db_session, batch):
    db_session.expire_all()
    record = lifecycle.get_batch(batch.batch_id)
    # release the shared connection before the monitor opens its own session
    db_session.rollback()
    return record


class TestReconciliation:
    def test_confirmed_transaction_completes_batch(
        self, monitor, sent_batch, blockchain_gateway, lifecycle, db_session,
    ):
        tx_hash = sent_batch.metadata.external_refs.tx_hash
        blockchain_gateway.confirm(tx_hash, block_number=5150)

        assert monitor.tick() == 1

        batch = _reload(lifecycle, db_session, sent_batch)
        assert batch.status == BatchStatus.COMPLETED
        assert batch.block_number == 5150
        tx = lifecycle.get_transaction(tx_hash)
        assert tx.status == TransactionStatus.CONFIRMED
        assert tx.confirmations == 20
        statuses = set(db_session.execute(
            select(DonationModel.status).where(DonationModel.batch_id == sent_batch.batch_id)
        ).scalars())
        assert statuses == {DonationStatus.SENT.value}

    def test_reverted_transaction_needs_reconciliation(
        self, monitor, sent_batch, blockchain_gateway, lifecycle, db_session,
    ):
        tx_hash = sent_batch.metadata.external_refs.tx_hash
        blockchain_gateway.revert(tx_hash)

        monitor.tick()

        batch = _reload(lifecycle, db_session, sent_batch)
        assert batch.status == BatchStatus.NEEDS_RECONCILIATION
        assert batch.metadata.manual_intervention_required
        assert lifecycle.get_transaction(tx_hash).status == TransactionStatus.FAILED

    def test_not_found_is_retried_next_tick(
        self, monitor, sent_batch, blockchain_gateway, lifecycle, db_session,
    ):
        tx_hash = sent_batch.metadata.external_refs.tx_hash
        assert monitor.tick() == 0
        assert _reload(lifecycle, db_session, sent_batch).status == BatchStatus.SENDING

        blockchain_gateway.confirm(tx_hash)
        assert monitor.tick() == 1
        assert blockchain_gateway.lookups == [tx_hash, tx_hash]

    def test_lookup_failure_changes_nothing(
        self, monitor, sent_batch, blockchain_gateway, lifecycle, db_session,
    ):
        blockchain_gateway.fail_lookup = True
        assert monitor.tick() == 0
        assert _reload(lifecycle, db_session, sent_batch).status == BatchStatus.SENDING
        assert monitor.pending_observations == 0

    def test_confirmed_transactions_not_polled_again(
        self, monitor, sent_batch, blockchain_gateway,
    ):
        blockchain_gateway.confirm(sent_batch.metadata.external_refs.tx_hash)
        monitor.tick()
        monitor.tick()
        assert len(blockchain_gateway.lookups) == 1

    def test_cancelled_batch_only_updates_transaction(
        self, monitor, sent_batch, blockchain_gateway, lifecycle, db_session,
    ):
        tx_hash = sent_batch.metadata.external_refs.tx_hash
        lifecycle.cancel(sent_batch.batch_id)
        db_session.commit()
        blockchain_gateway.confirm(tx_hash)

        monitor.tick()

        assert _reload(lifecycle, db_session, sent_batch).status == BatchStatus.CANCELLED
        assert lifecycle.get_transaction(tx_hash).status == TransactionStatus.CONFIRMED


class TestInFlight:
    def test_claimed_hash_is_skipped(self, monitor, sent_batch, blockchain_gateway):
        tx_hash = sent_batch.metadata.external_refs.tx_hash
        assert monitor._claim(tx_hash)
        assert monitor.poll() == 0
        assert blockchain_gateway.lookups == []

        monitor._release(tx_hash)
        blockchain_gateway.confirm(tx_hash)
        assert monitor.poll() == 1
        assert monitor.pending_observations == 1
        assert monitor.drain() == 1


class TestMonitorLifecycle:
    def test_start_and_stop(self, monitor):
        monitor.start()
        assert monitor.is_running
        monitor.stop(timeout=5.0)
        assert not monitor.is_running

    def test_double_start_is_noop(self, monitor):
        monitor.start()
        thread = monitor._thread
        monitor.start()
        assert monitor._thread is thread

    def test_stop_without_start_is_safe(self, monitor):
        monitor.stop(timeout=1.0)
        assert not monitor.is_running
