"""
Concurrent batch creation against a file-backed SQLite database.

Each worker runs ``BatchLifecycle.create`` on its own connection.  Writers
are serialized with BEGIN IMMEDIATE, the way row locks serialize them on
PostgreSQL, so the claim race is decided by the conditional UPDATE.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy import create_engine, event, select
from sqlalchemy.orm import sessionmaker

from donation_kernel.db.base import Base
from donation_kernel.exceptions import NoPendingDonationsError

import donation_batch.models  # noqa: F401  (registers tables)
from donation_batch.domain.fees import calculate_fees
from donation_batch.domain.types import DonationStatus
from donation_batch.models.donation import DonationModel
from donation_batch.services.lifecycle import BatchLifecycle

from tests.fakes import VALID_TRON_WALLET


@pytest.fixture
def file_session_factory(tmp_path):
    eng = create_engine(
        f"sqlite:///{tmp_path / 'claims.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(eng, "connect")
    def _manual_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    Base.metadata.create_all(eng)
    yield sessionmaker(bind=eng, expire_on_commit=False)
    eng.dispose()


def _seed(factory, clock, *amounts):
    session = factory()
    try:
        rows = [
            DonationModel.from_breakdown(
                calculate_fees(Decimal(str(amount))),
                wallet_address=VALID_TRON_WALLET,
                campaign_id=None,
                created_at=clock.now() - timedelta(hours=1),
            )
            for amount in amounts
        ]
        session.add_all(rows)
        session.commit()
        return [row.id for row in rows]
    finally:
        session.close()


def _create_all(factory, config, gateways, clock, id_sets):
    """Run one ``create`` per id set, all released at once."""
    barrier = Barrier(len(id_sets))

    def _worker(ids):
        session = factory()
        lifecycle = BatchLifecycle(session, config=config, gateways=gateways, clock=clock)
        try:
            barrier.wait(timeout=10)
            batch = lifecycle.create(ids, VALID_TRON_WALLET)
            session.commit()
            return batch
        except NoPendingDonationsError as exc:
            session.rollback()
            return exc
        finally:
            session.close()

    with ThreadPoolExecutor(max_workers=len(id_sets)) as pool:
        return list(pool.map(_worker, id_sets))


def test_overlapping_claims_exactly_one_wins(file_session_factory, config, gateways, clock):
    ids = _seed(file_session_factory, clock, 50, 60, 40)

    results = _create_all(
        file_session_factory, config, gateways, clock, [ids, ids[1:]],
    )

    winners = [r for r in results if not isinstance(r, Exception)]
    losers = [r for r in results if isinstance(r, NoPendingDonationsError)]
    assert len(winners) == 1
    assert len(losers) == 1

    session = file_session_factory()
    try:
        rows = session.execute(select(DonationModel).where(DonationModel.id.in_(ids))).scalars().all()
        claimed = {row.id for row in rows if row.batch_id == winners[0].batch_id}
        assert claimed == set(winners[0].donation_ids)
        # the loser's savepoint left nothing claimed outside the winner's batch
        for row in rows:
            if row.id in claimed:
                assert row.status == DonationStatus.BATCHED.value
            else:
                assert row.status == DonationStatus.PENDING.value
                assert row.batch_id is None
    finally:
        session.close()


def test_disjoint_claims_both_succeed(file_session_factory, config, gateways, clock):
    ids = _seed(file_session_factory, clock, 50, 60, 40, 70)

    results = _create_all(
        file_session_factory, config, gateways, clock, [ids[:2], ids[2:]],
    )

    assert all(not isinstance(r, Exception) for r in results)
    assert results[0].batch_number != results[1].batch_number
    assert {d for r in results for d in r.donation_ids} == set(ids)
