"""
Tests for the SQL queue store against a SQLite file database.
PostgreSQL adds row locks on top; the contract is the same.
"""
from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import create_async_engine

from jobs.envelope import JobState
from db.session import make_session_factory
from jobs.errors import DuplicateJob, FailureKind, JobNotFound, LeaseConflict
from jobs.queue import SqlQueueStore
from jobs.store import CANCELLED_ERROR, LEASE_EXHAUSTED_ERROR
from models import Base
from models.event import Event

LEASE = timedelta(seconds=90)


@pytest.fixture
def sql_store(session_factory, clock) -> SqlQueueStore:
    return SqlQueueStore(session_factory, clock=clock)


async def _events(session_factory, event_type: str) -> list[Event]:
    async with session_factory() as db:
        rows = await db.execute(select(Event).where(Event.event_type == event_type))
        return list(rows.scalars())


@pytest.mark.asyncio
async def test_enqueue_and_get_round_trip(sql_store, make_job):
    job = make_job()
    assert await sql_store.enqueue(job) == job.id

    stored = await sql_store.get(job.id)
    assert stored.state is JobState.QUEUED
    assert stored.attempt == 0
    assert stored.owner_id == "user-1"
    assert stored.payload["trade_id"] == "trd_1042"
    assert stored.visible_at == job.visible_at


@pytest.mark.asyncio
async def test_enqueue_duplicate_rejected(sql_store, make_job):
    job = make_job()
    await sql_store.enqueue(job)
    with pytest.raises(DuplicateJob):
        await sql_store.enqueue(job)


@pytest.mark.asyncio
async def test_claim_is_exclusive(sql_store, make_job, clock):
    job = make_job()
    await sql_store.enqueue(job)

    claimed = await sql_store.claim_next("worker-a", LEASE)
    assert claimed.id == job.id
    assert claimed.state is JobState.LEASED
    assert claimed.attempt == 1
    assert claimed.lease_owner == "worker-a"
    assert claimed.lease_expires_at == clock() + LEASE

    assert await sql_store.claim_next("worker-b", LEASE) is None


@pytest.mark.asyncio
async def test_claim_order_and_visibility(sql_store, make_job, clock):
    later = make_job(visible_at=clock() + timedelta(seconds=5))
    older = make_job(visible_at=clock() - timedelta(seconds=20))
    newer = make_job(visible_at=clock() - timedelta(seconds=1))
    for job in (later, newer, older):
        await sql_store.enqueue(job)

    assert (await sql_store.claim_next("w", LEASE)).id == older.id
    assert (await sql_store.claim_next("w", LEASE)).id == newer.id
    assert await sql_store.claim_next("w", LEASE) is None

    clock.advance(seconds=5)
    assert (await sql_store.claim_next("w", LEASE)).id == later.id


@pytest.mark.asyncio
async def test_expired_lease_reclaim_and_stale_worker(sql_store, make_job, clock):
    job = make_job()
    await sql_store.enqueue(job)
    await sql_store.claim_next("worker-a", LEASE)

    clock.advance(seconds=91)
    reclaimed = await sql_store.claim_next("worker-b", LEASE)
    assert reclaimed.id == job.id
    assert reclaimed.attempt == 2
    assert reclaimed.lease_owner == "worker-b"

    assert not await sql_store.fail(job.id, "late", clock(), worker_id="worker-a")
    assert (await sql_store.get(job.id)).lease_owner == "worker-b"

    assert await sql_store.complete(job.id, {"summary_text": "done"})
    stored = await sql_store.get(job.id)
    assert stored.state is JobState.SUCCEEDED
    assert stored.result == {"summary_text": "done"}
    assert stored.lease_owner is None


@pytest.mark.asyncio
async def test_fail_requeue_then_dead_letter(sql_store, session_factory, make_job, clock):
    job = make_job(max_attempts=2)
    await sql_store.enqueue(job)
    await sql_store.claim_next("w", LEASE)

    retry_at = clock() + timedelta(seconds=2)
    assert await sql_store.fail(
        job.id, "timeout", retry_at, failure_kind=FailureKind.TRANSIENT, worker_id="w"
    )
    stored = await sql_store.get(job.id)
    assert stored.state is JobState.QUEUED
    assert stored.visible_at == retry_at
    assert stored.last_failure_kind is FailureKind.TRANSIENT

    clock.advance(seconds=2)
    assert (await sql_store.claim_next("w", LEASE)).attempt == 2
    assert await sql_store.fail(
        job.id, "timeout again", None, failure_kind=FailureKind.TRANSIENT, worker_id="w"
    )

    stored = await sql_store.get(job.id)
    assert stored.state is JobState.DEAD_LETTERED
    assert stored.error_info == "timeout again"

    events = await _events(session_factory, "job_dead_lettered")
    assert [e.job_id for e in events] == [job.id]
    assert events[0].metadata_["failure_kind"] == "transient"


@pytest.mark.asyncio
async def test_terminal_state_is_final(sql_store, make_job):
    job = make_job()
    await sql_store.enqueue(job)
    await sql_store.claim_next("w", LEASE)

    assert await sql_store.complete(job.id, {"summary_text": "first"})
    assert not await sql_store.complete(job.id, {"summary_text": "second"})
    assert not await sql_store.fail(job.id, "late failure", None)

    stored = await sql_store.get(job.id)
    assert stored.state is JobState.SUCCEEDED
    assert stored.result == {"summary_text": "first"}
    assert stored.error_info is None


@pytest.mark.asyncio
async def test_exhausted_lease_dead_lettered_on_claim(sql_store, session_factory, make_job, clock):
    job = make_job(max_attempts=1)
    await sql_store.enqueue(job)
    await sql_store.claim_next("worker-a", LEASE)

    clock.advance(seconds=120)
    assert await sql_store.claim_next("worker-b", LEASE) is None

    stored = await sql_store.get(job.id)
    assert stored.state is JobState.DEAD_LETTERED
    assert stored.attempt == 1
    assert stored.error_info == LEASE_EXHAUSTED_ERROR
    assert len(await _events(session_factory, "job_dead_lettered")) == 1


@pytest.mark.asyncio
async def test_cancel_if_queued(sql_store, session_factory, make_job, clock):
    first = make_job(visible_at=clock() - timedelta(seconds=1))
    second = make_job()
    await sql_store.enqueue(first)
    await sql_store.enqueue(second)
    assert (await sql_store.claim_next("w", LEASE)).id == first.id

    assert not await sql_store.cancel_if_queued(first.id)
    assert await sql_store.cancel_if_queued(second.id)
    assert not await sql_store.cancel_if_queued(second.id)

    stored = await sql_store.get(second.id)
    assert stored.state is JobState.FAILED
    assert stored.error_info == CANCELLED_ERROR

    async with session_factory() as db:
        count = await db.scalar(select(func.count()).select_from(Event).where(Event.event_type == "job_cancelled"))
    assert count == 1


@pytest.mark.asyncio
async def test_missing_job(sql_store):
    with pytest.raises(JobNotFound):
        await sql_store.get(uuid.uuid4())
    with pytest.raises(JobNotFound):
        await sql_store.complete(uuid.uuid4(), {})


@pytest_asyncio.fixture
async def locking_session_factory(tmp_path):
    """SQLite sessions that take the write lock at BEGIN, so claimers queue up."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'race.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield make_session_factory(engine)
    await engine.dispose()


@pytest.mark.asyncio
async def test_concurrent_claims_single_winner(locking_session_factory, make_job, clock):
    store = SqlQueueStore(locking_session_factory, clock=clock)
    job = make_job()
    await store.enqueue(job)

    results = await asyncio.gather(
        *(store.claim_next(f"worker-{i}", LEASE) for i in range(5))
    )

    winners = [r for r in results if r is not None]
    assert len(winners) == 1
    assert winners[0].id == job.id

    stored = await store.get(job.id)
    assert stored.attempt == 1
    assert stored.lease_owner == winners[0].lease_owner


@pytest.mark.asyncio
async def test_stale_attempt_loses_claim(sql_store, session_factory, make_job, clock):
    job = make_job()
    await sql_store.enqueue(job)
    await sql_store.claim_next("worker-a", LEASE)

    # lease has expired, so only the attempt check stands between worker-b and the job
    clock.advance(seconds=91)
    async with session_factory() as db:
        async with db.begin():
            with pytest.raises(LeaseConflict):
                await sql_store._try_claim(db, job.id, 0, "worker-b", clock(), LEASE)

    stored = await sql_store.get(job.id)
    assert stored.lease_owner == "worker-a"
    assert stored.attempt == 1

    reclaimed = await sql_store.claim_next("worker-b", LEASE)
    assert reclaimed.attempt == 2
