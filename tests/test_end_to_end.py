"""
End-to-end scenarios: producer -> store -> pool -> sink -> status read.
"""
from __future__ import annotations

import time
from datetime import timedelta

import pytest
from sqlalchemy import select

from helpers import run_pool_until
from jobs.envelope import JobKind, JobState
from jobs.errors import TransientError
from jobs.policy import RetryPolicy
from jobs.queue import SqlQueueStore
from jobs.rate_limiter import RateLimiter
from jobs.service import JobService
from jobs.sink import InMemoryResultSink, SqlResultSink
from jobs.store import InMemoryQueueStore
from models.analysis_summary import AnalysisSummary
from worker.pool import WorkerPool


@pytest.mark.asyncio
async def test_trade_summary_recovers_after_two_transient_failures(trade_payload):
    store = InMemoryQueueStore()
    sink = InMemoryResultSink()
    service = JobService(store)
    calls = 0

    async def flaky_handler(job):
        nonlocal calls
        calls += 1
        if calls <= 2:
            raise TransientError("downstream throttled")
        return {"status": "ready", "summary_text": "Good trade", "score": 8}

    pool = WorkerPool(
        store=store,
        limiter=RateLimiter(max_permits=5, window_seconds=1.0),
        handlers={JobKind.TRADE_SUMMARY: flaky_handler},
        sink=sink,
        policy=RetryPolicy(),  # 2s, 4s
        concurrency=3,
        idle_wait=(0.05, 0.1),
    )

    t0 = time.monotonic()
    job_id = await service.enqueue(JobKind.TRADE_SUMMARY, trade_payload, "user-1")

    async def done():
        return (await store.get(job_id)).is_terminal

    await run_pool_until(pool, done, timeout=15)
    elapsed = time.monotonic() - t0

    view = await service.get_status(job_id, "user-1")
    assert view.state is JobState.SUCCEEDED
    assert view.attempt == 3
    assert view.result["summary_text"] == "Good trade"
    assert view.error_info is None
    assert calls == 3
    assert len(sink.records) == 1
    assert elapsed >= 6.0


@pytest.mark.asyncio
async def test_sql_backed_pipeline(session_factory, weekly_payload):
    store = SqlQueueStore(session_factory)
    service = JobService(store)

    async def handler(job):
        return {
            "status": "ready",
            "summary_text": "Consistent week",
            "plus_points": ["Stuck to plan"],
            "stats": {"winRatePct": 64.3},
        }

    pool = WorkerPool(
        store=store,
        limiter=RateLimiter(),
        handlers={JobKind.WEEKLY_SUMMARY: handler},
        sink=SqlResultSink(session_factory),
        policy=RetryPolicy(base_delay=timedelta(milliseconds=10)),
        concurrency=1,
        idle_wait=(0.01, 0.02),
    )

    job_id = await service.enqueue("weekly_summary", weekly_payload, "user-7")

    async def done():
        return (await store.get(job_id)).is_terminal

    await run_pool_until(pool, done)

    view = await service.get_status(job_id, "user-7")
    assert view.state is JobState.SUCCEEDED
    assert view.attempt == 1

    async with session_factory() as db:
        rows = list((await db.execute(select(AnalysisSummary))).scalars())
    assert len(rows) == 1
    assert rows[0].job_id == job_id
    assert rows[0].kind == "weekly_summary"
    assert rows[0].stats == {"winRatePct": 64.3}
    assert rows[0].owner_id == "user-7"
