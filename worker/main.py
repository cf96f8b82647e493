# worker/main.py
"""
Background worker: runs the job pool against the SQL queue store.

Run: python -m worker.main
"""
from __future__ import annotations

import asyncio
import logging
import signal

from api.app.config import Settings, get_settings
from db.engine import dispose_engine
from db.session import get_session_factory
from jobs.handlers import HANDLERS
from jobs.policy import RetryPolicy
from jobs.queue import SqlQueueStore
from jobs.rate_limiter import RateLimiter
from jobs.sink import SqlResultSink
from worker.pool import WorkerPool

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("worker")


def build_pool(settings: Settings) -> WorkerPool:
    session_factory = get_session_factory()
    return WorkerPool(
        store=SqlQueueStore(session_factory),
        limiter=RateLimiter(
            max_permits=settings.rate_limit_max,
            window_seconds=settings.rate_limit_window.total_seconds(),
        ),
        handlers=HANDLERS,
        sink=SqlResultSink(session_factory),
        policy=RetryPolicy(
            max_attempts=settings.max_attempts,
            base_delay=settings.backoff_base,
        ),
        concurrency=settings.worker_concurrency,
        lease_duration=settings.lease_duration,
        handler_timeout=settings.handler_timeout,
        idle_wait=settings.idle_wait_range,
    )


async def run() -> None:
    settings = get_settings()
    pool = build_pool(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pool.stop)
        except NotImplementedError:
            # Windows event loops do not support signal handlers
            pass

    logger.info(
        "Rate limit %d per %dms, max attempts %d, retain succeeded hint %d",
        settings.rate_limit_max,
        settings.rate_limit_window_ms,
        settings.max_attempts,
        settings.retain_succeeded_count,
    )
    try:
        await pool.run()
    finally:
        await dispose_engine()


def main() -> None:
    asyncio.run(run())


if __name__ == "__main__":
    main()
