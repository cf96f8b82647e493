# worker/pool.py
"""
Fixed-size pool of worker loops sharing one queue store and one rate limiter.

Each loop: claim -> acquire a rate permit -> run the handler under a
timeout -> commit result + complete, or classify the failure and let the
retry policy decide between re-queue and dead-letter. A single job's fault
never kills a loop. stop() prevents new claims; in-flight jobs finish.
"""
from __future__ import annotations

import asyncio
import logging
import platform
import random
import traceback
import uuid
from datetime import datetime, timedelta
from typing import Callable, Mapping, Protocol

from jobs.envelope import JobEnvelope, JobKind, utcnow
from jobs.errors import FailureKind, HandlerError, PermanentError
from jobs.handlers import Handler
from jobs.policy import RetryPolicy
from jobs.sink import ResultSink
from jobs.store import QueueStore

logger = logging.getLogger(__name__)

MAX_ERROR_INFO = 1000


class Limiter(Protocol):
    async def acquire(self) -> None: ...


def make_worker_prefix() -> str:
    return f"worker-{platform.node()}-{uuid.uuid4().hex[:8]}"


class WorkerPool:
    def __init__(
        self,
        store: QueueStore,
        limiter: Limiter,
        handlers: Mapping[JobKind, Handler],
        sink: ResultSink,
        policy: RetryPolicy | None = None,
        *,
        concurrency: int = 3,
        lease_duration: timedelta = timedelta(seconds=90),
        handler_timeout: timedelta = timedelta(seconds=60),
        idle_wait: tuple[float, float] = (0.25, 1.0),
        worker_prefix: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        self.store = store
        self.limiter = limiter
        self.handlers = dict(handlers)
        self.sink = sink
        self.policy = policy or RetryPolicy()
        self.concurrency = concurrency
        self.lease_duration = lease_duration
        self.handler_timeout = handler_timeout
        self.idle_wait = idle_wait
        self.worker_prefix = worker_prefix or make_worker_prefix()
        self._clock = clock
        self._stopping = asyncio.Event()

    @property
    def worker_ids(self) -> list[str]:
        return [f"{self.worker_prefix}-{i}" for i in range(self.concurrency)]

    @property
    def stopping(self) -> bool:
        return self._stopping.is_set()

    def stop(self) -> None:
        if not self._stopping.is_set():
            logger.info("Worker pool %s stopping", self.worker_prefix)
        self._stopping.set()

    async def run(self) -> None:
        logger.info(
            "Worker pool %s starting (concurrency=%d lease=%.0fs timeout=%.0fs)",
            self.worker_prefix,
            self.concurrency,
            self.lease_duration.total_seconds(),
            self.handler_timeout.total_seconds(),
        )
        await asyncio.gather(*(self._loop(worker_id) for worker_id in self.worker_ids))
        logger.info("Worker pool %s stopped", self.worker_prefix)

    async def _loop(self, worker_id: str) -> None:
        while not self._stopping.is_set():
            try:
                job = await self.store.claim_next(worker_id, self.lease_duration)
            except Exception:
                logger.exception("Worker %s claim failed", worker_id)
                job = None

            if job is None:
                await self._idle()
                continue

            try:
                await self.process(worker_id, job)
            except Exception:
                # store/sink trouble while reporting; the lease will expire
                logger.exception("Worker %s could not report job %s", worker_id, job.id)
                await self._idle()

        logger.info("Worker %s exited", worker_id)

    async def _idle(self) -> None:
        """Jittered wait that returns early when stop() is called."""
        delay = random.uniform(*self.idle_wait)
        try:
            await asyncio.wait_for(self._stopping.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def process(self, worker_id: str, job: JobEnvelope) -> None:
        await self.limiter.acquire()

        try:
            output = await self._run_handler(job)
            await self.sink.commit(job, output)
        except asyncio.TimeoutError:
            await self._report_failure(
                worker_id,
                job,
                FailureKind.TRANSIENT,
                f"Handler timed out after {self.handler_timeout.total_seconds():.0f}s",
            )
        except HandlerError as exc:
            await self._report_failure(worker_id, job, exc.kind, str(exc))
        except Exception as exc:
            logger.error(
                "Worker %s job %s unclassified handler error:\n%s",
                worker_id, job.id, traceback.format_exc(),
            )
            await self._report_failure(
                worker_id, job, FailureKind.UNKNOWN, f"{type(exc).__name__}: {exc}"
            )
        else:
            await self.store.complete(job.id, output)

    async def _run_handler(self, job: JobEnvelope) -> dict:
        handler = self.handlers.get(job.kind)
        if handler is None:
            raise PermanentError(f"No handler registered for job kind: {job.kind.value}")

        return await asyncio.wait_for(handler(job), timeout=self.handler_timeout.total_seconds())

    async def _report_failure(
        self,
        worker_id: str,
        job: JobEnvelope,
        kind: FailureKind,
        error: str,
    ) -> None:
        decision = self.policy.decide(
            job.attempt,
            kind,
            previous_kind=job.last_failure_kind,
            max_attempts=job.max_attempts,
        )
        next_visible_at = None
        if not decision.dead_letter:
            next_visible_at = self._clock() + decision.retry_after

        logger.warning(
            "Worker %s job %s attempt %d/%d failed [%s]: %s -> %s",
            worker_id,
            job.id,
            job.attempt,
            job.max_attempts,
            kind.value,
            error,
            "dead-letter" if decision.dead_letter else f"retry in {decision.retry_after.total_seconds():.1f}s",
        )
        await self.store.fail(
            job.id,
            error[:MAX_ERROR_INFO],
            next_visible_at,
            failure_kind=kind,
            worker_id=worker_id,
        )
