# jobs/sink.py
"""
Result sink: writes a job's analysis output exactly once per job id.

A worker can crash after writing the result but before marking the job
succeeded; the job is then reclaimed and re-executed. The second write is
a no-op and the first record wins, even if the re-run produced different
text.
"""
from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Callable, Protocol

from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from jobs.envelope import JobEnvelope, JobKind, utcnow
from models.analysis_summary import AnalysisSummary

logger = logging.getLogger(__name__)

_INSERTS = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


class ResultSink(Protocol):
    async def commit(self, job: JobEnvelope, output: dict) -> bool: ...


def _parse_dt(value) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def build_summary_values(job: JobEnvelope, output: dict, now: datetime) -> dict:
    """Column values for the analysis_summaries row of this job."""
    payload = job.payload or {}
    values = {
        "id": uuid.uuid4(),
        "job_id": job.id,
        "owner_id": job.owner_id,
        "kind": job.kind.value,
        "summary_text": output.get("summary_text") or "",
        "plus_points": list(output.get("plus_points") or []),
        "minus_points": list(output.get("minus_points") or []),
        "ai_suggestions": list(output.get("ai_suggestions") or []),
        "tags": list(output.get("tags") or []),
        "score": output.get("score"),
        "stats": output.get("stats"),
        "model": output.get("model"),
        "input_snapshot": payload,
        "raw_response": output.get("raw_response"),
        "status": output.get("status") or "ready",
        "generated_at": now,
        "created_at": now,
        "updated_at": now,
    }
    if job.kind is JobKind.TRADE_SUMMARY:
        values["trade_id"] = payload.get("trade_id")
    else:
        values["period_start"] = _parse_dt(payload.get("period_start"))
        values["period_end"] = _parse_dt(payload.get("period_end"))
    return values


class SqlResultSink:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    async def commit(self, job: JobEnvelope, output: dict) -> bool:
        values = build_summary_values(job, output, self._clock())

        async with self._session_factory() as db:
            async with db.begin():
                insert = _INSERTS[db.bind.dialect.name]
                stmt = (
                    insert(AnalysisSummary)
                    .values(**values)
                    .on_conflict_do_nothing(index_elements=["job_id"])
                )
                inserted = (await db.execute(stmt)).rowcount == 1

        if inserted:
            logger.info("Stored analysis for job %s [%s]", job.id, job.kind.value)
        else:
            logger.info("Analysis for job %s already stored, keeping first write", job.id)
        return inserted


class InMemoryResultSink:
    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self.records: dict[uuid.UUID, dict] = {}

    async def commit(self, job: JobEnvelope, output: dict) -> bool:
        if job.id in self.records:
            return False
        self.records[job.id] = build_summary_values(job, output, self._clock())
        return True
