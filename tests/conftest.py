# tests/conftest.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from db.session import make_session_factory
from jobs.envelope import JobKind, new_job
from jobs.store import InMemoryQueueStore
from models import Base


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def trade_payload() -> dict:
    return {
        "trade_id": "trd_1042",
        "trade": {
            "symbol": "RELIANCE",
            "side": "long",
            "entryPrice": 2450.5,
            "exitPrice": 2498.0,
            "quantity": 20,
            "pnl": 950,
        },
    }


@pytest.fixture
def weekly_payload() -> dict:
    return {
        "period_start": "2026-01-05T00:00:00Z",
        "period_end": "2026-01-12T00:00:00Z",
        "stats": {"totalTrades": 14, "winningTrades": 9, "totalPnL": 12450},
    }


@pytest.fixture
def memory_store(clock) -> InMemoryQueueStore:
    return InMemoryQueueStore(clock=clock)


@pytest.fixture
def make_job(clock, trade_payload):
    def _make(owner_id: str = "user-1", **kwargs):
        kwargs.setdefault("now", clock())
        return new_job(JobKind.TRADE_SUMMARY, trade_payload, owner_id, **kwargs)

    return _make


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'jobs.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield make_session_factory(engine)
    await engine.dispose()
