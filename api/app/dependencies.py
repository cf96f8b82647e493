# api/app/dependencies.py
from __future__ import annotations

from fastapi import Header, HTTPException, status

from api.app.config import get_settings
from db.session import get_session_factory
from jobs.queue import SqlQueueStore
from jobs.service import JobService


def get_job_service() -> JobService:
    settings = get_settings()
    return JobService(
        SqlQueueStore(get_session_factory()),
        max_attempts=settings.max_attempts,
    )


async def get_current_owner(
    x_owner_id: str | None = Header(default=None, alias="X-Owner-Id"),
) -> str:
    """The auth layer in front of this service resolves the account id."""
    if not x_owner_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing owner identity",
        )
    return x_owner_id
