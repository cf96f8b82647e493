# tests/helpers.py
from __future__ import annotations

import asyncio


async def run_pool_until(pool, predicate, timeout: float = 5.0) -> None:
    """Run the pool until predicate() is truthy, then stop it gracefully."""
    task = asyncio.create_task(pool.run())
    try:
        deadline = asyncio.get_running_loop().time() + timeout
        while not await predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not reached before timeout")
            await asyncio.sleep(0.01)
    finally:
        pool.stop()
        await asyncio.wait_for(task, timeout=timeout)
