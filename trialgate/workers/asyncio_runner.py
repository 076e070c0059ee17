from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from trialgate.db.session import dispose_engine
from trialgate.lifecycle.locking import get_account_locks

T = TypeVar("T")


async def _run_with_fresh_resources(awaitable: Awaitable[T]) -> T:
    # Pooled connections and in-process locks are bound to the loop that created them.
    await dispose_engine()
    get_account_locks.cache_clear()
    try:
        return await awaitable
    finally:
        await dispose_engine()


def run_async_job(awaitable: Awaitable[T]) -> T:
    return asyncio.run(_run_with_fresh_resources(awaitable))
