from __future__ import annotations

import asyncio
import hashlib
import time
from collections.abc import AsyncIterator, Sequence
from contextlib import AbstractAsyncContextManager, AsyncExitStack, asynccontextmanager
from functools import lru_cache
from typing import Protocol
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine

from trialgate.core.config import get_settings
from trialgate.lifecycle.errors import ConcurrentOperationInProgressError

logger = structlog.get_logger(__name__)


def account_lock_key(account_id: UUID) -> str:
    return f"account:{account_id}"


def identity_lock_key(identity_key: str) -> str:
    return f"identity:{identity_key}"


def advisory_lock_id(lock_key: str) -> int:
    digest = hashlib.blake2b(lock_key.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


class AccountLocks(Protocol):
    def hold(self, lock_key: str) -> AbstractAsyncContextManager[None]: ...


@asynccontextmanager
async def hold_all(locks: AccountLocks, lock_keys: Sequence[str]) -> AsyncIterator[None]:
    # Keys are taken in the order given; callers keep account before identity.
    async with AsyncExitStack() as stack:
        for lock_key in lock_keys:
            await stack.enter_async_context(locks.hold(lock_key))
        yield


class PostgresAdvisoryLocks:
    """Session-level advisory locks held on a dedicated connection.

    The lock lives as long as the connection, so a crashed worker releases it
    when the server drops the session.
    """

    def __init__(self, engine: AsyncEngine, *, timeout_ms: int, poll_ms: int) -> None:
        self._engine = engine
        self._timeout_seconds = max(0, timeout_ms) / 1000
        self._poll_seconds = max(1, poll_ms) / 1000

    @asynccontextmanager
    async def hold(self, lock_key: str) -> AsyncIterator[None]:
        lock_id = advisory_lock_id(lock_key)
        async with self._engine.connect() as connection:
            connection = await connection.execution_options(isolation_level="AUTOCOMMIT")
            deadline = time.monotonic() + self._timeout_seconds
            while True:
                result = await connection.execute(select(func.pg_try_advisory_lock(lock_id)))
                if result.scalar_one():
                    break
                if time.monotonic() >= deadline:
                    logger.warning("account_lock_contended", lock_key=lock_key, backend="postgres")
                    raise ConcurrentOperationInProgressError(lock_key)
                await asyncio.sleep(self._poll_seconds)

            try:
                yield
            finally:
                await connection.execute(select(func.pg_advisory_unlock(lock_id)))


class LocalAccountLocks:
    def __init__(self, *, timeout_ms: int) -> None:
        self._timeout_seconds = max(0, timeout_ms) / 1000
        self._locks: dict[str, asyncio.Lock] = {}
        # Holders plus waiters per key; the entry goes when this reaches zero.
        self._users: dict[str, int] = {}

    def _forget(self, lock_key: str) -> None:
        remaining = self._users[lock_key] - 1
        if remaining:
            self._users[lock_key] = remaining
            return
        del self._users[lock_key]
        del self._locks[lock_key]

    @asynccontextmanager
    async def hold(self, lock_key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(lock_key, asyncio.Lock())
        self._users[lock_key] = self._users.get(lock_key, 0) + 1
        try:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=self._timeout_seconds)
            except asyncio.TimeoutError as exc:
                logger.warning("account_lock_contended", lock_key=lock_key, backend="local")
                raise ConcurrentOperationInProgressError(lock_key) from exc
            try:
                yield
            finally:
                lock.release()
        finally:
            self._forget(lock_key)


@lru_cache(maxsize=1)
def get_account_locks() -> AccountLocks:
    settings = get_settings()
    backend = settings.account_lock_backend.strip().lower()
    if backend == "local":
        return LocalAccountLocks(timeout_ms=settings.account_lock_timeout_ms)
    if backend == "postgres":
        from trialgate.db.session import engine

        return PostgresAdvisoryLocks(
            engine,
            timeout_ms=settings.account_lock_timeout_ms,
            poll_ms=settings.account_lock_poll_ms,
        )
    raise ValueError(f"unsupported account lock backend: {settings.account_lock_backend}")
