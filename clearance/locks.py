"""
Per-package mutual exclusion. Transitions on the same package id run one at a
time so each derivation sees the previous one's persisted result; different
packages never contend.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as redis
from redis.exceptions import LockError

from clearance.config import settings
from clearance.errors import PackageBusyError

logger = logging.getLogger(__name__)

_redis: redis.Redis | None = None


async def get_redis() -> redis.Redis:
    global _redis
    if _redis is None:
        _redis = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis


async def close_redis() -> None:
    global _redis
    if _redis is not None:
        await _redis.aclose()
        _redis = None


class LocalPackageLocks:
    """In-process asyncio.Lock per package id; entries are dropped when no one holds or waits."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, package_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(package_id, asyncio.Lock())
        self._users[package_id] = self._users.get(package_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[package_id] -= 1
            if self._users[package_id] == 0:
                del self._users[package_id]
                del self._locks[package_id]


class RedisPackageLocks:
    """Cross-process lock per package id (redis SET NX with expiry)."""

    def __init__(self, r: redis.Redis, timeout: float | None = None, blocking_timeout: float | None = None):
        self.r = r
        self.timeout = timeout or settings.package_lock_timeout_sec
        self.blocking_timeout = blocking_timeout or settings.package_lock_wait_sec

    @asynccontextmanager
    async def hold(self, package_id: str) -> AsyncIterator[None]:
        lock = self.r.lock(
            f"lock:package:{package_id}",
            timeout=self.timeout,
            blocking_timeout=self.blocking_timeout,
        )
        if not await lock.acquire():
            raise PackageBusyError(package_id)
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                logger.warning("Lock for package_id=%s expired before release", package_id)
