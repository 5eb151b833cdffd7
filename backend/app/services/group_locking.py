"""
Group locking service.

Per-group exclusive section serializing every mutation of one group's
ledger. Each group is either IDLE or MUTATING; mutations of different
groups never wait on each other. Acquisition waits at most the configured
timeout and then fails with GroupBusyError instead of hanging.

Two backends:
- LocalGroupLocks: asyncio locks, for a single API process.
- RedisGroupLocks: Redis lease locks, for several API processes.
"""

import asyncio
import enum
import logging
from contextlib import asynccontextmanager
from typing import Dict, Optional

from redis.exceptions import LockError, RedisError

from backend.app.core.config import settings
from backend.app.core.exceptions import GroupBusyError, StorageFailureError

logger = logging.getLogger(__name__)


class GroupState(str, enum.Enum):
    IDLE = "IDLE"
    MUTATING = "MUTATING"


class GroupLockBackend:
    """acquire/release primitive plus the ``exclusive`` context manager built on it."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = settings.group_lock_timeout_seconds if timeout is None else timeout

    async def acquire(self, group_id: int, timeout: Optional[float] = None) -> None:
        raise NotImplementedError

    async def release(self, group_id: int) -> None:
        raise NotImplementedError

    def state(self, group_id: int) -> GroupState:
        raise NotImplementedError

    @asynccontextmanager
    async def exclusive(self, group_id: int, timeout: Optional[float] = None):
        await self.acquire(group_id, timeout)
        try:
            yield
        finally:
            await self.release(group_id)


class LocalGroupLocks(GroupLockBackend):
    """
    In-process group locks.

    Lock objects are created on demand and dropped once no task holds or
    waits for them, so idle groups cost nothing.
    """

    def __init__(self, timeout: Optional[float] = None):
        super().__init__(timeout)
        self._locks: Dict[int, asyncio.Lock] = {}
        self._users: Dict[int, int] = {}

    async def acquire(self, group_id: int, timeout: Optional[float] = None) -> None:
        timeout = self.timeout if timeout is None else timeout
        lock = self._locks.setdefault(group_id, asyncio.Lock())
        self._users[group_id] = self._users.get(group_id, 0) + 1
        try:
            await asyncio.wait_for(lock.acquire(), timeout)
        except asyncio.TimeoutError:
            self._forget(group_id)
            logger.warning("Group %s busy: lock wait exceeded %.2fs", group_id, timeout)
            raise GroupBusyError(group_id, timeout)
        except BaseException:
            self._forget(group_id)
            raise

    async def release(self, group_id: int) -> None:
        lock = self._locks.get(group_id)
        if lock is None or not lock.locked():
            logger.warning("Release of group %s which is not locked", group_id)
            return
        lock.release()
        self._forget(group_id)

    def state(self, group_id: int) -> GroupState:
        lock = self._locks.get(group_id)
        return GroupState.MUTATING if lock is not None and lock.locked() else GroupState.IDLE

    def _forget(self, group_id: int) -> None:
        remaining = self._users.get(group_id, 1) - 1
        if remaining <= 0:
            self._users.pop(group_id, None)
            self._locks.pop(group_id, None)
        else:
            self._users[group_id] = remaining


class RedisGroupLocks(GroupLockBackend):
    """
    Distributed group locks on Redis.

    The lease bounds how long a crashed holder can keep a group locked.
    """

    KEY_PREFIX = "group-lock:"

    def __init__(self, redis, timeout: Optional[float] = None, lease: Optional[float] = None):
        super().__init__(timeout)
        self._redis = redis
        self.lease = settings.group_lock_lease_seconds if lease is None else lease
        self._held: Dict[int, object] = {}

    async def acquire(self, group_id: int, timeout: Optional[float] = None) -> None:
        timeout = self.timeout if timeout is None else timeout
        lock = self._redis.lock(
            f"{self.KEY_PREFIX}{group_id}",
            timeout=self.lease,
            blocking_timeout=timeout,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as exc:
            logger.error("Redis lock for group %s unavailable: %s", group_id, exc)
            raise StorageFailureError("Group lock service unavailable", {"group_id": group_id}) from exc
        if not acquired:
            logger.warning("Group %s busy: redis lock wait exceeded %.2fs", group_id, timeout)
            raise GroupBusyError(group_id, timeout)
        self._held[group_id] = lock

    async def release(self, group_id: int) -> None:
        lock = self._held.pop(group_id, None)
        if lock is None:
            logger.warning("Release of group %s which is not locked", group_id)
            return
        try:
            await lock.release()
        except LockError:
            # Lease expired while mutating; another holder may already own it
            logger.warning("Redis lock for group %s expired before release", group_id)
        except RedisError as exc:
            logger.error("Failed to release redis lock for group %s: %s", group_id, exc)

    def state(self, group_id: int) -> GroupState:
        return GroupState.MUTATING if group_id in self._held else GroupState.IDLE


def build_lock_backend(backend: str = None, redis=None) -> GroupLockBackend:
    backend = backend or settings.group_lock_backend
    if backend == "redis":
        if redis is None:
            from backend.app.core.redis_client import redis_client
            redis = redis_client
        return RedisGroupLocks(redis)
    if backend != "local":
        raise ValueError(f"Unknown group lock backend: {backend}")
    return LocalGroupLocks()
