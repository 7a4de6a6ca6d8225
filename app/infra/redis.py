"""
Redis Connection Management

Redis connection with retries and graceful degradation, plus the
reservation lock manager that serializes booking commits per resource
and day. When Redis is unavailable, locks fall back to in-process
asyncio locks.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from typing import AsyncIterator, Iterable, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.lock import Lock
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, LockError, RedisError, TimeoutError

from app.config import settings
from app.core.booking.errors import LockTimeoutError

logger = logging.getLogger(__name__)

# Key namespace; bump the version when the lock key format changes
APP_PREFIX = "booking:v1:"


class RedisClient:
    """
    Process-wide Redis connection.

    A failed connect returns None instead of raising, so callers can
    degrade to in-process locking. The next call retries the connect.
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls) -> Optional[Redis]:
        """Connected client, or None when Redis cannot be reached."""
        if cls._client is not None and cls._connected:
            return cls._client

        try:
            retry = Retry(ExponentialBackoff(), retries=3)

            cls._client = redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            await cls._client.ping()
            cls._connected = True
            logger.info(f"Connected to Redis at {settings.redis_url.rsplit('@', 1)[-1]}")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False


async def get_redis() -> Optional[Redis]:
    """
    Get the shared Redis client.

    Returns None if Redis is unavailable (degraded mode).
    """
    return await RedisClient.get_client()


class ReservationLocks:
    """
    Serializing locks for booking commits.

    Keys (with namespace):
    - booking:v1:lock:{key} -> Redis lock token

    With a Redis client the lock spans processes. Without one (or when
    Redis fails mid-request) an in-process asyncio.Lock per key is used.
    """

    LOCK_PREFIX = f"{APP_PREFIX}lock:"

    def __init__(
        self,
        redis_client: Optional[Redis] = None,
        timeout: Optional[float] = None,
        wait: Optional[float] = None,
    ):
        """Initialize lock manager.

        Args:
            redis_client: Redis client, or None for in-process locks only
            timeout: Seconds before a held Redis lock auto-expires
            wait: Seconds to wait for a lock before giving up
        """
        self.redis = redis_client
        self.timeout = timeout if timeout is not None else settings.reservation_lock_timeout
        self.wait = wait if wait is not None else settings.reservation_lock_wait
        # Process-local fallback; an entry lives while someone holds or awaits it
        self._local: dict[str, asyncio.Lock] = {}
        self._local_users: dict[str, int] = {}

    def _key(self, key: str) -> str:
        """Generate lock key with namespace."""
        return f"{self.LOCK_PREFIX}{key}"

    def _checkout_local(self, key: str) -> asyncio.Lock:
        lock = self._local.get(key)
        if lock is None:
            lock = self._local[key] = asyncio.Lock()
        self._local_users[key] = self._local_users.get(key, 0) + 1
        return lock

    def _checkin_local(self, key: str) -> None:
        remaining = self._local_users[key] - 1
        if remaining:
            self._local_users[key] = remaining
        else:
            del self._local_users[key]
            del self._local[key]

    async def _acquire_redis(self, key: str) -> Optional[Lock]:
        """Acquire the Redis lock, or return None to fall back to local locks.

        Raises:
            LockTimeoutError: If Redis is up but the lock stays held
        """
        if self.redis is None:
            return None

        lock = self.redis.lock(
            self._key(key),
            timeout=self.timeout,
            blocking_timeout=self.wait,
        )
        try:
            acquired = await lock.acquire()
        except RedisError as e:
            logger.error(f"Redis lock failed for {key}: {e} - using local lock")
            return None

        if not acquired:
            logger.warning(f"Timed out waiting for reservation lock {key}")
            raise LockTimeoutError(
                "Another booking for this resource is being processed, please retry",
                details={"lock": key},
            )
        return lock

    async def _release_redis(self, lock: Lock, key: str) -> None:
        try:
            await lock.release()
        except LockError as e:
            # Lock expired before release; the commit already happened
            logger.warning(f"Reservation lock {key} expired before release: {e}")
        except RedisError as e:
            logger.error(f"Failed to release reservation lock {key}: {e}")

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the lock for `key` for the duration of the block.

        Usage:
            async with locks.hold("resource-1:2025-03-01"):
                ...check conflicts and insert...
        """
        redis_lock = await self._acquire_redis(key)

        if redis_lock is None:
            local = self._checkout_local(key)
            try:
                try:
                    await asyncio.wait_for(local.acquire(), timeout=self.wait)
                except asyncio.TimeoutError as e:
                    raise LockTimeoutError(
                        "Another booking for this resource is being processed, please retry",
                        details={"lock": key},
                    ) from e
                try:
                    yield
                finally:
                    local.release()
            finally:
                self._checkin_local(key)
            return

        try:
            yield
        finally:
            await self._release_redis(redis_lock, key)

    @asynccontextmanager
    async def hold_all(self, keys: Iterable[str]) -> AsyncIterator[None]:
        """Hold several locks at once, acquired in sorted order."""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.hold(key))
            yield


_reservation_locks: Optional[ReservationLocks] = None


async def get_reservation_locks() -> ReservationLocks:
    """
    Get the shared ReservationLocks instance.

    Uses Redis when reachable at first use, in-process locks otherwise.
    """
    global _reservation_locks
    if _reservation_locks is None:
        client = await get_redis()
        if client is None:
            logger.warning("Redis unavailable - reservation locks are process-local")
        _reservation_locks = ReservationLocks(client)
    return _reservation_locks


async def check_redis_health() -> bool:
    """
    Check Redis connectivity for health checks.

    Returns:
        True if Redis is accessible and responding, False otherwise
    """
    try:
        client = await get_redis()
        if client is None:
            return False

        await client.ping()
        return True

    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
