"""
Redis connection, sweep leases and request rate limiting

Redis is optional for a single worker: rate limiting fails open and sweeps
fall back to the in-process guard. Multi-worker deployments enable
WAITLIST_SWEEP_DISTRIBUTED_LOCK so only one worker runs each sweep.
"""

import redis.asyncio as redis
from typing import Optional, Tuple
import logging
import asyncio
import time
import uuid

from app.config import settings

logger = logging.getLogger(__name__)

redis_client: Optional[redis.Redis] = None

LEASE_KEY_PREFIX = "waitlist:lease:"
RATE_KEY_PREFIX = "waitlist:rate:"

# SET NX EX returns the owner token only when the lease was free
ACQUIRE_LEASE_SCRIPT = """
if redis.call("set", KEYS[1], ARGV[1], "NX", "EX", tonumber(ARGV[2])) then
    return ARGV[1]
end
return nil
"""

# Only the owner may drop a lease; an expired lease may already belong to another worker
RELEASE_LEASE_SCRIPT = """
if redis.call("get", KEYS[1]) ~= ARGV[1] then
    return 0
end
return redis.call("del", KEYS[1])
"""

# Sorted set of request timestamps (ms) inside the window
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window_ms = tonumber(ARGV[2]) * 1000
local now_ms = tonumber(ARGV[3])

redis.call("zremrangebyscore", key, 0, now_ms - window_ms)
local used = redis.call("zcard", key)
if used >= limit then
    return {1, used}
end
redis.call("zadd", key, now_ms, ARGV[4])
redis.call("expire", key, tonumber(ARGV[2]) + 1)
return {0, used + 1}
"""


async def init_redis():
    """
    Connect the shared client and verify it answers
    """
    global redis_client
    client = redis.from_url(
        settings.REDIS_URL,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        decode_responses=True
    )
    try:
        await client.ping()
    except Exception as e:
        logger.error(f"Redis at {settings.REDIS_URL} is unreachable: {e}")
        await client.aclose()
        raise
    redis_client = client
    logger.info("Redis connection established")


async def close_redis():
    global redis_client
    if redis_client is not None:
        await redis_client.aclose()
        redis_client = None
        logger.info("Redis connection closed")


async def get_redis() -> redis.Redis:
    if redis_client is None:
        await init_redis()
    return redis_client


class CircuitBreaker:
    """
    Stops hammering Redis after repeated failures.

    CLOSED passes calls through, OPEN rejects them until recovery_timeout
    has elapsed, then HALF_OPEN lets a few trial calls decide.
    """

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: float = 60, half_open_max_calls: int = 3):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls

        self.state = self.CLOSED
        self.failure_count = 0
        self.last_failure_time: Optional[float] = None
        self.half_open_calls = 0
        self._lock = asyncio.Lock()

    async def _admit(self):
        async with self._lock:
            if self.state == self.OPEN:
                if time.monotonic() - (self.last_failure_time or 0) < self.recovery_timeout:
                    raise ConnectionError("Circuit breaker is open")
                self.state = self.HALF_OPEN
                self.half_open_calls = 0

            if self.state == self.HALF_OPEN:
                if self.half_open_calls >= self.half_open_max_calls:
                    raise ConnectionError("Circuit breaker is half-open, trial calls exhausted")
                self.half_open_calls += 1

    async def _on_result(self, ok: bool):
        async with self._lock:
            self.half_open_calls = 0
            if ok:
                self.failure_count = 0
                self.state = self.CLOSED
                return
            self.failure_count += 1
            self.last_failure_time = time.monotonic()
            if self.state == self.HALF_OPEN or self.failure_count >= self.failure_threshold:
                if self.state != self.OPEN:
                    logger.warning(f"Redis circuit opened after {self.failure_count} failures")
                self.state = self.OPEN

    async def call(self, func, *args, **kwargs):
        await self._admit()
        try:
            result = await func(*args, **kwargs)
        except Exception:
            await self._on_result(False)
            raise
        await self._on_result(True)
        return result


class RedisManager:
    """
    Sweep leases and rate limiting on top of the shared client
    """

    def __init__(self):
        self.client: Optional[redis.Redis] = None
        self.circuit_breaker = CircuitBreaker()

    async def get_client(self) -> redis.Redis:
        """Return a client that answered PING, reconnecting once if needed"""
        if self.client is None:
            self.client = await get_redis()

        try:
            await self.circuit_breaker.call(self.client.ping)
        except Exception as e:
            logger.warning(f"Redis ping failed, reconnecting: {e}")
            try:
                await asyncio.wait_for(self.client.aclose(), timeout=1.0)
            except (asyncio.TimeoutError, redis.RedisError, OSError) as close_error:
                logger.debug(f"Ignoring error while closing Redis client: {close_error}")
            await close_redis()
            self.client = await get_redis()
            await self.circuit_breaker.call(self.client.ping)

        return self.client

    async def acquire_lock(
        self,
        resource: str,
        identifier: Optional[str] = None,
        ttl: int = 300
    ) -> Optional[str]:
        """
        Take the lease on `resource` for `ttl` seconds.

        Returns the owner token, or None when another worker holds the lease
        or Redis is unavailable.
        """
        token = identifier or uuid.uuid4().hex
        try:
            client = await self.get_client()
            owner = await client.eval(ACQUIRE_LEASE_SCRIPT, 1, LEASE_KEY_PREFIX + resource, token, ttl)
        except Exception as e:
            logger.error(f"Could not acquire lease {resource}: {e}")
            return None

        if not owner:
            return None
        if isinstance(owner, bytes):
            owner = owner.decode()
        logger.debug(f"Lease {resource} acquired by {owner}")
        return owner

    async def release_lock(self, resource: str, identifier: str) -> bool:
        try:
            client = await self.get_client()
            deleted = await client.eval(RELEASE_LEASE_SCRIPT, 1, LEASE_KEY_PREFIX + resource, identifier)
        except Exception as e:
            logger.error(f"Could not release lease {resource}: {e}")
            return False

        if deleted != 1:
            logger.warning(f"Lease {resource} was no longer held by {identifier}")
            return False
        return True

    async def is_rate_limited(self, key: str, limit: int, window: int = 60) -> Tuple[bool, int]:
        """
        Count one request against `key` and report whether it is over `limit`
        within the last `window` seconds.

        Returns (limited, requests_in_window). Fails open when Redis is down.
        """
        try:
            client = await self.get_client()
            limited, used = await self.circuit_breaker.call(
                self._execute_rate_limit_script, client, RATE_KEY_PREFIX + key, limit, window
            )
        except Exception as e:
            logger.error(f"Rate limit check for {key} failed, allowing request: {e}")
            return False, 0
        return bool(int(limited)), int(used)

    async def _execute_rate_limit_script(self, client, rate_key: str, limit: int, window: int):
        # Server time keeps windows consistent across workers
        seconds, micros = await client.time()
        now_ms = int(seconds) * 1000 + int(micros) // 1000
        return await client.eval(
            SLIDING_WINDOW_SCRIPT, 1, rate_key, limit, window, now_ms, uuid.uuid4().hex
        )


redis_manager = RedisManager()
