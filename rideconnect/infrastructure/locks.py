"""
Redis-based distributed lock.

Guards the background sweeper so only one API process at a time
re-dispatches requested rides and settles outstanding payments.  Ride and
driver consistency does NOT depend on this lock: that is guaranteed by the
database transactions in the lifecycle service.

Acquire is ``SET NX EX``.  Release and TTL refresh are Lua scripts that
only act while the stored token is still ours, so a lock that expired and
was taken by another process is never touched.
"""

from __future__ import annotations

import uuid

import redis.asyncio as aioredis

KEY_PREFIX = "rideconnect:lock:"

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

_EXTEND_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
end
return 0
"""


class LockNotAcquired(RuntimeError):
    """Another process holds the lock."""


class DistributedLock:
    def __init__(self, client: aioredis.Redis, name: str, ttl_seconds: int = 30):
        self.redis = client
        self.key = KEY_PREFIX + name
        self.ttl = ttl_seconds
        self.token = uuid.uuid4().hex
        self.held = False

    async def acquire(self) -> bool:
        """Try once; True if this instance now owns the lock."""
        self.held = bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )
        return self.held

    async def extend(self) -> bool:
        """Push the expiry out by another TTL.  False if ownership was lost."""
        self.held = bool(
            await self.redis.eval(_EXTEND_SCRIPT, 1, self.key, self.token, self.ttl)
        )
        return self.held

    async def release(self) -> None:
        if not self.held:
            return
        await self.redis.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        self.held = False

    async def __aenter__(self) -> "DistributedLock":
        if not await self.acquire():
            raise LockNotAcquired(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.release()
