"""Exclusive, expiring leases keyed by fingerprint.

Two concurrent Issue calls for the same (subject, course) both pass the
registry's "is it Enrolled?" read before either writes.  The lease is
the fast gate in front of that race: whoever sets the key first holds
it, every other caller gets None and fails with AlreadyInProgress.

The durable guard is the registry's ENROLLED -> ISSUING compare-and-set;
the lease keeps losers from even reaching it.  Leases expire so a
crashed holder cannot block a fingerprint forever, which is why the TTL
must exceed the ledger's confirmation timeout.
"""

from __future__ import annotations

import time
from typing import Protocol, runtime_checkable
from uuid import uuid4


@runtime_checkable
class LeaseManager(Protocol):
    async def acquire(self, key: str, ttl_seconds: float) -> str | None:
        """Take the lease.  Returns a holder token, or None if it is held."""
        ...

    async def release(self, key: str, token: str) -> None:
        """Drop the lease if ``token`` still holds it."""
        ...


class InMemoryLeaseManager:
    """Single-process leases.

    acquire/release contain no await, so they run atomically with
    respect to other coroutines on the event loop.
    """

    def __init__(self) -> None:
        # key -> (token, expires_at monotonic)
        self._leases: dict[str, tuple[str, float]] = {}

    async def acquire(self, key: str, ttl_seconds: float) -> str | None:
        now = time.monotonic()
        current = self._leases.get(key)
        if current is not None and current[1] > now:
            return None
        token = uuid4().hex
        self._leases[key] = (token, now + ttl_seconds)
        return token

    async def release(self, key: str, token: str) -> None:
        current = self._leases.get(key)
        if current is not None and current[0] == token:
            del self._leases[key]


class RedisLeaseManager:
    """Redis leases shared by every API and worker process.

    SET NX PX takes the lease and sets its expiry in one atomic command.
    Release must only delete OUR lease: if we overran the TTL and someone
    else took it, a blind DEL would free theirs.  The compare-and-delete
    runs as a Lua script so nothing can slip in between the GET and DEL.
    """

    _PREFIX = "lease:"

    _RELEASE_SCRIPT = """
    if redis.call('GET', KEYS[1]) == ARGV[1] then
        return redis.call('DEL', KEYS[1])
    end
    return 0
    """

    def __init__(self, redis_client) -> None:
        self._redis = redis_client
        self._script = None

    async def acquire(self, key: str, ttl_seconds: float) -> str | None:
        token = uuid4().hex
        ok = await self._redis.set(
            f"{self._PREFIX}{key}", token, nx=True, px=int(ttl_seconds * 1000)
        )
        return token if ok else None

    async def release(self, key: str, token: str) -> None:
        if self._script is None:
            self._script = self._redis.register_script(self._RELEASE_SCRIPT)
        await self._script(keys=[f"{self._PREFIX}{key}"], args=[token])
