"""Lease manager and task queue (in-memory implementations)."""

from __future__ import annotations

import asyncio

from prometheus_client import REGISTRY

from certchain.services.lease import InMemoryLeaseManager
from certchain.services.task_queue import InMemoryTaskQueue, TaskQueue


def test_lease_is_exclusive_until_released() -> None:
    async def scenario():
        leases = InMemoryLeaseManager()
        first = await leases.acquire("fp", 60)
        second = await leases.acquire("fp", 60)
        await leases.release("fp", first)
        third = await leases.acquire("fp", 60)
        return first, second, third

    first, second, third = asyncio.run(scenario())
    assert first is not None
    assert second is None
    assert third is not None and third != first


def test_lease_release_with_stale_token_is_ignored() -> None:
    async def scenario():
        leases = InMemoryLeaseManager()
        token = await leases.acquire("fp", 60)
        await leases.release("fp", "not-the-token")
        return token, await leases.acquire("fp", 60)

    token, again = asyncio.run(scenario())
    assert token is not None
    assert again is None


def test_expired_lease_can_be_taken() -> None:
    async def scenario():
        leases = InMemoryLeaseManager()
        await leases.acquire("fp", 0.01)
        await asyncio.sleep(0.02)
        return await leases.acquire("fp", 60)

    assert asyncio.run(scenario()) is not None


def test_leases_are_per_key() -> None:
    async def scenario():
        leases = InMemoryLeaseManager()
        return await leases.acquire("a", 60), await leases.acquire("b", 60)

    a, b = asyncio.run(scenario())
    assert a is not None and b is not None


def test_task_queue_is_fifo_and_tracks_depth() -> None:
    queue = InMemoryTaskQueue()
    assert isinstance(queue, TaskQueue)

    async def scenario():
        await queue.enqueue("q", {"n": 1})
        await queue.enqueue("q", {"n": 2})
        depth = REGISTRY.get_sample_value("task_queue_depth", {"queue_name": "q"})
        first = await queue.dequeue("q")
        second = await queue.dequeue("q")
        empty = await queue.dequeue("q")
        return depth, first, second, empty

    depth, first, second, empty = asyncio.run(scenario())
    assert depth == 2
    assert first.payload == {"n": 1}
    assert second.payload == {"n": 2}
    assert empty is None
    assert REGISTRY.get_sample_value("task_queue_depth", {"queue_name": "q"}) == 0
