from __future__ import annotations

import asyncio

from prometheus_client import REGISTRY

from registry_api.services.task_queue import MINT_RECONCILIATION, InMemoryTaskQueue


def test_fifo_order_and_length() -> None:
    queue = InMemoryTaskQueue()

    async def run():
        for n in range(3):
            await queue.enqueue(MINT_RECONCILIATION, {"n": n})
        length = await queue.queue_length(MINT_RECONCILIATION)
        first = await queue.dequeue(MINT_RECONCILIATION)
        return length, first

    length, first = asyncio.run(run())
    assert length == 3
    assert first is not None
    assert first.payload == {"n": 0}
    assert first.queue == MINT_RECONCILIATION


def test_empty_queue_returns_none() -> None:
    assert asyncio.run(InMemoryTaskQueue().dequeue("nothing-here")) is None


def test_depth_gauge_tracks_queue() -> None:
    queue = InMemoryTaskQueue()

    async def run():
        await queue.enqueue("depth-test", {})
        await queue.enqueue("depth-test", {})
        await queue.dequeue("depth-test")

    asyncio.run(run())
    depth = REGISTRY.get_sample_value(
        "task_queue_depth", labels={"queue_name": "depth-test"}
    )
    assert depth == 1
