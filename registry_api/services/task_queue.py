"""Background task queue on Redis lists.

The API process only ever produces work here: when bookkeeping for a
completed ledger mint fails inline, the whole persistence payload is
pushed onto ``mint_reconciliation`` and the request returns success.
``registry_api.worker`` consumes the queue and replays the writes.

  Producer (API):    LPUSH onto the list, returns immediately
  Consumer (worker): BRPOP from the list, handles, loops

LPUSH at the head and BRPOP from the tail gives FIFO order.  BRPOP
blocks inside Redis while the list is empty, so an idle worker costs
nothing.

Delivery is at-most-once: a worker that dies mid-task loses that task.
The replayed writes are idempotent, so re-enqueueing on failure (which
the worker does) never duplicates rows.
"""

from __future__ import annotations

import json
import uuid
from collections import deque
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from registry_api.core.metrics import QUEUE_DEPTH
from registry_api.db.redis import redis_pool

MINT_RECONCILIATION = "mint_reconciliation"


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    id:      unique identifier for tracking and logging.
    queue:   the queue it was pushed on.
    payload: JSON-serializable data the handler needs.
    """

    id: str
    queue: str
    payload: dict


@runtime_checkable
class TaskQueue(Protocol):
    # False when the queue lives in this process only and no worker can see it.
    shared: bool

    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """Process-local queue for tests and single-process development."""

    shared = False

    def __init__(self) -> None:
        self._queues: dict[str, deque[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        pending = self._queues.setdefault(queue, deque())
        pending.append(task)
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        pending = self._queues.get(queue)
        if not pending:
            return None
        task = pending.popleft()
        QUEUE_DEPTH.labels(queue_name=queue).set(len(pending))
        return task

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, ()))

    def clear(self) -> None:
        self._queues.clear()


class RedisTaskQueue:
    shared = True
    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        body = json.dumps({"id": task.id, "queue": task.queue, "payload": payload})
        depth = await self._redis.lpush(f"{self._PREFIX}{queue}", body)
        QUEUE_DEPTH.labels(queue_name=queue).set(depth)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, body = result
        return Task(**json.loads(body))

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(f"{self._PREFIX}{queue}")


if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()


def get_task_queue() -> TaskQueue:
    """FastAPI dependency returning the process-wide task queue."""
    return task_queue
