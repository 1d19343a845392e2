"""Background worker process.

RUN:  python -m registry_api.worker

Same image as the API, different command:
  api:    registry-api              (uvicorn registry_api.main:app)
  worker: python -m registry_api.worker

The worker polls every registered queue round-robin, hands each task to
its handler and logs the result.  Today there is one queue:

  mint_reconciliation
    Bookkeeping for a mint whose ledger transaction succeeded but whose
    token record, project update or admin log write failed inline.  The
    payload is replayed in full; every write is idempotent, so steps
    that already landed are no-ops.  A task that still fails is pushed
    back with ``attempts + 1`` until MAX_RECONCILE_ATTEMPTS, then logged
    at ERROR with the full payload for manual repair.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any

from registry_api.core.config import SETTINGS
from registry_api.core.logging import setup_logging
from registry_api.db.store import store
from registry_api.models.mint import AdminLogEntry, MintRecord
from registry_api.services.mint_service import persist_mint
from registry_api.services.task_queue import MINT_RECONCILIATION, task_queue

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("registry_api.worker")

MAX_RECONCILE_ATTEMPTS = 5

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(MINT_RECONCILIATION)
async def handle_mint_reconciliation(payload: dict) -> None:
    record = MintRecord.from_payload(payload["record"])
    entry = AdminLogEntry.from_payload(payload["log_entry"])
    attempts = int(payload.get("attempts", 0)) + 1

    failed = await persist_mint(store, record, entry)
    if not failed:
        logger.info(
            "Mint bookkeeping reconciled tx=%s after %d attempt(s)",
            record.minted_tx,
            attempts,
            extra={"event": "mint.reconciled", "transaction": record.minted_tx},
        )
        return

    if attempts >= MAX_RECONCILE_ATTEMPTS:
        logger.error(
            "Giving up on mint reconciliation tx=%s steps=%s payload=%s",
            record.minted_tx,
            failed,
            payload,
            extra={"event": "mint.reconciliation_abandoned"},
        )
        return

    await task_queue.enqueue(
        MINT_RECONCILIATION,
        {**payload, "failed_steps": failed, "attempts": attempts},
    )
    logger.warning(
        "Mint reconciliation incomplete tx=%s steps=%s, requeued (attempt %d)",
        record.minted_tx,
        failed,
        attempts,
    )


async def run_once(queue_name: str, timeout: int = 1) -> bool:
    """Process at most one task from ``queue_name``; True if one was handled."""
    task = await task_queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False

    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        # The API has already answered; there is nobody to propagate to.
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    return True


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS)
    logger.info("Worker started, listening on queues: %s", queues)
    while True:
        for queue_name in queues:
            await run_once(queue_name)
        # The in-memory queue never blocks; avoid spinning when idle.
        await asyncio.sleep(0.1)


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
