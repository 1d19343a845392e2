"""The mint pipeline: from a validated request to issued carbon-credit tokens.

STEPS
------
Strictly sequential; a failure aborts everything after it.

  1. eligibility             project exists and is approved / credits_calculated
  2. funding                 payer holds at least 0.01 SOL
  3. mint_creation           new SPL mint, payer as mint authority
  4. recipient_provisioning  get or create the recipient's token account
  5. issuance                mint amount * 10**decimals base units
  6. persistence             token record, project update, success log

Steps 1-5 either all happen or the caller gets an error plus one
``mint_tokens_failed`` admin log entry.  Step 6 runs after tokens exist
on chain, so it can no longer fail the request: each write is attempted
independently, failures are logged and counted, and the whole payload
is handed to the reconciliation queue.  The writes are idempotent
(keyed by transaction signature and log entry id) so replaying them is
always safe.

ONE MINT PER PROJECT
---------------------
A per-project lock spans eligibility through persistence.  A second
request for the same project waits, then re-reads the project, sees
``credits_minted`` and fails eligibility.  The lock is per process;
multi-instance deployments rely on the status check alone.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from registry_api.core.errors import (
    ApiError,
    InsufficientFunds,
    InvalidState,
    MintFailed,
    NotFound,
)
from registry_api.core.metrics import (
    MINT_DURATION,
    MINT_OPERATIONS,
    PERSISTENCE_FAILURES,
)
from registry_api.db.store import Store
from registry_api.models.mint import (
    MINT_FAILED,
    MINT_SUCCEEDED,
    AdminLogEntry,
    MintOutcome,
    MintRecord,
)
from registry_api.services.ledger import MIN_FEE_RESERVE_LAMPORTS, Ledger
from registry_api.services.task_queue import MINT_RECONCILIATION, TaskQueue
from registry_api.services.validation import MintRequest, address_fingerprint

logger = logging.getLogger(__name__)

EXPLORER_TX_URL = "https://explorer.solana.com/tx/{signature}?cluster={cluster}"


def compute_amount_to_mint(amount: int, decimals: int) -> int:
    """Whole credits → base units, in exact integer arithmetic."""
    multiplier = 1 if decimals == 0 else 10**decimals
    return amount * multiplier


class KeyedLocks:
    """One ``asyncio.Lock`` per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


# Shared by every orchestrator in the process.
project_locks = KeyedLocks()


# ---------------------------------------------------------------------------
# Persistence (step 6), shared with the reconciliation worker
# ---------------------------------------------------------------------------


async def persist_mint(
    store: Store, record: MintRecord, entry: AdminLogEntry
) -> list[str]:
    """Write the three bookkeeping rows; return the names of failed steps.

    Never raises: every failure is logged and counted instead, because the
    tokens already exist on chain and the request must still succeed.
    """
    failed: list[str] = []

    async def attempt(step: str, write) -> None:
        try:
            await write()
        except Exception:
            failed.append(step)
            PERSISTENCE_FAILURES.labels(step=step).inc()
            logger.exception(
                "Mint bookkeeping write failed step=%s tx=%s",
                step,
                record.minted_tx,
                extra={
                    "event": "mint.persistence_failed",
                    "step": step,
                    "project_id": str(record.project_id),
                    "transaction": record.minted_tx,
                },
            )

    async def insert_record() -> None:
        if not await store.tokens.add(record):
            logger.info("Token record already present tx=%s", record.minted_tx)

    async def update_project() -> None:
        updated = await store.projects.mark_minted(
            record.project_id,
            mint_address=record.mint,
            credits_issued=record.amount,
        )
        if not updated:
            logger.warning(
                "Project %s disappeared before its mint was recorded",
                record.project_id,
            )

    async def append_log() -> None:
        await store.admin_logs.append(entry)

    await attempt("token_record", insert_record)
    await attempt("project_update", update_project)
    await attempt("admin_log", append_log)
    return failed


def reconciliation_payload(
    record: MintRecord, entry: AdminLogEntry, failed_steps: list[str]
) -> dict[str, Any]:
    return {
        "record": record.to_payload(),
        "log_entry": entry.to_payload(),
        "failed_steps": failed_steps,
        "attempts": 0,
    }


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------


class MintOrchestrator:
    def __init__(
        self,
        ledger: Ledger,
        store: Store,
        *,
        cluster: str,
        task_queue: TaskQueue,
        locks: KeyedLocks | None = None,
    ) -> None:
        self._ledger = ledger
        self._store = store
        self._cluster = cluster
        self._task_queue = task_queue
        self._locks = locks if locks is not None else project_locks

    async def execute(self, request: MintRequest, admin_id: str) -> MintOutcome:
        """Run the pipeline for one validated request on behalf of ``admin_id``.

        Raises the failing step's ``ApiError`` (NotFound, InvalidState,
        InsufficientFunds) or ``MintFailed`` for collaborator exceptions;
        either way with ``processing_time`` attached.
        """
        start = time.monotonic()
        project_id = str(request.project_id)
        logger.info(
            "Mint requested project=%s amount=%d decimals=%d recipient=%s",
            project_id,
            request.amount,
            request.decimals,
            address_fingerprint(request.recipient_wallet),
            extra={"event": "mint.requested", "project_id": project_id},
        )

        async with self._locks.hold(project_id):
            step = "eligibility"
            try:
                project = await self._store.projects.get(request.project_id)
                if project is None:
                    raise NotFound("Project not found", error="Project not found")
                if not project.is_mint_eligible:
                    raise InvalidState(
                        "Project must be approved or have credits calculated "
                        f"before minting. Current status: {project.status}",
                        error="Invalid project status",
                    )

                step = "funding"
                balance = await self._ledger.get_balance(self._ledger.payer_address)
                if balance < MIN_FEE_RESERVE_LAMPORTS:
                    raise InsufficientFunds(
                        "Insufficient SOL balance for transaction fees"
                    )

                step = "mint_creation"
                mint = await self._ledger.create_mint(request.decimals)

                step = "recipient_provisioning"
                account = await self._ledger.get_or_create_associated_account(
                    mint, request.recipient_wallet
                )

                step = "issuance"
                amount_to_mint = compute_amount_to_mint(
                    request.amount, request.decimals
                )
                signature = await self._ledger.mint_to(mint, account, amount_to_mint)
            except Exception as exc:
                error = await self._fail(request, admin_id, step, exc, start)
                if error is exc:
                    raise
                raise error from exc

            await self._persist(request, admin_id, mint, signature)

        elapsed = _elapsed_ms(start)
        MINT_OPERATIONS.labels(result="success").inc()
        MINT_DURATION.observe(elapsed / 1000)
        logger.info(
            "Mint completed project=%s mint=%s in %dms",
            project_id,
            mint,
            elapsed,
            extra={
                "event": "mint.completed",
                "project_id": project_id,
                "mint": mint,
                "transaction": signature,
                "duration_ms": elapsed,
            },
        )
        return MintOutcome(
            mint=mint,
            transaction=signature,
            amount=request.amount,
            decimals=request.decimals,
            recipient=request.recipient_wallet,
            explorer_url=EXPLORER_TX_URL.format(
                signature=signature, cluster=self._cluster
            ),
            processing_time=elapsed,
        )

    async def _persist(
        self, request: MintRequest, admin_id: str, mint: str, signature: str
    ) -> None:
        record = MintRecord(
            mint=mint,
            project_id=request.project_id,
            recipient=request.recipient_wallet,
            amount=request.amount,
            decimals=request.decimals,
            minted_tx=signature,
            minted_by=admin_id,
        )
        entry = AdminLogEntry.new(
            admin_id=admin_id,
            action=MINT_SUCCEEDED,
            target_id=str(request.project_id),
            details=f"Minted {request.amount} tokens to {request.recipient_wallet}",
            metadata={
                "mint": mint,
                "amount": request.amount,
                "decimals": request.decimals,
                "transaction": signature,
            },
        )

        failed = await persist_mint(self._store, record, entry)
        if not failed:
            return

        payload = reconciliation_payload(record, entry, failed)
        try:
            task = await self._task_queue.enqueue(MINT_RECONCILIATION, payload)
        except Exception:
            # Last resort: the payload itself goes to the log for manual replay.
            logger.exception(
                "Could not enqueue mint reconciliation payload=%s",
                payload,
                extra={"event": "mint.reconciliation_enqueue_failed"},
            )
            return
        if not self._task_queue.shared:
            # The worker runs in another process and cannot see this queue.
            logger.error(
                "Mint bookkeeping incomplete and no worker will replay it "
                "(task queue is process-local) task=%s steps=%s payload=%s",
                task.id,
                failed,
                payload,
                extra={
                    "event": "mint.reconciliation_unshared",
                    "transaction": signature,
                },
            )
            return
        logger.warning(
            "Mint bookkeeping incomplete, queued for reconciliation task=%s steps=%s",
            task.id,
            failed,
            extra={"event": "mint.reconciliation_queued", "transaction": signature},
        )

    async def _fail(
        self,
        request: MintRequest,
        admin_id: str,
        step: str,
        exc: Exception,
        start: float,
    ) -> ApiError:
        """Record a failed attempt and build the error the caller sees."""
        elapsed = _elapsed_ms(start)
        message = exc.message if isinstance(exc, ApiError) else str(exc)
        entry = AdminLogEntry.new(
            admin_id=admin_id,
            action=MINT_FAILED,
            target_id=str(request.project_id),
            details=message,
            metadata={"error": message, "duration": elapsed, "step": step},
        )
        try:
            await self._store.admin_logs.append(entry)
        except Exception:
            logger.exception(
                "Failed to record mint failure project=%s",
                request.project_id,
                extra={"event": "mint.failure_log_failed", "step": step},
            )

        rejected = isinstance(exc, ApiError)
        MINT_OPERATIONS.labels(result="rejected" if rejected else "failed").inc()
        MINT_DURATION.observe(elapsed / 1000)
        log = logger.warning if rejected else logger.error
        log(
            "Mint aborted at step=%s: %s",
            step,
            message,
            exc_info=None if rejected else exc,
            extra={
                "event": "mint.failed",
                "step": step,
                "project_id": str(request.project_id),
                "duration_ms": elapsed,
                "reason": message,
            },
        )

        if rejected:
            exc.extra["processing_time"] = elapsed
            return exc
        return MintFailed(message, extra={"processing_time": elapsed})


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)
