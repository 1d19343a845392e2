from __future__ import annotations

import asyncio
import logging
import uuid

import pytest

from registry_api.core.errors import InsufficientFunds, InvalidState, MintFailed
from registry_api.db.store import store
from registry_api.models.mint import (
    MINT_FAILED,
    MINT_SUCCEEDED,
    AdminLogEntry,
    MintRecord,
)
from registry_api.services.ledger import InMemoryLedger
from registry_api.services.mint_service import (
    KeyedLocks,
    MintOrchestrator,
    compute_amount_to_mint,
    persist_mint,
)
from registry_api.services.task_queue import MINT_RECONCILIATION, InMemoryTaskQueue
from registry_api.services.validation import MintRequest
from tests.conftest import add_project

RECIPIENT = "9xQeWvG816bUx9EPjHmaT23yvVM2ZWbrrpZb9PusVFin"


def _orchestrator(ledger: InMemoryLedger, queue: InMemoryTaskQueue | None = None):
    return MintOrchestrator(
        ledger,
        store,
        cluster="devnet",
        task_queue=queue or InMemoryTaskQueue(),
        locks=KeyedLocks(),
    )


def _request(project_id: uuid.UUID, amount: int = 10, decimals: int = 0):
    return MintRequest(
        project_id=project_id,
        recipient_wallet=RECIPIENT,
        amount=amount,
        decimals=decimals,
    )


# ---- amounts ----


@pytest.mark.parametrize(
    "amount, decimals, expected",
    [
        (1, 0, 1),
        (25, 2, 2_500),
        (1_000_000, 9, 10**15),
    ],
)
def test_compute_amount_to_mint(amount: int, decimals: int, expected: int) -> None:
    assert compute_amount_to_mint(amount, decimals) == expected


# ---- pipeline ----


def test_execute_mints_and_persists(ledger: InMemoryLedger) -> None:
    project = add_project("credits_calculated")
    outcome = asyncio.run(
        _orchestrator(ledger).execute(_request(project.id, 7, 3), "admin-1")
    )

    assert list(ledger.minted.values()) == [7_000]
    assert outcome.explorer_url.endswith(f"{outcome.transaction}?cluster=devnet")

    records = asyncio.run(store.tokens.list_for_project(project.id))
    assert [r.minted_tx for r in records] == [outcome.transaction]
    assert records[0].minted_by == "admin-1"

    [entry] = asyncio.run(store.admin_logs.list_for_target(str(project.id)))
    assert entry.action == MINT_SUCCEEDED
    assert entry.metadata["transaction"] == outcome.transaction


def test_rejection_keeps_processing_time_and_logs(ledger: InMemoryLedger) -> None:
    project = add_project("rejected")
    with pytest.raises(InvalidState) as info:
        asyncio.run(_orchestrator(ledger).execute(_request(project.id), "admin-1"))

    assert "processing_time" in info.value.extra
    [entry] = asyncio.run(store.admin_logs.list_for_target(str(project.id)))
    assert entry.action == MINT_FAILED
    assert entry.metadata["step"] == "eligibility"
    assert ledger.calls == []


def test_collaborator_error_becomes_mint_failed(ledger: InMemoryLedger) -> None:
    project = add_project("approved")
    ledger.fail_on.add("get_or_create_associated_account")

    with pytest.raises(MintFailed) as info:
        asyncio.run(_orchestrator(ledger).execute(_request(project.id), "admin-1"))

    assert isinstance(info.value.__cause__, RuntimeError)
    [entry] = asyncio.run(store.admin_logs.list_for_target(str(project.id)))
    assert entry.metadata["step"] == "recipient_provisioning"
    assert "mint_to" not in ledger.calls


def test_failure_log_write_error_does_not_mask_cause(
    ledger: InMemoryLedger, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def broken_append(entry):
        raise ConnectionError("admin_logs down")

    monkeypatch.setattr(store.admin_logs, "append", broken_append)
    ledger.balance = 0
    project = add_project("approved")

    with pytest.raises(InsufficientFunds):
        asyncio.run(_orchestrator(ledger).execute(_request(project.id), "admin-1"))


def test_concurrent_mints_for_one_project_issue_once(ledger: InMemoryLedger) -> None:
    project = add_project("approved")
    orchestrator = _orchestrator(ledger)

    async def run():
        return await asyncio.gather(
            orchestrator.execute(_request(project.id), "admin-1"),
            orchestrator.execute(_request(project.id), "admin-2"),
            return_exceptions=True,
        )

    results = asyncio.run(run())
    errors = [r for r in results if isinstance(r, Exception)]
    assert len(errors) == 1
    assert isinstance(errors[0], InvalidState)
    assert ledger.calls.count("mint_to") == 1


# ---- persistence ----


def test_persistence_failure_still_succeeds_and_enqueues(
    ledger: InMemoryLedger, monkeypatch: pytest.MonkeyPatch
) -> None:
    async def broken_add(record):
        raise ConnectionError("tokens table unavailable")

    monkeypatch.setattr(store.tokens, "add", broken_add)
    queue = InMemoryTaskQueue()
    project = add_project("approved")

    outcome = asyncio.run(
        _orchestrator(ledger, queue).execute(_request(project.id), "admin-1")
    )
    assert outcome.transaction

    task = asyncio.run(queue.dequeue(MINT_RECONCILIATION))
    assert task is not None
    assert task.payload["failed_steps"] == ["token_record"]
    assert task.payload["record"]["minted_tx"] == outcome.transaction
    assert task.payload["attempts"] == 0


def test_process_local_queue_logs_payload_at_error(
    ledger: InMemoryLedger,
    monkeypatch: pytest.MonkeyPatch,
    caplog: pytest.LogCaptureFixture,
) -> None:
    async def broken_add(record):
        raise ConnectionError("tokens table unavailable")

    monkeypatch.setattr(store.tokens, "add", broken_add)
    project = add_project("approved")

    with caplog.at_level(logging.WARNING, logger="registry_api.services.mint_service"):
        outcome = asyncio.run(_orchestrator(ledger).execute(_request(project.id), "a"))

    [record] = [
        r
        for r in caplog.records
        if getattr(r, "event", None) == "mint.reconciliation_unshared"
    ]
    assert record.levelno == logging.ERROR
    assert "no worker will replay it" in record.getMessage()
    assert outcome.transaction in record.getMessage()


def test_persist_mint_is_idempotent() -> None:
    project = add_project("approved")
    record = MintRecord(
        mint="Mint1111",
        project_id=project.id,
        recipient=RECIPIENT,
        amount=5,
        decimals=0,
        minted_tx="tx-1",
        minted_by="admin-1",
    )
    entry = AdminLogEntry.new(
        admin_id="admin-1",
        action=MINT_SUCCEEDED,
        target_id=str(project.id),
        details="Minted 5 tokens",
        metadata={},
    )

    assert asyncio.run(persist_mint(store, record, entry)) == []
    assert asyncio.run(persist_mint(store, record, entry)) == []
    assert len(asyncio.run(store.tokens.list_for_project(project.id))) == 1
    assert len(asyncio.run(store.admin_logs.list_for_target(str(project.id)))) == 1


# ---- locks ----


def test_keyed_locks_serialize_per_key_and_clean_up() -> None:
    locks = KeyedLocks()
    order: list[str] = []

    async def worker(key: str, name: str) -> None:
        async with locks.hold(key):
            order.append(f"{name}-in")
            await asyncio.sleep(0.01)
            order.append(f"{name}-out")

    async def run():
        await asyncio.gather(worker("p1", "a"), worker("p1", "b"), worker("p2", "c"))

    asyncio.run(run())
    assert order.index("a-out") < order.index("b-in")
    # p2 does not wait for p1.
    assert order.index("c-in") < order.index("a-out")
    assert len(locks) == 0
