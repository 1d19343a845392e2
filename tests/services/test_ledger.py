from __future__ import annotations

import asyncio
import json

import base58
import pytest
from solders.keypair import Keypair

from registry_api.services.ledger import InMemoryLedger, load_payer_keypair


def test_load_payer_from_json_array() -> None:
    keypair = Keypair()
    loaded = load_payer_keypair(json.dumps(list(bytes(keypair))))
    assert loaded.pubkey() == keypair.pubkey()


def test_load_payer_from_base58() -> None:
    keypair = Keypair()
    loaded = load_payer_keypair(f"  {base58.b58encode(bytes(keypair)).decode()}\n")
    assert loaded.pubkey() == keypair.pubkey()


@pytest.mark.parametrize(
    "secret, match",
    [
        ("[1, 2, 3", "not a valid byte array"),
        ("[300]", "not a valid byte array"),
        ("0OIl", "not valid base58"),
        (json.dumps([1] * 32), "must hold 64 bytes"),
    ],
)
def test_load_payer_rejects_garbage(secret: str, match: str) -> None:
    with pytest.raises(ValueError, match=match):
        load_payer_keypair(secret)


def test_in_memory_ledger_records_calls() -> None:
    ledger = InMemoryLedger()

    async def run():
        mint = await ledger.create_mint(2)
        account = await ledger.get_or_create_associated_account(mint, "owner")
        again = await ledger.get_or_create_associated_account(mint, "owner")
        await ledger.mint_to(mint, account, 300)
        return account, again

    account, again = asyncio.run(run())
    assert account == again
    assert ledger.minted == {account: 300}
    assert ledger.calls == [
        "create_mint",
        "get_or_create_associated_account",
        "get_or_create_associated_account",
        "mint_to",
    ]


def test_in_memory_ledger_fail_on() -> None:
    ledger = InMemoryLedger(fail_on={"create_mint"})
    with pytest.raises(RuntimeError, match="create_mint failed"):
        asyncio.run(ledger.create_mint(0))
