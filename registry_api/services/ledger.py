"""The ledger collaborator: Solana RPC plus the SPL token program.

The mint pipeline needs exactly four things from the chain, and this
module exposes exactly those four behind the ``Ledger`` protocol:

  get_balance(address)                        lamports held by an account
  create_mint(decimals)                       new mint, payer is authority
  get_or_create_associated_account(mint, o)   recipient's token account
  mint_to(mint, account, amount)              issue base units, returns sig

Addresses and signatures cross the protocol as base58 strings so the
orchestrator never touches solders types.  ``SolanaLedger`` signs
everything with the service's payer keypair; ``InMemoryLedger`` is the
test double and records every call it receives.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Protocol

import base58
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.types import TxOpts
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature
from spl.token.async_client import AsyncToken
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from registry_api.core.config import SETTINGS

logger = logging.getLogger(__name__)

LAMPORTS_PER_SOL = 1_000_000_000
# 0.01 SOL: enough for a mint account, an associated account and fees.
MIN_FEE_RESERVE_LAMPORTS = LAMPORTS_PER_SOL // 100


class Ledger(Protocol):
    @property
    def payer_address(self) -> str: ...
    async def get_balance(self, address: str) -> int: ...
    async def create_mint(self, decimals: int) -> str: ...
    async def get_or_create_associated_account(self, mint: str, owner: str) -> str: ...
    async def mint_to(self, mint: str, account: str, amount: int) -> str: ...


def load_payer_keypair(secret: str) -> Keypair:
    """Parse the payer secret: a JSON byte array or a base58 string.

    Raises ValueError on anything else, which aborts startup.
    """
    secret = secret.strip()
    if secret.startswith("["):
        try:
            raw = bytes(json.loads(secret))
        except (json.JSONDecodeError, TypeError, ValueError) as exc:
            raise ValueError("SOLANA_PAYER_SECRET is not a valid byte array") from exc
    else:
        try:
            raw = base58.b58decode(secret)
        except ValueError as exc:
            raise ValueError("SOLANA_PAYER_SECRET is not valid base58") from exc

    if len(raw) != 64:
        raise ValueError(f"SOLANA_PAYER_SECRET must hold 64 bytes (got {len(raw)})")
    return Keypair.from_bytes(raw)


class SolanaLedger:
    def __init__(self, client: AsyncClient, payer: Keypair) -> None:
        self._client = client
        self._payer = payer

    @property
    def payer_address(self) -> str:
        return str(self._payer.pubkey())

    def _token(self, mint: str) -> AsyncToken:
        return AsyncToken(
            self._client, Pubkey.from_string(mint), TOKEN_PROGRAM_ID, self._payer
        )

    async def get_balance(self, address: str) -> int:
        resp = await self._client.get_balance(Pubkey.from_string(address))
        return resp.value

    async def create_mint(self, decimals: int) -> str:
        token = await AsyncToken.create_mint(
            self._client,
            self._payer,
            self._payer.pubkey(),
            decimals,
            TOKEN_PROGRAM_ID,
        )
        logger.debug("Mint account created mint=%s decimals=%d", token.pubkey, decimals)
        return str(token.pubkey)

    async def get_or_create_associated_account(self, mint: str, owner: str) -> str:
        owner_key = Pubkey.from_string(owner)
        mint_key = Pubkey.from_string(mint)
        ata = get_associated_token_address(owner_key, mint_key)

        info = await self._client.get_account_info(ata)
        if info.value is not None:
            return str(ata)

        created = await self._token(mint).create_associated_token_account(owner_key)
        logger.debug("Associated account created owner=%s ata=%s", owner, created)
        return str(created)

    async def mint_to(self, mint: str, account: str, amount: int) -> str:
        resp = await self._token(mint).mint_to(
            Pubkey.from_string(account),
            self._payer,
            amount,
            opts=TxOpts(skip_confirmation=False, preflight_commitment=Confirmed),
        )
        return str(resp.value)

    async def aclose(self) -> None:
        await self._client.close()


@dataclass
class InMemoryLedger:
    """Deterministic ledger double.

    ``balance`` is what the payer holds; add an operation name to
    ``fail_on`` to make that call raise.  ``calls`` lists every operation
    in order and ``minted`` maps token accounts to issued base units.
    """

    balance: int = LAMPORTS_PER_SOL
    fail_on: set[str] = field(default_factory=set)
    calls: list[str] = field(default_factory=list)
    minted: dict[str, int] = field(default_factory=dict)
    accounts: dict[tuple[str, str], str] = field(default_factory=dict)
    _payer: str = field(default_factory=lambda: str(Pubkey.new_unique()))

    @property
    def payer_address(self) -> str:
        return self._payer

    def _enter(self, op: str) -> None:
        self.calls.append(op)
        if op in self.fail_on:
            raise RuntimeError(f"{op} failed: simulated RPC error")

    async def get_balance(self, address: str) -> int:
        self._enter("get_balance")
        return self.balance

    async def create_mint(self, decimals: int) -> str:
        self._enter("create_mint")
        return str(Pubkey.new_unique())

    async def get_or_create_associated_account(self, mint: str, owner: str) -> str:
        self._enter("get_or_create_associated_account")
        return self.accounts.setdefault((mint, owner), str(Pubkey.new_unique()))

    async def mint_to(self, mint: str, account: str, amount: int) -> str:
        self._enter("mint_to")
        self.minted[account] = self.minted.get(account, 0) + amount
        return str(Signature.new_unique())


def build_ledger() -> SolanaLedger:
    payer = load_payer_keypair(SETTINGS.solana_payer_secret)
    client = AsyncClient(SETTINGS.solana_rpc_url, commitment=Confirmed)
    logger.info(
        "Ledger configured cluster=%s payer=%s",
        SETTINGS.solana_cluster,
        payer.pubkey(),
    )
    return SolanaLedger(client, payer)


ledger: Ledger = build_ledger()


def get_ledger() -> Ledger:
    """FastAPI dependency returning the process-wide ledger."""
    return ledger
