"""Audit storage for the mint pipeline: token records and admin log entries.

Both writes are idempotent so a failed bookkeeping step can be replayed
by the reconciliation worker without duplicating rows.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from registry_api.models.mint import AdminLogEntry, MintRecord


class TokenRepo(Protocol):
    async def add(self, record: MintRecord) -> bool:
        """Insert unless a record with the same ``minted_tx`` exists."""
        ...

    async def list_for_project(self, project_id: UUID) -> list[MintRecord]: ...


class AdminLogRepo(Protocol):
    async def append(self, entry: AdminLogEntry) -> bool:
        """Insert unless an entry with the same id exists."""
        ...

    async def list_for_target(self, target_id: str) -> list[AdminLogEntry]: ...


class InMemoryTokenRepo:
    def __init__(self) -> None:
        self._by_tx: dict[str, MintRecord] = {}

    async def add(self, record: MintRecord) -> bool:
        if record.minted_tx in self._by_tx:
            return False
        self._by_tx[record.minted_tx] = record
        return True

    async def list_for_project(self, project_id: UUID) -> list[MintRecord]:
        return [r for r in self._by_tx.values() if r.project_id == project_id]


class InMemoryAdminLogRepo:
    def __init__(self) -> None:
        self._entries: dict[UUID, AdminLogEntry] = {}

    async def append(self, entry: AdminLogEntry) -> bool:
        if entry.id in self._entries:
            return False
        self._entries[entry.id] = entry
        return True

    async def list_for_target(self, target_id: str) -> list[AdminLogEntry]:
        return sorted(
            (e for e in self._entries.values() if e.target_id == target_id),
            key=lambda e: e.created_at,
        )
