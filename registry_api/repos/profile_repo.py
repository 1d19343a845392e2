from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Protocol

from registry_api.models.profile import Profile


class WalletAddressTaken(Exception):
    """Another profile already holds the address (unique index violation)."""


class ProfileRepo(Protocol):
    async def get(self, user_id: str) -> Profile | None: ...
    async def find_by_wallet(
        self, wallet_address: str, *, exclude_id: str
    ) -> list[Profile]: ...
    async def set_wallet(
        self, user_id: str, wallet_address: str, *, connected_at: datetime
    ) -> Profile | None:
        """Raises WalletAddressTaken if another profile holds the address."""
        ...
    async def clear_wallet(self, user_id: str) -> bool: ...


class InMemoryProfileRepo:
    def __init__(self) -> None:
        self._by_id: dict[str, Profile] = {}

    def add(self, profile: Profile) -> None:
        self._by_id[profile.id] = profile

    async def get(self, user_id: str) -> Profile | None:
        return self._by_id.get(user_id)

    async def find_by_wallet(
        self, wallet_address: str, *, exclude_id: str
    ) -> list[Profile]:
        return [
            p
            for p in self._by_id.values()
            if p.wallet_address == wallet_address and p.id != exclude_id
        ]

    async def set_wallet(
        self, user_id: str, wallet_address: str, *, connected_at: datetime
    ) -> Profile | None:
        p = self._by_id.get(user_id)
        if p is None:
            return None
        if any(
            other.wallet_address == wallet_address and other.id != user_id
            for other in self._by_id.values()
        ):
            raise WalletAddressTaken(wallet_address)

        updated = replace(
            p,
            wallet_address=wallet_address,
            wallet_connected_at=connected_at,
            wallet_verified=True,
        )
        self._by_id[user_id] = updated
        return updated

    async def clear_wallet(self, user_id: str) -> bool:
        p = self._by_id.get(user_id)
        if p is None:
            return False

        self._by_id[user_id] = replace(
            p, wallet_address=None, wallet_connected_at=None, wallet_verified=False
        )
        return True
