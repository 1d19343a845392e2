"""Wallet connection for regular users.

Each profile holds at most one ledger address, and an address belongs to
at most one profile.  The uniqueness check is a read-then-write, so two
users racing for the same address can both pass it; the ``profiles``
unique index on ``wallet_address`` is what finally enforces it, and the
loser of that race gets the same 409 as the up-front check.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime

from registry_api.core.errors import Conflict, InternalError, NotFound
from registry_api.repos.profile_repo import ProfileRepo, WalletAddressTaken
from registry_api.services.validation import WalletSaveRequest, address_fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class WalletInfo:
    wallet_address: str | None
    connected_at: datetime | None
    verified: bool

    @property
    def has_wallet(self) -> bool:
        return self.wallet_address is not None


def _address_taken(address: str) -> Conflict:
    logger.warning(
        "Wallet already connected elsewhere hash=%s",
        address_fingerprint(address),
        extra={"event": "wallet.conflict"},
    )
    return Conflict(
        "This wallet address is already connected to another account",
        error="Wallet address already in use",
    )


class WalletService:
    def __init__(self, profiles: ProfileRepo) -> None:
        self._profiles = profiles

    async def get_wallet(self, user_id: str) -> WalletInfo:
        try:
            profile = await self._profiles.get(user_id)
        except Exception as exc:
            logger.exception("Profile lookup failed user=%s", user_id)
            raise InternalError("Failed to fetch wallet information") from exc
        if profile is None:
            raise NotFound("Profile not found", error="Profile not found")
        return WalletInfo(
            wallet_address=profile.wallet_address,
            connected_at=profile.wallet_connected_at,
            verified=profile.wallet_verified,
        )

    async def connect_wallet(
        self, user_id: str, request: WalletSaveRequest
    ) -> WalletInfo:
        address = request.wallet_address
        try:
            holders = await self._profiles.find_by_wallet(address, exclude_id=user_id)
        except Exception as exc:
            logger.exception("Wallet uniqueness check failed user=%s", user_id)
            raise InternalError("Failed to validate wallet address") from exc
        if holders:
            raise _address_taken(address)

        try:
            profile = await self._profiles.set_wallet(
                user_id, address, connected_at=datetime.now(UTC)
            )
        except WalletAddressTaken as exc:
            raise _address_taken(address) from exc
        except Exception as exc:
            logger.exception("Wallet update failed user=%s", user_id)
            raise InternalError("Failed to save wallet address") from exc
        if profile is None:
            raise NotFound("Profile not found", error="Profile not found")

        source = request.metadata.source if request.metadata else None
        logger.info(
            "Wallet connected hash=%s source=%s",
            address_fingerprint(address),
            source,
            extra={"event": "wallet.connected"},
        )
        return WalletInfo(
            wallet_address=profile.wallet_address,
            connected_at=profile.wallet_connected_at,
            verified=profile.wallet_verified,
        )

    async def disconnect_wallet(self, user_id: str) -> None:
        try:
            cleared = await self._profiles.clear_wallet(user_id)
        except Exception as exc:
            logger.exception("Wallet removal failed user=%s", user_id)
            raise InternalError("Failed to remove wallet address") from exc
        if not cleared:
            raise NotFound("Profile not found", error="Profile not found")
        logger.info("Wallet disconnected", extra={"event": "wallet.disconnected"})
