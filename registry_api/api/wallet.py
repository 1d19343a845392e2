from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from registry_api.api.dependencies import get_wallet_service, require_user
from registry_api.api.ratelimit import require_rate_limit
from registry_api.models.identity import Identity
from registry_api.services.rate_limiter import GENERAL, SENSITIVE
from registry_api.services.validation import WalletSaveRequest, validate_wallet_request
from registry_api.services.wallet_service import WalletInfo, WalletService

router = APIRouter(
    prefix="/wallet",
    tags=["wallet"],
    dependencies=[Depends(require_rate_limit(GENERAL))],
)


async def validated_wallet_request(request: Request) -> WalletSaveRequest:
    """Body and Content-Type checks for POST /wallet, reported together."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    return validate_wallet_request(
        payload, content_type=request.headers.get("content-type")
    )


def _iso(info: WalletInfo) -> str | None:
    return info.connected_at.isoformat() if info.connected_at else None


@router.get("")
async def get_wallet(
    identity: Annotated[Identity, Depends(require_user)],
    service: Annotated[WalletService, Depends(get_wallet_service)],
) -> dict:
    info = await service.get_wallet(identity.id)
    return {
        "walletAddress": info.wallet_address,
        "connectedAt": _iso(info),
        "verified": info.verified,
        "hasWallet": info.has_wallet,
    }


@router.post("", dependencies=[Depends(require_rate_limit(SENSITIVE))])
async def connect_wallet(
    wallet_request: Annotated[WalletSaveRequest, Depends(validated_wallet_request)],
    identity: Annotated[Identity, Depends(require_user)],
    service: Annotated[WalletService, Depends(get_wallet_service)],
) -> dict:
    info = await service.connect_wallet(identity.id, wallet_request)
    return {
        "success": True,
        "walletAddress": info.wallet_address,
        "connectedAt": _iso(info),
        "verified": info.verified,
        "message": "Wallet connected successfully",
    }


@router.delete("", dependencies=[Depends(require_rate_limit(SENSITIVE))])
async def disconnect_wallet(
    identity: Annotated[Identity, Depends(require_user)],
    service: Annotated[WalletService, Depends(get_wallet_service)],
) -> dict:
    await service.disconnect_wallet(identity.id)
    return {"success": True, "message": "Wallet disconnected successfully"}
