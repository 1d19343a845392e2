"""POST /mint: issue carbon-credit tokens for an approved project.

Dependency order is the security order:

  1. general tier    (router)
  2. mint tier       (route)
  3. body validation (validated_mint_request)
  4. identity        (require_admin → require_user)
  5. admin role      (require_admin)

so a throttled or malformed request never reaches the auth collaborator,
and nothing touches the ledger until all five pass.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends

from registry_api.api.dependencies import (
    get_orchestrator,
    read_json_body,
    require_admin,
)
from registry_api.api.ratelimit import require_rate_limit
from registry_api.models.profile import Profile
from registry_api.services.mint_service import MintOrchestrator
from registry_api.services.rate_limiter import GENERAL, MINT
from registry_api.services.validation import MintRequest, validate_mint_request

router = APIRouter(tags=["mint"], dependencies=[Depends(require_rate_limit(GENERAL))])


async def validated_mint_request(
    payload: Annotated[Any, Depends(read_json_body)],
) -> MintRequest:
    return validate_mint_request(payload)


@router.post("/mint", dependencies=[Depends(require_rate_limit(MINT))])
async def mint(
    mint_request: Annotated[MintRequest, Depends(validated_mint_request)],
    admin: Annotated[Profile, Depends(require_admin)],
    orchestrator: Annotated[MintOrchestrator, Depends(get_orchestrator)],
) -> dict:
    outcome = await orchestrator.execute(mint_request, admin.id)
    return {"success": True, **asdict(outcome)}
