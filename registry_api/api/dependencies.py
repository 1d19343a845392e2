from __future__ import annotations

import logging
import time
from typing import Annotated

from fastapi import Depends, Request

from registry_api.core.config import SETTINGS
from registry_api.core.errors import (
    Forbidden,
    InternalError,
    TokenExpired,
    Unauthorized,
    ValidationFailed,
)
from registry_api.core.metrics import AUTH_OUTCOMES
from registry_api.db.store import Store, get_store
from registry_api.middleware.request_context import client_ip, user_id_var
from registry_api.models.identity import Identity
from registry_api.models.profile import Profile
from registry_api.services.identity_service import (
    IdentityLookupError,
    IdentityProvider,
    IdentityServiceError,
    get_identity_provider,
)
from registry_api.services.ledger import Ledger, get_ledger
from registry_api.services.mint_service import MintOrchestrator
from registry_api.services.task_queue import TaskQueue, get_task_queue
from registry_api.services.wallet_service import WalletService

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 10


def _auth_event(
    request: Request,
    outcome: str,
    event: str,
    message: str,
    *args,
    level: int = logging.WARNING,
) -> None:
    AUTH_OUTCOMES.labels(outcome=outcome).inc()
    logger.log(
        level,
        message,
        *args,
        extra={
            "event": event,
            "client_ip": client_ip(request),
            "path": request.url.path,
        },
    )


async def require_user(
    request: Request,
    provider: Annotated[IdentityProvider, Depends(get_identity_provider)],
) -> Identity:
    """Resolve the bearer token to a verified, non-banned Identity.

    Malformed headers are rejected locally; only a plausible token is sent
    to the auth collaborator.
    """
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        _auth_event(request, "unauthorized", "auth.missing_token", "No bearer token")
        raise Unauthorized("Please provide a valid bearer token")

    token = auth_header[7:].strip()
    if len(token) < MIN_TOKEN_LENGTH:
        _auth_event(
            request, "unauthorized", "auth.malformed_token", "Bearer token too short"
        )
        raise Unauthorized("Token format is invalid", error="Invalid token")

    started = time.monotonic()
    try:
        identity = await provider.get_user(token)
    except IdentityLookupError as exc:
        if "expired" in exc.message.lower() or exc.code == "invalid_token":
            _auth_event(request, "expired", "auth.token_expired", "Token expired")
            raise TokenExpired("Please log in again") from exc
        _auth_event(
            request,
            "forbidden",
            "auth.token_rejected",
            "Token rejected: %s",
            exc.message,
        )
        raise Forbidden(
            "Invalid or malformed token", error="Authentication failed"
        ) from exc
    except IdentityServiceError as exc:
        _auth_event(
            request,
            "error",
            "auth.provider_error",
            "Auth collaborator failed: %s",
            exc,
            level=logging.ERROR,
        )
        raise InternalError("Authentication system error") from exc
    auth_ms = round((time.monotonic() - started) * 1000, 1)

    if identity is None or not identity.id:
        _auth_event(request, "forbidden", "auth.no_user", "Token names no user")
        raise Forbidden(
            "Token does not contain valid user information", error="Invalid token"
        )

    if identity.is_banned():
        _auth_event(
            request,
            "banned",
            "auth.banned",
            "Suspended account user=%s until=%s",
            identity.id,
            identity.banned_until,
        )
        raise Forbidden(
            "Your account has been temporarily suspended", error="Account suspended"
        )

    request.state.identity = identity
    request.state.auth_ms = auth_ms
    user_id_var.set(identity.id)
    AUTH_OUTCOMES.labels(outcome="success").inc()
    logger.info(
        "Authenticated user=%s in %.1fms",
        identity.id,
        auth_ms,
        extra={"event": "auth.success", "auth_ms": auth_ms},
    )
    return identity


async def require_admin(
    request: Request,
    identity: Annotated[Identity, Depends(require_user)],
    store: Annotated[Store, Depends(get_store)],
) -> Profile:
    """Demand the ``admin`` role on the caller's stored profile."""
    try:
        profile = await store.profiles.get(identity.id)
    except Exception as exc:
        logger.exception(
            "Role lookup failed user=%s",
            identity.id,
            extra={"event": "auth.role_error"},
        )
        raise InternalError("Failed to verify user role") from exc

    if profile is None or not profile.is_admin:
        logger.warning(
            "Admin access denied user=%s role=%s",
            identity.id,
            profile.role if profile else None,
            extra={"event": "auth.not_admin"},
        )
        raise Forbidden("Admin access required")

    request.state.profile = profile
    return profile


async def read_json_body(request: Request):
    """The request body as parsed JSON; a body that is not JSON is a 400."""
    try:
        return await request.json()
    except ValueError:
        raise ValidationFailed({"body": ["Request body must be valid JSON"]}) from None


def get_orchestrator(
    ledger: Annotated[Ledger, Depends(get_ledger)],
    store: Annotated[Store, Depends(get_store)],
    task_queue: Annotated[TaskQueue, Depends(get_task_queue)],
) -> MintOrchestrator:
    return MintOrchestrator(
        ledger, store, cluster=SETTINGS.solana_cluster, task_queue=task_queue
    )


def get_wallet_service(store: Annotated[Store, Depends(get_store)]) -> WalletService:
    return WalletService(store.profiles)
