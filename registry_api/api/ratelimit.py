"""Rate limiting dependency for FastAPI routes.

A dependency rather than middleware, so each route declares exactly the
tiers it needs and /health, /ready and /metrics declare none:

  router-wide (wallet, mint)   general
  POST/DELETE /wallet          + sensitive
  POST /mint                   + mint

Route-level dependencies run before the endpoint's own parameters are
resolved, so an over-limit caller is turned away before validation,
authentication or any collaborator call.

KEYS
-----
``{tier}:{client ip}:{identity}``.  The identity is the ``sub`` claim of
the bearer JWT, read WITHOUT verifying the signature: it only picks a
bucket.  A forged ``sub`` just gets its own bucket (still capped per
IP+sub), and the real check happens in ``require_user``.  Requests
without a readable token share the ``anonymous`` bucket of their IP.
"""

from __future__ import annotations

import logging

import jwt as pyjwt
from fastapi import Request

from registry_api.core.errors import RateLimited
from registry_api.core.metrics import RATE_LIMIT_HITS
from registry_api.db.redis import redis_pool
from registry_api.middleware.request_context import client_ip
from registry_api.services.rate_limiter import (
    InMemoryRateLimiter,
    RateLimiter,
    RateLimitTier,
    RedisRateLimiter,
)

logger = logging.getLogger(__name__)

if redis_pool is not None:
    _rate_limiter: RateLimiter = RedisRateLimiter(redis_pool)
else:
    _rate_limiter = InMemoryRateLimiter()


def require_rate_limit(tier: RateLimitTier):
    """Dependency factory: count this request against ``tier``.

    Usage::

        @router.post("/mint", dependencies=[Depends(require_rate_limit(MINT))])
    """

    async def _check(request: Request) -> None:
        key = build_key(request, tier)
        result = await _rate_limiter.hit(key, tier)
        if result.allowed:
            return

        RATE_LIMIT_HITS.labels(tier=tier.name).inc()
        logger.warning(
            "Rate limit exceeded tier=%s retry_after=%ds",
            tier.name,
            result.retry_after,
            extra={
                "event": "ratelimit.exceeded",
                "tier": tier.name,
                "client_ip": client_ip(request),
                "path": request.url.path,
            },
        )
        raise RateLimited(
            tier.message, retry_after=result.retry_after, limit=result.limit
        )

    return _check


def _identity_hint(request: Request) -> str:
    auth_header = request.headers.get("authorization", "")
    if not auth_header.startswith("Bearer "):
        return "anonymous"
    try:
        claims = pyjwt.decode(auth_header[7:], options={"verify_signature": False})
    except pyjwt.PyJWTError:
        return "anonymous"
    sub = claims.get("sub") if isinstance(claims, dict) else None
    return str(sub) if sub else "anonymous"


def build_key(request: Request, tier: RateLimitTier) -> str:
    return f"{tier.name}:{client_ip(request)}:{_identity_hint(request)}"
