"""Health and readiness endpoints.

  /health (liveness + dependency report)
    Always 200 while the process can answer.  ``status`` says whether
    the backing services look fine ("healthy") or not ("degraded").
    Returning 503 here would make an orchestrator restart a process
    whose only problem is a flaky Redis.

  /ready (readiness)
    200 when this instance can take traffic.  Redis and Postgres both
    have in-memory fallbacks in dev; in a deployment with DATABASE_URL
    set the database is critical, so a failed ping is a 503.

Neither endpoint is rate limited: monitoring must always get through.
"""

from __future__ import annotations

import logging
import resource
import sys
import time
from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text

from registry_api.core.config import API_VERSION, SETTINGS
from registry_api.db.engine import engine
from registry_api.db.redis import redis_pool
from registry_api.services.ledger import Ledger, get_ledger

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_STARTED = time.monotonic()


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


def _max_rss_mb() -> float:
    rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is kilobytes on Linux, bytes on macOS.
    divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
    return round(rss / divisor, 1)


@router.get("/health")
async def health(ledger: Ledger = Depends(get_ledger)) -> dict:
    database = await _check_database()
    redis = await _check_redis()
    degraded = "degraded" in (database, redis)
    return {
        "status": "degraded" if degraded else "healthy",
        "timestamp": datetime.now(UTC).isoformat(),
        "uptime": round(time.monotonic() - _STARTED, 3),
        "version": API_VERSION,
        "services": {
            "supabase": bool(SETTINGS.supabase_url),
            "solana": bool(ledger.payer_address),
            "database": database,
            "redis": redis,
        },
        "memory": {"max_rss_mb": _max_rss_mb()},
        "environment": SETTINGS.app_env,
    }


@router.get("/ready")
async def ready() -> Response:
    if await _check_database() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
