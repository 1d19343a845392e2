from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from registry_api.api.health import router as health_router
from registry_api.api.metrics_endpoint import router as metrics_router
from registry_api.api.mint import router as mint_router
from registry_api.api.wallet import router as wallet_router
from registry_api.core.config import API_VERSION, SETTINGS
from registry_api.core.errors import install_error_handlers
from registry_api.core.logging import setup_logging
from registry_api.db.engine import lifespan_db
from registry_api.db.redis import lifespan_redis
from registry_api.middleware.metrics import MetricsMiddleware
from registry_api.middleware.request_context import (
    RequestContextMiddleware,
    install_log_context,
)
from registry_api.services.identity_service import identity_provider
from registry_api.services.ledger import ledger

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_log_context()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one step fails.
    async with lifespan_db():
        async with lifespan_redis():
            try:
                yield
            finally:
                for client in (ledger, identity_provider):
                    aclose = getattr(client, "aclose", None)
                    if aclose is not None:
                        await aclose()
                logger.info("Outbound clients closed")


app = FastAPI(
    title="registry-api",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[SETTINGS.cors_origin],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    expose_headers=["X-Request-ID", "Retry-After"],
)

# Last added runs first: RequestContext → Metrics → CORS → route.
# The request id exists before anything else logs or measures.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

install_error_handlers(app, expose_internals=not SETTINGS.is_prod)

app.include_router(health_router)
app.include_router(metrics_router)
app.include_router(wallet_router)
app.include_router(mint_router)

logger.info(
    "registry-api ready  env=%s log_level=%s cluster=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.solana_cluster,
    "on" if SETTINGS.is_dev else "off",
)


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    uvicorn.run(
        "registry_api.main:app",
        host=SETTINGS.host,
        port=SETTINGS.port,
        log_config=None,
        # Only these peers may set the client address via X-Forwarded-For.
        proxy_headers=True,
        forwarded_allow_ips=SETTINGS.forwarded_allow_ips,
    )


if __name__ == "__main__":
    run()
