"""Prometheus scrape endpoint.

Plain-text exposition format, not JSON.  Not rate limited and not
authenticated; in production keep it off the public listener (ingress
rule or a separate port), since request rates and failure counts by
step describe the service's internals.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
