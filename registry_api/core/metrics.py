"""Application metrics (Prometheus client).

All metrics live here so the inventory of what the service measures is
in one place.  Modules import the metric they own and increment or
observe it at the point of action; /metrics exposes them for scraping.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Security pipeline
# ---------------------------------------------------------------------------

RATE_LIMIT_HITS = Counter(
    "rate_limit_hits_total",
    "Requests rejected by rate limiting (429s)",
    ["tier"],  # general | sensitive | mint
)

AUTH_OUTCOMES = Counter(
    "auth_outcomes_total",
    "Bearer token verification outcomes",
    ["outcome"],  # success | unauthorized | expired | forbidden | banned | error
)

# ---------------------------------------------------------------------------
# Minting
# ---------------------------------------------------------------------------

MINT_OPERATIONS = Counter(
    "mint_operations_total",
    "Mint pipeline executions by result",
    ["result"],  # success | rejected | failed
)

MINT_DURATION = Histogram(
    "mint_duration_seconds",
    "Wall-clock time of the mint pipeline, eligibility through persistence",
    # Ledger confirmations dominate: expect seconds, not milliseconds.
    buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0],
)

PERSISTENCE_FAILURES = Counter(
    "mint_persistence_failures_total",
    "Bookkeeping writes that failed after a completed ledger mint",
    ["step"],  # token_record | project_update | admin_log
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
