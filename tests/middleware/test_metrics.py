"""Prometheus metrics tests.

The client library keeps one global registry and counters only go up,
so every test asserts on the delta around the action.
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from registry_api.models.identity import Identity
from registry_api.models.project import Project
from registry_api.services.ledger import InMemoryLedger
from tests.conftest import ADMIN_TOKEN, USER_TOKEN, add_project, auth


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


def _mint(client: TestClient, project: Project, recipient: str):
    return client.post(
        "/mint",
        json={"projectId": str(project.id), "recipientWallet": recipient, "amount": 3},
        headers=auth(ADMIN_TOKEN),
    )


def test_request_counter_uses_route_template(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health", "status_code": "200"}
    before = _get_sample("http_requests_total", labels)
    client.get("/health")
    assert _get_sample("http_requests_total", labels) - before == 1


def test_unknown_paths_collapse_into_one_series(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "unmatched", "status_code": "404"}
    before = _get_sample("http_requests_total", labels)
    client.get("/nope-1")
    client.get("/nope-2")
    assert _get_sample("http_requests_total", labels) - before == 2


def test_duration_histogram_observes(client: TestClient) -> None:
    labels = {"method": "GET", "endpoint": "/health"}
    before = _get_sample("http_request_duration_seconds_count", labels)
    client.get("/health")
    assert _get_sample("http_request_duration_seconds_count", labels) - before == 1


def test_metrics_endpoint_is_prometheus_text(client: TestClient) -> None:
    client.get("/health")
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("text/plain")
    assert "http_requests_total" in resp.text
    assert "mint_operations_total" in resp.text


def test_auth_outcomes_counted(client: TestClient, user: Identity) -> None:
    before_ok = _get_sample("auth_outcomes_total", {"outcome": "success"})
    before_missing = _get_sample("auth_outcomes_total", {"outcome": "unauthorized"})
    client.get("/wallet", headers=auth(USER_TOKEN))
    client.get("/wallet")
    assert _get_sample("auth_outcomes_total", {"outcome": "success"}) - before_ok == 1
    assert (
        _get_sample("auth_outcomes_total", {"outcome": "unauthorized"})
        - before_missing
        == 1
    )


def test_mint_results_counted(
    client: TestClient, admin: Identity, recipient: str, ledger: InMemoryLedger
) -> None:
    success = _get_sample("mint_operations_total", {"result": "success"})
    rejected = _get_sample("mint_operations_total", {"result": "rejected"})
    failed = _get_sample("mint_operations_total", {"result": "failed"})
    durations = _get_sample("mint_duration_seconds_count")

    _mint(client, add_project("approved"), recipient)
    _mint(client, add_project("pending"), recipient)
    ledger.fail_on.add("mint_to")
    _mint(client, add_project("approved"), recipient)

    assert _get_sample("mint_operations_total", {"result": "success"}) - success == 1
    assert _get_sample("mint_operations_total", {"result": "rejected"}) - rejected == 1
    assert _get_sample("mint_operations_total", {"result": "failed"}) - failed == 1
    assert _get_sample("mint_duration_seconds_count") - durations == 3


def test_rate_limit_hits_counted(client: TestClient) -> None:
    before = _get_sample("rate_limit_hits_total", {"tier": "mint"})
    for _ in range(6):
        client.post("/mint", json={})
    assert _get_sample("rate_limit_hits_total", {"tier": "mint"}) - before == 1
