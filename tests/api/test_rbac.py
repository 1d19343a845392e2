"""Role resolver tests: POST /mint is admin-only."""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from registry_api.db.store import store
from registry_api.models.identity import Identity
from registry_api.models.project import Project
from registry_api.services.ledger import InMemoryLedger
from tests.conftest import USER_TOKEN, auth, register_user


def _body(project: Project, recipient: str) -> dict:
    return {"projectId": str(project.id), "recipientWallet": recipient, "amount": 10}


def test_regular_user_cannot_mint(
    client: TestClient,
    user: Identity,
    approved_project: Project,
    recipient: str,
    ledger: InMemoryLedger,
) -> None:
    resp = client.post(
        "/mint", json=_body(approved_project, recipient), headers=auth(USER_TOKEN)
    )
    assert resp.status_code == 403
    assert resp.json()["message"] == "Admin access required"
    assert ledger.calls == []


def test_user_without_role_cannot_mint(
    client: TestClient, approved_project: Project, recipient: str
) -> None:
    register_user("roleless-session-token", role=None)
    resp = client.post(
        "/mint",
        json=_body(approved_project, recipient),
        headers=auth("roleless-session-token"),
    )
    assert resp.status_code == 403


def test_user_without_profile_cannot_mint(
    client: TestClient, identity_provider, approved_project: Project, recipient: str
) -> None:
    identity_provider.add_user("profileless-token", Identity(id="no-profile-row"))
    resp = client.post(
        "/mint",
        json=_body(approved_project, recipient),
        headers=auth("profileless-token"),
    )
    assert resp.status_code == 403
    assert resp.json()["message"] == "Admin access required"


def test_role_lookup_failure_is_500(
    client: TestClient,
    user: Identity,
    approved_project: Project,
    recipient: str,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    async def broken_get(user_id: str):
        raise ConnectionError("profiles unavailable")

    monkeypatch.setattr(store.profiles, "get", broken_get)
    resp = client.post(
        "/mint", json=_body(approved_project, recipient), headers=auth(USER_TOKEN)
    )
    assert resp.status_code == 500
    assert resp.json()["message"] == "Failed to verify user role"


def test_unauthenticated_mint_is_401(
    client: TestClient, approved_project: Project, recipient: str
) -> None:
    resp = client.post("/mint", json=_body(approved_project, recipient))
    assert resp.status_code == 401
