from __future__ import annotations

import json
import os
import sys
import uuid
from datetime import datetime
from pathlib import Path

from solders.keypair import Keypair

# Ensure repo root is on sys.path so `import registry_api` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings are read once at import time, so the environment must be in
# place before anything from registry_api is imported.
os.environ["APP_ENV"] = "test"
os.environ["SUPABASE_URL"] = "https://registry-test.supabase.co"
os.environ["SUPABASE_SERVICE_ROLE_KEY"] = "test-service-role-key"
os.environ["SOLANA_PAYER_SECRET"] = json.dumps(list(bytes(Keypair())))
os.environ["SOLANA_CLUSTER"] = "devnet"
os.environ.pop("DATABASE_URL", None)
os.environ.pop("REDIS_URL", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from registry_api.api.ratelimit import _rate_limiter  # noqa: E402
from registry_api.db.store import store  # noqa: E402
from registry_api.main import app  # noqa: E402
from registry_api.models.identity import Identity  # noqa: E402
from registry_api.models.profile import Profile  # noqa: E402
from registry_api.models.project import Project  # noqa: E402
from registry_api.services.identity_service import (  # noqa: E402
    InMemoryIdentityProvider,
    get_identity_provider,
)
from registry_api.services.ledger import InMemoryLedger, get_ledger  # noqa: E402
from registry_api.services.mint_service import project_locks  # noqa: E402
from registry_api.services.task_queue import task_queue  # noqa: E402

ADMIN_TOKEN = "admin-session-token-0001"
USER_TOKEN = "user-session-token-0001"

@pytest.fixture(autouse=True)
def reset_store() -> None:
    """Empty the in-memory repositories between tests."""
    store.profiles._by_id.clear()  # type: ignore[attr-defined]
    store.projects._by_id.clear()  # type: ignore[attr-defined]
    store.tokens._by_tx.clear()  # type: ignore[attr-defined]
    store.admin_logs._entries.clear()  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def reset_rate_limiter() -> None:
    """Clear sliding windows so limits don't bleed between tests."""
    _rate_limiter.clear()  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    task_queue.clear()  # type: ignore[attr-defined]


@pytest.fixture(autouse=True)
def identity_provider() -> InMemoryIdentityProvider:
    """Swap Supabase Auth for the in-memory token table."""
    fake = InMemoryIdentityProvider()
    app.dependency_overrides[get_identity_provider] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_identity_provider, None)


@pytest.fixture(autouse=True)
def ledger() -> InMemoryLedger:
    """A fresh, funded in-memory ledger for every test."""
    fake = InMemoryLedger()
    app.dependency_overrides[get_ledger] = lambda: fake
    yield fake
    app.dependency_overrides.pop(get_ledger, None)
    assert len(project_locks) == 0, "a mint left its project lock held"


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def register_user(
    token: str,
    *,
    role: str | None = "user",
    user_id: str | None = None,
    wallet_address: str | None = None,
    banned_until: datetime | None = None,
) -> Identity:
    """Make ``token`` resolve to a new identity with a stored profile.

    Works against whichever provider the ``identity_provider`` fixture
    installed for the current test.
    """
    identity = Identity(
        id=user_id or str(uuid.uuid4()),
        email=f"{token[:8]}@example.org",
        banned_until=banned_until,
    )
    provider = app.dependency_overrides[get_identity_provider]()
    provider.add_user(token, identity)
    store.profiles.add(  # type: ignore[attr-defined]
        Profile(
            id=identity.id,
            role=role,
            email=identity.email,
            wallet_address=wallet_address,
            wallet_verified=wallet_address is not None,
        )
    )
    return identity


def add_project(status: str = "approved", **kwargs) -> Project:
    project = Project.new(title="Mangrove restoration", status=status, **kwargs)
    store.projects.add(project)  # type: ignore[attr-defined]
    return project


def auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin() -> Identity:
    return register_user(ADMIN_TOKEN, role="admin")


@pytest.fixture
def user() -> Identity:
    return register_user(USER_TOKEN, role="user")


@pytest.fixture
def approved_project() -> Project:
    return add_project("approved", calculated_credits=500)


@pytest.fixture
def recipient() -> str:
    return str(Keypair().pubkey())
