"""Bearer token → Identity, via the auth collaborator (Supabase Auth).

The service never validates tokens itself: it hands the raw token to
``GET {SUPABASE_URL}/auth/v1/user`` and trusts the answer.  Three
outcomes matter to the caller:

  Identity            the token is good
  None                the collaborator answered but named no user
  IdentityLookupError the collaborator rejected the token
                      (``code``/``message`` say why, e.g. expiry)

Transport problems (DNS, timeouts, 5xx) raise ``IdentityServiceError``
instead, so the verifier can tell "your token is bad" apart from "we
could not ask".
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Protocol

import httpx

from registry_api.core.config import SETTINGS
from registry_api.models.identity import Identity

logger = logging.getLogger(__name__)


class IdentityLookupError(Exception):
    """The auth collaborator rejected the token."""

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class IdentityServiceError(Exception):
    """The auth collaborator could not be reached or answered nonsense."""


class IdentityProvider(Protocol):
    async def get_user(self, token: str) -> Identity | None: ...


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable banned_until=%r ignored", value)
        return None


def _identity_from_user(data: dict) -> Identity | None:
    user_id = data.get("id")
    if not user_id:
        return None
    return Identity(
        id=str(user_id),
        email=data.get("email"),
        banned_until=_parse_timestamp(data.get("banned_until")),
    )


class SupabaseIdentityProvider:
    def __init__(
        self,
        base_url: str,
        service_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._url = f"{base_url.rstrip('/')}/auth/v1/user"
        self._service_key = service_key
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def get_user(self, token: str) -> Identity | None:
        headers = {
            "apikey": self._service_key,
            "Authorization": f"Bearer {token}",
        }
        try:
            response = await self._client.get(self._url, headers=headers)
        except httpx.HTTPError as exc:
            raise IdentityServiceError(f"Auth service unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise IdentityServiceError(
                f"Auth service returned HTTP {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise IdentityServiceError("Auth service returned invalid JSON") from exc
        if not isinstance(body, dict):
            body = {}

        if response.status_code >= 400:
            # GoTrue error bodies vary by version: msg/message/error_description
            # for the text, error_code/error for the machine code.
            message = (
                body.get("msg")
                or body.get("message")
                or body.get("error_description")
                or f"HTTP {response.status_code}"
            )
            code = body.get("error_code") or body.get("error")
            raise IdentityLookupError(str(message), code=code)

        return _identity_from_user(body)

    async def aclose(self) -> None:
        await self._client.aclose()


class InMemoryIdentityProvider:
    """Token table for tests and local development.

    ``add_user`` registers a token; ``expire`` makes a token fail the way
    Supabase reports an expired JWT.  Unknown tokens fail as malformed.
    ``calls`` counts lookups so tests can assert nothing was asked.
    """

    def __init__(self) -> None:
        self._users: dict[str, Identity | None] = {}
        self._expired: set[str] = set()
        self.unavailable = False
        self.calls = 0

    def add_user(self, token: str, identity: Identity | None) -> None:
        self._users[token] = identity

    def expire(self, token: str) -> None:
        self._expired.add(token)

    def clear(self) -> None:
        self._users.clear()
        self._expired.clear()
        self.unavailable = False
        self.calls = 0

    async def get_user(self, token: str) -> Identity | None:
        self.calls += 1
        if self.unavailable:
            raise IdentityServiceError("Auth service unreachable")
        if token in self._expired:
            raise IdentityLookupError("token is expired", code="bad_jwt")
        if token not in self._users:
            raise IdentityLookupError("invalid JWT: unable to parse", code="bad_jwt")
        return self._users[token]


identity_provider: IdentityProvider = SupabaseIdentityProvider(
    SETTINGS.supabase_url, SETTINGS.supabase_service_role_key
)


def get_identity_provider() -> IdentityProvider:
    """FastAPI dependency returning the process-wide identity provider."""
    return identity_provider
