from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime


@dataclass(frozen=True, slots=True)
class Identity:
    """Caller identity resolved from a bearer token by the auth collaborator.

    Lives for one request; never persisted by this service.
    """

    id: str
    email: str | None = None
    banned_until: datetime | None = None

    def is_banned(self, now: datetime | None = None) -> bool:
        if self.banned_until is None:
            return False
        return self.banned_until > (now or datetime.now(UTC))
