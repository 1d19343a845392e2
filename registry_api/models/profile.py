from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

Role = Literal["user", "admin"]


@dataclass(frozen=True, slots=True)
class Profile:
    """A row of ``profiles``: role plus the user's connected wallet.

    The role is assigned by administrative action outside this service.
    """

    id: str
    role: str | None = None
    email: str | None = None
    full_name: str | None = None
    wallet_address: str | None = None
    wallet_connected_at: datetime | None = None
    wallet_verified: bool = False

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
