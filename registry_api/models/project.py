from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4

# pending → approved → credits_calculated → credits_minted (or rejected)
MINTABLE_STATUSES = frozenset({"approved", "credits_calculated"})
MINTED_STATUS = "credits_minted"


@dataclass(frozen=True, slots=True)
class Project:
    id: UUID
    title: str
    status: str
    calculated_credits: int | None = None
    mint_address: str | None = None
    credits_issued: int | None = None

    @property
    def is_mint_eligible(self) -> bool:
        return self.status in MINTABLE_STATUSES

    @staticmethod
    def new(
        *, title: str, status: str = "pending", calculated_credits: int | None = None
    ) -> Project:
        return Project(
            id=uuid4(),
            title=title,
            status=status,
            calculated_credits=calculated_credits,
        )
