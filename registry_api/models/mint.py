from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

MINT_SUCCEEDED = "mint_tokens"
MINT_FAILED = "mint_tokens_failed"


def _now() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class MintRecord:
    """Audit row for one successful ledger mint (table ``tokens``).

    ``minted_tx`` (the transaction signature) is the natural key: writing
    the same record twice is a no-op, which makes replays safe.
    """

    mint: str
    project_id: UUID
    recipient: str
    amount: int
    decimals: int
    minted_tx: str
    minted_by: str
    token_standard: str = "SPL"
    token_symbol: str = "CCR"
    token_name: str = "Carbon Credit Token"
    status: str = "active"
    created_at: datetime = field(default_factory=_now)

    def to_payload(self) -> dict[str, Any]:
        data = asdict(self)
        data["project_id"] = str(self.project_id)
        data["created_at"] = self.created_at.isoformat()
        return data

    @staticmethod
    def from_payload(data: dict[str, Any]) -> MintRecord:
        return MintRecord(
            **{
                **data,
                "project_id": UUID(data["project_id"]),
                "created_at": datetime.fromisoformat(data["created_at"]),
            }
        )


@dataclass(frozen=True, slots=True)
class AdminLogEntry:
    """Append-only audit row (table ``admin_logs``)."""

    id: UUID
    admin_id: str
    action: str
    target_type: str
    target_id: str
    details: str
    metadata: dict[str, Any]
    created_at: datetime

    @staticmethod
    def new(
        *,
        admin_id: str,
        action: str,
        target_id: str,
        details: str,
        metadata: dict[str, Any],
        target_type: str = "project",
    ) -> AdminLogEntry:
        return AdminLogEntry(
            id=uuid4(),
            admin_id=admin_id,
            action=action,
            target_type=target_type,
            target_id=target_id,
            details=details,
            metadata=metadata,
            created_at=_now(),
        )

    def to_payload(self) -> dict[str, Any]:
        data = asdict(self)
        data["id"] = str(self.id)
        data["created_at"] = self.created_at.isoformat()
        return data

    @staticmethod
    def from_payload(data: dict[str, Any]) -> AdminLogEntry:
        return AdminLogEntry(
            **{
                **data,
                "id": UUID(data["id"]),
                "created_at": datetime.fromisoformat(data["created_at"]),
            }
        )


@dataclass(frozen=True, slots=True)
class MintOutcome:
    """What the caller gets back from a successful mint."""

    mint: str
    transaction: str
    amount: int
    decimals: int
    recipient: str
    explorer_url: str
    processing_time: int  # ms
