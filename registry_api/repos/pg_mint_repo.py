"""PostgreSQL implementations of TokenRepo and AdminLogRepo.

Inserts use ``ON CONFLICT DO NOTHING`` on the natural key so the
reconciliation worker can replay them safely.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from registry_api.db.tables import AdminLogRow, TokenRow
from registry_api.models.mint import AdminLogEntry, MintRecord


class PgTokenRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, record: MintRecord) -> bool:
        stmt = (
            insert(TokenRow)
            .values(
                mint=record.mint,
                project_id=record.project_id,
                recipient=record.recipient,
                amount=record.amount,
                decimals=record.decimals,
                minted_tx=record.minted_tx,
                minted_by=record.minted_by,
                token_standard=record.token_standard,
                token_symbol=record.token_symbol,
                token_name=record.token_name,
                status=record.status,
                created_at=record.created_at,
            )
            .on_conflict_do_nothing(index_elements=[TokenRow.minted_tx])
            .returning(TokenRow.id)
        )
        async with self._session_factory() as session, session.begin():
            inserted = (await session.execute(stmt)).first()
        return inserted is not None

    async def list_for_project(self, project_id: UUID) -> list[MintRecord]:
        stmt = (
            select(TokenRow)
            .where(TokenRow.project_id == project_id)
            .order_by(TokenRow.created_at)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            MintRecord(
                mint=r.mint,
                project_id=r.project_id,
                recipient=r.recipient,
                amount=r.amount,
                decimals=r.decimals,
                minted_tx=r.minted_tx,
                minted_by=r.minted_by,
                token_standard=r.token_standard,
                token_symbol=r.token_symbol,
                token_name=r.token_name,
                status=r.status,
                created_at=r.created_at,
            )
            for r in rows
        ]


class PgAdminLogRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def append(self, entry: AdminLogEntry) -> bool:
        stmt = (
            insert(AdminLogRow)
            .values(
                id=entry.id,
                admin_id=entry.admin_id,
                action=entry.action,
                target_type=entry.target_type,
                target_id=entry.target_id,
                details=entry.details,
                metadata_=entry.metadata,
                created_at=entry.created_at,
            )
            .on_conflict_do_nothing(index_elements=[AdminLogRow.id])
            .returning(AdminLogRow.id)
        )
        async with self._session_factory() as session, session.begin():
            inserted = (await session.execute(stmt)).first()
        return inserted is not None

    async def list_for_target(self, target_id: str) -> list[AdminLogEntry]:
        stmt = (
            select(AdminLogRow)
            .where(AdminLogRow.target_id == target_id)
            .order_by(AdminLogRow.created_at)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [
            AdminLogEntry(
                id=r.id,
                admin_id=r.admin_id,
                action=r.action,
                target_type=r.target_type,
                target_id=r.target_id,
                details=r.details,
                metadata=r.metadata_,
                created_at=r.created_at,
            )
            for r in rows
        ]
