"""PostgreSQL implementation of ProjectRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from registry_api.db.tables import ProjectRow
from registry_api.models.project import MINTED_STATUS, Project


class PgProjectRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, project_id: UUID) -> Project | None:
        stmt = select(ProjectRow).where(ProjectRow.id == project_id)
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return Project(
            id=row.id,
            title=row.title,
            status=row.status,
            calculated_credits=row.calculated_credits,
            mint_address=row.mint_address,
            credits_issued=row.credits_issued,
        )

    async def mark_minted(
        self, project_id: UUID, *, mint_address: str, credits_issued: int
    ) -> bool:
        stmt = (
            update(ProjectRow)
            .where(ProjectRow.id == project_id)
            .values(
                mint_address=mint_address,
                status=MINTED_STATUS,
                credits_issued=credits_issued,
            )
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
        return result.rowcount > 0
