"""PostgreSQL implementation of ProfileRepo."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from registry_api.db.tables import ProfileRow
from registry_api.models.profile import Profile
from registry_api.repos.profile_repo import WalletAddressTaken


class PgProfileRepo:
    """Satisfies the ProfileRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: str) -> Profile | None:
        stmt = select(ProfileRow).where(ProfileRow.id == UUID(user_id))
        async with self._session_factory() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_profile(row)

    async def find_by_wallet(
        self, wallet_address: str, *, exclude_id: str
    ) -> list[Profile]:
        stmt = select(ProfileRow).where(
            ProfileRow.wallet_address == wallet_address,
            ProfileRow.id != UUID(exclude_id),
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_profile(r) for r in rows]

    async def set_wallet(
        self, user_id: str, wallet_address: str, *, connected_at: datetime
    ) -> Profile | None:
        stmt = (
            update(ProfileRow)
            .where(ProfileRow.id == UUID(user_id))
            .values(
                wallet_address=wallet_address,
                wallet_connected_at=connected_at,
                wallet_verified=True,
                updated_at=func.now(),
            )
            .returning(ProfileRow)
        )
        try:
            async with self._session_factory() as session, session.begin():
                row = (await session.execute(stmt)).scalar_one_or_none()
        except IntegrityError as exc:
            # Lost a race on the unique index to another profile.
            raise WalletAddressTaken(wallet_address) from exc
        if row is None:
            return None
        return _row_to_profile(row)

    async def clear_wallet(self, user_id: str) -> bool:
        stmt = (
            update(ProfileRow)
            .where(ProfileRow.id == UUID(user_id))
            .values(
                wallet_address=None,
                wallet_connected_at=None,
                wallet_verified=False,
                updated_at=func.now(),
            )
        )
        async with self._session_factory() as session, session.begin():
            result = await session.execute(stmt)
        return result.rowcount > 0


def _row_to_profile(row: ProfileRow) -> Profile:
    return Profile(
        id=str(row.id),
        role=row.role,
        email=row.email,
        full_name=row.full_name,
        wallet_address=row.wallet_address,
        wallet_connected_at=row.wallet_connected_at,
        wallet_verified=row.wallet_verified,
    )
