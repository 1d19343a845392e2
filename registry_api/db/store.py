"""The data-store collaborator as one bundle of repositories.

Postgres-backed when DATABASE_URL is configured, in-memory otherwise
(local dev, tests), following the same pattern as redis_pool.
"""

from __future__ import annotations

from dataclasses import dataclass

from registry_api.db.engine import async_session_factory
from registry_api.repos.mint_repo import (
    AdminLogRepo,
    InMemoryAdminLogRepo,
    InMemoryTokenRepo,
    TokenRepo,
)
from registry_api.repos.profile_repo import InMemoryProfileRepo, ProfileRepo
from registry_api.repos.project_repo import InMemoryProjectRepo, ProjectRepo


@dataclass(frozen=True, slots=True)
class Store:
    profiles: ProfileRepo
    projects: ProjectRepo
    tokens: TokenRepo
    admin_logs: AdminLogRepo


def build_store() -> Store:
    if async_session_factory is not None:
        from registry_api.repos.pg_mint_repo import PgAdminLogRepo, PgTokenRepo
        from registry_api.repos.pg_profile_repo import PgProfileRepo
        from registry_api.repos.pg_project_repo import PgProjectRepo

        return Store(
            profiles=PgProfileRepo(async_session_factory),
            projects=PgProjectRepo(async_session_factory),
            tokens=PgTokenRepo(async_session_factory),
            admin_logs=PgAdminLogRepo(async_session_factory),
        )
    return Store(
        profiles=InMemoryProfileRepo(),
        projects=InMemoryProjectRepo(),
        tokens=InMemoryTokenRepo(),
        admin_logs=InMemoryAdminLogRepo(),
    )


store = build_store()


def get_store() -> Store:
    """FastAPI dependency returning the process-wide store."""
    return store
