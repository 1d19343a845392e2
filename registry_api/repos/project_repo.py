from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from registry_api.models.project import MINTED_STATUS, Project


class ProjectRepo(Protocol):
    async def get(self, project_id: UUID) -> Project | None: ...
    async def mark_minted(
        self, project_id: UUID, *, mint_address: str, credits_issued: int
    ) -> bool: ...


class InMemoryProjectRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Project] = {}

    def add(self, project: Project) -> None:
        self._by_id[project.id] = project

    async def get(self, project_id: UUID) -> Project | None:
        return self._by_id.get(project_id)

    async def mark_minted(
        self, project_id: UUID, *, mint_address: str, credits_issued: int
    ) -> bool:
        p = self._by_id.get(project_id)
        if p is None:
            return False

        self._by_id[project_id] = replace(
            p,
            status=MINTED_STATUS,
            mint_address=mint_address,
            credits_issued=credits_issued,
        )
        return True
