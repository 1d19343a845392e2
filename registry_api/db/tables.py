"""SQLAlchemy table definitions for the registry tables this service touches.

The tables are owned by the Supabase project; these mappings cover only
the columns the API reads or writes.  Repos convert rows to the frozen
dataclasses in registry_api/models/.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import (
    BigInteger,
    Boolean,
    DateTime,
    Integer,
    String,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from registry_api.db.engine import Base


class ProfileRow(Base):
    __tablename__ = "profiles"

    # Same id as the Supabase auth user.
    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(32), nullable=False, default="user")
    wallet_address: Mapped[str | None] = mapped_column(
        String(44), unique=True, nullable=True
    )
    wallet_connected_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    wallet_verified: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class ProjectRow(Base):
    __tablename__ = "projects"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="pending")
    calculated_credits: Mapped[int | None] = mapped_column(Integer, nullable=True)
    credits_issued: Mapped[int | None] = mapped_column(Integer, nullable=True)
    mint_address: Mapped[str | None] = mapped_column(String(44), nullable=True)


class TokenRow(Base):
    __tablename__ = "tokens"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    mint: Mapped[str] = mapped_column(String(44), nullable=False)
    project_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    recipient: Mapped[str] = mapped_column(String(44), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    decimals: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Transaction signature; the replay key for reconciliation.
    minted_tx: Mapped[str] = mapped_column(String(88), unique=True, nullable=False)
    minted_by: Mapped[str] = mapped_column(String(64), nullable=False)
    token_standard: Mapped[str] = mapped_column(String(16), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(16), nullable=False)
    token_name: Mapped[str] = mapped_column(String(64), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )


class AdminLogRow(Base):
    __tablename__ = "admin_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True)
    admin_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[str] = mapped_column(String(64), nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=False, default="")
    # "metadata" is reserved on declarative classes.
    metadata_: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONB, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
