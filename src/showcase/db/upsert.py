"""Dialect-aware INSERT ... ON CONFLICT builders.

Conflict handling runs inside the database so concurrent instances never
need an in-process lock around edge inserts or counter increments.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def insert_for(db: AsyncSession, model: Any) -> Any:  # noqa: ANN401
    """Return a dialect-specific ``insert(model)`` supporting ``on_conflict_*``."""
    bind = db.get_bind()
    dialect = bind.dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    msg = f"Unsupported database dialect for upserts: {dialect}"
    raise RuntimeError(msg)
