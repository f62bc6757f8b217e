"""Dialect-aware ``INSERT ... ON CONFLICT`` construction."""

from __future__ import annotations

from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession


def dialect_insert(session: AsyncSession, model: type[Any]) -> Any:
    """Return an insert construct supporting ``on_conflict_do_update`` for the bound dialect."""

    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model)
    if dialect == "sqlite":
        return sqlite.insert(model)
    raise RuntimeError(f"Upserts are not supported for the {dialect!r} dialect.")


__all__ = ["dialect_insert"]
