"""Admin flag storage."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Protocol

from sqlalchemy.dialects.postgresql import insert

from app.core.database import require_session_factory
from app.schema.runtime import AdminFlag


class FlagsRepository(Protocol):
  async def get_flag(self, key: str) -> str | None:
    """Return the raw flag value or None when unset."""

  async def set_flag(self, key: str, value: str) -> None:
    """Upsert a flag value."""


class PostgresFlagsRepository(FlagsRepository):
  def __init__(self) -> None:
    self._session_factory = require_session_factory()

  async def get_flag(self, key: str) -> str | None:
    async with self._session_factory() as session:
      row = await session.get(AdminFlag, key)
      return row.value if row is not None else None

  async def set_flag(self, key: str, value: str) -> None:
    async with self._session_factory() as session:
      stmt = insert(AdminFlag).values(key=key, value=value)
      stmt = stmt.on_conflict_do_update(index_elements=[AdminFlag.key], set_={"value": value, "updated_at": datetime.now(UTC)})
      await session.execute(stmt)
      await session.commit()
