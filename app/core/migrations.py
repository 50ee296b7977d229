from __future__ import annotations

from typing import Any

from sqlalchemy import MetaData


def include_object(object: Any, name: str, type_: str, reflected: bool, compare_to: Any) -> bool:
  """Exclude unsafe objects so autogenerate stays conservative."""
  # Prevent auto-dropping tables that are not in metadata.
  if type_ == "table" and reflected and compare_to is None:
    return False

  # Prevent auto-dropping columns that are not in metadata.
  if type_ == "column" and reflected and compare_to is None:
    return False

  return True


def build_migration_context_options(*, target_metadata: MetaData) -> dict[str, Any]:
  """Centralize Alembic options so drift checks align with migration rules."""
  options = {
    "compare_type": True,
    "compare_server_default": True,
    "include_schemas": False,
    "transaction_per_migration": True,
    "include_object": include_object,
    "target_metadata": target_metadata,
  }
  return options
