"""Identifier utilities."""

from __future__ import annotations

import secrets
import string
import uuid


def generate_job_id() -> str:
  """Return a new job identifier."""
  return str(uuid.uuid4())


def generate_nanoid(size: int = 16) -> str:
  """Return a short non-sequential id suitable for public references."""
  alphabet = string.ascii_letters + string.digits
  return "".join(secrets.choice(alphabet) for _ in range(size))


def generate_tenant_id() -> str:
  return f"tn_{generate_nanoid(12)}"


def generate_api_key() -> str:
  """Return a public tenant key; it identifies but never authenticates."""
  return f"ck_{generate_nanoid(24)}"


def generate_api_secret() -> str:
  return secrets.token_hex(32)
