"""Tenant request signing and admin authentication."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import Annotated

from fastapi import Depends, Header, HTTPException, Request, status

from app.config import Settings, get_settings
from app.storage.factory import _get_tenants_repo
from app.storage.tenants_repo import TenantRecord, TenantsRepository

logger = logging.getLogger(__name__)


def compute_signature(secret: str, body: bytes) -> str:
  """Return the hex HMAC-SHA256 of the raw body under the tenant secret."""
  return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
  expected = compute_signature(secret, body)
  return hmac.compare_digest(expected, signature.strip().lower())


def secret_matches(provided: str | None, expected: str | None) -> bool:
  """Constant-time comparison that never accepts an unset expected value."""
  if not expected or not provided:
    return False
  return secrets.compare_digest(provided, expected)


def get_tenants_repo() -> TenantsRepository:
  return _get_tenants_repo()


async def get_current_tenant(
  request: Request,
  tenants_repo: Annotated[TenantsRepository, Depends(get_tenants_repo)],
  x_c360_key: Annotated[str | None, Header()] = None,
  x_c360_sign: Annotated[str | None, Header()] = None,
) -> TenantRecord:
  """Authenticate a tenant from its api key and the body signature."""
  if not x_c360_key or not x_c360_sign:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="missing_auth")

  tenant = await tenants_repo.get_by_api_key(x_c360_key.strip())
  if tenant is None:
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="invalid_key")

  # Sign the exact bytes received; Starlette caches the body for the route.
  body = await request.body()
  if not verify_signature(tenant.api_secret, body, x_c360_sign):
    logger.warning("Bad request signature for tenant %s path=%s", tenant.id, request.url.path)
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="bad_signature")

  if not tenant.is_active:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="tenant_inactive")

  return tenant


async def require_admin(
  request: Request,
  settings: Annotated[Settings, Depends(get_settings)],
  tenants_repo: Annotated[TenantsRepository, Depends(get_tenants_repo)],
  x_c360_admin_token: Annotated[str | None, Header()] = None,
  x_c360_key: Annotated[str | None, Header()] = None,
  x_c360_sign: Annotated[str | None, Header()] = None,
) -> None:
  """Allow the shared admin token, or a signed request from the configured admin tenant."""
  if secret_matches(x_c360_admin_token, settings.admin_token):
    return

  if settings.admin_tenant_id and x_c360_key and x_c360_sign:
    tenant = await tenants_repo.get_by_api_key(x_c360_key.strip())
    if tenant is not None and tenant.id == settings.admin_tenant_id and tenant.is_active and verify_signature(tenant.api_secret, await request.body(), x_c360_sign):
      return

  if not settings.admin_token and not settings.admin_tenant_id:
    raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access is not configured.")
  raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="forbidden")
