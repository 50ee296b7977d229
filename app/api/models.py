from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictBool, StrictStr, field_validator

from app.config import get_settings
from app.jobs.models import GENERATION_MODES, normalize_mode


class ContentItem(BaseModel):
  """One piece of tenant content to generate for."""

  entity_type: Literal["product", "page", "post"] = Field(description="Kind of content the item represents.")
  entity_id: StrictStr = Field(min_length=1, max_length=200, description="Tenant-side identifier of the content.")
  lang: StrictStr = Field(min_length=2, max_length=10, description="Output language code.", examples=["en", "pt-BR"])
  source_title: StrictStr = Field(min_length=1, max_length=1000, description="Current title of the content.")
  source_excerpt: StrictStr = Field(min_length=1, max_length=20000, description="Current excerpt or body of the content.")
  content_source: StrictStr | None = Field(default=None, min_length=1, max_length=64, description="Origin system of the content (defaults to cms).")
  model_config = ConfigDict(extra="forbid")

  @field_validator("entity_id", "source_title", "source_excerpt")
  @classmethod
  def _strip_required(cls, value: str) -> str:
    stripped = value.strip()
    if not stripped:
      raise ValueError("must not be blank")
    return stripped

  @field_validator("lang")
  @classmethod
  def _strip_lang(cls, value: str) -> str:
    stripped = value.strip()
    if len(stripped) < 2:
      raise ValueError("must be a language code of 2 to 10 characters")
    return stripped


class CreateJobRequest(BaseModel):
  """Request payload for admitting a content generation job."""

  mode: StrictStr | None = Field(default=None, validate_default=True, description="Generation mode; 'full' and empty are accepted aliases.", examples=["quick_boost"])
  items: list[ContentItem] = Field(min_length=1, description="Items to generate content for.")
  model_config = ConfigDict(extra="forbid")

  @field_validator("mode")
  @classmethod
  def _normalize_mode(cls, value: str | None) -> str:
    mode = normalize_mode(value)
    if mode not in GENERATION_MODES:
      raise ValueError(f"mode must be one of: {', '.join(GENERATION_MODES)}")
    return mode

  @field_validator("items")
  @classmethod
  def _bound_items(cls, value: list[ContentItem]) -> list[ContentItem]:
    limit = get_settings().max_items_per_job
    if len(value) > limit:
      raise ValueError(f"at most {limit} items per job")
    return value

  def to_request(self) -> dict[str, Any]:
    """Return the persisted request snapshot."""
    return {"mode": normalize_mode(self.mode), "items": [item.model_dump(exclude_none=True) for item in self.items]}


class DegradedToggle(BaseModel):
  enabled: StrictBool
  model_config = ConfigDict(extra="forbid")


class CreateTenantRequest(BaseModel):
  """Admin payload for registering a tenant."""

  name: StrictStr = Field(min_length=1, max_length=200)
  plan_code: StrictStr | None = Field(default=None, min_length=1, max_length=64)
  monthly_quota_aej: int | None = Field(default=None, ge=0)
  aej_balance: int = Field(default=0, ge=0)
  is_active: StrictBool = True
  model_config = ConfigDict(extra="forbid")


class UpdateTenantRequest(BaseModel):
  """Admin payload for changing a tenant's plan, quota or status; omitted fields are left as is."""

  plan_code: StrictStr | None = Field(default=None, min_length=1, max_length=64)
  monthly_quota_aej: int | None = Field(default=None, ge=0, description="Null falls back to the plan's default quota.")
  aej_balance: int | None = Field(default=None, ge=0)
  is_active: StrictBool | None = None
  model_config = ConfigDict(extra="forbid")

  @field_validator("aej_balance", "is_active")
  @classmethod
  def _not_null(cls, value: Any) -> Any:
    if value is None:
      raise ValueError("may be omitted but not null")
    return value

  def changes(self) -> dict[str, Any]:
    return self.model_dump(exclude_unset=True)


class TaskPayload(BaseModel):
  job_id: StrictStr = Field(min_length=1)
