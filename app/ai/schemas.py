"""Strict JSON schemas for each generation mode."""

from __future__ import annotations

from typing import Any, Final

_FAQ_ITEM_SHORT: Final[dict[str, Any]] = {
  "type": "object",
  "additionalProperties": False,
  "properties": {"q": {"type": "string", "minLength": 8, "maxLength": 120}, "a": {"type": "string", "minLength": 20, "maxLength": 300}},
  "required": ["q", "a"],
}

_FAQ_ITEM_LONG: Final[dict[str, Any]] = {
  "type": "object",
  "additionalProperties": False,
  "properties": {"q": {"type": "string", "minLength": 8, "maxLength": 120}, "a": {"type": "string", "minLength": 30, "maxLength": 450}},
  "required": ["q", "a"],
}


def _strings(min_length: int, max_length: int, *, min_items: int | None = None, max_items: int | None = None) -> dict[str, Any]:
  schema: dict[str, Any] = {"type": "array", "items": {"type": "string", "minLength": min_length, "maxLength": max_length}}
  if min_items is not None:
    schema["minItems"] = min_items
  if max_items is not None:
    schema["maxItems"] = max_items
  return schema


QUICK_BOOST_SCHEMA: Final[dict[str, Any]] = {
  "type": "object",
  "additionalProperties": False,
  "properties": {
    "mode": {"type": "string", "const": "quick_boost"},
    "title": {"type": "string", "minLength": 15, "maxLength": 70},
    "meta_description": {"type": "string", "minLength": 120, "maxLength": 170},
    "intro": {"type": "string", "minLength": 120, "maxLength": 600},
    "h2": _strings(6, 80, min_items=3, max_items=6),
    "faq": {"type": "array", "maxItems": 4, "items": _FAQ_ITEM_SHORT},
    "seo": {
      "type": "object",
      "additionalProperties": False,
      "properties": {"focus_keyword": {"type": "string", "minLength": 3, "maxLength": 40}, "tags": _strings(2, 30, max_items=8)},
      "required": ["focus_keyword", "tags"],
    },
  },
  "required": ["mode", "title", "meta_description", "intro", "h2", "faq", "seo"],
}

FULL_CONTENT_SCHEMA: Final[dict[str, Any]] = {
  "type": "object",
  "additionalProperties": False,
  "properties": {
    "mode": {"type": "string", "const": "full_content"},
    "title": {"type": "string", "minLength": 15, "maxLength": 80},
    "meta_description": {"type": "string", "minLength": 120, "maxLength": 170},
    "outline": {
      "type": "array",
      "minItems": 3,
      "maxItems": 8,
      "items": {
        "type": "object",
        "additionalProperties": False,
        "properties": {"h2": {"type": "string", "minLength": 6, "maxLength": 80}, "bullets": _strings(6, 120, min_items=2, max_items=5), "notes": {"type": "string", "minLength": 0, "maxLength": 160}},
        "required": ["h2", "bullets", "notes"],
      },
    },
    "content_html": {"type": "string", "minLength": 600, "maxLength": 12000},
    "faq": {"type": "array", "minItems": 2, "maxItems": 6, "items": _FAQ_ITEM_LONG},
    "seo": {
      "type": "object",
      "additionalProperties": False,
      "properties": {
        "focus_keyword": {"type": "string", "minLength": 3, "maxLength": 40},
        "tags": _strings(2, 30, min_items=3, max_items=12),
        "slug": {"type": "string", "pattern": "^[a-z0-9]+(?:-[a-z0-9]+)*$"},
        "meta_title": {"type": "string", "minLength": 35, "maxLength": 75},
        "internal_links": {
          "type": "array",
          "maxItems": 8,
          "items": {
            "type": "object",
            "additionalProperties": False,
            "properties": {"anchor": {"type": "string", "minLength": 2, "maxLength": 60}, "url": {"type": "string", "minLength": 1, "maxLength": 400}},
            "required": ["anchor", "url"],
          },
        },
        "image_alts": _strings(6, 120, min_items=2, max_items=8),
      },
      "required": ["focus_keyword", "tags", "slug", "meta_title", "internal_links", "image_alts"],
    },
    "checks": {
      "type": "object",
      "additionalProperties": False,
      "properties": {
        "tone": {"type": "string", "minLength": 2, "maxLength": 40},
        "plagiarism_risk": {"type": "string", "enum": ["low", "medium", "high"]},
        "readability": {"type": "string", "enum": ["easy", "medium", "hard"]},
      },
      "required": ["tone", "plagiarism_risk", "readability"],
    },
  },
  "required": ["mode", "title", "meta_description", "outline", "content_html", "faq", "seo", "checks"],
}

ECOM_CATALOG_SCHEMA: Final[dict[str, Any]] = {
  "type": "object",
  "additionalProperties": False,
  "properties": {
    "mode": {"type": "string", "const": "ecom_catalog"},
    "product": {
      "type": "object",
      "additionalProperties": False,
      "properties": {
        "title": {"type": "string", "minLength": 10, "maxLength": 90},
        "short_description": {"type": "string", "minLength": 40, "maxLength": 240},
        "long_description_html": {"type": "string", "minLength": 400, "maxLength": 9000},
        "benefits": _strings(6, 120, min_items=3, max_items=8),
        "specs": {
          "type": "array",
          "maxItems": 12,
          "items": {
            "type": "object",
            "additionalProperties": False,
            "properties": {"k": {"type": "string", "minLength": 2, "maxLength": 40}, "v": {"type": "string", "minLength": 1, "maxLength": 80}},
            "required": ["k", "v"],
          },
        },
        "usage": _strings(6, 140, min_items=2, max_items=8),
        "faq": {"type": "array", "maxItems": 6, "items": _FAQ_ITEM_LONG},
        "cross_sell_copy": _strings(8, 120, min_items=2, max_items=6),
      },
      "required": ["title", "short_description", "long_description_html", "benefits", "specs", "usage", "faq", "cross_sell_copy"],
    },
    "seo": {
      "type": "object",
      "additionalProperties": False,
      "properties": {
        "focus_keyword": {"type": "string", "minLength": 3, "maxLength": 40},
        "tags": _strings(2, 30, min_items=3, max_items=12),
        "meta_title": {"type": "string", "minLength": 35, "maxLength": 75},
        "meta_description": {"type": "string", "minLength": 120, "maxLength": 170},
      },
      "required": ["focus_keyword", "tags", "meta_title", "meta_description"],
    },
  },
  "required": ["mode", "product", "seo"],
}

SCHEMAS_BY_MODE: Final[dict[str, dict[str, Any]]] = {"quick_boost": QUICK_BOOST_SCHEMA, "full_content": FULL_CONTENT_SCHEMA, "ecom_catalog": ECOM_CATALOG_SCHEMA}


def schema_for_mode(mode: str) -> dict[str, Any]:
  try:
    return SCHEMAS_BY_MODE[mode]
  except KeyError as exc:
    raise ValueError(f"Unsupported generation mode: {mode}") from exc


def missing_required_keys(content: Any, schema: dict[str, Any], *, path: str = "") -> list[str]:
  """Return dotted paths of required object keys absent from ``content``.

  Only object nesting is walked; value constraints are left to the backend's
  strict mode.
  """
  if schema.get("type") != "object" or not isinstance(content, dict):
    return [] if schema.get("type") != "object" else [path or "$"]
  missing: list[str] = []
  properties = schema.get("properties") or {}
  for key in schema.get("required") or []:
    child_path = f"{path}.{key}" if path else key
    if key not in content:
      missing.append(child_path)
      continue
    child_schema = properties.get(key) or {}
    if child_schema.get("type") == "object":
      missing.extend(missing_required_keys(content[key], child_schema, path=child_path))
  return missing
