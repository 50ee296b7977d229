"""Deterministic placeholder content used when the backend is unavailable."""

from __future__ import annotations

import re
import unicodedata
from typing import Any


def _slugify(value: str) -> str:
  normalized = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii").lower()
  slug = re.sub(r"[^a-z0-9]+", "-", normalized).strip("-")
  return slug or "content"


def _title(item: dict[str, Any]) -> str:
  title = str(item.get("source_title") or "").strip()
  return title or "Untitled content"


def _quick_boost(item: dict[str, Any]) -> dict[str, Any]:
  title = _title(item)
  return {
    "mode": "quick_boost",
    "title": f"{title} (fallback)",
    "meta_description": f"Meta description for {title} (fallback).",
    "intro": f"Introduction for {title} (fallback).",
    "h2": ["Overview", "Key points", "Next steps"],
    "faq": [{"q": f"What is {title}?", "a": "Answer pending review (fallback)."}],
    "seo": {"focus_keyword": title.lower(), "tags": ["fallback"]},
  }


def _full_content(item: dict[str, Any]) -> dict[str, Any]:
  title = _title(item)
  return {
    "mode": "full_content",
    "title": f"{title} (fallback)",
    "meta_description": f"Meta description for {title} (fallback).",
    "outline": [
      {"h2": "Overview", "bullets": ["Context", "Audience"], "notes": ""},
      {"h2": "Details", "bullets": ["Main points", "Examples"], "notes": ""},
      {"h2": "Conclusion", "bullets": ["Summary", "Call to action"], "notes": ""},
    ],
    "content_html": f"<h2>{title}</h2><p>Content pending review (fallback).</p>",
    "faq": [
      {"q": f"What is {title}?", "a": "Answer pending review (fallback)."},
      {"q": "Where can I learn more?", "a": "Answer pending review (fallback)."},
    ],
    "seo": {
      "focus_keyword": title.lower(),
      "tags": ["fallback", "draft", "review"],
      "slug": _slugify(title),
      "meta_title": f"{title} (fallback)",
      "internal_links": [],
      "image_alts": [f"{title} illustration", f"{title} detail"],
    },
    "checks": {"tone": "neutral", "plagiarism_risk": "low", "readability": "medium"},
  }


def _ecom_catalog(item: dict[str, Any]) -> dict[str, Any]:
  title = _title(item)
  return {
    "mode": "ecom_catalog",
    "product": {
      "title": f"{title} (fallback)",
      "short_description": f"Short description for {title} (fallback).",
      "long_description_html": f"<p>Long description for {title} (fallback).</p>",
      "benefits": ["Benefit pending review", "Benefit pending review", "Benefit pending review"],
      "specs": [],
      "usage": ["Usage pending review", "Usage pending review"],
      "faq": [],
      "cross_sell_copy": ["Related product pending review", "Related product pending review"],
    },
    "seo": {"focus_keyword": title.lower(), "tags": ["fallback", "draft", "review"], "meta_title": f"{title} (fallback)", "meta_description": f"Meta description for {title} (fallback)."},
  }


_BUILDERS = {"quick_boost": _quick_boost, "full_content": _full_content, "ecom_catalog": _ecom_catalog}


def build_fallback(mode: str, item: dict[str, Any]) -> dict[str, Any]:
  """Return placeholder content carrying every required key of the mode's schema."""
  builder = _BUILDERS.get(mode, _quick_boost)
  return builder(item or {})
