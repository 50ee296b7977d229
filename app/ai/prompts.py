"""Prompt builders per generation mode."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Final


def _text(value: Any) -> str:
  if value is None:
    return ""
  return str(value)


def build_context(item: dict[str, Any]) -> dict[str, str]:
  """Extract the prompt context of a validated item."""
  return {
    "entity_type": _text(item.get("entity_type")),
    "entity_id": _text(item.get("entity_id")),
    "lang": _text(item.get("lang")),
    "source_title": _text(item.get("source_title")),
    "source_excerpt": _text(item.get("source_excerpt")),
  }


def prompt_quick_boost(item: dict[str, Any]) -> str:
  c = build_context(item)
  return "\n".join(
    [
      "You are an e-commerce and SEO content assistant.",
      "Goal: produce a Quick Boost that optimises a page or product WITHOUT rewriting all of its content.",
      "",
      "Context:",
      f"- entity_type: {c['entity_type']}",
      f"- entity_id: {c['entity_id']}",
      f"- language: {c['lang']}",
      f"- source title: {c['source_title']}",
      f"- source excerpt: {c['source_excerpt']}",
      "",
      "Constraints:",
      "- Answer with JSON only, conforming to the provided schema.",
      "- No unverifiable promises (such as delivery times) unless they appear in the source.",
      "- Meta description: 140-160 characters.",
      "- H2: 3 to 6 short, non-redundant headings.",
      "- FAQ: at most 4 concrete questions.",
      "- Focus keyword: 2 to 4 words.",
      f"- Write in the language '{c['lang']}'.",
    ]
  )


def prompt_full_content(item: dict[str, Any]) -> str:
  c = build_context(item)
  return "\n".join(
    [
      "You are an e-commerce and SEO content assistant.",
      "Goal: produce COMPLETE, structured, publish-ready content without filler.",
      "",
      "Context:",
      f"- entity_type: {c['entity_type']}",
      f"- entity_id: {c['entity_id']}",
      f"- language: {c['lang']}",
      f"- source title: {c['source_title']}",
      f"- source excerpt: {c['source_excerpt']}",
      "",
      "Constraints:",
      "- Answer with JSON only, conforming to the provided schema.",
      "- content_html: plain HTML (p, h2, ul, li, strong), no inline styles.",
      "- meta_title: 45-65 characters; meta_description: 140-160 characters.",
      "- slug: kebab-case without accents, 3-8 words.",
      "- image_alts: 2 to 8 descriptions, without inventing photos.",
      "- checks.plagiarism_risk: low, medium or high (be cautious).",
      f"- Write in the language '{c['lang']}'.",
    ]
  )


def prompt_ecom_catalog(item: dict[str, Any]) -> str:
  c = build_context(item)
  return "\n".join(
    [
      "You are an e-commerce catalog assistant.",
      "Goal: generate the product copy (short and long descriptions, benefits, specs, usage, cross-sell) plus SEO.",
      "",
      "Context:",
      f"- entity_type: {c['entity_type']}",
      f"- entity_id: {c['entity_id']}",
      f"- language: {c['lang']}",
      f"- product name: {c['source_title']}",
      f"- source excerpt: {c['source_excerpt']}",
      "",
      "Constraints:",
      "- Answer with JSON only, conforming to the provided schema.",
      "- short_description: 1-2 sentences, at most 240 characters.",
      "- long_description_html: plain HTML (p, h2, ul, li, strong).",
      "- specs: an empty list when the source provides no specifications.",
      "- meta_title: 45-65 characters; meta_description: 140-160 characters.",
      f"- Write in the language '{c['lang']}'.",
    ]
  )


PROMPTS_BY_MODE: Final[dict[str, Callable[[dict[str, Any]], str]]] = {"quick_boost": prompt_quick_boost, "full_content": prompt_full_content, "ecom_catalog": prompt_ecom_catalog}


def build_prompt(mode: str, item: dict[str, Any]) -> str:
  builder = PROMPTS_BY_MODE.get(mode)
  if builder is None:
    raise ValueError(f"Unsupported generation mode: {mode}")
  return builder(item)
