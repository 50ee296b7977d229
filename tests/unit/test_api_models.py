from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.api.models import CreateJobRequest
from tests.factories import make_item


def test_item_text_fields_are_trimmed():
  request = CreateJobRequest.model_validate({"mode": "quick_boost", "items": [make_item("  p-9 ", lang=" en ", source_title=" Shoe ", source_excerpt=" Light. ")]})

  item = request.to_request()["items"][0]
  assert item["entity_id"] == "p-9"
  assert item["lang"] == "en"
  assert item["source_title"] == "Shoe"
  assert item["source_excerpt"] == "Light."


@pytest.mark.parametrize("field", ["entity_id", "source_title", "source_excerpt", "lang"])
def test_whitespace_only_item_fields_are_rejected(field):
  with pytest.raises(ValidationError) as excinfo:
    CreateJobRequest.model_validate({"mode": "quick_boost", "items": [make_item(**{field: "   "})]})

  assert excinfo.value.errors()[0]["loc"] == ("items", 0, field)


@pytest.mark.parametrize("field", ["source_title", "source_excerpt"])
def test_source_text_is_required(field):
  item = make_item()
  del item[field]

  with pytest.raises(ValidationError) as excinfo:
    CreateJobRequest.model_validate({"mode": "quick_boost", "items": [item]})

  assert excinfo.value.errors()[0]["type"] == "missing"
