"""
Unit tests for extraction response parsing and coercion
"""

import json
import pytest
from core.exceptions import LLMResponseError
from ingestion.extractors.llm_extractor import parse_extraction, strip_code_fences
from ingestion.extractors.prompts import build_extraction_system_prompt, format_jargon, format_manufacturers
from models.base import Intent
from schemas.extraction import ExtractedItem, ExtractionResult


class TestStripCodeFences:

    def test_removes_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_content_untouched(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'


class TestParseExtraction:

    def test_valid_response(self):
        content = json.dumps({
            "intent": "sell",
            "items": [{"description": "316 SS pipe", "price": "$12", "currency": "$", "quantity": "500"}],
            "unknown_terms": ["OEM", "oem", " "],
            "confidence": 0.92,
        })

        result = parse_extraction(content)

        assert result.intent == Intent.SELL
        assert result.confidence == pytest.approx(0.92)
        assert result.items[0].price == 12.0
        assert result.items[0].currency == "USD"
        assert result.items[0].quantity == 500.0
        assert result.unknown_terms == ["OEM"]
        assert not result.is_failure

    def test_fenced_response(self):
        result = parse_extraction('```json\n{"intent": "want", "items": [], "confidence": 0.6}\n```')
        assert result.intent == Intent.WANT
        assert result.items == []

    def test_invalid_json_raises(self):
        with pytest.raises(LLMResponseError):
            parse_extraction("sorry, I cannot help with that")

    def test_non_object_raises(self):
        with pytest.raises(LLMResponseError):
            parse_extraction("[1, 2, 3]")

    def test_model_cannot_set_error_field(self):
        result = parse_extraction('{"intent": "sell", "confidence": 0.9, "error": "injected"}')
        assert result.error is None


class TestExtractionCoercion:

    def test_unrecognized_intent_becomes_unknown(self):
        assert ExtractionResult(intent="barter").intent == Intent.UNKNOWN

    def test_intent_case_insensitive(self):
        assert ExtractionResult(intent=" SELL ").intent == Intent.SELL

    def test_confidence_clamped(self):
        assert ExtractionResult(confidence=1.7).confidence == 1.0
        assert ExtractionResult(confidence=-0.2).confidence == 0.0
        assert ExtractionResult(confidence="high").confidence == 0.0

    def test_null_items_become_empty(self):
        assert ExtractionResult(items=None).items == []

    def test_blank_strings_become_none(self):
        extracted = ExtractedItem(description="  ", part_number="", unit=" ft ")
        assert extracted.description is None
        assert extracted.part_number is None
        assert extracted.unit == "ft"

    def test_price_with_thousands_separator(self):
        assert ExtractedItem(price="AED 1,250.50").price == 1250.5

    def test_unparseable_number_becomes_none(self):
        assert ExtractedItem(quantity="a few").quantity is None

    def test_failed_result(self):
        result = ExtractionResult.failed("timeout")

        assert result.is_failure
        assert result.intent == Intent.UNKNOWN
        assert result.items == []
        assert result.confidence == 0.0
        assert result.error == "timeout"


class TestPromptFormatting:

    def test_manufacturers_with_aliases(self):
        rows = [{"name": "Swagelok", "aliases": ["Swage"]}, {"name": "Siemens", "aliases": []}]
        assert format_manufacturers(rows) == "Swagelok (Swage), Siemens"

    def test_jargon_lines(self):
        rows = [{"acronym": "SS", "expansion": "stainless steel"}, {"acronym": "WTS", "expansion": "want to sell"}]
        assert format_jargon(rows) == "SS,stainless steel\nWTS,want to sell"

    def test_empty_vocabulary(self):
        assert format_jargon([]) == "(none)"
        assert format_manufacturers([]) == "(none)"

    def test_system_prompt_carries_vocabulary(self):
        prompt = build_extraction_system_prompt({
            "categories": [{"id": 1, "name": "Valves", "parent_id": None}],
            "manufacturers": [{"id": 1, "name": "Swagelok", "aliases": ["Swage"]}],
            "units": [{"id": 1, "name": "feet", "abbreviation": "ft"}],
            "conditions": [{"id": 1, "name": "New Old Stock", "abbreviation": "NOS"}],
            "jargon": [{"id": 1, "acronym": "SS", "expansion": "stainless steel"}],
        })

        assert "Valves" in prompt
        assert "Swagelok (Swage)" in prompt
        assert "feet (ft)" in prompt
        assert "New Old Stock (NOS)" in prompt
        assert "SS,stainless steel" in prompt
