"""Tests for tolerant JSON parsing of model output."""

import pytest
from meridian.utils.json_parser import parse_json_from_llm


class TestParseJsonFromLlm:
    def test_plain_json(self):
        assert parse_json_from_llm('{"themes": []}') == {"themes": []}

    def test_json_in_codeblock(self):
        raw = '```json\n{"executive_summary": "ok"}\n```'
        assert parse_json_from_llm(raw) == {"executive_summary": "ok"}

    def test_json_embedded_in_prose(self):
        raw = 'Here is my analysis: {"stakeholder_scores": {"S1": 2.5}} Hope this helps.'
        assert parse_json_from_llm(raw) == {"stakeholder_scores": {"S1": 2.5}}

    def test_top_level_array_rejected(self):
        with pytest.raises(ValueError):
            parse_json_from_llm('["a", "b"]')

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            parse_json_from_llm("not json at all")

    def test_empty_string_raises(self):
        with pytest.raises(ValueError):
            parse_json_from_llm("   ")

    def test_prose_around_fenced_block(self):
        raw = 'Sure.\n```\n{"priority": "critical"}\n```\nLet me know.'
        assert parse_json_from_llm(raw) == {"priority": "critical"}
