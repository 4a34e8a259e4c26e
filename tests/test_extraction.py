"""
Unit tests for response extraction.

Tests regex and path modes, and that failures yield None instead of errors.
"""

import json

import pytest

from prompt_desk.core.extraction import ExtractionMode, extract


class TestRegexExtraction:
    """Test regex mode."""

    def test_first_group_returned(self):
        """Verify the documented example."""
        assert extract("Answer: 42", "Answer: (.+)", ExtractionMode.REGEX) == "42"

    def test_whole_match_without_groups(self):
        assert extract("Total is 17 apples", r"\d+ apples") == "17 apples"

    def test_case_insensitive(self):
        assert extract("ANSWER: yes", "answer: (\\w+)") == "yes"

    def test_first_match_only(self):
        assert extract("id=1, id=2", r"id=(\d)") == "1"

    def test_no_match_returns_none(self):
        assert extract("nothing here", "Answer: (.+)") is None

    def test_invalid_pattern_returns_none(self):
        """An invalid pattern is not an error."""
        assert extract("Answer: 42", "Answer: (.+") is None
        assert extract("Answer: 42", "[unclosed") is None

    def test_optional_group_not_taking_part(self):
        """Falls back to the whole match when group 1 did not participate."""
        assert extract("value", "(x)?value") == "value"

    def test_empty_pattern_returns_none(self):
        assert extract("Answer: 42", "") is None


class TestPathExtraction:
    """Test dot-path mode over JSON responses."""

    def setup_method(self):
        self.response = json.dumps({
            "answer": "42",
            "meta": {"confidence": 0.9, "source": {"name": "calc"}},
            "items": [1, 2, 3],
            "flag": True
        })

    def test_top_level_string(self):
        assert extract(self.response, "answer", ExtractionMode.PATH) == "42"

    def test_nested_path(self):
        assert extract(self.response, "meta.source.name", ExtractionMode.PATH) == "calc"

    def test_non_string_leaf_rendered_as_json(self):
        assert extract(self.response, "meta.confidence", ExtractionMode.PATH) == "0.9"
        assert extract(self.response, "items", ExtractionMode.PATH) == "[1,2,3]"
        assert extract(self.response, "flag", ExtractionMode.PATH) == "true"
        assert extract(self.response, "meta.source", ExtractionMode.PATH) == '{"name":"calc"}'

    def test_missing_field_returns_none(self):
        assert extract(self.response, "meta.missing", ExtractionMode.PATH) is None

    def test_non_object_intermediate_returns_none(self):
        assert extract(self.response, "answer.length", ExtractionMode.PATH) is None
        assert extract(self.response, "items.0", ExtractionMode.PATH) is None

    def test_parse_failure_returns_none(self):
        assert extract("not json at all", "answer", ExtractionMode.PATH) is None

    def test_empty_path_segment_returns_none(self):
        assert extract(self.response, "meta..confidence", ExtractionMode.PATH) is None

    def test_deeply_nested_response_returns_none(self):
        assert extract("[" * 100000, "answer", ExtractionMode.PATH) is None


class TestModeHandling:
    """Test mode parsing."""

    def test_mode_from_string_value(self):
        assert ExtractionMode("regex") == ExtractionMode.REGEX
        assert ExtractionMode("path") == ExtractionMode.PATH

    def test_unknown_mode_raises(self):
        with pytest.raises(ValueError):
            ExtractionMode("xpath")

    def test_extract_accepts_mode_value(self):
        assert extract("Answer: 42", r"answer: (\d+)", "regex") == "42"
        assert extract('{"a": {"b": "deep"}}', "a.b", "path") == "deep"

    def test_extract_rejects_unknown_mode_value(self):
        with pytest.raises(ValueError):
            extract("Answer: 42", "answer", "xpath")
