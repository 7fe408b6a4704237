"""
test_cv_schema.py
~~~~~~~~~~~~~~~~~
Parsing untrusted model replies into structured CV / registration records.
"""
from __future__ import annotations

import json

import pytest
from hypothesis import given, settings, HealthCheck
from hypothesis import strategies as st

from app.services.cv_schema import (
    CV_REQUIRED_KEYS,
    SchemaValidationError,
    is_complete_cv,
    is_complete_registration,
    parse_structured_cv,
    parse_structured_registration,
    strip_code_fences,
)


class TestStripCodeFences:

    def test_json_fence(self):
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_bare_fence(self):
        assert strip_code_fences("```\n<div>x</div>\n```") == "<div>x</div>"

    def test_no_fence_untouched(self):
        assert strip_code_fences('  {"a": 1}  ') == '{"a": 1}'


class TestParseStructuredCV:

    def test_valid_reply(self, sample_cv):
        parsed = parse_structured_cv(json.dumps(sample_cv))
        assert parsed["fullName"] == "Jane Doe"
        assert parsed["experience"][0]["company"] == "Private Family"
        assert parsed["personalDetails"]["languages"] == ["English", "French"]

    def test_fenced_reply(self, sample_cv):
        parsed = parse_structured_cv(f"```json\n{json.dumps(sample_cv)}\n```")
        assert parsed["fullName"] == "Jane Doe"

    def test_loose_types_are_coerced(self, sample_cv):
        sample_cv["skills"] = "First Aid, Cooking; Driving"
        sample_cv["personalDetails"]["languages"] = "English"
        sample_cv["education"][0]["endYear"] = 2010
        parsed = parse_structured_cv(json.dumps(sample_cv))
        assert parsed["skills"] == ["First Aid", "Cooking", "Driving"]
        assert parsed["personalDetails"]["languages"] == ["English"]
        assert parsed["education"][0]["endYear"] == "2010"

    def test_unknown_keys_are_kept(self, sample_cv):
        sample_cv["references"] = "Available on request"
        assert parse_structured_cv(json.dumps(sample_cv))["references"] == "Available on request"

    @pytest.mark.parametrize("reply", [None, "", "   "])
    def test_empty_reply(self, reply):
        with pytest.raises(SchemaValidationError, match="empty"):
            parse_structured_cv(reply)

    def test_not_json(self):
        with pytest.raises(SchemaValidationError, match="not valid JSON"):
            parse_structured_cv("Sure! Here is the CV you asked for.")

    def test_array_instead_of_object(self):
        with pytest.raises(SchemaValidationError, match="expected a JSON object"):
            parse_structured_cv("[1, 2, 3]")

    @pytest.mark.parametrize("key", CV_REQUIRED_KEYS)
    def test_missing_required_key(self, sample_cv, key):
        del sample_cv[key]
        with pytest.raises(SchemaValidationError, match="missing required keys"):
            parse_structured_cv(json.dumps(sample_cv))

    def test_malformed_section(self, sample_cv):
        sample_cv["experience"] = ["ten years of childcare"]
        with pytest.raises(SchemaValidationError):
            parse_structured_cv(json.dumps(sample_cv))


class TestParseStructuredRegistration:

    def test_valid_reply(self, sample_registration):
        parsed = parse_structured_registration(json.dumps(sample_registration))
        assert parsed["emergencyContactDetails"]["relationship"] == "Brother"
        # Fields the model left out default to empty strings
        assert parsed["utrNumber"] == ""

    def test_missing_contact_fields(self):
        with pytest.raises(SchemaValidationError, match="Registration extraction"):
            parse_structured_registration(json.dumps({"fullName": "Jane Doe"}))


class TestCompleteness:

    def test_complete(self, sample_cv, sample_registration):
        assert is_complete_cv(sample_cv)
        assert is_complete_registration(sample_registration)

    @pytest.mark.parametrize("value", [None, "", [], {"fullName": "Jane"}])
    def test_incomplete_cv(self, value):
        assert not is_complete_cv(value)

    def test_incomplete_registration(self, sample_registration):
        del sample_registration["phone"]
        assert not is_complete_registration(sample_registration)


# ─── Property-based ──────────────────────────────────────────────────────────

json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.floats(allow_nan=False, allow_infinity=False) | st.text(max_size=20),
    lambda children: st.lists(children, max_size=4) | st.dictionaries(st.text(max_size=8), children, max_size=4),
    max_leaves=12,
)


@given(st.text())
@settings(max_examples=200)
def test_arbitrary_text_is_parsed_or_rejected(reply):
    """Whatever the model sends, the parser returns a dict or raises SchemaValidationError."""
    try:
        result = parse_structured_cv(reply)
    except SchemaValidationError:
        return
    assert isinstance(result, dict)


@given(st.fixed_dictionaries({key: json_values for key in CV_REQUIRED_KEYS}))
@settings(max_examples=200, suppress_health_check=[HealthCheck.too_slow])
def test_required_keys_with_arbitrary_values(payload):
    """A reply that passes validation always survives a persistence round trip."""
    try:
        result = parse_structured_cv(json.dumps(payload))
    except SchemaValidationError:
        return
    assert is_complete_cv(result)
    assert json.loads(json.dumps(result)) == result
