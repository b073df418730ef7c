"""
Unit tests for the input validation stage.
"""

import json

import pytest

from bpserver.middleware.validation import (
    FieldRule,
    ValidationMiddleware,
    DEFAULT_RULES,
    sanitize,
)
from bpserver.http.response import ResponseBuilder

from conftest import make_request


class Capture:
    """Downstream handler that keeps the request it was given."""

    def __init__(self):
        self.request = None

    def __call__(self, request):
        self.request = request
        return ResponseBuilder().text("Hello, World!\n").build()


def json_request(payload, method: str = "POST"):
    return make_request(
        method=method,
        headers={"Content-Type": "application/json"},
        body=json.dumps(payload).encode(),
    )


@pytest.fixture
def validation() -> ValidationMiddleware:
    return ValidationMiddleware()


class TestSanitize:
    """Tests for sanitize()."""

    def test_trims_and_escapes(self):
        assert sanitize("  <b>x</b> ") == "&lt;b&gt;x&lt;/b&gt;"

    def test_quotes_escaped(self):
        assert sanitize("\"a\" & 'b'") == "&quot;a&quot; &amp; &#x27;b&#x27;"

    def test_non_strings_untouched(self):
        assert sanitize(42) == 42
        assert sanitize(None) is None
        assert sanitize(["<x>"]) == ["<x>"]


class TestFieldRule:
    """Tests for FieldRule.check()."""

    def test_optional_absent(self):
        assert FieldRule(max_length=5).check("name", None) is None

    def test_required_absent(self):
        assert FieldRule(required=True).check("name", None) == "name is required"

    def test_required_empty(self):
        assert FieldRule(required=True).check("name", "") == "name is required"

    def test_not_a_string(self):
        assert FieldRule().check("name", 7) == "name must be a string"

    def test_lengths(self):
        rule = FieldRule(min_length=2, max_length=4)

        assert rule.check("name", "a") == "name must be at least 2 characters"
        assert rule.check("name", "abcde") == "name must be at most 4 characters"
        assert rule.check("name", "abc") is None

    def test_allowed_values(self):
        rule = FieldRule(allowed_values=("unit", "integration"))

        assert rule.check("kind", "unit") is None
        assert rule.check("kind", "Unit") == "kind must be one of: unit, integration"


class TestValidationMiddleware:
    """Tests for ValidationMiddleware."""

    def test_no_body_passes(self, validation):
        """Test bodiless requests go straight through."""
        downstream = Capture()
        response = validation(make_request(), downstream)

        assert response.status == 200
        assert downstream.request.fields == {}

    def test_other_content_type_passes(self, validation):
        """Test unknown content types are left as raw bytes."""
        downstream = Capture()
        request = make_request(
            method="POST",
            headers={"Content-Type": "text/plain"},
            body=b"<script>",
        )

        response = validation(request, downstream)

        assert response.status == 200
        assert downstream.request.body == b"<script>"
        assert downstream.request.fields == {}

    def test_valid_json_sanitized(self, validation):
        """Test accepted fields are trimmed and escaped for the handler."""
        downstream = Capture()
        request = json_request({"testName": "  <i>xor</i>  ", "testType": "unit", "extra": 3})

        response = validation(request, downstream)

        assert response.status == 200
        assert downstream.request.fields == {
            "testName": "&lt;i&gt;xor&lt;/i&gt;",
            "testType": "unit",
            "extra": 3,
        }

    def test_all_errors_reported(self, validation):
        """Test every failing field appears in one 400."""
        downstream = Capture()
        request = json_request({
            "testName": "x" * 101,
            "testType": "smoke",
            "description": "d" * 501,
        })

        response = validation(request, downstream)

        assert downstream.request is None
        assert response.status == 400
        assert response.json["error"] == "Validation failed"
        assert [d["field"] for d in response.json["details"]] == [
            "testName", "testType", "description",
        ]

    def test_length_counts_escaped_text(self, validation):
        """Test limits apply after escaping."""
        request = json_request({"testName": "<" * 30})

        response = validation(request, Capture())

        assert response.status == 400
        assert response.json["details"][0]["field"] == "testName"

    def test_whitespace_only_name_rejected(self, validation):
        response = validation(json_request({"testName": "   "}), Capture())

        assert response.status == 400
        assert response.json["details"][0]["message"] == "testName must be at least 1 characters"

    def test_invalid_json(self, validation):
        """Test malformed JSON is a body error, not a crash."""
        request = make_request(
            method="POST",
            headers={"Content-Type": "application/json"},
            body=b'{"testName": ',
        )

        response = validation(request, Capture())

        assert response.status == 400
        assert response.json["details"][0]["field"] == "body"
        assert response.json["details"][0]["message"].startswith("Invalid JSON")

    def test_json_array_rejected(self, validation):
        response = validation(json_request(["unit"]), Capture())

        assert response.status == 400
        assert response.json["details"] == [
            {"field": "body", "message": "JSON body must be an object"},
        ]

    def test_invalid_utf8(self, validation):
        request = make_request(
            method="POST",
            headers={"Content-Type": "application/json"},
            body=b"\xff\xfe",
        )

        response = validation(request, Capture())

        assert response.json["details"][0]["message"] == "Body is not valid UTF-8"

    def test_form_body(self, validation):
        """Test urlencoded bodies are decoded, last value winning."""
        downstream = Capture()
        request = make_request(
            method="POST",
            headers={"Content-Type": "application/x-www-form-urlencoded; charset=utf-8"},
            body=b"testName=first&testName=%3Cb%3E&testType=integration",
        )

        response = validation(request, downstream)

        assert response.status == 200
        assert downstream.request.fields == {
            "testName": "&lt;b&gt;",
            "testType": "integration",
        }

    def test_non_string_field_rejected(self, validation):
        response = validation(json_request({"testType": 5}), Capture())

        assert response.status == 400
        assert response.json["details"][0]["message"] == "testType must be a string"

    def test_custom_rules(self):
        validation = ValidationMiddleware(rules={"email": FieldRule(required=True)})

        response = validation(json_request({"testName": "x" * 500}), Capture())

        assert response.status == 400
        assert response.json["details"] == [{"field": "email", "message": "email is required"}]

    def test_default_rules(self):
        assert set(DEFAULT_RULES) == {"testName", "testType", "description"}
        assert DEFAULT_RULES["testName"].max_length == 100
        assert DEFAULT_RULES["description"].max_length == 500
