"""
Unit tests for HTTP response building.
"""

from datetime import datetime, timezone

from bpserver.http.status_codes import HTTPStatus
from bpserver.http.response import (
    HTTPResponse,
    ResponseBuilder,
    error_response,
    forbidden_origin,
    format_http_date,
    internal_error,
    not_found,
    too_many_requests,
    validation_failed,
)


class TestHTTPResponse:
    """Tests for HTTPResponse class."""

    def test_status_line(self):
        """Test status line generation."""
        response = HTTPResponse(status=HTTPStatus.TOO_MANY_REQUESTS)

        assert response.status_line == "HTTP/1.1 429 Too Many Requests"

    def test_to_bytes_includes_headers(self):
        """Test response serialization keeps header order and adds defaults."""
        response = HTTPResponse(
            status=HTTPStatus.OK,
            headers={"Content-Type": "text/plain", "X-First": "1"},
            body=b"Hello, World!\n",
        )

        raw = response.to_bytes()
        head, body = raw.split(b"\r\n\r\n", 1)
        lines = head.decode().split("\r\n")

        assert lines[0] == "HTTP/1.1 200 OK"
        assert lines[1] == "Content-Type: text/plain"
        assert lines[2] == "X-First: 1"
        assert "Content-Length: 14" in lines
        assert "Server: bpserver/1.0" in lines
        assert any(line.startswith("Date: ") for line in lines)
        assert body == b"Hello, World!\n"

    def test_to_bytes_without_body(self):
        """Test HEAD-style serialization keeps Content-Length but drops the body."""
        response = HTTPResponse(body=b"Hello, World!\n")

        raw = response.to_bytes(include_body=False)

        assert raw.endswith(b"\r\n\r\n")
        assert b"Content-Length: 14" in raw

    def test_get_header_case_insensitive(self):
        """Test response header lookup ignores case."""
        response = HTTPResponse(headers={"Retry-After": "60"})

        assert response.get_header("retry-after") == "60"
        assert response.get_header("X-Missing") == ""

    def test_set_header_chaining(self):
        """Test set_header returns self."""
        response = HTTPResponse()
        result = response.set_header("X-A", "1").set_header("X-B", "2")

        assert result is response
        assert response.headers == {"X-A": "1", "X-B": "2"}


class TestResponseBuilder:
    """Tests for ResponseBuilder class."""

    def test_text_body(self):
        """Test plain text response."""
        response = ResponseBuilder().text("Hello, World!\n").build()

        assert response.status == HTTPStatus.OK
        assert response.headers["Content-Type"] == "text/plain"
        assert response.body == b"Hello, World!\n"

    def test_json_body(self):
        """Test JSON response."""
        response = ResponseBuilder().json({"status": "OK"}).build()

        assert response.headers["Content-Type"] == "application/json; charset=utf-8"
        assert response.json == {"status": "OK"}

    def test_no_store_and_close(self):
        """Test cache and connection helpers."""
        response = ResponseBuilder().no_store().close_connection().build()

        assert response.headers["Cache-Control"] == "no-store"
        assert response.headers["Connection"] == "close"

    def test_method_chaining(self):
        """Test fluent interface."""
        response = (ResponseBuilder()
            .status(HTTPStatus.FORBIDDEN)
            .header("X-Custom", "value")
            .headers({"X-Other": "other"})
            .body("denied")
            .build())

        assert response.status == HTTPStatus.FORBIDDEN
        assert response.headers["X-Custom"] == "value"
        assert response.headers["X-Other"] == "other"
        assert response.body == b"denied"


class TestErrorResponses:
    """Tests for the per-category error bodies."""

    def test_forbidden_origin(self):
        response = forbidden_origin("http://evil.example")

        assert response.status == 403
        assert response.json == {
            "error": "Forbidden",
            "message": "Origin not allowed by CORS policy",
            "origin": "http://evil.example",
        }

    def test_too_many_requests(self):
        response = too_many_requests(42)

        assert response.status == 429
        assert response.headers["Retry-After"] == "42"
        assert response.json == {
            "error": "Too many requests from this IP, please try again later.",
            "retryAfter": 42,
        }

    def test_validation_failed(self):
        details = [{"field": "testName", "message": "testName is required"}]
        response = validation_failed(details)

        assert response.status == 400
        assert response.json == {"error": "Validation failed", "details": details}

    def test_not_found_echoes_path(self):
        response = not_found("GET", "/some%20where")

        assert response.status == 404
        assert response.json["path"] == "/some%20where"
        assert response.json["message"] == "Route GET /some%20where not found"

    def test_internal_error_is_generic(self):
        response = internal_error()

        assert response.status == 500
        assert response.json == {
            "error": "Internal Server Error",
            "message": "Something went wrong",
        }

    def test_error_response_closes(self):
        response = error_response(HTTPStatus.PAYLOAD_TOO_LARGE, "too big")

        assert response.status == 413
        assert response.headers["Connection"] == "close"
        assert response.json == {"error": "Payload Too Large", "message": "too big"}


class TestHTTPStatus:
    """Tests for HTTPStatus enum."""

    def test_status_phrases(self):
        """Test that statuses have phrases."""
        assert HTTPStatus.OK.phrase == "OK"
        assert HTTPStatus.NOT_FOUND.phrase == "Not Found"
        assert HTTPStatus.INTERNAL_SERVER_ERROR.phrase == "Internal Server Error"

    def test_is_error(self):
        assert HTTPStatus.NOT_FOUND.is_error
        assert HTTPStatus.INTERNAL_SERVER_ERROR.is_error
        assert not HTTPStatus.OK.is_error


class TestFormatHTTPDate:
    """Tests for HTTP date formatting."""

    def test_format(self):
        """Test HTTP date format."""
        dt = datetime(2026, 1, 15, 12, 30, 45, tzinfo=timezone.utc)

        assert format_http_date(dt) == "Thu, 15 Jan 2026 12:30:45 GMT"
