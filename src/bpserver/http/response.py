"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

Builds HTTP/1.1 responses and serializes them for the wire.

=============================================================================
HEADER ORDER
=============================================================================

Headers live in a plain dict, so they are emitted in insertion order.
Stages add theirs as the response travels back out of the pipeline, and
the serializer appends the three automatic headers last:

    HTTP/1.1 200 OK
    Content-Type: text/plain            ← Response Generator
    X-RateLimit-Limit: 100              ← rate-limit stage
    Content-Security-Policy: ...        ← security-header stage
    X-Request-ID: 3f2a9c1e              ← pipeline
    Content-Length: 14                  ┐
    Date: Wed, 01 Jan 2026 12:00:00 GMT │ to_bytes()
    Server: bpserver/1.0                ┘

=============================================================================
BUILDER PATTERN
=============================================================================

    response = (ResponseBuilder()
        .status(HTTPStatus.TOO_MANY_REQUESTS)
        .header("Retry-After", "60")
        .json({"error": "...", "retryAfter": 60})
        .build())

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Any, Union
import json

from .status_codes import HTTPStatus


@dataclass
class HTTPResponse:
    """
    An HTTP response on its way to the client.

    Mutable while it travels back through the pipeline; the connection
    serializes it once and drops it.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive lookup over the response headers."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    @property
    def json(self) -> Any:
        """Decode a JSON body (tests and the access log use this)."""
        return json.loads(self.body.decode("utf-8")) if self.body else None

    def to_bytes(self, server_name: str = "bpserver/1.0", include_body: bool = True) -> bytes:
        """
        Serialize the response for socket.sendall().

        Args:
            server_name: Value for the Server header.
            include_body: False for HEAD requests. Content-Length still
                          reports the full body size.
        """
        response_headers = dict(self.headers)

        if "Content-Length" not in response_headers:
            response_headers["Content-Length"] = str(len(self.body))

        if "Date" not in response_headers:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if "Server" not in response_headers:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        header_bytes = "\r\n".join(lines).encode("utf-8") + b"\r\n"
        return header_bytes + (self.body if include_body else b"")


class ResponseBuilder:
    """
    Fluent builder for HTTPResponse.

    Every method except build() returns self:

        ResponseBuilder().status(HTTPStatus.OK).text("Hello, World!\\n").build()
    """

    def __init__(self):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body: bytes = b""

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def headers(self, headers: Dict[str, str]) -> "ResponseBuilder":
        self._headers.update(headers)
        return self

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = "text/plain") -> "ResponseBuilder":
        """Plain text body."""
        self._headers["Content-Type"] = content_type
        self._body = text.encode("utf-8")
        return self

    def json(self, data: Any) -> "ResponseBuilder":
        """
        JSON body with ``application/json; charset=utf-8``.

        ensure_ascii=False keeps non-ASCII characters readable instead of
        escaping them to \\uXXXX.
        """
        self._headers["Content-Type"] = "application/json; charset=utf-8"
        self._body = json.dumps(data, ensure_ascii=False).encode("utf-8")
        return self

    def no_store(self) -> "ResponseBuilder":
        self._headers["Cache-Control"] = "no-store"
        return self

    def close_connection(self) -> "ResponseBuilder":
        self._headers["Connection"] = "close"
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def format_http_date(dt: datetime) -> str:
    """
    Format a datetime as an HTTP-date (RFC 7231).

    Example: Wed, 01 Jan 2026 12:00:00 GMT. Always GMT, never local time.
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# ERROR RESPONSES
# =============================================================================
#
# One helper per per-request failure category. Each body shape is stable:
# clients and tests key on these fields.
#
# =============================================================================

def forbidden_origin(origin: str) -> HTTPResponse:
    """403 for an Origin outside the CORS allow-list."""
    return (ResponseBuilder()
        .status(HTTPStatus.FORBIDDEN)
        .json({
            "error": "Forbidden",
            "message": "Origin not allowed by CORS policy",
            "origin": origin,
        })
        .build())


def too_many_requests(retry_after: int) -> HTTPResponse:
    """429 once a client key has used up its window."""
    return (ResponseBuilder()
        .status(HTTPStatus.TOO_MANY_REQUESTS)
        .header("Retry-After", str(retry_after))
        .json({
            "error": "Too many requests from this IP, please try again later.",
            "retryAfter": retry_after,
        })
        .build())


def validation_failed(details: list) -> HTTPResponse:
    """400 listing every failing field as {field, message}."""
    return (ResponseBuilder()
        .status(HTTPStatus.BAD_REQUEST)
        .json({"error": "Validation failed", "details": details})
        .build())


def not_found(method: str, path: str) -> HTTPResponse:
    """404 that echoes the requested path back unchanged."""
    return (ResponseBuilder()
        .status(HTTPStatus.NOT_FOUND)
        .json({
            "error": "Not Found",
            "message": f"Route {method} {path} not found",
            "path": path,
        })
        .build())


def internal_error() -> HTTPResponse:
    """
    500 for an exception that escaped a stage.

    The body stays generic; details go to the log, never to the client.
    """
    return (ResponseBuilder()
        .status(HTTPStatus.INTERNAL_SERVER_ERROR)
        .json({
            "error": "Internal Server Error",
            "message": "Something went wrong",
        })
        .build())


def error_response(status: HTTPStatus, message: str) -> HTTPResponse:
    """Connection-level errors (bad syntax, timeouts, overload): always close."""
    return (ResponseBuilder()
        .status(status)
        .json({"error": status.phrase, "message": message})
        .close_connection()
        .build())
