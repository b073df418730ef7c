"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.1 request bytes into HTTPRequest objects.

=============================================================================
HTTP REQUEST ANATOMY
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     HTTP REQUEST STRUCTURE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    POST /?debug=1 HTTP/1.1\r\n            ← request line            │
    │    Host: localhost:3000\r\n               ┐                         │
    │    Origin: http://localhost:3000\r\n      │ headers                 │
    │    Content-Type: application/json\r\n     │ (case-insensitive)      │
    │    Content-Length: 24\r\n                 ┘                         │
    │    \r\n                                   ← separator               │
    │    {"testName": " xor  "}                 ← body (≤ 10 KB)          │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

Besides what is on the wire, every request carries two facts added by the
listener that accepted it:

    client_address   (ip, port)   the rate limit key is the ip
    transport        "http" | "https"   drives the HSTS header

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from urllib.parse import parse_qs, urlsplit
import re
import uuid


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the HTTP status code to answer with:

        400 Bad Request                - Malformed request syntax
        405 Method Not Allowed         - Unknown method token
        413 Payload Too Large          - Body exceeds max_body_size
        501 Not Implemented            - Transfer-Encoding other than identity
        505 HTTP Version Not Supported - Not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


def _new_request_id() -> str:
    return uuid.uuid4().hex[:8]


def check_transfer_encoding(value: Optional[str]):
    """
    Refuse framed bodies this server does not decode.

    Bodies are delimited by Content-Length only. Any Transfer-Encoding
    other than "identity" is answered with 501 before the body is read.
    """
    if value is None:
        return
    if value.strip().lower() != "identity":
        raise HTTPParseError(
            f"Transfer-Encoding not supported: {value}",
            status_code=501,
        )


@dataclass
class HTTPRequest:
    """
    Represents a parsed HTTP request.

    =========================================================================
    ATTRIBUTES
    =========================================================================

        method:         HTTP method token (GET, POST, OPTIONS, ...)
        path:           Request path exactly as sent, without query string.
                        Echoed back verbatim in 404 bodies.
        headers:        Header dict with LOWERCASE keys
        query_params:   "?a=1&a=2" → {"a": ["1", "2"]}
        body:           Raw body bytes (already bounded by the reader)
        client_address: (ip, port) of the peer
        transport:      "http" or "https", set by the accepting listener
        request_id:     Short id used in logs and X-Request-ID
        fields:         Sanitized body fields, filled by the validation stage

    =========================================================================
    """

    method: str
    path: str
    version: str = "HTTP/1.1"

    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""

    client_address: tuple[str, int] = ("", 0)
    transport: str = "http"
    request_id: str = field(default_factory=_new_request_id)

    fields: Dict[str, Any] = field(default_factory=dict)

    @property
    def client_ip(self) -> str:
        return self.client_address[0]

    @property
    def is_secure(self) -> bool:
        """True when the request arrived on the encrypted listener."""
        return self.transport == "https"

    @property
    def content_type(self) -> Optional[str]:
        """Content-Type without parameters ("application/json; charset=utf-8" → "application/json")."""
        ct = self.headers.get("content-type", "")
        return ct.split(";")[0].strip().lower() or None

    @property
    def user_agent(self) -> str:
        return self.headers.get("user-agent", "")

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps alive unless "Connection: close";
        HTTP/1.0 closes unless "Connection: keep-alive".
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return connection != "close"
        return connection == "keep-alive"

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)


class RequestParser:
    """
    Parses raw HTTP request bytes into HTTPRequest objects.

    ==========================================================================
    PARSER STEPS
    ==========================================================================

        1. Split at \\r\\n\\r\\n          missing → 400
        2. Request line                  bad → 400, unknown method → 405,
                                         unknown version → 505
        3. Headers                       lowercase names, duplicates joined
        4. Transfer-Encoding             anything but identity → 501
        5. Content-Length vs bound       bigger → 413
        6. Build HTTPRequest

    ==========================================================================
    """

    VALID_METHODS = {
        "GET", "POST", "PUT", "DELETE", "PATCH",
        "HEAD", "OPTIONS", "TRACE", "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_body_size: int = 10 * 1024):
        self.max_body_size = max_body_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0),
        transport: str = "http",
    ) -> HTTPRequest:
        """
        Parse raw HTTP request data into an HTTPRequest object.

        Args:
            data: Raw request bytes (headers plus exactly Content-Length body).
            client_address: Peer (ip, port).
            transport: "http" or "https", from the accepting listener.

        Raises:
            HTTPParseError: If the request is malformed or too large.
        """
        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        header_section = data[:header_end].decode("utf-8", errors="replace")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        method, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        check_transfer_encoding(headers.get("transfer-encoding"))

        # ─────────────────────────────────────────────────────────────────
        # BODY BOUNDS
        # ─────────────────────────────────────────────────────────────────
        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header")

        if content_length < 0:
            raise HTTPParseError("Invalid Content-Length header")

        if content_length > self.max_body_size:
            raise HTTPParseError(
                f"Request body too large: {content_length} bytes",
                status_code=413,
            )

        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            client_address=client_address,
            transport=transport,
        )

    def _parse_request_line(
        self,
        line: str
    ) -> tuple[str, str, Dict[str, list[str]], str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line}")

        method, target, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(
                f"Unsupported HTTP version: {version}",
                status_code=505,
            )

        path, query = self._split_target(target)
        query_params = parse_qs(query, keep_blank_values=True)

        return method, path, query_params, version

    def _split_target(self, target: str) -> tuple[str, str]:
        """
        Split a request target into (path, query).

            origin-form     /a//b?x=1          → ("/a//b", "x=1")
            absolute-form   http://h:3000/a?x  → ("/a", "x")
            asterisk-form   *                  → ("*", "")

        The path is kept undecoded and exactly as sent so error bodies can
        echo it verbatim. "//foo" is a path here, not an authority.
        """
        if target.startswith("/") or target == "*":
            path, _, query = target.partition("?")
            return path, query

        if target.lower().startswith(("http://", "https://")):
            parts = urlsplit(target)
            return parts.path or "/", parts.query

        raise HTTPParseError(f"Invalid request target: {target}")

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Parse header lines into a dict with lowercase names.

        Repeated headers are joined with ", " as RFC 7230 allows;
        lines starting with whitespace continue the previous header.
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue  # lenient: skip malformed header lines

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers
