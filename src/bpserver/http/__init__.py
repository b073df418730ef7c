"""
=============================================================================
HTTP PROTOCOL LAYER
=============================================================================

Request parsing, response building, status codes and routing.

    bytes ──► RequestParser ──► HTTPRequest ──► pipeline ──► Router
                                                              │
    bytes ◄── HTTPResponse.to_bytes() ◄───────────────────────┘

=============================================================================
"""

from .status_codes import HTTPStatus
from .request import HTTPRequest, RequestParser, HTTPParseError
from .response import HTTPResponse, ResponseBuilder
from .router import Router, Route, Handler

__all__ = [
    # Status codes
    "HTTPStatus",

    # Request
    "HTTPRequest",
    "RequestParser",
    "HTTPParseError",

    # Response
    "HTTPResponse",
    "ResponseBuilder",

    # Routing
    "Router",
    "Route",
    "Handler",
]
