"""
=============================================================================
HELLO HANDLER
=============================================================================

The one business route of the service: "/" answers a fixed greeting.

    any method  /   ──►  200  Content-Type: text/plain
                              Hello, World!\\n

Stateless and deterministic. Whatever the security stages attached on
the way in is merged onto this response on the way out.

=============================================================================
"""

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, HTTPStatus


GREETING = "Hello, World!\n"


def hello(request: HTTPRequest) -> HTTPResponse:
    """Return the fixed greeting."""
    return (ResponseBuilder()
        .status(HTTPStatus.OK)
        .text(GREETING)
        .build())
