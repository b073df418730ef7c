"""
=============================================================================
SECURITY HEADERS MIDDLEWARE
=============================================================================

First stage of the pipeline. Hardens every response the browser sees,
including the 403/429/400/500 answers produced further down the chain.

    ┌─────────────────────────────────────┬───────────────────────────────┐
    │ Header                              │ Value                         │
    ├─────────────────────────────────────┼───────────────────────────────┤
    │ Content-Security-Policy             │ default-src 'self'; ...       │
    │ X-Frame-Options                     │ SAMEORIGIN                    │
    │ X-Content-Type-Options              │ nosniff                       │
    │ X-DNS-Prefetch-Control              │ off                           │
    │ X-Permitted-Cross-Domain-Policies   │ none                          │
    │ Referrer-Policy                     │ no-referrer                   │
    │ Strict-Transport-Security           │ max-age=31536000;             │
    │   (encrypted listener only)         │ includeSubDomains             │
    └─────────────────────────────────────┴───────────────────────────────┘

HSTS over plain HTTP is ignored by browsers and would be misleading, so it
is keyed on the transport recorded by the accepting listener.

This stage never terminates the chain.

=============================================================================
"""

from typing import Dict, Optional

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


DEFAULT_CSP = ";".join([
    "default-src 'self'",
    "base-uri 'self'",
    "font-src 'self' https: data:",
    "form-action 'self'",
    "frame-ancestors 'self'",
    "img-src 'self' data:",
    "object-src 'none'",
    "script-src 'self'",
    "script-src-attr 'none'",
    "style-src 'self' https: 'unsafe-inline'",
    "upgrade-insecure-requests",
])

DEFAULT_HEADERS: Dict[str, str] = {
    "Content-Security-Policy": DEFAULT_CSP,
    "X-Frame-Options": "SAMEORIGIN",
    "X-Content-Type-Options": "nosniff",
    "X-DNS-Prefetch-Control": "off",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Referrer-Policy": "no-referrer",
}

HSTS_VALUE = "max-age=31536000; includeSubDomains"


class SecurityHeadersMiddleware(Middleware):
    """
    Adds the fixed hardening headers to every response.

    Usage:
        Stage("security-headers", SecurityHeadersMiddleware())
    """

    def __init__(
        self,
        headers: Optional[Dict[str, str]] = None,
        hsts: str = HSTS_VALUE,
    ):
        self.headers = dict(DEFAULT_HEADERS if headers is None else headers)
        self.hsts = hsts

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        response = next(request)

        response.headers.update(self.headers)

        if request.is_secure:
            response.headers["Strict-Transport-Security"] = self.hsts

        return response
