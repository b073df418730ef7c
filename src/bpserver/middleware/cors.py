"""
=============================================================================
CORS (Cross-Origin Resource Sharing) MIDDLEWARE
=============================================================================

Second stage of the pipeline. Enforces an origin ALLOW-LIST on the server
side instead of only advertising it to browsers.

=============================================================================
DECISION TABLE
=============================================================================

    ┌─────────────────────────────┬────────────────────────────────────────┐
    │ Request                     │ Outcome                                │
    ├─────────────────────────────┼────────────────────────────────────────┤
    │ no Origin header            │ pass through, no CORS headers          │
    │ (curl, server-to-server)    │                                        │
    ├─────────────────────────────┼────────────────────────────────────────┤
    │ Origin not in allow-list    │ 403 Forbidden, chain stops here.       │
    │                             │ The rate limiter never sees it.        │
    │                             │ Quota headers are read, not counted.   │
    ├─────────────────────────────┼────────────────────────────────────────┤
    │ OPTIONS + allowed Origin +  │ 200 preflight, empty body,             │
    │ Access-Control-Request-     │ Allow-Methods / Allow-Headers /        │
    │ Method                      │ Max-Age. Later stages bypassed.        │
    ├─────────────────────────────┼────────────────────────────────────────┤
    │ anything else, allowed      │ continue, then add                     │
    │ Origin                      │ Access-Control-Allow-Origin (echoed),  │
    │                             │ Allow-Credentials, Vary: Origin        │
    └─────────────────────────────┴────────────────────────────────────────┘

A bare OPTIONS without Access-Control-Request-Method is not a preflight;
it goes on to the route like any other method.

=============================================================================
"""

from typing import Optional, List, Callable, Dict
from dataclasses import dataclass, field
import logging

from .base import Middleware, NextHandler
from ..config import DEFAULT_ALLOWED_ORIGINS
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, HTTPStatus, forbidden_origin


logger = logging.getLogger(__name__)


@dataclass
class CORSConfig:
    """
    CORS configuration options.

    =========================================================================
    CONFIGURATION GUIDE
    =========================================================================

        CORSConfig()   # the two local origins of the service

        CORSConfig(
            allow_origins=["https://dashboard.example.com"],
            allow_headers=["Content-Type", "Authorization"],
        )

    "*" is rejected. Every allowed origin is listed explicitly.

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # Exact origins allowed (scheme + host + port)
    # ─────────────────────────────────────────────────────────────────────
    allow_origins: List[str] = field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))

    # ─────────────────────────────────────────────────────────────────────
    # Advertised in preflight responses
    # ─────────────────────────────────────────────────────────────────────
    allow_methods: List[str] = field(
        default_factory=lambda: ["GET", "HEAD", "PUT", "PATCH", "POST", "DELETE"]
    )
    allow_headers: List[str] = field(
        default_factory=lambda: ["Content-Type", "Authorization"]
    )

    # ─────────────────────────────────────────────────────────────────────
    # Readable by browser scripts on actual responses
    # ─────────────────────────────────────────────────────────────────────
    expose_headers: List[str] = field(
        default_factory=lambda: [
            "X-Request-ID",
            "X-RateLimit-Limit",
            "X-RateLimit-Remaining",
            "X-RateLimit-Reset",
        ]
    )

    allow_credentials: bool = True

    # How long browsers may cache a preflight answer (seconds)
    max_age: int = 86400

    def __post_init__(self):
        if "*" in self.allow_origins:
            raise ValueError("Wildcard origin is not supported; list origins explicitly")


class CORSMiddleware(Middleware):
    """
    Origin allow-list enforcement.

    =========================================================================
    MIDDLEWARE POSITION
    =========================================================================

    After the security headers (so a 403 still carries them) and BEFORE
    the rate limiter (so rejected origins do not consume the client's
    quota):

        security-headers → cors → rate-limit → validation → dispatch

    =========================================================================
    """

    def __init__(
        self,
        config: Optional[CORSConfig] = None,
        quota: Optional[Callable[[HTTPRequest], Dict[str, str]]] = None,
    ):
        """
        Args:
            config: Allow-list and preflight settings.
            quota: Returns the rate-limit headers for a request without
                   counting it; added to the 403 and preflight answers.
        """
        self.config = config or CORSConfig()
        self.quota = quota

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        origin = request.headers.get("origin", "")

        # No Origin: not a browser cross-origin request, nothing to enforce.
        if not origin:
            return next(request)

        # ═══════════════════════════════════════════════════════════════════
        # ORIGIN CHECK
        # ═══════════════════════════════════════════════════════════════════
        if not self._is_origin_allowed(origin):
            logger.warning(
                f"[{request.request_id}] Origin denied: {origin} "
                f"({request.method} {request.path} from {request.client_ip})"
            )
            return self._with_quota(forbidden_origin(origin), request)

        # ═══════════════════════════════════════════════════════════════════
        # PREFLIGHT REQUEST HANDLING
        # ═══════════════════════════════════════════════════════════════════
        if self._is_preflight(request):
            return self._with_quota(self._handle_preflight(request, origin), request)

        # ═══════════════════════════════════════════════════════════════════
        # ACTUAL REQUEST HANDLING
        # ═══════════════════════════════════════════════════════════════════
        response = next(request)
        self._add_cors_headers(response, origin)
        return response

    def _with_quota(self, response: HTTPResponse, request: HTTPRequest) -> HTTPResponse:
        if self.quota is not None:
            response.headers.update(self.quota(request))
        return response

    def _is_preflight(self, request: HTTPRequest) -> bool:
        return (
            request.method == "OPTIONS"
            and "access-control-request-method" in request.headers
        )

    def _handle_preflight(self, request: HTTPRequest, origin: str) -> HTTPResponse:
        """
        Answer a preflight with an empty 200.

        The browser caches the answer for max_age seconds.
        """
        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .header("Access-Control-Allow-Methods", ", ".join(self.config.allow_methods))
            .header("Access-Control-Allow-Headers", self._allowed_headers_for(request))
            .header("Access-Control-Max-Age", str(self.config.max_age))
            .build())

        self._add_cors_headers(response, origin)
        return response

    def _allowed_headers_for(self, request: HTTPRequest) -> str:
        # Echo what the browser asked for when it is all on the list.
        requested = request.headers.get("access-control-request-headers", "")
        if requested:
            allowed = {h.lower() for h in self.config.allow_headers}
            names = [h.strip() for h in requested.split(",") if h.strip()]
            if all(name.lower() in allowed for name in names):
                return ", ".join(names)
        return ", ".join(self.config.allow_headers)

    def _add_cors_headers(self, response: HTTPResponse, origin: str):
        response.headers["Access-Control-Allow-Origin"] = origin

        if self.config.allow_credentials:
            response.headers["Access-Control-Allow-Credentials"] = "true"

        if self.config.expose_headers:
            response.headers["Access-Control-Expose-Headers"] = ", ".join(
                self.config.expose_headers
            )

        # Caches must key on Origin, or one origin's answer leaks to another.
        vary = response.headers.get("Vary", "")
        if "Origin" not in vary:
            response.headers["Vary"] = f"{vary}, Origin".lstrip(", ")

    def _is_origin_allowed(self, origin: str) -> bool:
        return origin in self.config.allow_origins


# =============================================================================
# MODULE SUMMARY
# =============================================================================
#
# Browsers enforce CORS on the client; this stage also enforces it on the
# server, answering 403 for foreign origins. Requests without an Origin
# header (curl, health checks) are untouched.
#
# =============================================================================
