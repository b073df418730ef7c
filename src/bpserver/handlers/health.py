"""
=============================================================================
HEALTH CHECK HANDLER
=============================================================================

GET /health reports that the process is up and which security layers are
active, so a monitor can tell a plain-only start from a dual-listener one.

=============================================================================
RESPONSE SHAPE
=============================================================================

    {
      "status": "OK",
      "timestamp": "2026-01-01T12:00:00.000000+00:00",
      "version": "1.0.0",
      "uptime": 42,
      "security": {
        "headers": true,
        "cors": true,
        "rateLimit": true,
        "validation": true,
        "https": false          ◄── encrypted listener currently listening?
      }
    }

Health responses are never cached (Cache-Control: no-store): a cached
"OK" would hide an outage from the monitor.

=============================================================================
"""

import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, HTTPStatus


# Returns the live on/off state of each security layer.
SecurityStatus = Callable[[], Dict[str, bool]]


class HealthHandler:
    """
    Health endpoint bound to the running listener manager.

    Usage:
        health = HealthHandler(version="1.0.0", security=manager.security_status)
        router.get("/health")(health.handle)
    """

    def __init__(self, version: str, security: Optional[SecurityStatus] = None):
        self.version = version
        self._security = security or (lambda: {})
        self._start_time = time.time()

    @property
    def uptime(self) -> float:
        return time.time() - self._start_time

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        return (ResponseBuilder()
            .status(HTTPStatus.OK)
            .json({
                "status": "OK",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "version": self.version,
                "uptime": int(self.uptime),
                "security": self._security(),
            })
            .no_store()
            .build())
