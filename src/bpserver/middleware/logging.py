"""
=============================================================================
ACCESS LOGGING
=============================================================================

One log line per request on the "bpserver.access" logger.

Access logging is not a pipeline stage: the pipeline calls it once the
response is final, so a request rejected by CORS (403) or the rate limiter
(429) is logged exactly like one answered by the route.

=============================================================================
LOG FORMATS
=============================================================================

TEXT (default), Apache-like:

    127.0.0.1 - - [01/Jan/2026:12:00:00 +0000] "GET /" 200 14 0.42ms http 3f2a9c1e

JSON, one object per line:

    {"request_id": "3f2a9c1e", "method": "GET", "path": "/", "query": "",
     "client_ip": "127.0.0.1", "transport": "http", "user_agent": "curl/8.0",
     "status_code": 200, "content_length": 14, "duration_ms": 0.42,
     "timestamp": "01/Jan/2026:12:00:00 +0000"}

=============================================================================
"""

import time
import json
import logging
from dataclasses import dataclass, asdict
from typing import Iterable, Optional

from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


# ═══════════════════════════════════════════════════════════════════════════
# LOGGER CONFIGURATION
# ═══════════════════════════════════════════════════════════════════════════
# Namespaced so the access log can be routed on its own:
#   logging.getLogger("bpserver.access").addHandler(file_handler)
# ═══════════════════════════════════════════════════════════════════════════
logger = logging.getLogger("bpserver.access")


@dataclass
class RequestLog:
    """
    Structured log entry for a request.

    request_id:     Matches the X-Request-ID response header
    transport:      "http" or "https", the listener that accepted it
    content_length: Response body size in bytes
    duration_ms:    Time spent in the pipeline
    """

    request_id: str
    method: str
    path: str
    query: str
    client_ip: str
    transport: str
    user_agent: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_dict(self) -> dict:
        data = asdict(self)
        data["duration_ms"] = round(self.duration_ms, 2)
        return data

    def to_text(self) -> str:
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms '
            f'{self.transport} {self.request_id}'
        )


class AccessLogger:
    """
    Emits one RequestLog per finished request.

    Usage:
        access_log = AccessLogger(log_format="json", skip_paths=["/health"])
        pipeline = MiddlewarePipeline(stages, router.handle, access_log=access_log)
    """

    def __init__(
        self,
        log_format: str = "text",
        log_level: int = logging.INFO,
        skip_paths: Optional[Iterable[str]] = None,
    ):
        """
        Args:
            log_format: "text" (Apache-like) or "json".
            log_level: Level the access lines are emitted at.
            skip_paths: Paths never logged (noisy health checks).
        """
        if log_format not in ("text", "json"):
            raise ValueError(f"Unknown log format: {log_format}")

        self.log_format = log_format
        self.log_level = log_level
        self.skip_paths = set(skip_paths or [])

    def __call__(self, request: HTTPRequest, response: HTTPResponse, duration_ms: float):
        if request.path in self.skip_paths:
            return

        if not logger.isEnabledFor(self.log_level):
            return

        entry = self.build_entry(request, response, duration_ms)

        if self.log_format == "json":
            logger.log(self.log_level, json.dumps(entry.to_dict()))
        else:
            logger.log(self.log_level, entry.to_text())

    def build_entry(
        self,
        request: HTTPRequest,
        response: HTTPResponse,
        duration_ms: float,
    ) -> RequestLog:
        query = "&".join(
            f"{name}={value}"
            for name, values in request.query_params.items()
            for value in values
        )

        return RequestLog(
            request_id=request.request_id,
            method=request.method,
            path=request.path,
            query=query,
            client_ip=request.client_ip,
            transport=request.transport,
            user_agent=request.user_agent or "-",
            status_code=int(response.status),
            content_length=len(response.body),
            duration_ms=duration_ms,
            timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
        )
