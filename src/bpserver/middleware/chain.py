"""
The security chain every listener shares.

build_pipeline() is the single place where stage order is declared:

    security-headers → cors → rate-limit → validation → dispatch
"""

from typing import Optional

from .base import MiddlewarePipeline, Stage, NextHandler
from .cors import CORSConfig, CORSMiddleware
from .logging import AccessLogger
from .rate_limit import RateLimitMiddleware, RateLimitStore
from .security_headers import SecurityHeadersMiddleware
from .validation import ValidationMiddleware
from ..config import ServerConfig


SECURITY_HEADERS = "security-headers"
CORS = "cors"
RATE_LIMIT = "rate-limit"
VALIDATION = "validation"


def build_pipeline(
    config: ServerConfig,
    store: RateLimitStore,
    handler: NextHandler,
    access_log: Optional[AccessLogger] = None,
) -> MiddlewarePipeline:
    """
    Assemble the pipeline for a configuration.

    Args:
        config: Supplies the CORS allow-list.
        store: Rate-limit counters, owned by the caller.
        handler: Final dispatch, normally Router.handle.
        access_log: Called once per finished request.
    """
    rate_limit = RateLimitMiddleware(store)
    cors = CORSMiddleware(
        CORSConfig(allow_origins=list(config.allowed_origins)),
        quota=rate_limit.quota_headers,
    )

    stages = [
        Stage(SECURITY_HEADERS, SecurityHeadersMiddleware()),
        Stage(CORS, cors),
        Stage(RATE_LIMIT, rate_limit),
        Stage(VALIDATION, ValidationMiddleware()),
    ]

    return MiddlewarePipeline(stages, handler, access_log=access_log)
