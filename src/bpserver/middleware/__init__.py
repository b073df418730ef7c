"""
=============================================================================
SECURITY MIDDLEWARE
=============================================================================

Every request, on either listener, passes the same five steps in this
order:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    MIDDLEWARE PIPELINE                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Incoming Request                                                   │
    │        │                                                             │
    │        ▼                                                             │
    │   ┌──────────────────┐                                              │
    │   │ security-headers │ ──► CSP, X-Frame-Options, HSTS (TLS only)    │
    │   └────────┬─────────┘                                              │
    │            ▼                                                         │
    │   ┌──────────────────┐                                              │
    │   │       cors       │ ──► 403 for foreign origins, preflights      │
    │   └────────┬─────────┘                                              │
    │            ▼                                                         │
    │   ┌──────────────────┐                                              │
    │   │    rate-limit    │ ──► 429 after 100 requests / 15 min          │
    │   └────────┬─────────┘                                              │
    │            ▼                                                         │
    │   ┌──────────────────┐                                              │
    │   │    validation    │ ──► sanitize body fields, 400 on failures    │
    │   └────────┬─────────┘                                              │
    │            ▼                                                         │
    │   ┌──────────────────┐                                              │
    │   │     dispatch     │ ──► Router → "Hello, World!"                 │
    │   └──────────────────┘                                              │
    │                                                                      │
    │   Response flows back UP through every stage.                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .base import Middleware, MiddlewarePipeline, NextHandler, Stage, DISPATCH
from .chain import build_pipeline, SECURITY_HEADERS, CORS, RATE_LIMIT, VALIDATION
from .cors import CORSConfig, CORSMiddleware
from .logging import AccessLogger, RequestLog
from .rate_limit import RateLimitMiddleware, RateLimitSnapshot, RateLimitStore
from .security_headers import SecurityHeadersMiddleware
from .validation import FieldRule, ValidationMiddleware, DEFAULT_RULES, sanitize

__all__ = [
    # Base classes
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "Stage",
    "build_pipeline",

    # Stage names
    "SECURITY_HEADERS",
    "CORS",
    "RATE_LIMIT",
    "VALIDATION",
    "DISPATCH",

    # Stages
    "SecurityHeadersMiddleware",
    "CORSConfig",
    "CORSMiddleware",
    "RateLimitMiddleware",
    "RateLimitSnapshot",
    "RateLimitStore",
    "ValidationMiddleware",
    "FieldRule",
    "DEFAULT_RULES",
    "sanitize",

    # Access log
    "AccessLogger",
    "RequestLog",
]
