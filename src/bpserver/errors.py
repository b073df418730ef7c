"""
=============================================================================
SERVER ERRORS
=============================================================================

Exceptions raised across the listener lifecycle.

=============================================================================
ERROR TAXONOMY
=============================================================================

Only process-level failures are exceptions. Per-request failures are
RESPONSES built by the middleware stages, never exceptions:

    ┌──────────────────────────┬──────────────┬─────────────────────────────┐
    │ Category                 │ Kind         │ Effect                      │
    ├──────────────────────────┼──────────────┼─────────────────────────────┤
    │ BindFailure (plain)      │ exception    │ process exits non-zero      │
    │ BindFailure (encrypted)  │ exception    │ warning, plain keeps going  │
    │ CertificateLoadFailure   │ exception    │ caught in loader → None     │
    │ OriginDenied             │ response 403 │ request ends                │
    │ RateLimitExceeded        │ response 429 │ request ends                │
    │ ValidationFailed         │ response 400 │ request ends                │
    │ UnhandledStageFault      │ response 500 │ logged, server keeps going  │
    └──────────────────────────┴──────────────┴─────────────────────────────┘

=============================================================================
"""

from typing import Optional


class BindFailure(OSError):
    """
    A listener could not bind or listen on its address.

    Carries enough context for the manager to decide whether the failure
    is fatal (plain transport) or just a warning (encrypted transport).
    """

    def __init__(
        self,
        transport: str,
        host: str,
        port: int,
        cause: Optional[BaseException] = None,
    ):
        self.transport = transport
        self.host = host
        self.port = port
        self.cause = cause
        reason = f": {cause}" if cause else ""
        super().__init__(f"Cannot bind {transport} listener to {host}:{port}{reason}")


class CertificateLoadFailure(Exception):
    """Key or certificate could not be read or parsed."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"{path}: {reason}")
