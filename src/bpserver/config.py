"""
=============================================================================
SERVER CONFIGURATION
=============================================================================

Centralized configuration for both listeners, the security pipeline and
the worker pool.

=============================================================================
CONFIGURATION SOURCES
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    CONFIGURATION HIERARCHY                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   Priority (highest to lowest):                                     │
    │                                                                      │
    │   1. Command-line arguments                                         │
    │      └── python -m bpserver --port 3000 --https-port 3443          │
    │                                                                      │
    │   2. Environment variables                                          │
    │      └── PORT=3000 HTTPS_PORT=3443 python -m bpserver              │
    │                                                                      │
    │   3. Default values (in this dataclass)                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
TWO LISTENERS, ONE CONFIG
=============================================================================

The plain and encrypted listeners share host, pipeline and worker pool.
They only differ in port and in whether an SSLContext wraps the socket:

        host ──────────┬──────────────► plain listener     :port
                       │
                       └──────────────► encrypted listener :https_port
                                              ▲
        key_file + cert_file ─────────────────┘ (optional, non-fatal)

=============================================================================
"""

import os
from dataclasses import dataclass, field
from typing import List, Optional


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:3000",
    "https://localhost:3443",
]


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return list(default)
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclass
class ServerConfig:
    """
    Configuration for the listener manager.

    =========================================================================
    CONFIGURATION GROUPS
    =========================================================================

    NETWORK SETTINGS
    - host, port, https_port, backlog, buffer_size, timeout

    TLS SETTINGS
    - enable_https, key_file, cert_file, tls_handshake_timeout

    SECURITY PIPELINE
    - allowed_origins, rate_limit_max, rate_limit_window, max_body_size

    HTTP / THREADING
    - keep_alive, keep_alive_timeout, min_workers, max_workers,
      shutdown_grace

    LOGGING
    - log_level, log_format

    =========================================================================
    """

    # ─────────────────────────────────────────────────────────────────────
    # NETWORK SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    host: str = "127.0.0.1"
    """Address both listeners bind to."""

    port: int = 3000
    """
    Plain listener port. 0 lets the OS pick one (tests use this).
    Failing to bind it is fatal.
    """

    https_port: int = 3443
    """Encrypted listener port. Failing to bind it is only a warning."""

    backlog: int = 128
    """Maximum number of queued connections per listener."""

    buffer_size: int = 8192
    """Size of each recv() call in bytes."""

    timeout: Optional[float] = 30.0
    """Socket timeout for the first request on a connection."""

    # ─────────────────────────────────────────────────────────────────────
    # TLS SETTINGS
    # ─────────────────────────────────────────────────────────────────────

    enable_https: bool = True
    """Attempt the encrypted listener at all."""

    key_file: str = "ssl/key.pem"
    """PEM private key, relative to the working directory."""

    cert_file: str = "ssl/cert.pem"
    """PEM certificate, relative to the working directory."""

    tls_handshake_timeout: float = 5.0
    """
    Bound on the TLS handshake, done in the worker thread so a stalled
    client never blocks the accept loop.
    """

    # ─────────────────────────────────────────────────────────────────────
    # SECURITY PIPELINE
    # ─────────────────────────────────────────────────────────────────────

    allowed_origins: List[str] = field(
        default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS)
    )
    """Origins accepted by the CORS stage. Requests without Origin pass."""

    rate_limit_max: int = 100
    """Requests admitted per client address per window."""

    rate_limit_window: float = 15 * 60
    """Fixed window length in seconds."""

    max_body_size: int = 10 * 1024
    """Largest accepted request body (10 KB). Bigger bodies get 413."""

    # ─────────────────────────────────────────────────────────────────────
    # HTTP / THREADING
    # ─────────────────────────────────────────────────────────────────────

    keep_alive: bool = True
    keep_alive_timeout: float = 5.0

    min_workers: int = 4
    max_workers: int = 16

    shutdown_grace: float = 10.0
    """Seconds allowed for in-flight requests to drain on shutdown."""

    # ─────────────────────────────────────────────────────────────────────
    # LOGGING
    # ─────────────────────────────────────────────────────────────────────

    log_level: str = "INFO"
    log_format: str = "text"
    """Access log format: 'text' or 'json'."""

    server_name: str = "bpserver/1.0"
    """Value of the Server response header."""

    @classmethod
    def from_env(cls) -> "ServerConfig":
        """
        Create configuration from environment variables.

        =====================================================================
        ENVIRONMENT VARIABLES
        =====================================================================

        HOST              Bind address        (default: 127.0.0.1)
        PORT              Plain port          (default: 3000)
        HTTPS_PORT        Encrypted port      (default: 3443)
        ENABLE_HTTPS      true/false          (default: true)
        SSL_KEY_FILE      PEM key path        (default: ssl/key.pem)
        SSL_CERT_FILE     PEM cert path       (default: ssl/cert.pem)
        ALLOWED_ORIGINS   Comma separated     (default: localhost pair)
        RATE_LIMIT_MAX    Requests/window     (default: 100)
        RATE_LIMIT_WINDOW Window seconds      (default: 900)
        LOG_LEVEL         Logging level       (default: INFO)
        LOG_FORMAT        text or json        (default: text)

        =====================================================================
        """
        return cls(
            host=os.getenv("HOST", "127.0.0.1"),
            port=int(os.getenv("PORT", "3000")),
            https_port=int(os.getenv("HTTPS_PORT", "3443")),
            enable_https=_env_bool("ENABLE_HTTPS", True),
            key_file=os.getenv("SSL_KEY_FILE", "ssl/key.pem"),
            cert_file=os.getenv("SSL_CERT_FILE", "ssl/cert.pem"),
            allowed_origins=_env_list("ALLOWED_ORIGINS", DEFAULT_ALLOWED_ORIGINS),
            rate_limit_max=int(os.getenv("RATE_LIMIT_MAX", "100")),
            rate_limit_window=float(os.getenv("RATE_LIMIT_WINDOW", str(15 * 60))),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "text"),
        )

    def validate(self) -> None:
        """
        Validate configuration values.

        Called once by the listener manager before anything binds, so a
        bad value fails at startup instead of on the first request.
        """
        for name in ("port", "https_port"):
            value = getattr(self, name)
            if not 0 <= value < 65536:
                raise ValueError(f"Invalid {name}: {value}. Must be 0-65535.")

        if self.port and self.port == self.https_port:
            raise ValueError("port and https_port must differ")

        if self.min_workers < 1:
            raise ValueError("min_workers must be >= 1")

        if self.max_workers < self.min_workers:
            raise ValueError("max_workers must be >= min_workers")

        if self.buffer_size < 1024:
            raise ValueError("buffer_size must be >= 1024")

        if self.timeout is not None and self.timeout <= 0:
            raise ValueError("timeout must be > 0")

        if self.rate_limit_max < 1:
            raise ValueError("rate_limit_max must be >= 1")

        if self.rate_limit_window <= 0:
            raise ValueError("rate_limit_window must be > 0")

        if self.max_body_size < 1:
            raise ValueError("max_body_size must be >= 1")

        if self.log_format not in ("text", "json"):
            raise ValueError(f"log_format must be 'text' or 'json', got {self.log_format!r}")
