"""
=============================================================================
bpserver
=============================================================================

HTTP front of the backpropagation integration testing service.

A from-scratch HTTP/1.1 server on raw sockets that answers "Hello, World!"
behind a fixed security pipeline, on a plain listener and, when a
certificate is present, an encrypted one.

    ┌──────────────────────────────────────────────────────────────────────┐
    │                                                                       │
    │   :3000 plain ─┐                                                      │
    │                ├─► worker pool ─► security-headers ─► cors ─►         │
    │   :3443 TLS ───┘                  rate-limit ─► validation ─►         │
    │                                   dispatch ─► "Hello, World!\\n"       │
    │                                                                       │
    └──────────────────────────────────────────────────────────────────────┘

=============================================================================
QUICK START
=============================================================================

    $ python -m bpserver
    2026-01-01 12:00:00 [INFO] bpserver.server: Server running at http://127.0.0.1:3000/

    $ curl http://127.0.0.1:3000/
    Hello, World!

Embedded:

    from bpserver import ListenerManager, ServerConfig

    manager = ListenerManager(ServerConfig(port=3000, enable_https=False))
    manager.run()

=============================================================================
PACKAGE LAYOUT
=============================================================================

    bpserver/
    ├── config.py       ServerConfig, env loading, validation
    ├── errors.py       BindFailure, CertificateLoadFailure
    ├── server.py       ListenerManager: lifecycle, connections, signals
    ├── core/           Listener, Connection, WorkerPool, TLS loader
    ├── http/           request parser, responses, status codes, router
    ├── middleware/     the security pipeline and access log
    └── handlers/       "/" and "/health"

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig
from .errors import BindFailure, CertificateLoadFailure
from .server import ListenerManager

__all__ = [
    "ListenerManager",
    "ServerConfig",
    "BindFailure",
    "CertificateLoadFailure",
    "__version__",
]
