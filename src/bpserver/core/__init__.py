"""
=============================================================================
CORE NETWORKING
=============================================================================

Sockets, connections, workers and TLS material.

    ┌───────────────────┐     ┌───────────────────┐
    │ Listener (plain)  │     │ Listener (TLS)    │   one accept thread each
    └─────────┬─────────┘     └─────────┬─────────┘
              │     Connection          │
              └───────────┬─────────────┘
                          ▼
                 ┌─────────────────┐
                 │   WorkerPool    │   shared, bounded
                 └─────────────────┘

=============================================================================
"""

from .socket_server import Listener, ListenerState
from .connection import Connection, ConnectionState
from .thread_pool import WorkerPool
from .tls import TLSMaterial, build_server_context, load_tls_material

__all__ = [
    "Listener",
    "ListenerState",
    "Connection",
    "ConnectionState",
    "WorkerPool",
    "TLSMaterial",
    "build_server_context",
    "load_tls_material",
]
