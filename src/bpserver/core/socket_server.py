"""
=============================================================================
LISTENER
=============================================================================

One bound TCP socket plus the thread that accepts on it. The service runs
two of these, plain and TLS, each with its OWN lifecycle: a fault on one
never changes the other's state.

=============================================================================
LIFECYCLE
=============================================================================

    UNSTARTED ──start()──► BINDING ──bind ok──► LISTENING ──close()──► CLOSING
                              │                     │                    │
                          bind error           accept fault              ▼
                              │                     │                 CLOSED
                              ▼                     ▼
                            FAILED ◄────────────────┘
                              │
                              └──close()──► CLOSED

    start()  raises BindFailure when the port cannot be bound
    close()  is idempotent; it stops the accept loop, joins its thread
             and releases the port

=============================================================================
SOCKET OPTIONS
=============================================================================

    SO_REUSEADDR   restart without waiting out TIME_WAIT
    TCP_NODELAY    send small responses immediately
    timeout 1.0    accept() wakes up every second to notice close()

SO_REUSEPORT is NOT set. With it, a second process could bind the same
port and the "port already in use" failure would never surface.

=============================================================================
TLS
=============================================================================

With an ssl_context the listening socket is wrapped server-side with
do_handshake_on_connect=False. accept() then returns an SSLSocket whose
handshake has not run yet; the worker performs it (Connection.handshake).

=============================================================================
"""

import socket
import ssl
import logging
import threading
from enum import Enum
from typing import Optional, Callable

from ..config import ServerConfig
from ..errors import BindFailure
from .connection import Connection


logger = logging.getLogger(__name__)


class ListenerState(Enum):
    UNSTARTED = "unstarted"
    BINDING = "binding"
    LISTENING = "listening"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"


ConnectionHandler = Callable[[Connection], None]
ErrorCallback = Callable[["Listener", Exception], None]


class Listener:
    """
    A single TCP listener.

    Usage:
        listener = Listener("plain", "http", config.host, config.port, config)
        listener.start(handle_connection)     # returns once listening
        listener.bound_port                   # real port when port=0
        ...
        listener.close()

    Attributes:
        name: Label used in logs ("plain", "encrypted").
        transport: "http" or "https", copied onto every Connection.
        port: Requested port (0 lets the OS pick).
        bound_port: Port actually bound, None until listening.
    """

    ACCEPT_POLL_INTERVAL = 1.0

    def __init__(
        self,
        name: str,
        transport: str,
        host: str,
        port: int,
        config: ServerConfig,
        ssl_context: Optional[ssl.SSLContext] = None,
        on_error: Optional[ErrorCallback] = None,
    ):
        self.name = name
        self.transport = transport
        self.host = host
        self.port = port
        self.config = config
        self.ssl_context = ssl_context
        self.on_error = on_error

        self.bound_port: Optional[int] = None

        self._state = ListenerState.UNSTARTED
        self._state_lock = threading.Lock()
        self._socket: Optional[socket.socket] = None
        self._thread: Optional[threading.Thread] = None
        self._running = False

    def __repr__(self) -> str:
        return (
            f"Listener(name={self.name!r}, transport={self.transport!r}, "
            f"address={self.host}:{self.bound_port or self.port}, state={self.state.value})"
        )

    @property
    def state(self) -> ListenerState:
        return self._state

    @property
    def is_listening(self) -> bool:
        return self._state == ListenerState.LISTENING

    @property
    def url(self) -> str:
        return f"{self.transport}://{self.host}:{self.bound_port or self.port}/"

    def _set_state(self, state: ListenerState):
        with self._state_lock:
            previous, self._state = self._state, state
        if previous != state:
            logger.debug(f"Listener {self.name}: {previous.value} -> {state.value}")

    # ─────────────────────────────────────────────────────────────────────
    # Start
    # ─────────────────────────────────────────────────────────────────────

    def start(self, connection_handler: ConnectionHandler):
        """
        Bind, listen, and start the accept loop on its own thread.

        Raises:
            BindFailure: The address could not be bound. The listener is
                         left in FAILED with nothing open.
            RuntimeError: start() was already called.
        """
        if self._state != ListenerState.UNSTARTED:
            raise RuntimeError(f"Listener {self.name} already started ({self._state.value})")

        self._set_state(ListenerState.BINDING)

        sock = self._create_socket()
        try:
            sock.bind((self.host, self.port))
            sock.listen(self.config.backlog)
        except OSError as e:
            sock.close()
            self._set_state(ListenerState.FAILED)
            raise BindFailure(self.transport, self.host, self.port, e) from e

        self.bound_port = sock.getsockname()[1]

        if self.ssl_context is not None:
            sock = self.ssl_context.wrap_socket(
                sock,
                server_side=True,
                do_handshake_on_connect=False,
            )

        self._socket = sock
        self._running = True
        self._set_state(ListenerState.LISTENING)

        self._thread = threading.Thread(
            target=self._accept_loop,
            args=(connection_handler,),
            name=f"Accept-{self.name}",
            daemon=True,
        )
        self._thread.start()

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)

        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.settimeout(self.ACCEPT_POLL_INTERVAL)

        return sock

    # ─────────────────────────────────────────────────────────────────────
    # Accept loop
    # ─────────────────────────────────────────────────────────────────────

    def _accept_loop(self, connection_handler: ConnectionHandler):
        """
        Accept until close() or a fatal socket error.

        Per-connection trouble (client reset during accept) is skipped.
        Anything else fails THIS listener only and is reported through
        on_error.
        """
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except ConnectionAbortedError as e:
                logger.debug(f"Listener {self.name}: aborted accept: {e}")
                continue
            except OSError as e:
                if not self._running:
                    break
                self._fail(e)
                return

            logger.debug(
                f"Listener {self.name}: accepted {client_address[0]}:{client_address[1]}"
            )

            conn = Connection(
                socket=client_socket,
                address=client_address,
                transport=self.transport,
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                handshake_timeout=self.config.tls_handshake_timeout,
                max_body_size=self.config.max_body_size,
            )
            connection_handler(conn)

    def _fail(self, error: Exception):
        logger.error(f"Listener {self.name} on {self.host}:{self.bound_port} failed: {error}")

        self._running = False
        self._release_socket()
        self._set_state(ListenerState.FAILED)

        if self.on_error is not None:
            self.on_error(self, error)

    # ─────────────────────────────────────────────────────────────────────
    # Close
    # ─────────────────────────────────────────────────────────────────────

    def close(self, timeout: float = 5.0):
        """
        Stop accepting and release the port. Safe to call repeatedly.

        Args:
            timeout: Seconds to wait for the accept thread to exit.
        """
        with self._state_lock:
            if self._state == ListenerState.CLOSED:
                return
            was_listening = self._state == ListenerState.LISTENING

        if was_listening:
            self._set_state(ListenerState.CLOSING)
            logger.info(f"Closing {self.name} listener on {self.host}:{self.bound_port}")

        self._running = False

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning(f"Listener {self.name}: accept thread did not exit in {timeout}s")

        self._release_socket()
        self._set_state(ListenerState.CLOSED)

    def _release_socket(self):
        if self._socket is None:
            return
        try:
            self._socket.close()
        except OSError:
            pass
        self._socket = None
