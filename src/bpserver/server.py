"""
=============================================================================
LISTENER MANAGER
=============================================================================

Owns everything that lives for the whole process: the rate-limit store,
the security pipeline, the worker pool and the two listeners.

=============================================================================
STARTUP
=============================================================================

    ListenerManager(config)
        │   validate config                         ValueError → exit 1
        │   RateLimitStore + pipeline, built ONCE
        ▼
    start()
        │
        ├──► plain listener on port                 BindFailure → exit 1
        │        "Server running at http://127.0.0.1:3000/"
        │
        └──► enable_https?
                 │
                 ├── load_tls_material() is None ──► WARNING, plain only
                 │
                 └── encrypted listener on https_port
                          ok    "Server running at https://127.0.0.1:3443/"
                          fail  WARNING, plain only

Both listeners hand their connections to the SAME worker pool, which runs
them through the SAME pipeline instance, so a client's rate-limit quota
is shared across http and https.

=============================================================================
SHUTDOWN
=============================================================================

    SIGTERM / SIGINT / stop()
        │
        ▼
    shutdown()
        ├──► close plain listener      ┐ each in its own try/except:
        ├──► close encrypted listener  ┘ one failing never blocks the other
        ├──► drain worker pool (at most shutdown_grace seconds)
        └──► restore signal handlers

=============================================================================
"""

import logging
import signal
import threading
from typing import Dict, List, Optional

from . import __version__
from .config import ServerConfig
from .core import Connection, Listener, WorkerPool, TLSMaterial, load_tls_material
from .errors import BindFailure
from .handlers import HealthHandler, hello
from .http import HTTPParseError, HTTPStatus, RequestParser, Router
from .http.response import error_response
from .middleware import (
    AccessLogger, MiddlewarePipeline, RateLimitStore, build_pipeline,
    SECURITY_HEADERS, CORS, RATE_LIMIT, VALIDATION,
)


logger = logging.getLogger(__name__)


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"


def configure_logging(level: str = "INFO"):
    """Root logging setup shared by the CLI and ListenerManager.run()."""
    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric, format=LOG_FORMAT, datefmt=LOG_DATEFMT)
    logging.getLogger("bpserver").setLevel(numeric)


class ListenerManager:
    """
    Runs the plain and encrypted listeners over one shared pipeline.

    =========================================================================
    USAGE
    =========================================================================

        manager = ListenerManager(ServerConfig(port=3000, https_port=3443))
        manager.run()                     # blocks until SIGTERM / SIGINT

        # Or, embedded (tests):
        manager.start()
        manager.plain.bound_port
        manager.https_active
        manager.shutdown()

    =========================================================================
    """

    def __init__(self, config: Optional[ServerConfig] = None, router: Optional[Router] = None):
        """
        Args:
            config: Validated immediately; invalid values raise ValueError.
            router: Route table. Defaults to "/" (hello) and "/health".
        """
        self.config = config or ServerConfig()
        self.config.validate()

        self._rate_limits = RateLimitStore(
            max_requests=self.config.rate_limit_max,
            window=self.config.rate_limit_window,
        )

        self._health = HealthHandler(__version__, security=self.security_status)
        self._router = router or self._default_router()

        self._pipeline = build_pipeline(
            self.config,
            self._rate_limits,
            self._router.handle,
            access_log=AccessLogger(log_format=self.config.log_format),
        )

        self._parser = RequestParser(max_body_size=self.config.max_body_size)
        self._pool = WorkerPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )

        self._plain = Listener(
            "plain", "http", self.config.host, self.config.port, self.config,
            on_error=self._on_listener_error,
        )
        self._encrypted: Optional[Listener] = None
        self._tls: Optional[TLSMaterial] = None

        self._stop_event = threading.Event()
        self._original_handlers: Dict[int, object] = {}
        self._started = False
        self._stopped = False

        self.failure: Optional[Exception] = None

    def _default_router(self) -> Router:
        router = Router()
        router.add_route("/health", self._health.handle, method="GET", name="health")
        router.add_route("/", hello, name="hello")
        return router

    # ─────────────────────────────────────────────────────────────────────
    # Accessors
    # ─────────────────────────────────────────────────────────────────────

    @property
    def plain(self) -> Listener:
        return self._plain

    @property
    def encrypted(self) -> Optional[Listener]:
        """The TLS listener, or None when it was never attempted."""
        return self._encrypted

    @property
    def listeners(self) -> List[Listener]:
        return [l for l in (self._plain, self._encrypted) if l is not None]

    @property
    def pipeline(self) -> MiddlewarePipeline:
        return self._pipeline

    @property
    def rate_limits(self) -> RateLimitStore:
        return self._rate_limits

    @property
    def router(self) -> Router:
        return self._router

    @property
    def https_active(self) -> bool:
        return self._encrypted is not None and self._encrypted.is_listening

    def security_status(self) -> Dict[str, bool]:
        """Which protections are live, as reported by /health."""
        stages = self._pipeline.stage_names
        return {
            "headers": SECURITY_HEADERS in stages,
            "cors": CORS in stages,
            "rateLimit": RATE_LIMIT in stages,
            "validation": VALIDATION in stages,
            "https": self.https_active,
        }

    # ─────────────────────────────────────────────────────────────────────
    # Lifecycle
    # ─────────────────────────────────────────────────────────────────────

    def start(self):
        """
        Bind the listeners and start serving in the background.

        Raises:
            BindFailure: The plain listener could not bind. Nothing is left
                         running.
            RuntimeError: Already started.
        """
        if self._started:
            raise RuntimeError("ListenerManager already started")

        self._pool.start()

        try:
            self._plain.start(self._handle_connection)
        except BindFailure as e:
            logger.error(str(e))
            self._pool.shutdown(timeout=0)
            raise

        self._started = True
        logger.info(f"Server running at {self._plain.url}")

        if self.config.enable_https:
            self._start_encrypted()
        else:
            logger.info("HTTPS disabled by configuration")

    def _start_encrypted(self):
        material = load_tls_material(self.config.key_file, self.config.cert_file)
        if material is None:
            logger.warning("Continuing with HTTP only")
            return

        self._tls = material
        self._encrypted = Listener(
            "encrypted", "https", self.config.host, self.config.https_port, self.config,
            ssl_context=material.context,
            on_error=self._on_listener_error,
        )

        try:
            self._encrypted.start(self._handle_connection)
        except BindFailure as e:
            logger.warning(f"{e}; continuing with HTTP only")
            return

        logger.info(f"Server running at {self._encrypted.url}")

    def run(self):
        """
        Start (if needed) and block until stop() or a shutdown signal.

        Raises:
            BindFailure: The plain listener could not bind.
        """
        configure_logging(self.config.log_level)

        if not self._started:
            self.start()

        self._install_signals()
        try:
            while not self._stop_event.wait(0.5):
                pass
        finally:
            self.shutdown()

    def stop(self):
        """Ask run() to return. Safe from signal handlers and other threads."""
        self._stop_event.set()

    def shutdown(self):
        """Close both listeners, drain workers, restore signals. Idempotent."""
        if self._stopped:
            return
        self._stopped = True
        self._stop_event.set()

        logger.info("Shutting down server...")

        for listener in self.listeners:
            try:
                listener.close()
            except Exception:
                logger.exception(f"Error closing {listener.name} listener")

        if self._started:
            logger.info(f"Worker pool at shutdown: {self._pool.stats}")
            self._pool.shutdown(timeout=self.config.shutdown_grace)

        self._restore_signals()
        logger.info("Server stopped")

    def _on_listener_error(self, listener: Listener, error: Exception):
        if listener is self._plain:
            logger.error(f"Plain listener stopped accepting: {error}; shutting down")
            self.failure = error
            self.stop()
        else:
            logger.warning(f"HTTPS listener stopped accepting: {error}; HTTP keeps serving")

    # ─────────────────────────────────────────────────────────────────────
    # Signals
    # ─────────────────────────────────────────────────────────────────────

    def _install_signals(self):
        # signal.signal() only works on the main thread.
        if threading.current_thread() is not threading.main_thread():
            return

        def shutdown_handler(signum, frame):
            logger.info(f"Received {signal.Signals(signum).name}, initiating shutdown...")
            self.stop()

        for sig in (signal.SIGTERM, signal.SIGINT):
            self._original_handlers[sig] = signal.signal(sig, shutdown_handler)

    def _restore_signals(self):
        for sig, handler in self._original_handlers.items():
            signal.signal(sig, handler)
        self._original_handlers.clear()

    # ─────────────────────────────────────────────────────────────────────
    # Connections (accept threads → worker pool)
    # ─────────────────────────────────────────────────────────────────────

    def _handle_connection(self, conn: Connection):
        """Queue a connection; answer 503 when the pool is full."""
        try:
            submitted = self._pool.submit(
                self._process_connection,
                args=(conn,),
                block=False,
            )
        except RuntimeError:
            conn.close()
            return

        if submitted:
            return

        logger.warning(f"[{conn.id}] Worker pool full, rejecting {conn.client_ip}")
        if not conn.is_tls:
            self._send_error(conn, HTTPStatus.SERVICE_UNAVAILABLE, "Server overloaded")
        conn.close()

    def _process_connection(self, conn: Connection):
        """
        Keep-alive loop for one connection (runs in a worker thread).

            handshake (TLS) → read → parse → pipeline → send → repeat?

        Parse and read errors are answered here with Connection: close;
        everything else is the pipeline's job.
        """
        with conn:
            if not conn.handshake():
                return

            while not self._stop_event.is_set():
                try:
                    raw_request = conn.read_request()
                except HTTPParseError as e:
                    self._send_error(conn, HTTPStatus(e.status_code), str(e))
                    break
                except TimeoutError:
                    self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                    break
                except OSError as e:
                    logger.debug(f"[{conn.id}] Read failed: {e}")
                    break

                if raw_request is None:
                    break

                try:
                    request = self._parser.parse(raw_request, conn.address, conn.transport)
                except HTTPParseError as e:
                    self._send_error(conn, HTTPStatus(e.status_code), str(e))
                    break

                response = self._pipeline(request)

                keep_alive = (
                    self.config.keep_alive
                    and request.is_keep_alive
                    and not self._stop_event.is_set()
                    and response.get_header("Connection").lower() != "close"
                )

                if keep_alive:
                    response.headers.setdefault("Connection", "keep-alive")
                    response.headers.setdefault(
                        "Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}"
                    )
                else:
                    response.headers["Connection"] = "close"

                data = response.to_bytes(
                    self.config.server_name,
                    include_body=request.method != "HEAD",
                )

                if not conn.send_response(data) or not keep_alive:
                    break

                conn.set_keep_alive()

    def _send_error(self, conn: Connection, status: HTTPStatus, message: str):
        response = error_response(status, message)
        conn.send_response(response.to_bytes(self.config.server_name))
