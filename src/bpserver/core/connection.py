"""
=============================================================================
CONNECTION MANAGEMENT
=============================================================================

Wraps one accepted client socket (plain or TLS) with a request-level API:
handshake, buffered request reads, response writes, graceful close.

=============================================================================
TCP IS A BYTE STREAM, NOT A MESSAGE PROTOCOL
=============================================================================

recv() returns whatever has arrived, not one request:

    Client sends:   "GET / HTTP/1.1\r\nHost: x\r\n\r\n"

    Server may see: recv() → "GET / HT"
                    recv() → "TP/1.1\r\nHost: x\r\n\r\n"

So reads are buffered until the header terminator \r\n\r\n shows up, then
exactly Content-Length more bytes are read for the body. Anything past
that stays in the buffer for the next request on a keep-alive connection.

=============================================================================
BOUNDS
=============================================================================

    headers larger than max_header_size  → HTTPParseError(400)
    Content-Length > max_body_size       → HTTPParseError(413)
                                           raised BEFORE the body is read
    Transfer-Encoding not "identity"     → HTTPParseError(501)
                                           also before the body, so a
                                           chunked body is never read

=============================================================================
TLS CONNECTIONS
=============================================================================

The encrypted listener accepts with do_handshake_on_connect=False, so
accept() returns immediately and the handshake runs here, on the worker
thread, under its own timeout:

    accept loop ─► (raw TLS socket) ─► worker ─► handshake() ─► read_request()
                                                      │
                                          timeout / bad client hello
                                                      ▼
                                                   close()

A slow or broken TLS client ties up one worker for at most
handshake_timeout seconds and never blocks the accept loop.

=============================================================================
CONNECTION STATE MACHINE
=============================================================================

    NEW ──► HANDSHAKE ──► READING ──► PROCESSING ──► WRITING ──┐
     │          │            │                          │       ▼
     │          │            │                          │   KEEP_ALIVE ─► READING
     ▼          ▼            ▼                          ▼
     └────────────────────► CLOSING ──► CLOSED ◄────────┘

=============================================================================
"""

import socket
import ssl
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid

from ..http.request import HTTPParseError, check_transfer_encoding


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    """Connection lifecycle states, used for logging and cleanup."""
    NEW = "new"
    HANDSHAKE = "handshake"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    Represents a client connection.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    Connection Responsibilities                       │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │  1. TLS HANDSHAKE (encrypted listener only, bounded timeout)         │
    │  2. BUFFERED READING of one request at a time                        │
    │  3. TIMEOUTS: 30s for the first request, 5s between keep-alives      │
    │  4. BODY BOUND: 413 before reading an oversized body                 │
    │  5. GRACEFUL CLOSE: SHUT_WR, drain, close                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    Attributes:
        socket: The client socket (ssl.SSLSocket on the encrypted listener).
        address: Client's (ip, port) tuple.
        transport: "http" or "https".
        id: Short connection identifier for logs.
        requests_handled: Number of requests read on this connection.
    """

    socket: socket.socket
    address: tuple[str, int]
    transport: str = "http"

    id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])
    state: ConnectionState = ConnectionState.NEW
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: float = 30.0
    keep_alive_timeout: float = 5.0
    handshake_timeout: float = 5.0
    max_header_size: int = 64 * 1024
    max_body_size: int = 10 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)

        if self.timeout:
            self.socket.settimeout(self.timeout)

    @property
    def client_ip(self) -> str:
        return self.address[0]

    @property
    def is_tls(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    def handshake(self) -> bool:
        """
        Complete the TLS handshake for an encrypted connection.

        No-op (True) for plain sockets.

        Returns:
            True when the connection is ready for reading, False when the
            client failed or timed out. The caller closes on False.
        """
        if not self.is_tls:
            return True

        self.state = ConnectionState.HANDSHAKE
        self.socket.settimeout(self.handshake_timeout)

        try:
            self.socket.do_handshake()
            logger.debug(
                f"[{self.id}] TLS handshake with {self.client_ip}: "
                f"{self.socket.version()} {self.socket.cipher()[0]}"
            )
            return True
        except socket.timeout:
            logger.debug(f"[{self.id}] TLS handshake timed out ({self.client_ip})")
            return False
        except (ssl.SSLError, OSError) as e:
            logger.debug(f"[{self.id}] TLS handshake failed ({self.client_ip}): {e}")
            return False
        finally:
            self.socket.settimeout(self.timeout)

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request from the socket.

        Returns:
            Complete request bytes, or None if the client closed the
            connection (or went idle between keep-alive requests).

        Raises:
            TimeoutError: First request not received in time.
            HTTPParseError: Headers too large (400), invalid Content-Length
                            (400), body over max_body_size (413)
                            or a Transfer-Encoding other than identity (501).
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            # ═══════════════════════════════════════════════════════════════
            # PHASE 1: headers
            # ═══════════════════════════════════════════════════════════════
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    if self._buffer.strip():
                        logger.debug(f"[{self.id}] Client closed mid-headers")
                    return None

                self._buffer += chunk

                if len(self._buffer) > self.max_header_size and b"\r\n\r\n" not in self._buffer:
                    raise HTTPParseError(
                        f"Request headers too large: over {self.max_header_size} bytes"
                    )

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4

            # ═══════════════════════════════════════════════════════════════
            # PHASE 2: framing and body bound, checked before reading the body
            # ═══════════════════════════════════════════════════════════════
            head = self._buffer[:header_end]
            check_transfer_encoding(self._raw_header(head, "transfer-encoding"))
            content_length = self._parse_content_length(head)

            if content_length > self.max_body_size:
                raise HTTPParseError(
                    f"Request body too large: {content_length} bytes",
                    status_code=413,
                )

            # ═══════════════════════════════════════════════════════════════
            # PHASE 3: body
            # ═══════════════════════════════════════════════════════════════
            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    logger.debug(f"[{self.id}] Client closed mid-body")
                    return None
                self._buffer += chunk

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            self.state = ConnectionState.PROCESSING
            self.last_activity = time.time()

            return request_data

        except socket.timeout:
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if self.state != ConnectionState.CLOSED:
                self.socket.settimeout(self.timeout)

    def _recv(self) -> bytes:
        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError):
            return b""
        except ssl.SSLError as e:
            logger.debug(f"[{self.id}] TLS read error: {e}")
            return b""

    @staticmethod
    def _raw_header(headers: bytes, name: str) -> Optional[str]:
        """Value of one header in the raw block, repeats joined with ", "."""
        values = []
        for line in headers.decode("utf-8", errors="replace").split("\r\n")[1:]:
            key, sep, value = line.partition(":")
            if sep and key.strip().lower() == name:
                values.append(value.strip())
        return ", ".join(values) if values else None

    def _parse_content_length(self, headers: bytes) -> int:
        """
        Pull Content-Length out of the raw header block.

        Needed before the request is parsed, so it does a plain line scan.
        """
        header_str = headers.decode("utf-8", errors="replace").lower()
        for line in header_str.split("\r\n")[1:]:
            if line.startswith("content-length:"):
                value = line.split(":", 1)[1].strip()
                try:
                    length = int(value)
                except ValueError:
                    raise HTTPParseError(f"Invalid Content-Length header: {value}")
                if length < 0:
                    raise HTTPParseError(f"Invalid Content-Length header: {value}")
                return length
        return 0

    def send_response(self, data: bytes) -> bool:
        """
        Send response bytes with sendall().

        Returns:
            True if the send succeeded, False if the connection was lost.
        """
        self.state = ConnectionState.WRITING
        self.last_activity = time.time()

        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except (ConnectionResetError, BrokenPipeError, ssl.SSLError, OSError) as e:
            logger.warning(f"[{self.id}] Send failed: {e}")
            return False

    def close(self):
        """
        Close the connection gracefully.

            1. shutdown(SHUT_WR)   send FIN, the client sees end of response
            2. drain               read whatever the client still sends
            3. close()             release the file descriptor
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass  # peer already gone

        try:
            self.socket.settimeout(0.5)
            while self.socket.recv(1024):
                pass
        except (socket.timeout, OSError):
            pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
