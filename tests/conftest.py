"""
pytest configuration and fixtures.
"""

import http.client
import socket
import ssl
from typing import Dict, Generator, Optional, Tuple
import pytest

# Add src to path for imports
import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from bpserver import ListenerManager, ServerConfig
from bpserver.http import HTTPRequest


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /?debug=1 HTTP/1.1\r\n"
        b"Host: localhost:3000\r\n"
        b"User-Agent: pytest\r\n"
        b"Origin: http://localhost:3000\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_post_request() -> bytes:
    """Sample HTTP POST request with JSON body."""
    body = b'{"testName": "  xor  ", "testType": "unit"}'
    return (
        b"POST / HTTP/1.1\r\n"
        b"Host: localhost:3000\r\n"
        b"Content-Type: application/json\r\n"
        + f"Content-Length: {len(body)}\r\n".encode()
        + b"Connection: close\r\n"
        b"\r\n"
    ) + body


def make_request(
    method: str = "GET",
    path: str = "/",
    headers: Optional[Dict[str, str]] = None,
    body: bytes = b"",
    client_ip: str = "10.0.0.1",
    transport: str = "http",
) -> HTTPRequest:
    """Build an HTTPRequest directly, headers given in any case."""
    return HTTPRequest(
        method=method,
        path=path,
        headers={k.lower(): v for k, v in (headers or {}).items()},
        body=body,
        client_address=(client_ip, 54321),
        transport=transport,
    )


@pytest.fixture
def config() -> ServerConfig:
    """Test configuration: OS-picked ports, HTTPS off, small pool."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,
        https_port=0,
        enable_https=False,
        min_workers=2,
        max_workers=4,
        timeout=5.0,
        shutdown_grace=2.0,
        log_level="WARNING",
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(('127.0.0.1', 0))
        return s.getsockname()[1]


@pytest.fixture
def running_manager(config: ServerConfig) -> Generator[ListenerManager, None, None]:
    """A started ListenerManager serving plain HTTP on a free port."""
    manager = ListenerManager(config)
    manager.start()

    yield manager

    manager.shutdown()


Response = Tuple[int, Dict[str, str], bytes]


def http_get(
    port: int,
    path: str = "/",
    method: str = "GET",
    headers: Optional[Dict[str, str]] = None,
    body: Optional[bytes] = None,
    tls: bool = False,
) -> Response:
    """One request on a fresh connection; returns (status, headers, body)."""
    if tls:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        conn = http.client.HTTPSConnection("127.0.0.1", port, timeout=5, context=context)
    else:
        conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)

    try:
        conn.request(method, path, body=body, headers=headers or {})
        response = conn.getresponse()
        return response.status, dict(response.getheaders()), response.read()
    finally:
        conn.close()
