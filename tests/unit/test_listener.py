"""
Unit tests for the TCP listener lifecycle.
"""

import socket
import threading

import pytest

from bpserver.config import ServerConfig
from bpserver.core import Listener, ListenerState
from bpserver.errors import BindFailure


@pytest.fixture
def listener_config() -> ServerConfig:
    return ServerConfig(host="127.0.0.1", port=0, https_port=0, timeout=2.0)


def make_listener(config: ServerConfig, port: int = 0, **kwargs) -> Listener:
    return Listener("plain", "http", "127.0.0.1", port, config, **kwargs)


class TestListener:
    """Tests for Listener."""

    def test_lifecycle_states(self, listener_config):
        listener = make_listener(listener_config)
        assert listener.state == ListenerState.UNSTARTED

        listener.start(lambda conn: conn.close())
        try:
            assert listener.state == ListenerState.LISTENING
            assert listener.is_listening
            assert listener.bound_port > 0
            assert listener.url == f"http://127.0.0.1:{listener.bound_port}/"
        finally:
            listener.close()

        assert listener.state == ListenerState.CLOSED
        assert not listener.is_listening

    def test_connections_handed_over(self, listener_config):
        """Test accepted sockets arrive as Connections tagged with the transport."""
        received = []
        arrived = threading.Event()

        def handler(conn):
            received.append(conn)
            conn.close()
            arrived.set()

        listener = make_listener(listener_config)
        listener.start(handler)
        try:
            with socket.create_connection(("127.0.0.1", listener.bound_port), timeout=2):
                assert arrived.wait(5)
        finally:
            listener.close()

        assert received[0].transport == "http"
        assert received[0].client_ip == "127.0.0.1"
        assert received[0].max_body_size == listener_config.max_body_size

    def test_bind_conflict(self, listener_config):
        """Test an occupied port raises BindFailure and leaves FAILED."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as blocker:
            blocker.bind(("127.0.0.1", 0))
            blocker.listen(1)
            port = blocker.getsockname()[1]

            listener = make_listener(listener_config, port=port)
            with pytest.raises(BindFailure) as exc:
                listener.start(lambda conn: conn.close())

        assert listener.state == ListenerState.FAILED
        assert exc.value.port == port
        assert exc.value.transport == "http"

    def test_close_is_idempotent(self, listener_config):
        listener = make_listener(listener_config)
        listener.start(lambda conn: conn.close())

        listener.close()
        listener.close()

        assert listener.state == ListenerState.CLOSED

    def test_close_releases_port(self, listener_config):
        listener = make_listener(listener_config)
        listener.start(lambda conn: conn.close())
        port = listener.bound_port
        listener.close()

        again = make_listener(listener_config, port=port)
        again.start(lambda conn: conn.close())
        try:
            assert again.bound_port == port
        finally:
            again.close()

    def test_close_unstarted(self, listener_config):
        listener = make_listener(listener_config)
        listener.close()

        assert listener.state == ListenerState.CLOSED

    def test_start_twice(self, listener_config):
        listener = make_listener(listener_config)
        listener.start(lambda conn: conn.close())
        try:
            with pytest.raises(RuntimeError):
                listener.start(lambda conn: conn.close())
        finally:
            listener.close()

    def test_independent_listeners(self, listener_config):
        """Test closing one listener leaves another serving."""
        first = make_listener(listener_config)
        second = Listener("encrypted", "https", "127.0.0.1", 0, listener_config)
        first.start(lambda conn: conn.close())
        second.start(lambda conn: conn.close())
        try:
            first.close()
            assert second.is_listening
            with socket.create_connection(("127.0.0.1", second.bound_port), timeout=2):
                pass
        finally:
            second.close()
