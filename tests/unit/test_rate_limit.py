"""
Unit tests for the rate-limit store and stage.
"""

import threading

import pytest

from bpserver.middleware.rate_limit import RateLimitMiddleware, RateLimitStore
from bpserver.http.response import ResponseBuilder

from conftest import make_request


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


def ok_handler(request):
    return ResponseBuilder().text("Hello, World!\n").build()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(clock: FakeClock) -> RateLimitStore:
    return RateLimitStore(max_requests=100, window=900, clock=clock)


class TestRateLimitStore:
    """Tests for RateLimitStore."""

    def test_first_hit(self, store, clock):
        snapshot = store.hit("10.0.0.1")

        assert snapshot.count == 1
        assert snapshot.allowed
        assert snapshot.remaining == 99
        assert snapshot.reset_at == clock.now + 900

    def test_limit_reached(self, store):
        """Test 100 hits are allowed and the 101st is not."""
        snapshots = [store.hit("10.0.0.1") for _ in range(101)]

        assert all(s.allowed for s in snapshots[:100])
        assert snapshots[99].remaining == 0
        assert not snapshots[100].allowed
        assert snapshots[100].count == 101

    def test_keys_independent(self, store):
        for _ in range(100):
            store.hit("10.0.0.1")

        assert not store.hit("10.0.0.1").allowed
        assert store.hit("10.0.0.2").allowed

    def test_window_reset(self, store, clock):
        """Test a full reset once the window has elapsed."""
        for _ in range(101):
            store.hit("10.0.0.1")

        clock.advance(899)
        assert not store.hit("10.0.0.1").allowed

        clock.advance(1)
        snapshot = store.hit("10.0.0.1")
        assert snapshot.allowed
        assert snapshot.count == 1

    def test_boundary_double_admission(self, store, clock):
        """Test 100 just before and 100 just after the boundary are all admitted."""
        store.hit("10.0.0.1")
        clock.advance(899)
        assert all(store.hit("10.0.0.1").allowed for _ in range(99))

        clock.advance(1)
        assert all(store.hit("10.0.0.1").allowed for _ in range(100))

    def test_retry_after(self, store, clock):
        for _ in range(100):
            store.hit("10.0.0.1")

        clock.advance(300.5)
        snapshot = store.hit("10.0.0.1")

        assert snapshot.retry_after == 600

    def test_concurrent_hits_all_recorded(self):
        """Test 50 threads hitting one key record exactly 50."""
        store = RateLimitStore(max_requests=100, window=900)
        barrier = threading.Barrier(50)

        def worker():
            barrier.wait()
            store.hit("10.0.0.1")

        threads = [threading.Thread(target=worker) for _ in range(50)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=5)

        assert store.get("10.0.0.1").count == 50

    def test_get_does_not_count(self, store):
        store.hit("10.0.0.1")

        assert store.get("10.0.0.1").count == 1
        assert store.get("10.0.0.1").count == 1
        assert store.get("10.0.0.9") is None

    def test_peek_reads_fresh_window_without_counting(self, store, clock):
        """Test an unseen key reads as a full quota and stays unrecorded."""
        snapshot = store.peek("10.0.0.9")

        assert snapshot.count == 0
        assert snapshot.remaining == 100
        assert snapshot.reset_at == clock.now + 900
        assert store.get("10.0.0.9") is None
        assert len(store) == 0

    def test_peek_reads_live_window(self, store, clock):
        store.hit("10.0.0.1")
        clock.advance(100)

        snapshot = store.peek("10.0.0.1")

        assert snapshot.remaining == 99
        assert snapshot.reset_at == 1_000_000.0 + 900
        assert store.get("10.0.0.1").count == 1

    def test_reset(self, store):
        store.hit("10.0.0.1")
        store.hit("10.0.0.2")

        store.reset("10.0.0.1")
        assert store.get("10.0.0.1") is None
        assert store.get("10.0.0.2") is not None

        store.reset()
        assert len(store) == 0

    def test_cleanup_drops_expired(self, store, clock):
        store.hit("10.0.0.1")
        clock.advance(500)
        store.hit("10.0.0.2")
        clock.advance(400)

        assert store.cleanup() == 1
        assert len(store) == 1

    def test_headers(self, store, clock):
        headers = store.hit("10.0.0.1").to_headers()

        assert headers == {
            "X-RateLimit-Limit": "100",
            "X-RateLimit-Remaining": "99",
            "X-RateLimit-Reset": str(int(clock.now + 900)),
        }

    @pytest.mark.parametrize("kwargs", [{"max_requests": 0}, {"window": 0}])
    def test_invalid_settings(self, kwargs):
        with pytest.raises(ValueError):
            RateLimitStore(**kwargs)


class TestRateLimitMiddleware:
    """Tests for RateLimitMiddleware."""

    def test_allowed_request_gets_headers(self, store):
        response = RateLimitMiddleware(store)(make_request(), ok_handler)

        assert response.status == 200
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "99"
        assert "X-RateLimit-Reset" in response.headers

    def test_rejection(self, store):
        middleware = RateLimitMiddleware(store)
        calls = []

        def handler(request):
            calls.append(request)
            return ok_handler(request)

        for _ in range(100):
            assert middleware(make_request(), handler).status == 200

        response = middleware(make_request(), handler)

        assert len(calls) == 100
        assert response.status == 429
        assert response.json["retryAfter"] == 900
        assert response.headers["Retry-After"] == "900"
        assert response.headers["X-RateLimit-Remaining"] == "0"

    def test_keyed_on_client_ip(self, store):
        middleware = RateLimitMiddleware(store)
        middleware(make_request(client_ip="10.0.0.7"), ok_handler)

        assert store.get("10.0.0.7").count == 1
        assert store.get("10.0.0.1") is None

    def test_custom_key_func(self, store):
        middleware = RateLimitMiddleware(store, key_func=lambda r: r.get_header("x-api-key"))
        middleware(make_request(headers={"X-API-Key": "abc"}), ok_handler)

        assert store.get("abc").count == 1

    def test_quota_headers_do_not_count(self, store):
        middleware = RateLimitMiddleware(store)
        middleware(make_request(), ok_handler)

        headers = middleware.quota_headers(make_request())

        assert headers["X-RateLimit-Remaining"] == "99"
        assert store.get("10.0.0.1").count == 1
