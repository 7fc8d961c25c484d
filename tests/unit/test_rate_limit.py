"""Tests for nanogen.api.rate_limit — fixed-window limiter."""

from __future__ import annotations

from types import SimpleNamespace

from nanogen.api.rate_limit import FixedWindowRateLimiter, get_client_ip


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestFixedWindowRateLimiter:
    def test_allows_up_to_limit(self):
        limiter = FixedWindowRateLimiter(3, 60, clock=_Clock())
        assert [limiter.hit("1.2.3.4") for _ in range(4)] == [True, True, True, False]

    def test_keys_are_independent(self):
        limiter = FixedWindowRateLimiter(1, 60, clock=_Clock())
        assert limiter.hit("a")
        assert limiter.hit("b")
        assert not limiter.hit("a")

    def test_window_resets(self):
        clock = _Clock()
        limiter = FixedWindowRateLimiter(1, 60, clock=clock)
        assert limiter.hit("a")
        assert not limiter.hit("a")

        clock.now += 60
        assert limiter.hit("a")

    def test_retry_after(self):
        clock = _Clock()
        limiter = FixedWindowRateLimiter(1, 60, clock=clock)
        limiter.hit("a")
        clock.now += 15.5
        assert limiter.retry_after("a") == 45
        assert limiter.retry_after("unknown") == 0

    def test_reset(self):
        limiter = FixedWindowRateLimiter(1, 60, clock=_Clock())
        limiter.hit("a")
        limiter.reset()
        assert limiter.hit("a")


class TestGetClientIp:
    def test_uses_client_host(self):
        request = SimpleNamespace(client=SimpleNamespace(host="10.0.0.7"))
        assert get_client_ip(request) == "10.0.0.7"

    def test_missing_client(self):
        assert get_client_ip(SimpleNamespace(client=None)) == "127.0.0.1"
