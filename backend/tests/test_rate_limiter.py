"""Tests for InMemoryRateLimiter."""

from tutor_relay.api.dependencies import InMemoryRateLimiter, RateLimitConfig


def make_limiter(max_requests: int = 2) -> InMemoryRateLimiter:
    return InMemoryRateLimiter({"/ws/voice": RateLimitConfig(max_requests=max_requests, window_seconds=60)})


def test_allows_up_to_limit():
    limiter = make_limiter()

    assert limiter.check("/ws/voice", "1.2.3.4")
    assert limiter.check("/ws/voice", "1.2.3.4")
    assert not limiter.check("/ws/voice", "1.2.3.4")


def test_clients_limited_separately():
    limiter = make_limiter(max_requests=1)

    assert limiter.check("/ws/voice", "1.2.3.4")
    assert limiter.check("/ws/voice", "5.6.7.8")


def test_rejected_attempts_are_not_recorded():
    limiter = make_limiter(max_requests=1)
    limiter.check("/ws/voice", "1.2.3.4")
    limiter.check("/ws/voice", "1.2.3.4")

    assert limiter.get_remaining("/ws/voice", "1.2.3.4") == 0
    assert len(limiter._requests["/ws/voice"]["1.2.3.4"]) == 1


def test_unconfigured_endpoint_is_unlimited():
    limiter = make_limiter()

    assert limiter.get_remaining("/other", "1.2.3.4") == -1
    assert all(limiter.check("/other", "1.2.3.4") for _ in range(50))


def test_reset_clears_history():
    limiter = make_limiter(max_requests=1)
    limiter.check("/ws/voice", "1.2.3.4")

    limiter.reset()

    assert limiter.get_remaining("/ws/voice", "1.2.3.4") == 1


def test_window_slides():
    now = [100.0]
    limiter = InMemoryRateLimiter(
        {"/ws/voice": RateLimitConfig(max_requests=1, window_seconds=60)}, clock=lambda: now[0]
    )
    limiter.check("/ws/voice", "1.2.3.4")

    now[0] += 59
    assert not limiter.check("/ws/voice", "1.2.3.4")

    now[0] += 2
    assert limiter.check("/ws/voice", "1.2.3.4")
