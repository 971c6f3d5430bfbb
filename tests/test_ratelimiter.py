"""Unit tests for the fixed-window rate limiter in core/ratelimiter.py.

Covers:
- First N requests admitted, N+1-th denied with 0 < retry_after <= window
- A fresh window opens once the old one has elapsed
- Keys are counted independently
- purge_expired() drops only elapsed windows
- No increments are lost under concurrent access to one key
- build_rate_limiter() selects the no-op limiter when disabled

The in-memory storage reads time.time(), so the clock fixture freezes it and
steps it forward explicitly.
"""

import threading
import time

import pytest

from core.ratelimiter import FixedWindowRateLimiter, NullRateLimiter, RateLimiter, build_rate_limiter


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock(monkeypatch) -> FakeClock:
    fake = FakeClock()
    monkeypatch.setattr(time, "time", fake)
    return fake


def test_three_per_five_seconds_denies_fourth_request(clock):
    limiter = FixedWindowRateLimiter(max_requests=3, window_seconds=5)

    results = [limiter.allow("203.0.113.7") for _ in range(4)]

    assert [permitted for permitted, _ in results] == [True, True, True, False]
    assert 0 < results[3][1] <= 5


def test_retry_after_shrinks_as_window_ages(clock):
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=10)
    limiter.allow("k")

    clock.advance(4)
    permitted, retry_after = limiter.allow("k")

    assert permitted is False
    assert retry_after == pytest.approx(6)


def test_window_resets_after_elapsing(clock):
    limiter = FixedWindowRateLimiter(max_requests=2, window_seconds=5)
    limiter.allow("k")
    limiter.allow("k")
    assert limiter.allow("k")[0] is False

    clock.advance(5)

    assert limiter.allow("k") == (True, 0.0)
    assert limiter.allow("k")[0] is True
    assert limiter.allow("k")[0] is False


def test_keys_are_independent(clock):
    limiter = FixedWindowRateLimiter(max_requests=1, window_seconds=5)

    assert limiter.allow("a")[0] is True
    assert limiter.allow("b")[0] is True
    assert limiter.allow("a")[0] is False


def test_limiters_do_not_share_counters(clock):
    first = FixedWindowRateLimiter(max_requests=1, window_seconds=5)
    second = FixedWindowRateLimiter(max_requests=1, window_seconds=5)

    assert first.allow("k")[0] is True
    assert second.allow("k")[0] is True


def test_purge_expired_drops_only_elapsed_windows(clock):
    limiter = FixedWindowRateLimiter(max_requests=5, window_seconds=5)
    limiter.allow("old")
    clock.advance(3)
    limiter.allow("new")
    clock.advance(2)

    limiter.purge_expired()

    assert limiter.active_windows() == 1
    # "new" keeps counting inside its original window
    for _ in range(4):
        assert limiter.allow("new")[0] is True
    assert limiter.allow("new")[0] is False


def test_concurrent_requests_for_one_key_lose_no_increments(clock):
    limiter = FixedWindowRateLimiter(max_requests=100, window_seconds=60)
    admitted: list[bool] = []
    lock = threading.Lock()

    def worker() -> None:
        for _ in range(30):
            permitted, _ = limiter.allow("shared")
            with lock:
                admitted.append(permitted)

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert admitted.count(True) == 100
    assert admitted.count(False) == 140


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_requests": 0, "window_seconds": 5},
        {"max_requests": 1, "window_seconds": 0},
    ],
)
def test_invalid_configuration_rejected(kwargs):
    with pytest.raises(ValueError):
        FixedWindowRateLimiter(**kwargs)


def test_disabled_limiter_admits_everything():
    limiter = build_rate_limiter(enabled=False, max_requests=1, window_seconds=5)

    assert isinstance(limiter, NullRateLimiter)
    assert all(limiter.allow("k")[0] for _ in range(50))
    assert limiter.active_windows() == 0


def test_enabled_limiter_uses_configuration():
    limiter = build_rate_limiter(enabled=True, max_requests=7, window_seconds=2.5)

    assert isinstance(limiter, FixedWindowRateLimiter)
    assert limiter.max_requests == 7
    assert limiter.window_seconds == 2.5


@pytest.mark.parametrize("limiter", [NullRateLimiter(), FixedWindowRateLimiter(max_requests=1, window_seconds=5)])
def test_limiters_expose_window_count(limiter):
    assert isinstance(limiter, RateLimiter)
    assert limiter.active_windows() == 0
