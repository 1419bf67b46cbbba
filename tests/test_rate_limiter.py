"""Tests for the sliding-window rate limiter."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from chatrelay.core import ErrorCode, RateLimitedError
from chatrelay.services import RateLimiter


def test_admits_up_to_cap_within_window() -> None:
    limiter = RateLimiter(cap=3, window_seconds=60)

    assert [limiter.try_admit("alice", now=t) for t in (0.0, 1.0, 2.0)] == [True, True, True]
    assert limiter.try_admit("alice", now=3.0) is False


def test_timestamp_on_window_edge_still_counts() -> None:
    limiter = RateLimiter(cap=1, window_seconds=60)
    assert limiter.try_admit("alice", now=0.0)

    assert limiter.try_admit("alice", now=60.0) is False
    assert limiter.try_admit("alice", now=60.001) is True


def test_rejections_are_not_recorded() -> None:
    limiter = RateLimiter(cap=2, window_seconds=10)
    limiter.try_admit("alice", now=0.0)
    limiter.try_admit("alice", now=1.0)
    for t in range(2, 10):
        assert limiter.try_admit("alice", now=float(t)) is False

    # Only the two admitted timestamps were kept; the first one ages out after t=10.
    assert limiter.try_admit("alice", now=10.5) is True


def test_identities_are_isolated() -> None:
    limiter = RateLimiter(cap=1, window_seconds=60)

    assert limiter.try_admit("alice", now=0.0)
    assert limiter.try_admit("alice", now=1.0) is False
    assert limiter.try_admit("bob", now=1.0)


def test_check_raises_with_retry_after() -> None:
    limiter = RateLimiter(cap=1, window_seconds=60)
    limiter.check("alice", now=0.0)

    with pytest.raises(RateLimitedError) as exc_info:
        limiter.check("alice", now=10.0)

    assert exc_info.value.code == ErrorCode.RATE_LIMITED
    assert exc_info.value.status_code == 429
    assert exc_info.value.details["retry_after_seconds"] == 50
    assert exc_info.value.details["limit"] == 1


def test_sweep_drops_idle_identities() -> None:
    limiter = RateLimiter(cap=5, window_seconds=60)
    limiter.try_admit("alice", now=0.0)
    limiter.try_admit("bob", now=30.0)

    assert limiter.sweep(now=61.0) == 1
    assert limiter.tracked_identities() == 1
    assert limiter.sweep(now=91.0) == 1
    assert limiter.tracked_identities() == 0


def test_zero_cap_disables_limiting() -> None:
    limiter = RateLimiter(cap=0, window_seconds=60)

    assert all(limiter.try_admit("alice", now=0.0) for _ in range(100))
    assert limiter.tracked_identities() == 0


def test_concurrent_admissions_never_exceed_cap() -> None:
    limiter = RateLimiter(cap=5, window_seconds=60)
    workers = 32
    barrier = threading.Barrier(workers)

    def attempt(_: int) -> bool:
        barrier.wait()
        return limiter.try_admit("alice", now=0.0)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(attempt, range(workers)))

    assert results.count(True) == 5
    assert limiter.try_admit("alice", now=1.0) is False
