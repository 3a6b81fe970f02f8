"""Tests for the reconnection backoff policy."""

from __future__ import annotations

import pytest

from sonoff_cloud.retry import FailureClass, RetryPolicy, compute_delay


class TestComputeDelay:
    """Tests for compute_delay()."""

    @pytest.mark.parametrize(
        ("attempt", "expected"),
        [(0, 1.0), (1, 2.0), (2, 4.0), (5, 32.0), (6, 60.0), (20, 60.0)],
    )
    def test_exponential_growth_is_capped(self, attempt, expected):
        delay = compute_delay(attempt, base=1.0, cap_exponent=6, max_delay=60.0)
        assert delay == expected

    def test_cap_exponent(self):
        """Test the exponent stops growing at cap_exponent."""
        delay = compute_delay(10, base=1.0, cap_exponent=3, max_delay=100.0)
        assert delay == 8.0

    def test_jitter_bounds(self):
        """Test jitter scales the delay by at most the jitter fraction."""
        low = compute_delay(
            2, base=1.0, cap_exponent=6, max_delay=60.0, jitter=0.2, rand=lambda: 0.0
        )
        high = compute_delay(
            2, base=1.0, cap_exponent=6, max_delay=60.0, jitter=0.2, rand=lambda: 1.0
        )
        assert low == pytest.approx(3.2)
        assert high == pytest.approx(4.8)

    def test_jitter_never_exceeds_max(self):
        delay = compute_delay(
            6, base=1.0, cap_exponent=6, max_delay=60.0, jitter=0.5, rand=lambda: 1.0
        )
        assert delay == 60.0


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.base_delay == 1.0
        assert policy.max_delay == 60.0
        assert policy.max_attempts == 10

    def test_fatal_stops(self):
        """Test fatal failures never schedule a retry."""
        assert RetryPolicy().next_delay(0, FailureClass.FATAL) is None

    def test_ceiling(self):
        """Test retries stop once max_attempts is reached."""
        policy = RetryPolicy(max_attempts=3, jitter=0.0)
        assert policy.next_delay(2) == 4.0
        assert policy.next_delay(3) is None
        assert policy.exhausted(3)

    def test_unlimited(self):
        policy = RetryPolicy(max_attempts=None, jitter=0.0)
        assert not policy.exhausted(10_000)
        assert policy.next_delay(10_000) == 60.0

    def test_deterministic_with_rand(self):
        policy = RetryPolicy(jitter=0.2)
        assert policy.next_delay(1, rand=lambda: 0.5) == 2.0

    def test_delays_never_decrease(self):
        policy = RetryPolicy(jitter=0.0, max_attempts=None)
        delays = [policy.next_delay(n) for n in range(12)]
        assert delays == sorted(delays)
