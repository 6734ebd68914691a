"""
Unit Tests - Retry and Backoff
"""
import pytest

from storesync.sync.errors import FetchError, TransientFetchError
from storesync.sync.retry import RetryPolicy, RetryStats, calculate_backoff, with_retry


class TestCalculateBackoff:
    """Tests for backoff delays"""

    def test_exponential_growth(self):
        """Test delays double per attempt"""
        assert calculate_backoff(1, base_delay=1.0, max_delay=60.0, jitter=False) == 1.0
        assert calculate_backoff(2, base_delay=1.0, max_delay=60.0, jitter=False) == 2.0
        assert calculate_backoff(4, base_delay=1.0, max_delay=60.0, jitter=False) == 8.0

    def test_cap(self):
        """Test the delay never exceeds the cap before jitter"""
        assert calculate_backoff(10, base_delay=1.0, max_delay=30.0, jitter=False) == 30.0

    def test_jitter_bounds(self):
        """Test jitter adds at most 25%"""
        for _ in range(50):
            delay = calculate_backoff(3, base_delay=1.0, max_delay=60.0, jitter=True)
            assert 4.0 <= delay <= 5.0


class TestWithRetry:
    """Tests for the retry loop"""

    async def test_succeeds_after_transient_failures(self, recorded_sleep):
        """Test transient errors are retried until success"""
        calls = []

        async def operation(attempt):
            calls.append(attempt)
            if attempt < 3:
                raise TransientFetchError("503")
            return "ok"

        stats = RetryStats()
        result = await with_retry(
            operation,
            RetryPolicy(max_attempts=3, base_delay=1.0, jitter=False),
            stats,
            sleep=recorded_sleep,
        )

        assert result == "ok"
        assert calls == [1, 2, 3]
        assert recorded_sleep.delays == [1.0, 2.0]
        assert stats.attempts == 3
        assert len(stats.errors) == 2

    async def test_exhaustion_raises_last_error(self, recorded_sleep):
        """Test the final transient error propagates"""
        async def operation(attempt):
            raise TransientFetchError(f"failure {attempt}")

        with pytest.raises(TransientFetchError, match="failure 2"):
            await with_retry(operation, RetryPolicy(max_attempts=2, jitter=False), sleep=recorded_sleep)

        assert len(recorded_sleep.delays) == 1

    async def test_non_transient_error_is_not_retried(self, recorded_sleep):
        """Test permanent failures propagate immediately"""
        calls = []

        async def operation(attempt):
            calls.append(attempt)
            raise FetchError("404")

        with pytest.raises(FetchError):
            await with_retry(operation, RetryPolicy(max_attempts=5), sleep=recorded_sleep)

        assert calls == [1]
        assert recorded_sleep.delays == []

    async def test_retry_after_is_delay_floor(self, recorded_sleep):
        """Test Retry-After raises the backoff delay"""
        async def operation(attempt):
            if attempt == 1:
                raise TransientFetchError("429", status_code=429, retry_after=7.0)
            return attempt

        await with_retry(
            operation,
            RetryPolicy(max_attempts=3, base_delay=1.0, jitter=False),
            sleep=recorded_sleep,
        )

        assert recorded_sleep.delays == [7.0]
