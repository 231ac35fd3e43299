"""
Tests for randomized delays and exponential backoff.
"""
import pytest

from catalog_scrape.delays import backoff_seconds, random_delay, retry_with_backoff


class TestBackoffSeconds:
    @pytest.mark.parametrize("attempt, expected", [(0, 1.0), (1, 2.0), (2, 4.0), (3, 8.0)])
    def test_doubles_without_jitter(self, attempt, expected):
        assert backoff_seconds(attempt, rng=lambda: 0.0) == expected

    def test_capped(self):
        assert backoff_seconds(10, rng=lambda: 0.0) == 30.0

    def test_jitter_is_at_most_thirty_percent(self):
        assert backoff_seconds(1, rng=lambda: 1.0) == pytest.approx(2.6)

    def test_custom_base(self):
        assert backoff_seconds(2, base_ms=500, max_ms=1500, rng=lambda: 0.0) == 1.5


class TestRetryWithBackoff:
    @pytest.mark.asyncio
    async def test_returns_first_success(self):
        calls = []
        waits = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("reset")
            return "ok"

        async def record(attempt):
            waits.append(attempt)

        assert await retry_with_backoff(flaky, max_attempts=3, backoff=record) == "ok"
        assert len(calls) == 3
        assert waits == [0, 1]

    @pytest.mark.asyncio
    async def test_reraises_last_error(self):
        async def always_fails():
            raise ConnectionError("still down")

        async def no_wait(attempt):
            return None

        with pytest.raises(ConnectionError, match="still down"):
            await retry_with_backoff(always_fails, max_attempts=2, backoff=no_wait)

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_raised_immediately(self):
        calls = []

        async def fails():
            calls.append(1)
            raise ValueError("bad input")

        async def no_wait(attempt):
            return None

        with pytest.raises(ValueError):
            await retry_with_backoff(
                fails, max_attempts=5, should_retry=lambda e: isinstance(e, ConnectionError), backoff=no_wait
            )
        assert len(calls) == 1


@pytest.mark.asyncio
async def test_random_delay_zero():
    assert await random_delay(0, 0) is None
