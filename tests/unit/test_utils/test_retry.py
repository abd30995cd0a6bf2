"""Unit tests for the retry decorator and backoff strategy."""
from __future__ import annotations

import pytest

from notification_service.utils.retry import RetryError, RetryStrategy, retry


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    """Skip real backoff sleeps."""
    delays: list[float] = []

    async def fake_sleep(delay: float) -> None:
        delays.append(delay)

    monkeypatch.setattr("notification_service.utils.retry.asyncio.sleep", fake_sleep)
    return delays


@pytest.mark.unit
class TestRetryDecorator:
    """Test suite for retry decorator."""

    async def test_retry_succeeds_first_attempt(self, no_sleep):
        call_count = 0

        @retry(max_attempts=3)
        async def successful_func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await successful_func() == "success"
        assert call_count == 1
        assert no_sleep == []

    async def test_retry_succeeds_after_retries(self, no_sleep):
        call_count = 0

        @retry(max_attempts=3, initial_delay=0.5, jitter=False)
        async def eventually_successful():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ValueError("Not yet")
            return "success"

        assert await eventually_successful() == "success"
        assert call_count == 3
        assert no_sleep == [0.5, 1.0]

    async def test_retry_fails_after_max_attempts(self):
        call_count = 0

        @retry(max_attempts=3, initial_delay=0.01)
        async def always_fails():
            nonlocal call_count
            call_count += 1
            raise ValueError("Always fails")

        with pytest.raises(RetryError) as exc_info:
            await always_fails()

        assert call_count == 3
        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_exception, ValueError)
        assert "after 3 attempts" in str(exc_info.value)

    async def test_retry_only_retries_specified_exceptions(self):
        call_count = 0

        @retry(max_attempts=3, initial_delay=0.01, exceptions=(ConnectionError,))
        async def raises_type_error():
            nonlocal call_count
            call_count += 1
            raise TypeError("Not retryable")

        with pytest.raises(TypeError):
            await raises_type_error()

        assert call_count == 1


@pytest.mark.unit
class TestRetryStrategy:
    def test_delays_double_until_capped(self):
        strategy = RetryStrategy(initial_delay=2.0, max_delay=10.0, jitter=False)

        assert [strategy.calculate_delay(attempt) for attempt in range(5)] == [2.0, 4.0, 8.0, 10.0, 10.0]

    def test_jitter_stays_within_half_to_one_and_a_half(self):
        strategy = RetryStrategy(initial_delay=2.0, max_delay=60.0, jitter=True)

        for _ in range(50):
            assert 1.0 <= strategy.calculate_delay(0) < 3.0

    def test_attempt_budget(self):
        strategy = RetryStrategy(max_attempts=3)

        assert strategy.has_attempts_left(2)
        assert not strategy.has_attempts_left(3)

    def test_should_retry_filters_by_type(self):
        strategy = RetryStrategy(exceptions=(TimeoutError,))

        assert strategy.should_retry(TimeoutError())
        assert not strategy.should_retry(ValueError())
