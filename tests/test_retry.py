"""
Tests for Parley retry and backoff patterns.
"""

import math

import pytest

from conftest import RecordingSleep, rate_limited
from parley.providers.errors import ProviderError, ProviderErrorKind
from parley.providers.retry import (
    ExponentialBackoff,
    NoBackoff,
    RetryPolicy,
    RetryResult,
    is_rate_limited,
    with_retry,
)


# =============================================================================
# Backoff Strategy Tests
# =============================================================================


class TestNoBackoff:
    """Tests for NoBackoff strategy."""

    def test_always_returns_zero(self):
        backoff = NoBackoff()
        assert backoff.get_delay(1) == 0.0
        assert backoff.get_delay(100) == 0.0


class TestExponentialBackoff:
    """Tests for ExponentialBackoff strategy."""

    def test_increases_exponentially(self):
        backoff = ExponentialBackoff(base=1.0, multiplier=2.0)
        assert [backoff.get_delay(n) for n in range(1, 5)] == [1.0, 2.0, 4.0, 8.0]

    def test_respects_max_delay(self):
        backoff = ExponentialBackoff(base=1.0, multiplier=2.0, max_delay=5.0)
        assert backoff.get_delay(3) == 4.0
        assert backoff.get_delay(4) == 5.0
        assert backoff.get_delay(10) == 5.0


# =============================================================================
# Retry Policy Tests
# =============================================================================


class TestRetryPolicy:
    """Tests for RetryPolicy."""

    def test_for_rate_limits(self):
        policy = RetryPolicy.for_rate_limits(max_retries=3, base_delay=0.5)

        assert policy.max_attempts == 4
        assert [policy.get_delay(n) for n in (1, 2, 3)] == [0.5, 1.0, 2.0]
        assert policy.backoff.max_delay == math.inf

    def test_zero_retries_means_single_attempt(self):
        policy = RetryPolicy.for_rate_limits(max_retries=0, base_delay=1.0)
        assert policy.max_attempts == 1
        assert not policy.should_retry(1, rate_limited())

    def test_only_rate_limits_retried(self):
        policy = RetryPolicy.for_rate_limits(max_retries=3, base_delay=1.0)

        assert policy.should_retry(1, rate_limited())
        assert not policy.should_retry(
            1, ProviderError(ProviderErrorKind.UNAUTHORIZED, "bad key")
        )
        assert not policy.should_retry(1, ProviderError(ProviderErrorKind.TRANSPORT, "reset"))
        assert not policy.should_retry(1, ValueError("429"))

    def test_stops_at_max_attempts(self):
        policy = RetryPolicy.for_rate_limits(max_retries=2, base_delay=1.0)
        assert policy.should_retry(2, rate_limited())
        assert not policy.should_retry(3, rate_limited())

    def test_is_rate_limited_predicate(self):
        assert is_rate_limited(rate_limited())
        assert not is_rate_limited(RuntimeError("rate limited"))


# =============================================================================
# Retry Executor Tests
# =============================================================================


class Flaky:
    """Operation failing with scripted errors before succeeding."""

    def __init__(self, *errors, result="done"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class TestWithRetry:
    """Tests for with_retry."""

    @pytest.mark.asyncio
    async def test_success_first_try(self):
        operation = Flaky()
        sleep = RecordingSleep()

        result = await with_retry(operation, RetryPolicy.for_rate_limits(3, 1.0), sleep=sleep)

        assert result.success
        assert result.result == "done"
        assert result.attempts == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_rate_limits_with_exponential_delays(self):
        operation = Flaky(rate_limited(), rate_limited())
        sleep = RecordingSleep()

        result = await with_retry(operation, RetryPolicy.for_rate_limits(3, 1.0), sleep=sleep)

        assert result.success
        assert result.attempts == 3
        assert sleep.delays == [1.0, 2.0]
        assert result.delays == [1.0, 2.0]
        assert result.total_delay == 3.0
        assert len(result.errors) == 2

    @pytest.mark.asyncio
    async def test_exhaustion_returns_last_error(self):
        errors = [rate_limited() for _ in range(4)]
        operation = Flaky(*errors)
        sleep = RecordingSleep()

        result = await with_retry(operation, RetryPolicy.for_rate_limits(3, 0.5), sleep=sleep)

        assert not result.success
        assert result.attempts == 4
        assert sleep.delays == [0.5, 1.0, 2.0]
        assert result.final_error is errors[-1]
        with pytest.raises(ProviderError) as exc_info:
            result.unwrap()
        assert exc_info.value.kind == ProviderErrorKind.RATE_LIMITED

    @pytest.mark.asyncio
    async def test_non_retryable_error_stops_immediately(self):
        error = ProviderError(ProviderErrorKind.UNAUTHORIZED, "bad key", "mock", http_status=401)
        operation = Flaky(error)
        sleep = RecordingSleep()

        result = await with_retry(operation, RetryPolicy.for_rate_limits(3, 1.0), sleep=sleep)

        assert not result.success
        assert operation.calls == 1
        assert sleep.delays == []
        assert result.final_error is error


class TestRetryResult:
    """Tests for RetryResult."""

    def test_unwrap_success(self):
        assert RetryResult(success=True, result=42).unwrap() == 42

    def test_unwrap_without_error(self):
        with pytest.raises(RuntimeError):
            RetryResult(success=False).unwrap()
