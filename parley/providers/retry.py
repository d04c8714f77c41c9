"""
Retry and Backoff Patterns for Parley.

Provides mechanisms for handling transient provider failures:
- BackoffStrategy: Delay calculation between retries
- RetryPolicy: How many attempts, and which errors trigger another one
- with_retry: Execute an async operation under a policy

Design Philosophy:
- Retry state lives in the call, never on the provider instance
- Composable backoff strategies (shared with the websocket transport)
- Only rate limiting is retried locally; everything else is the
  orchestrator's decision
"""

from __future__ import annotations

import asyncio
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

from .errors import ProviderError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")


# =============================================================================
# Backoff Strategies
# =============================================================================


class BackoffStrategy(ABC):
    """
    Abstract base for backoff delay calculation.

    Backoff strategies determine how long to wait between retry attempts.
    """

    @abstractmethod
    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay before next retry attempt.

        Args:
            attempt: Current attempt number (1-indexed, first retry is attempt 1)

        Returns:
            Delay in seconds before next attempt
        """
        ...


@dataclass
class NoBackoff(BackoffStrategy):
    """No delay between retries. Mostly useful in tests."""

    def get_delay(self, attempt: int) -> float:
        return 0.0


@dataclass
class ExponentialBackoff(BackoffStrategy):
    """
    Exponentially increasing delay between retries.

    delay = min(base * (multiplier ^ (attempt - 1)), max_delay)

    Example:
        backoff = ExponentialBackoff(base=1.0, multiplier=2.0, max_delay=10.0)
        # Attempt 1: 1s, Attempt 2: 2s, Attempt 3: 4s, Attempt 4: 8s, Attempt 5: 10s
    """

    base: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0

    def get_delay(self, attempt: int) -> float:
        delay = self.base * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


# =============================================================================
# Retry Policy
# =============================================================================


def is_rate_limited(error: Exception) -> bool:
    """Default retry predicate: only provider 429s are retried locally."""
    return isinstance(error, ProviderError) and error.is_rate_limited


@dataclass
class RetryPolicy:
    """
    Configures retry behavior for a provider call.

    Example:
        policy = RetryPolicy(
            max_attempts=4,
            backoff=ExponentialBackoff(base=1.0),
            retry_if=is_rate_limited,
        )
    """

    max_attempts: int = 1  # 1 = no retry (single attempt)
    backoff: BackoffStrategy = field(default_factory=NoBackoff)
    retry_if: Callable[[Exception], bool] = is_rate_limited

    @classmethod
    def for_rate_limits(cls, max_retries: int, base_delay: float) -> RetryPolicy:
        """
        Policy used by chat providers: retry 429s up to max_retries times
        with delay = base_delay * 2^(retry - 1).
        """
        return cls(
            max_attempts=max(0, max_retries) + 1,
            backoff=ExponentialBackoff(
                base=base_delay,
                multiplier=2.0,
                max_delay=math.inf,
            ),
            retry_if=is_rate_limited,
        )

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """
        Determine if retry should be attempted.

        Args:
            attempt: Current attempt number (1-indexed)
            error: Exception that caused failure (if any)
        """
        if attempt >= self.max_attempts:
            return False

        if error is not None:
            return self.retry_if(error)

        return False

    def get_delay(self, attempt: int) -> float:
        """Get delay before next retry attempt."""
        return self.backoff.get_delay(attempt)



# =============================================================================
# Retry Executor
# =============================================================================


@dataclass
class RetryResult:
    """Result of a retry-wrapped operation."""

    success: bool
    result: Any = None
    attempts: int = 0
    total_delay: float = 0.0
    delays: list[float] = field(default_factory=list)
    errors: list[Exception] = field(default_factory=list)

    @property
    def final_error(self) -> Exception | None:
        """Get the last error encountered."""
        return self.errors[-1] if self.errors else None

    def unwrap(self) -> Any:
        """Return the result, or raise the last error."""
        if self.success:
            return self.result
        if self.final_error is not None:
            raise self.final_error
        raise RuntimeError("Retry failed without error")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    operation_name: str = "operation",
    sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> RetryResult:
    """
    Execute an async operation with retry logic.

    Errors the policy does not retry end the loop immediately and are
    returned in the result, never swallowed.

    Args:
        operation: Async callable to execute
        policy: Retry policy to apply
        operation_name: Name for logging
        sleep: Awaitable delay function (defaults to asyncio.sleep)

    Returns:
        RetryResult with success status and result/errors

    Example:
        result = await with_retry(
            lambda: provider.send(request),
            policy=RetryPolicy.for_rate_limits(3, 1.0),
            operation_name="deepseek.chat",
        )
        response = result.unwrap()
    """
    sleep = sleep or asyncio.sleep
    errors: list[Exception] = []
    delays: list[float] = []
    attempt = 0

    while True:
        attempt += 1

        try:
            result = await operation()
            return RetryResult(
                success=True,
                result=result,
                attempts=attempt,
                total_delay=sum(delays),
                delays=delays,
                errors=errors,
            )

        except Exception as e:
            errors.append(e)

            if policy.should_retry(attempt, e):
                delay = policy.get_delay(attempt)
                delays.append(delay)
                logger.warning(
                    f"{operation_name}: Attempt {attempt}/{policy.max_attempts} "
                    f"failed with {type(e).__name__}: {e}, "
                    f"retrying in {delay:.2f}s"
                )
                await sleep(delay)
            else:
                if attempt > 1:
                    logger.error(
                        f"{operation_name}: Failed after {attempt} attempts, last error: {e}"
                    )
                return RetryResult(
                    success=False,
                    result=None,
                    attempts=attempt,
                    total_delay=sum(delays),
                    delays=delays,
                    errors=errors,
                )


__all__ = [
    "BackoffStrategy",
    "ExponentialBackoff",
    "NoBackoff",
    "RetryPolicy",
    "RetryResult",
    "is_rate_limited",
    "with_retry",
]
