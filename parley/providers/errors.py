"""
Provider error taxonomy for Parley.

Every failure a chat provider can surface is a ProviderError carrying a
ProviderErrorKind. The kind drives two decisions elsewhere:

- ProviderClient retries RATE_LIMITED locally (see retry.py)
- ChatOrchestrator fails over on RATE_LIMITED and quota-like TRANSPORT errors

Retry Strategy:
    - Retryable locally: 429
    - Failover-eligible: 429, quota exhaustion
    - Never retried: auth errors, malformed responses, cancellation
"""

from __future__ import annotations

import logging
from enum import Enum

import httpx

logger = logging.getLogger(__name__)

# Substrings that mark an error message as quota / rate-limit related when the
# upstream API offers no structured status.
QUOTA_MARKERS: tuple[str, ...] = ("quota", "429", "rate limit", "resource_exhausted")


class ProviderErrorKind(str, Enum):
    """Classification of provider failures for handling decisions."""

    RATE_LIMITED = "rate_limited"
    UNAUTHORIZED = "unauthorized"
    TRANSPORT = "transport"
    MALFORMED = "malformed"
    CANCELLED = "cancelled"


class ProviderError(Exception):
    """
    Raised by chat providers for any failed chat or stream call.

    Attributes:
        kind: Failure classification
        provider: Name of the provider that failed
        http_status: HTTP status code, when the failure came from a response
        retry_after: Server-suggested delay in seconds (429 responses)
    """

    def __init__(
        self,
        kind: ProviderErrorKind,
        message: str,
        provider: str = "",
        *,
        http_status: int | None = None,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.provider = provider
        self.http_status = http_status
        self.retry_after = retry_after

    def __str__(self) -> str:
        parts = [f"[{self.provider or 'provider'}] {self.kind.value}: {self.message}"]
        if self.http_status:
            parts.append(f"(status={self.http_status})")
        return " ".join(parts)

    def __repr__(self) -> str:
        return (
            f"ProviderError(kind={self.kind.value!r}, provider={self.provider!r}, "
            f"http_status={self.http_status!r}, message={self.message!r})"
        )

    @property
    def is_rate_limited(self) -> bool:
        return self.kind == ProviderErrorKind.RATE_LIMITED

    @property
    def is_cancellation(self) -> bool:
        return self.kind == ProviderErrorKind.CANCELLED

    @property
    def is_quota_like(self) -> bool:
        """
        Whether this error signals rate limiting or quota exhaustion.

        Structured status wins; message heuristics are only consulted for
        errors that carry no 429 status. This is best effort.
        """
        if self.kind == ProviderErrorKind.RATE_LIMITED or self.http_status == 429:
            return True
        if self.kind != ProviderErrorKind.TRANSPORT:
            return False
        return message_looks_quota_like(self.message)

    def user_message(self) -> str:
        """Format a terminal, human-readable message for display."""
        if self.kind == ProviderErrorKind.RATE_LIMITED:
            if "quota" in self.message.lower():
                return "API quota exceeded. Please check the provider's billing status."
            return "The AI is currently busy. Please wait a moment and try again."
        if self.kind == ProviderErrorKind.TRANSPORT and self.is_quota_like:
            return "API quota exceeded. Please check the provider's billing status."
        if self.kind == ProviderErrorKind.UNAUTHORIZED:
            return "The AI provider rejected our credentials. Please contact support."
        if self.kind == ProviderErrorKind.CANCELLED:
            return "Request cancelled."
        if self.kind == ProviderErrorKind.TRANSPORT:
            return "Network error. Please check your connection and try again."
        return "Sorry, I couldn't process your request. Please try again!"


class ProviderNotFoundError(LookupError):
    """
    Raised when a provider name has no registration.

    This typically indicates a configuration error - the requested name
    doesn't match any registered provider factory.
    """

    def __init__(self, name: str, available: list[str] | None = None):
        self.name = name
        self.available = list(available or [])
        listing = ", ".join(self.available) or "(none)"
        super().__init__(f"Provider '{name}' not registered. Available: {listing}")


def message_looks_quota_like(message: str) -> bool:
    """Substring heuristic for providers without a clean error taxonomy."""
    lowered = message.lower()
    return any(marker in lowered for marker in QUOTA_MARKERS)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def error_from_response(response: httpx.Response, provider: str) -> ProviderError:
    """
    Map a non-success HTTP response to a ProviderError.

    The response body must already be read.
    """
    status = response.status_code
    body = response.text[:500] if response.content else ""
    reason = response.reason_phrase or "HTTP error"
    detail = f"{reason}: {body}" if body else reason

    if status == 429:
        return ProviderError(
            ProviderErrorKind.RATE_LIMITED,
            f"Rate limit exceeded. {detail}",
            provider,
            http_status=status,
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )

    if status in (401, 403):
        return ProviderError(
            ProviderErrorKind.UNAUTHORIZED,
            f"Authentication failed. {detail}",
            provider,
            http_status=status,
        )

    return ProviderError(
        ProviderErrorKind.TRANSPORT,
        f"{provider} API error {status}. {detail}",
        provider,
        http_status=status,
    )


def error_from_exception(error: Exception, provider: str) -> ProviderError:
    """Map an httpx exception (timeout, DNS, connection reset) to a ProviderError."""
    if isinstance(error, ProviderError):
        return error
    if isinstance(error, httpx.TimeoutException):
        return ProviderError(
            ProviderErrorKind.TRANSPORT,
            f"Request timeout: {error}",
            provider,
        )
    return ProviderError(
        ProviderErrorKind.TRANSPORT,
        f"Network error: {error}",
        provider,
    )


__all__ = [
    "QUOTA_MARKERS",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderNotFoundError",
    "error_from_exception",
    "error_from_response",
    "message_looks_quota_like",
]
