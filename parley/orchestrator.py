"""
Chat Orchestrator for Parley.

Routes chat calls to the active provider and fails over to the fallback
provider when the active one is rate limited or out of quota.

Failover rules:
- At most one hop per call: the fallback's outcome is final
- A provider that is already the fallback never fails over
- Streams fail over only before their first chunk; after that the error
  reaches the caller behind the chunks already delivered
- Auth failures, malformed responses and cancellation never fail over

Usage:
    orchestrator = ChatOrchestrator(
        registry,
        default_provider="googleai",
        fallback_provider="deepseek",
    )
    reply = await orchestrator.chat("Hello", history)

    async for chunk in orchestrator.chat_stream("Tell me a story", history):
        print(chunk, end="")
"""

from __future__ import annotations

import logging
from collections.abc import AsyncGenerator, Callable, Sequence
from contextlib import aclosing
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

from parley.providers.base import ProviderName, provider_key
from parley.providers.errors import (
    ProviderError,
    ProviderErrorKind,
    ProviderNotFoundError,
)

if TYPE_CHECKING:
    from parley.providers.base import ChatOptions, ChatProvider, Message
    from parley.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)

# Markers for failures that did not come from a provider (no structured kind)
_UNSTRUCTURED_QUOTA_MARKERS = ("quota", "429")


class SwitchReason(str, Enum):
    """Why the active provider changed."""

    EXPLICIT = "explicit"
    FAILOVER = "failover"


@dataclass(frozen=True)
class ProviderSwitch:
    """
    Records a change of active provider for observability.

    Emitted to listeners registered with ChatOrchestrator.on_switch().
    """

    previous: str
    current: str
    reason: SwitchReason
    error: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        return {
            "previous": self.previous,
            "current": self.current,
            "reason": self.reason.value,
            "error": self.error,
            "timestamp": self.timestamp.isoformat(),
        }


SwitchListener = Callable[[ProviderSwitch], Any]


class ChatOrchestrator:
    """
    Active/fallback provider routing with one-hop failover.

    State (active provider, failover flag) lives for the process and is
    never persisted. Concurrent calls are not serialized; each call keeps
    its own failover state and the active provider is last-write-wins.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        default_provider: str | ProviderName,
        fallback_provider: str | ProviderName | None = None,
        failover_enabled: bool = True,
    ):
        """
        Initialize the orchestrator.

        Args:
            registry: Registry resolving provider names to instances
            default_provider: Provider active at startup and after reset()
            fallback_provider: Provider to fail over to (None disables failover)
            failover_enabled: Whether failover is attempted at all

        Raises:
            ProviderNotFoundError: If the default provider is not registered
        """
        default = provider_key(default_provider)
        if not registry.has(default):
            raise ProviderNotFoundError(default, registry.registered_providers)

        self._registry = registry
        self._default = default
        self._active = default
        self._fallback = provider_key(fallback_provider) if fallback_provider else None
        self._failover_enabled = failover_enabled
        self._listeners: list[SwitchListener] = []

        if self._fallback is not None and not registry.has(self._fallback):
            logger.warning(
                f"Fallback provider '{self._fallback}' is not registered; "
                f"failover will be skipped"
            )

    # ==================== State ====================

    @property
    def active_provider(self) -> str:
        return self._active

    @property
    def default_provider(self) -> str:
        return self._default

    @property
    def fallback_provider(self) -> str | None:
        return self._fallback

    @property
    def failover_enabled(self) -> bool:
        return self._failover_enabled

    @failover_enabled.setter
    def failover_enabled(self, enabled: bool) -> None:
        self._failover_enabled = enabled

    def available_providers(self) -> list[str]:
        """Names of every registered provider."""
        return self._registry.registered_providers

    def set_provider(self, name: str | ProviderName) -> None:
        """
        Switch the active provider immediately.

        Raises:
            ProviderNotFoundError: If name is not registered
        """
        key = provider_key(name)
        if not self._registry.has(key):
            raise ProviderNotFoundError(key, self._registry.registered_providers)
        if key == self._active:
            return
        self._switch(key, SwitchReason.EXPLICIT)

    def reset(self) -> None:
        """Return to the configured default provider."""
        self.set_provider(self._default)

    # ==================== Switch events ====================

    def on_switch(self, callback: SwitchListener) -> Callable[[], None]:
        """
        Register a listener for provider switches.

        Returns:
            Function that removes the listener
        """
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _switch(
        self,
        current: str,
        reason: SwitchReason,
        error: BaseException | None = None,
    ) -> None:
        event = ProviderSwitch(
            previous=self._active,
            current=current,
            reason=reason,
            error=str(error) if error is not None else None,
        )
        self._active = current

        if reason == SwitchReason.FAILOVER:
            logger.warning(f"Failing over from {event.previous} to {current}: {event.error}")
        else:
            logger.info(f"Active provider switched from {event.previous} to {current}")

        for listener in list(self._listeners):
            if listener not in self._listeners:
                continue
            try:
                listener(event)
            except Exception as e:
                logger.error(f"Provider switch listener failed: {e}", exc_info=True)

    # ==================== Failure classification ====================

    def is_failover_eligible(self, error: BaseException) -> bool:
        """
        Whether an error warrants switching to the fallback provider.

        Structured kinds decide first. Message substrings are only
        consulted for quota-like transport errors and for exceptions that
        carry no kind at all, so the classification is best effort.
        """
        if isinstance(error, ProviderError):
            if error.kind == ProviderErrorKind.RATE_LIMITED:
                return True
            if error.kind == ProviderErrorKind.TRANSPORT:
                return error.is_quota_like
            return False
        if not isinstance(error, Exception):
            return False
        message = str(error).lower()
        return any(marker in message for marker in _UNSTRUCTURED_QUOTA_MARKERS)

    def _failover_target(self, used: str, error: BaseException) -> str | None:
        """Name of the provider to retry on, or None when failover does not apply."""
        fallback = self._fallback
        if not self._failover_enabled or fallback is None:
            return None
        if used == fallback:
            return None
        if not self._registry.has(fallback):
            return None
        return fallback if self.is_failover_eligible(error) else None

    async def _fail_over(self, used: str, fallback: str, error: BaseException) -> ChatProvider:
        # Another call may have switched already; record only a real change
        if self._active != fallback:
            self._switch(fallback, SwitchReason.FAILOVER, error)
        else:
            logger.warning(f"{used} failed, retrying on {fallback}: {error}")
        return await self._registry.get(fallback)

    # ==================== Chat ====================

    async def chat(
        self,
        content: str,
        history: Sequence[Message] | None = None,
        options: ChatOptions | None = None,
    ) -> str:
        """
        Send a message through the active provider.

        Returns:
            The response text

        Raises:
            ProviderNotFoundError: If the active provider cannot be resolved
            ProviderError: The original error when failover does not apply,
                otherwise whatever the fallback raised
        """
        used = self._active
        provider = await self._registry.get(used)

        try:
            return await provider.chat(content, history, options)
        except Exception as e:
            target = self._failover_target(used, e)
            if target is None:
                raise
            logger.debug(f"chat on {used} failed with a failover-eligible error: {e!r}")
            fallback = await self._fail_over(used, target, e)

        return await fallback.chat(content, history, options)

    async def chat_stream(
        self,
        content: str,
        history: Sequence[Message] | None = None,
        options: ChatOptions | None = None,
    ) -> AsyncGenerator[str, None]:
        """
        Stream a response through the active provider.

        Failover happens only while no chunk has been yielded. Closing
        this generator closes the provider stream underneath it.
        """
        used = self._active
        provider = await self._registry.get(used)
        yielded = False

        try:
            async with aclosing(provider.chat_stream(content, history, options)) as stream:
                async for chunk in stream:
                    yielded = True
                    yield chunk
            return
        except Exception as e:
            if yielded:
                logger.debug(f"chat_stream on {used} failed mid-stream, no failover: {e!r}")
                raise
            target = self._failover_target(used, e)
            if target is None:
                raise
            fallback = await self._fail_over(used, target, e)

        async with aclosing(fallback.chat_stream(content, history, options)) as stream:
            async for chunk in stream:
                yield chunk

    def __repr__(self) -> str:
        return (
            f"ChatOrchestrator(active='{self._active}', fallback='{self._fallback}', "
            f"failover_enabled={self._failover_enabled})"
        )


__all__ = [
    "ChatOrchestrator",
    "ProviderSwitch",
    "SwitchListener",
    "SwitchReason",
]
