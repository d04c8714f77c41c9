"""
Provider Registry for Parley.

Maps provider names to lazily constructed, memoized chat providers.

Factories are registered up front and run on first use, so a provider
whose credentials are missing never blocks startup. Construction is
single-flight: concurrent first-use callers share one pending task.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from .base import ProviderName, provider_key
from .errors import ProviderNotFoundError

if TYPE_CHECKING:
    from .base import ChatProvider

logger = logging.getLogger(__name__)

ProviderFactory = Callable[[], "ChatProvider | Awaitable[ChatProvider]"]


class ProviderRegistry:
    """
    Registry of chat provider factories.

    Usage:
        registry = ProviderRegistry()
        registry.register("googleai", lambda: GeminiChatProvider(settings))
        registry.register("deepseek", lambda: DeepSeekChatProvider(settings))

        provider = await registry.get("googleai")  # constructed once
        same = await registry.get(ProviderName.GOOGLEAI)  # cached instance
    """

    def __init__(self) -> None:
        self._factories: dict[str, ProviderFactory] = {}
        self._instances: dict[str, ChatProvider] = {}
        self._pending: dict[str, asyncio.Task[ChatProvider]] = {}

    # ==================== Validation ====================

    def _validate_chat_provider(self, name: str, provider: Any) -> None:
        """Validate the constructed provider has the chat interface."""
        if not hasattr(provider, "name"):
            raise TypeError(f"Provider '{name}' must have 'name' property")
        if not callable(getattr(provider, "chat", None)):
            raise TypeError(f"Provider '{name}' must have 'chat' method")
        if not callable(getattr(provider, "chat_stream", None)):
            raise TypeError(f"Provider '{name}' must have 'chat_stream' method")

    # ==================== Registration ====================

    def register(self, name: str | ProviderName, factory: ProviderFactory) -> None:
        """
        Register a provider factory.

        Args:
            name: Provider name
            factory: Callable returning a provider or an awaitable of one

        Re-registering replaces the factory for future construction; an
        instance that was already built stays cached.
        """
        key = provider_key(name)
        if not callable(factory):
            raise TypeError(f"Factory for provider '{key}' must be callable")
        self._factories[key] = factory
        logger.debug(f"Registered provider factory: {key}")

    def has(self, name: str | ProviderName) -> bool:
        """Check whether a provider name is registered."""
        return provider_key(name) in self._factories

    def is_constructed(self, name: str | ProviderName) -> bool:
        """Check whether the provider instance has been built."""
        return provider_key(name) in self._instances

    @property
    def registered_providers(self) -> list[str]:
        """Registered provider names, in registration order."""
        return list(self._factories.keys())

    # ==================== Lookup ====================

    async def get(self, name: str | ProviderName) -> ChatProvider:
        """
        Get a provider by name, constructing it on first use.

        Returns:
            The memoized provider instance

        Raises:
            ProviderNotFoundError: If no factory is registered under name
            Exception: Whatever the factory raised (not cached)
        """
        key = provider_key(name)

        instance = self._instances.get(key)
        if instance is not None:
            return instance

        if key not in self._factories:
            raise ProviderNotFoundError(key, self.registered_providers)

        task = self._pending.get(key)
        if task is None:
            task = asyncio.ensure_future(self._construct(key))
            self._pending[key] = task
            task.add_done_callback(lambda t, k=key: self._construction_done(k, t))

        # Shielded so one caller's cancellation leaves construction running
        return await asyncio.shield(task)

    def _construction_done(self, key: str, task: asyncio.Future) -> None:
        # A task cancelled by aclose() may finish after a newer one took its slot
        if self._pending.get(key) is task:
            del self._pending[key]
        # Mark the failure retrieved even when every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _construct(self, key: str) -> ChatProvider:
        factory = self._factories[key]
        logger.debug(f"Constructing provider: {key}")

        try:
            result = factory()
            if inspect.isawaitable(result):
                result = await result
            self._validate_chat_provider(key, result)
        except Exception as e:
            logger.error(f"Failed to construct provider '{key}': {e}")
            raise

        self._instances[key] = result
        logger.info(f"Provider ready: {key} ({result!r})")
        return result

    # ==================== Lifecycle ====================

    async def aclose(self) -> None:
        """Close every constructed provider that holds resources."""
        for task in list(self._pending.values()):
            task.cancel()
        self._pending.clear()

        for key, provider in list(self._instances.items()):
            close = getattr(provider, "aclose", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing provider '{key}': {e}")
        self._instances.clear()

    def __repr__(self) -> str:
        return (
            f"ProviderRegistry("
            f"registered=[{', '.join(self._factories)}], "
            f"constructed=[{', '.join(self._instances)}])"
        )


__all__ = ["ProviderFactory", "ProviderRegistry"]
