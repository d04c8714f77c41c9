"""
Dependency construction for Parley.

Builds the registry, orchestrator and transport from AppSettings. The
process constructs each once at startup and passes them by reference to
consumers; nothing here is a module-level singleton.

Usage:
    settings = load_settings()
    registry = build_registry(settings)
    orchestrator = build_orchestrator(settings, registry)
    transport = build_transport(settings)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from parley.orchestrator import ChatOrchestrator
from parley.providers.base import BaseChatProvider, ProviderName
from parley.providers.gemini import GeminiChatProvider
from parley.providers.openai_compat import DeepSeekChatProvider, OpenAIChatProvider
from parley.providers.registry import ProviderRegistry
from parley.transport import Connector, ReconnectingTransport

if TYPE_CHECKING:
    import httpx

    from parley.config.schemas import AppSettings, ProviderSettings

logger = logging.getLogger(__name__)

# Provider name -> implementation class
PROVIDER_CLASSES: dict[str, type[BaseChatProvider]] = {
    ProviderName.GOOGLEAI.value: GeminiChatProvider,
    ProviderName.DEEPSEEK.value: DeepSeekChatProvider,
    ProviderName.OPENAI.value: OpenAIChatProvider,
}


def _provider_factory(
    provider_class: type[BaseChatProvider],
    settings: ProviderSettings,
    http_client: httpx.AsyncClient | None,
    sleep: Callable[[float], Awaitable[Any]] | None,
) -> Callable[[], BaseChatProvider]:
    def factory() -> BaseChatProvider:
        return provider_class(settings, http_client=http_client, sleep=sleep)

    return factory


def build_registry(
    settings: AppSettings,
    *,
    http_client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[Any]] | None = None,
) -> ProviderRegistry:
    """
    Register a lazy factory for every configured provider.

    Providers are only constructed on first use, so a missing credential
    surfaces as an UNAUTHORIZED error at that point instead of at startup.

    Args:
        settings: Application settings
        http_client: Shared HTTP client (tests inject httpx.MockTransport)
        sleep: Retry delay function passed to every provider
    """
    registry = ProviderRegistry()

    for name, provider_settings in settings.providers.items():
        provider_class = PROVIDER_CLASSES.get(name)
        if provider_class is None:
            logger.warning(f"No implementation for configured provider '{name}', skipping")
            continue
        registry.register(
            name,
            _provider_factory(provider_class, provider_settings, http_client, sleep),
        )

    logger.info(f"Provider registry built: {registry.registered_providers}")
    return registry


def build_orchestrator(
    settings: AppSettings,
    registry: ProviderRegistry | None = None,
) -> ChatOrchestrator:
    """Create the chat orchestrator with the configured routing."""
    registry = registry or build_registry(settings)
    orchestrator = ChatOrchestrator(
        registry,
        default_provider=settings.default_provider,
        fallback_provider=settings.fallback_provider,
        failover_enabled=settings.failover_enabled,
    )
    logger.info(
        f"Chat orchestrator ready: default={settings.default_provider}, "
        f"fallback={settings.fallback_provider}, failover={settings.failover_enabled}"
    )
    return orchestrator


def build_transport(
    settings: AppSettings,
    connector: Connector | None = None,
) -> ReconnectingTransport:
    """Create the reconnecting transport (not yet connected)."""
    return ReconnectingTransport.from_settings(settings.transport, connector=connector)


__all__ = [
    "PROVIDER_CLASSES",
    "build_orchestrator",
    "build_registry",
    "build_transport",
]
