"""
Parley - provider orchestration for conversational chat clients.

Parley resolves a logical provider name to a live LLM client, issues
chat requests and streams against it, classifies provider failures and
fails over to a secondary provider when the primary is rate limited or
out of quota. A reconnecting websocket transport carries UI events.

Quick Start:
    >>> from parley import build_orchestrator, load_settings
    >>>
    >>> settings = load_settings()
    >>> orchestrator = build_orchestrator(settings)
    >>> reply = await orchestrator.chat("Hello!")
"""

__version__ = "0.1.0"

from parley.app import build_orchestrator, build_registry, build_transport
from parley.config import AppSettings, ProviderSettings, TransportSettings, load_settings
from parley.orchestrator import ChatOrchestrator, ProviderSwitch, SwitchReason
from parley.providers import (
    CancellationToken,
    ChatOptions,
    ChatProvider,
    Message,
    MessageRole,
    ProviderError,
    ProviderErrorKind,
    ProviderName,
    ProviderNotFoundError,
    ProviderRegistry,
)
from parley.transport import ReconnectingTransport, TransportState

__all__ = [
    "__version__",
    # Composition
    "build_orchestrator",
    "build_registry",
    "build_transport",
    # Configuration
    "AppSettings",
    "ProviderSettings",
    "TransportSettings",
    "load_settings",
    # Orchestration
    "ChatOrchestrator",
    "ProviderSwitch",
    "SwitchReason",
    # Providers
    "CancellationToken",
    "ChatOptions",
    "ChatProvider",
    "Message",
    "MessageRole",
    "ProviderError",
    "ProviderErrorKind",
    "ProviderName",
    "ProviderNotFoundError",
    "ProviderRegistry",
    # Transport
    "ReconnectingTransport",
    "TransportState",
]
