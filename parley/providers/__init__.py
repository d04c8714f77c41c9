"""
Chat providers for Parley.

Each provider wraps one LLM backend behind the ChatProvider protocol.
The registry resolves provider names to lazily constructed instances.
"""

from .base import (
    BaseChatProvider,
    CancellationToken,
    ChatOptions,
    ChatProvider,
    Message,
    MessageRole,
    ProviderName,
    provider_key,
)
from .errors import (
    ProviderError,
    ProviderErrorKind,
    ProviderNotFoundError,
    message_looks_quota_like,
)
from .gemini import GeminiChatProvider
from .openai_compat import DeepSeekChatProvider, OpenAIChatProvider, OpenAICompatibleProvider
from .registry import ProviderFactory, ProviderRegistry
from .retry import ExponentialBackoff, RetryPolicy, RetryResult, with_retry
from .sse import SSEDecoder

__all__ = [
    # Protocol and types
    "BaseChatProvider",
    "CancellationToken",
    "ChatOptions",
    "ChatProvider",
    "Message",
    "MessageRole",
    "ProviderName",
    "provider_key",
    # Errors
    "ProviderError",
    "ProviderErrorKind",
    "ProviderNotFoundError",
    "message_looks_quota_like",
    # Implementations
    "DeepSeekChatProvider",
    "GeminiChatProvider",
    "OpenAIChatProvider",
    "OpenAICompatibleProvider",
    # Registry
    "ProviderFactory",
    "ProviderRegistry",
    # Retry and streaming
    "ExponentialBackoff",
    "RetryPolicy",
    "RetryResult",
    "SSEDecoder",
    "with_retry",
]
