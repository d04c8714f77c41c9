"""
OpenAI-compatible Chat Providers for Parley.

Speaks the OpenAI Chat Completions wire format, which DeepSeek also
implements:

    POST {base_url}/chat/completions
    Authorization: Bearer <key>

Whole responses carry text at choices[0].message.content; streams send
`data:` frames with choices[0].delta.content and end with `data: [DONE]`.
"""

from __future__ import annotations

import logging
from typing import Any

from .base import BaseChatProvider, ChatOptions, Message

logger = logging.getLogger(__name__)


class OpenAICompatibleProvider(BaseChatProvider):
    """
    Chat provider for any OpenAI Chat Completions endpoint.

    Subclasses pin the provider name and API root; the class can also be
    used directly with settings.base_url for self-hosted gateways.
    """

    default_base_url = "https://api.openai.com/v1"
    provider_name = "openai-compatible"

    @property
    def name(self) -> str:
        return self.provider_name

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.api_key}"}

    def _convert_messages(self, messages: list[Message]) -> list[dict[str, Any]]:
        """Convert Message objects to OpenAI format."""
        return [msg.to_dict() for msg in messages]

    def _build_request(
        self,
        messages: list[Message],
        options: ChatOptions,
        stream: bool,
    ) -> tuple[str, dict[str, Any]]:
        params = self._resolve(options)
        body: dict[str, Any] = {
            "model": params["model"],
            "messages": self._convert_messages(messages),
            "temperature": params["temperature"],
            "max_tokens": params["max_tokens"],
            "top_p": params["top_p"],
        }
        if stream:
            body["stream"] = True
        return "/chat/completions", body

    def _parse_response(self, data: Any) -> str:
        choice = data["choices"][0]
        return choice["message"].get("content") or ""

    def _parse_stream_event(self, data: Any) -> str | None:
        choices = data.get("choices") or []
        if not choices:
            # Usage-only frames at the end of a stream
            return None
        delta = choices[0].get("delta") or {}
        return delta.get("content")


class OpenAIChatProvider(OpenAICompatibleProvider):
    """
    OpenAI GPT models.

    Requirements:
    - PARLEY_OPENAI_API_KEY environment variable
    """

    default_base_url = "https://api.openai.com/v1"
    provider_name = "openai"


class DeepSeekChatProvider(OpenAICompatibleProvider):
    """
    DeepSeek chat models (deepseek-chat).

    Requirements:
    - PARLEY_DEEPSEEK_API_KEY environment variable
    """

    default_base_url = "https://api.deepseek.com/v1"
    provider_name = "deepseek"


__all__ = [
    "DeepSeekChatProvider",
    "OpenAIChatProvider",
    "OpenAICompatibleProvider",
]
