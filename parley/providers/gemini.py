"""
Gemini Chat Provider for Parley.

Uses Google's Generative Language REST API:

    POST /v1beta/models/{model}:generateContent
    POST /v1beta/models/{model}:streamGenerateContent?alt=sse

Requirements:
- PARLEY_GOOGLEAI_API_KEY environment variable
"""

from __future__ import annotations

import logging
from typing import Any

from .base import BaseChatProvider, ChatOptions, Message, MessageRole

logger = logging.getLogger(__name__)


class GeminiChatProvider(BaseChatProvider):
    """
    Google Gemini chat provider.

    Gemini uses a different conversation format:
    - System messages become systemInstruction
    - user/assistant become user/model roles
    - Content is in a parts array
    """

    default_base_url = "https://generativelanguage.googleapis.com/v1beta"

    @property
    def name(self) -> str:
        return "googleai"

    def _auth_headers(self) -> dict[str, str]:
        return {"x-goog-api-key": self.api_key}

    def _convert_messages(self, messages: list[Message]) -> tuple[str, list[dict[str, Any]]]:
        """
        Convert Message objects to Gemini format.

        Returns:
            Tuple of (system_instruction, contents)
        """
        system_instruction = ""
        contents = []

        for msg in messages:
            if msg.role == MessageRole.SYSTEM:
                if system_instruction:
                    system_instruction += "\n\n"
                system_instruction += msg.content
            else:
                contents.append(
                    {
                        "role": "model" if msg.role == MessageRole.ASSISTANT else "user",
                        "parts": [{"text": msg.content}],
                    }
                )

        return system_instruction, contents

    def _build_request(
        self,
        messages: list[Message],
        options: ChatOptions,
        stream: bool,
    ) -> tuple[str, dict[str, Any]]:
        params = self._resolve(options)
        system_instruction, contents = self._convert_messages(messages)

        body: dict[str, Any] = {
            "contents": contents,
            "generationConfig": {
                "temperature": params["temperature"],
                "maxOutputTokens": params["max_tokens"],
                "topP": params["top_p"],
            },
        }
        if system_instruction:
            body["systemInstruction"] = {"parts": [{"text": system_instruction}]}

        model = params["model"]
        if stream:
            return f"/models/{model}:streamGenerateContent?alt=sse", body
        return f"/models/{model}:generateContent", body

    def _extract_text(self, data: Any) -> str:
        candidates = data.get("candidates") or []
        if not candidates:
            feedback = data.get("promptFeedback") or {}
            if feedback.get("blockReason"):
                logger.warning(f"Gemini blocked the prompt: {feedback['blockReason']}")
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(part.get("text", "") for part in parts)

    def _parse_response(self, data: Any) -> str:
        if "candidates" not in data and "promptFeedback" not in data:
            raise KeyError("candidates")
        return self._extract_text(data)

    def _parse_stream_event(self, data: Any) -> str | None:
        return self._extract_text(data) or None


__all__ = ["GeminiChatProvider"]
