"""
Chat Provider Protocol for Parley.

Defines the interface every LLM backend implements, the message types
that flow through it, and BaseChatProvider, which owns the HTTP
mechanics shared by all backends:

- Lazy httpx.AsyncClient creation
- Local retry of 429 responses with exponential backoff
- Incremental SSE decoding for streams
- Cooperative cancellation via CancellationToken
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol, TypeVar, runtime_checkable

import httpx

from .errors import ProviderError, ProviderErrorKind, error_from_exception, error_from_response
from .retry import RetryPolicy, with_retry
from .sse import DONE_SENTINEL, SSEDecoder

if TYPE_CHECKING:
    from parley.config.schemas import ProviderSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ProviderName(str, Enum):
    """Known chat backends."""

    GOOGLEAI = "googleai"
    DEEPSEEK = "deepseek"
    OPENAI = "openai"


def provider_key(name: str | ProviderName) -> str:
    """Normalize a provider name (enum or plain string) to its registry key."""
    if isinstance(name, ProviderName):
        return name.value
    return str(name)


class MessageRole(str, Enum):
    """Role of a message in the conversation."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat()


@dataclass(frozen=True)
class Message:
    """
    A message in the conversation.

    Attributes:
        role: Role of the message sender
        content: Text content of the message
        timestamp: ISO-8601 creation time
    """

    role: MessageRole
    content: str
    timestamp: str = field(default_factory=_utc_now_iso)

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role.value, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Message:
        timestamp = data.get("timestamp") or _utc_now_iso()
        return cls(role=MessageRole(data["role"]), content=data["content"], timestamp=timestamp)

    @classmethod
    def system(cls, content: str) -> Message:
        """Create a system message."""
        return cls(role=MessageRole.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> Message:
        """Create a user message."""
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> Message:
        """Create an assistant message."""
        return cls(role=MessageRole.ASSISTANT, content=content)


class CancellationToken:
    """
    Explicit, caller-owned cancellation signal.

    Pass one in ChatOptions; calling cancel() stops the HTTP request or
    stream read in progress and the call raises a CANCELLED ProviderError.

    Example:
        token = CancellationToken()
        stream = provider.chat_stream("Hi", options=ChatOptions(cancel_token=token))
        ...
        token.cancel()
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "Request cancelled"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if reason:
            self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def raise_if_cancelled(self, provider: str = "") -> None:
        if self.cancelled:
            raise ProviderError(ProviderErrorKind.CANCELLED, self._reason, provider)

    async def run(self, awaitable: Awaitable[T], provider: str = "") -> T:
        """
        Await `awaitable`, abandoning it as soon as the token is cancelled.

        Raises:
            ProviderError: CANCELLED if the token fired first
        """
        if self.cancelled:
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            self.raise_if_cancelled(provider)

        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise ProviderError(ProviderErrorKind.CANCELLED, self._reason, provider)


@dataclass(frozen=True)
class ChatOptions:
    """
    Per-call options.

    Attributes:
        cancel_token: Optional cancellation signal
        model: Override the configured model
        temperature: Override sampling temperature
        max_tokens: Override the response token ceiling
        top_p: Override nucleus sampling
    """

    cancel_token: CancellationToken | None = None
    model: str | None = None
    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None


@runtime_checkable
class ChatProvider(Protocol):
    """
    Protocol for chat providers.

    Implementations must provide:
    - name: Provider identifier
    - chat(): Whole-response completion
    - chat_stream(): Lazy, finite, non-restartable chunk stream
    """

    @property
    def name(self) -> str:
        """Provider name for logging and configuration."""
        ...

    async def chat(
        self,
        content: str,
        history: Sequence[Message] | None = None,
        options: ChatOptions | None = None,
    ) -> str:
        """
        Send a message and return the whole response.

        Raises:
            ProviderError: On any failure
        """
        ...

    def chat_stream(
        self,
        content: str,
        history: Sequence[Message] | None = None,
        options: ChatOptions | None = None,
    ) -> AsyncGenerator[str, None]:
        """
        Stream the response chunk by chunk.

        Raises:
            ProviderError: On any failure, possibly after some chunks
        """
        ...


class BaseChatProvider(ABC):
    """
    Base class for HTTP chat provider implementations.

    Subclasses describe the wire format; this class handles transport,
    retries, streaming and error mapping.

    Subclasses implement:
    - name: Provider identifier
    - default_base_url: API root used when settings don't override it
    - _auth_headers(): Authentication headers
    - _build_request(): Path and JSON body for a chat call
    - _parse_response(): Text from a whole-response body
    - _parse_stream_event(): Text from one decoded stream frame
    """

    default_base_url: str = ""

    def __init__(
        self,
        settings: ProviderSettings,
        *,
        http_client: httpx.AsyncClient | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ):
        """
        Initialize the provider.

        Args:
            settings: Static provider configuration (model, retries, key)
            http_client: Pre-built client (tests inject httpx.MockTransport)
            sleep: Delay function for retry backoff (defaults to asyncio.sleep)
        """
        self.settings = settings
        self._client = http_client
        self._owns_client = http_client is None
        self._sleep = sleep or asyncio.sleep

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider name."""
        ...

    @property
    def default_model(self) -> str:
        return self.settings.model

    @property
    def base_url(self) -> str:
        return (self.settings.base_url or self.default_base_url).rstrip("/")

    @property
    def api_key(self) -> str:
        return self.settings.api_key.get_secret_value()

    @abstractmethod
    def _auth_headers(self) -> dict[str, str]:
        """Return authentication headers for requests."""
        ...

    @abstractmethod
    def _build_request(
        self,
        messages: list[Message],
        options: ChatOptions,
        stream: bool,
    ) -> tuple[str, dict[str, Any]]:
        """Return (path, JSON body) for a chat call."""
        ...

    @abstractmethod
    def _parse_response(self, data: Any) -> str:
        """Extract the response text from a whole-response body."""
        ...

    @abstractmethod
    def _parse_stream_event(self, data: Any) -> str | None:
        """Extract the text delta (if any) from one stream frame."""
        ...

    # ==================== HTTP plumbing ====================

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.settings.timeout,
                headers={"Content-Type": "application/json"},
            )
            self._owns_client = True
        return self._client

    async def aclose(self) -> None:
        """Close the HTTP client if this provider created it."""
        if self._client is not None and self._owns_client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _ensure_credentials(self) -> None:
        if not self.api_key:
            raise ProviderError(
                ProviderErrorKind.UNAUTHORIZED,
                f"No API key configured for {self.name}",
                self.name,
            )

    async def _await(self, awaitable: Awaitable[T], token: CancellationToken | None) -> T:
        if token is None:
            return await awaitable
        return await token.run(awaitable, self.name)

    def _retry_policy(self) -> RetryPolicy:
        return RetryPolicy.for_rate_limits(self.settings.max_retries, self.settings.retry_delay)

    def _sleeper(self, token: CancellationToken | None) -> Callable[[float], Awaitable[Any]]:
        if token is None:
            return self._sleep
        return lambda delay: token.run(self._sleep(delay), self.name)

    async def _send(
        self,
        path: str,
        body: dict[str, Any],
        *,
        stream: bool,
        token: CancellationToken | None,
    ) -> httpx.Response:
        """
        Execute a single HTTP request.

        Returns the response only when it succeeded; for streams the body
        is left unread and the caller must close it.
        """
        client = await self._get_client()
        # Absolute URL, auth and timeout per request: the client may be shared
        request = client.build_request(
            "POST",
            f"{self.base_url}{path}",
            json=body,
            headers=self._auth_headers(),
            timeout=self.settings.timeout,
        )

        try:
            response = await self._await(client.send(request, stream=stream), token)
        except httpx.HTTPError as e:
            raise error_from_exception(e, self.name) from e

        if response.is_success:
            return response

        try:
            await response.aread()
        finally:
            await response.aclose()
        error = error_from_response(response, self.name)
        logger.debug(f"[{self.name}] {path} -> {response.status_code}: {error.message}")
        raise error

    async def _send_with_retry(
        self,
        path: str,
        body: dict[str, Any],
        *,
        stream: bool,
        token: CancellationToken | None,
        operation: str,
    ) -> httpx.Response:
        result = await with_retry(
            lambda: self._send(path, body, stream=stream, token=token),
            self._retry_policy(),
            operation_name=f"{self.name}.{operation}",
            sleep=self._sleeper(token),
        )
        return result.unwrap()

    def _build_messages(self, content: str, history: Sequence[Message] | None) -> list[Message]:
        return [*(history or ()), Message.user(content)]

    def _resolve(self, options: ChatOptions) -> dict[str, Any]:
        """Merge per-call overrides over the configured defaults."""
        return {
            "model": options.model or self.settings.model,
            "temperature": (
                options.temperature if options.temperature is not None else self.settings.temperature
            ),
            "max_tokens": options.max_tokens or self.settings.max_tokens,
            "top_p": options.top_p if options.top_p is not None else self.settings.top_p,
        }

    def _malformed(self, detail: str) -> ProviderError:
        return ProviderError(ProviderErrorKind.MALFORMED, detail, self.name)

    # ==================== Chat ====================

    async def chat(
        self,
        content: str,
        history: Sequence[Message] | None = None,
        options: ChatOptions | None = None,
    ) -> str:
        """
        Send a message and return the whole response text.

        Args:
            content: User message content
            history: Prior conversation, oldest first (not mutated)
            options: Per-call overrides and cancellation token

        Returns:
            The assistant's response text

        Raises:
            ProviderError: RATE_LIMITED after retries are exhausted,
                UNAUTHORIZED, TRANSPORT, MALFORMED or CANCELLED
        """
        options = options or ChatOptions()
        token = options.cancel_token
        self._ensure_credentials()

        path, body = self._build_request(self._build_messages(content, history), options, False)
        logger.debug(
            f"[{self.name}] chat: model={body.get('model', self.default_model)}, "
            f"history={len(history or ())}"
        )

        response = await self._send_with_retry(
            path, body, stream=False, token=token, operation="chat"
        )

        try:
            data = response.json()
        except ValueError as e:
            raise self._malformed(f"Response is not JSON: {response.text[:200]}") from e

        try:
            return self._parse_response(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise self._malformed(f"Unexpected response shape: {e!r}") from e

    async def chat_stream(
        self,
        content: str,
        history: Sequence[Message] | None = None,
        options: ChatOptions | None = None,
    ) -> AsyncGenerator[str, None]:
        """
        Stream the response text chunk by chunk.

        The request is issued on first iteration. Closing the generator
        early (or cancelling the token) closes the HTTP response; any
        partially received frame is discarded.
        """
        options = options or ChatOptions()
        token = options.cancel_token
        self._ensure_credentials()

        path, body = self._build_request(self._build_messages(content, history), options, True)
        logger.debug(f"[{self.name}] chat_stream: model={body.get('model', self.default_model)}")

        response = await self._send_with_retry(
            path, body, stream=True, token=token, operation="chat_stream"
        )

        decoder = SSEDecoder()
        chunks = response.aiter_bytes()
        try:
            while True:
                try:
                    raw = await self._await(_next_chunk(chunks), token)
                except httpx.HTTPError as e:
                    raise error_from_exception(e, self.name) from e

                payloads = decoder.feed(raw) if raw is not None else decoder.flush()
                for payload in payloads:
                    if payload.strip() == DONE_SENTINEL:
                        return
                    text = self._decode_stream_payload(payload)
                    if token is not None:
                        token.raise_if_cancelled(self.name)
                    if text:
                        yield text

                if raw is None:
                    return
        finally:
            decoder.reset()
            await response.aclose()

    def _decode_stream_payload(self, payload: str) -> str | None:
        try:
            data = json.loads(payload)
        except json.JSONDecodeError as e:
            raise self._malformed(f"Invalid stream frame: {payload[:100]}") from e

        if isinstance(data, dict) and data.get("error"):
            raise self._stream_error(data["error"])

        try:
            return self._parse_stream_event(data)
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise self._malformed(f"Unexpected stream frame shape: {e!r}") from e

    def _stream_error(self, error: Any) -> ProviderError:
        """Map an in-band error frame to a ProviderError."""
        if not isinstance(error, dict):
            return ProviderError(ProviderErrorKind.TRANSPORT, str(error), self.name)

        message = str(error.get("message") or error)
        code = error.get("code")
        status = str(error.get("status") or error.get("type") or "")
        if code == 429 or status.upper() in ("RESOURCE_EXHAUSTED", "RATE_LIMIT_EXCEEDED"):
            return ProviderError(
                ProviderErrorKind.RATE_LIMITED, message, self.name, http_status=429
            )
        if code in (401, 403) or status.upper() in ("UNAUTHENTICATED", "PERMISSION_DENIED"):
            return ProviderError(
                ProviderErrorKind.UNAUTHORIZED,
                message,
                self.name,
                http_status=code if isinstance(code, int) else None,
            )
        return ProviderError(ProviderErrorKind.TRANSPORT, message, self.name)

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', model='{self.default_model}')"


async def _next_chunk(chunks: Any) -> bytes | None:
    """Next byte chunk from an async iterator, or None once exhausted."""
    try:
        return await chunks.__anext__()
    except StopAsyncIteration:
        return None


__all__ = [
    "BaseChatProvider",
    "CancellationToken",
    "ChatOptions",
    "ChatProvider",
    "Message",
    "MessageRole",
    "ProviderName",
    "provider_key",
]
