"""
Incremental server-sent-event decoding.

Streaming chat endpoints answer with line-delimited frames:

    data: {"choices": [{"delta": {"content": "Hel"}}]}

    data: {"choices": [{"delta": {"content": "lo"}}]}

    data: [DONE]

Network reads do not respect line boundaries (or even UTF-8 character
boundaries), so the decoder buffers partial lines and carries them over to
the next feed.
"""

from __future__ import annotations

import codecs
import logging

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    """
    Buffering decoder for `data:` frames.

    Usage:
        decoder = SSEDecoder()
        async for raw in response.aiter_bytes():
            for payload in decoder.feed(raw):
                handle(json.loads(payload))
        for payload in decoder.flush():
            handle(json.loads(payload))
    """

    def __init__(self) -> None:
        self._text = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    def feed(self, data: bytes | str) -> list[str]:
        """
        Consume a chunk of the stream.

        Returns:
            Payloads of every complete `data:` line in the chunk, in order
        """
        if isinstance(data, bytes):
            data = self._text.decode(data)
        if not data:
            return []

        self._buffer += data.replace("\r\n", "\n").replace("\r", "\n")
        *lines, self._buffer = self._buffer.split("\n")
        return [payload for payload in map(self._parse_line, lines) if payload is not None]

    def flush(self) -> list[str]:
        """Decode whatever is left once the stream has ended."""
        tail = self._text.decode(b"", final=True)
        remainder = (self._buffer + tail).strip("\r\n")
        self._buffer = ""
        if not remainder:
            return []
        payload = self._parse_line(remainder)
        return [payload] if payload is not None else []

    def reset(self) -> None:
        """Discard any partially received frame."""
        self._buffer = ""
        self._text.reset()

    @property
    def pending(self) -> str:
        """Buffered text that has not formed a complete line yet."""
        return self._buffer

    @staticmethod
    def _parse_line(line: str) -> str | None:
        # Blank lines end events; lines starting with ':' are comments.
        # event:/id:/retry: fields carry nothing the chat providers use.
        if not line or line.startswith(":"):
            return None
        if not line.startswith(DATA_PREFIX):
            logger.debug(f"Skipping non-data SSE line: {line[:100]}")
            return None
        payload = line[len(DATA_PREFIX):]
        if payload.startswith(" "):
            payload = payload[1:]
        return payload


__all__ = ["DATA_PREFIX", "DONE_SENTINEL", "SSEDecoder"]
