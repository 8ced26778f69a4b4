"""
Incremental decoder for the gateway's Server-Sent-Events stream.

The gateway sends newline-delimited ``data: <json>`` events and finishes with
``data: [DONE]``. Chunks arrive at arbitrary byte boundaries, so a line (or a
multi-byte character) can be split across two reads. Incomplete lines are
kept in the buffer until the rest arrives; they are never dropped.
"""

import codecs
import json
import logging
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from studychat.errors import StreamParseAnomaly

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
SENTINEL = "[DONE]"
DEFAULT_MAX_BUFFER_CHARS = 256 * 1024


def extract_delta(event: Any) -> str | None:
    """Return ``choices[0].delta.content`` if the event carries text."""
    if not isinstance(event, dict):
        return None
    choices = event.get("choices")
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    if not isinstance(first, dict):
        return None
    delta = first.get("delta")
    if not isinstance(delta, dict):
        return None
    content = delta.get("content")
    if isinstance(content, str) and content:
        return content
    return None


class StreamDecoder:
    """Turns raw stream bytes into text deltas, one ``feed`` call per chunk."""

    def __init__(self, max_buffer_chars: int = DEFAULT_MAX_BUFFER_CHARS):
        self.max_buffer_chars = max_buffer_chars
        self.done = False
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    @property
    def pending_text(self) -> str:
        """Text received but not yet consumed as a complete event."""
        return self._buffer

    def feed(self, chunk: bytes) -> list[str]:
        """
        Decode one chunk and return the deltas it completes.

        Raises:
            StreamParseAnomaly: if an unfinished line grows past the buffer cap
        """
        if self.done:
            return []

        self._buffer += self._utf8.decode(chunk)
        deltas = self._drain_lines()

        if not self.done and len(self._buffer) > self.max_buffer_chars:
            logger.error(
                "SSE buffer exceeded %d chars without a line break", self.max_buffer_chars
            )
            raise StreamParseAnomaly(
                f"stream buffer exceeded {self.max_buffer_chars} characters"
            )
        return deltas

    def flush(self) -> list[str]:
        """
        Process whatever is left once the transport has closed.

        A trailing line without a newline is still honoured; leftovers that
        do not parse are logged and dropped since no more bytes will come.
        """
        if self.done:
            return []

        self._buffer += self._utf8.decode(b"", final=True)
        deltas: list[str] = []
        for raw_line in self._buffer.split("\n"):
            payload = self._payload(raw_line)
            if payload is None:
                continue
            if payload == SENTINEL:
                self.done = True
                break
            try:
                event = json.loads(payload)
            except json.JSONDecodeError:
                logger.debug("Dropping unparseable trailing SSE payload: %r", payload[:200])
                continue
            delta = extract_delta(event)
            if delta:
                deltas.append(delta)
        self._buffer = ""
        return deltas

    def _drain_lines(self) -> list[str]:
        deltas: list[str] = []
        while not self.done:
            newline = self._buffer.find("\n")
            if newline == -1:
                break

            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]

            payload = self._payload(line)
            if payload is None:
                continue
            if payload == SENTINEL:
                self.done = True
                break

            try:
                event = json.loads(payload)
            except json.JSONDecodeError:
                # Line is complete, so it is malformed rather than cut short
                logger.debug("Skipping unparseable SSE payload: %r", payload[:200])
                continue

            delta = extract_delta(event)
            if delta:
                deltas.append(delta)
        return deltas

    @staticmethod
    def _payload(line: str) -> str | None:
        """Return the data payload of a line, or None for lines to skip."""
        if line.endswith("\r"):
            line = line[:-1]
        if not line or line.startswith(":"):
            return None
        if not line.startswith(DATA_PREFIX):
            return None
        return line[len(DATA_PREFIX):].strip()


async def iter_deltas(
    byte_stream: AsyncIterable[bytes],
    decoder: StreamDecoder | None = None,
) -> AsyncIterator[str]:
    """
    Yield text deltas from a byte stream until the sentinel or end of data.

    Transport errors raised by ``byte_stream`` propagate unchanged.
    """
    decoder = decoder or StreamDecoder()
    async for chunk in byte_stream:
        for delta in decoder.feed(chunk):
            yield delta
        if decoder.done:
            return
    for delta in decoder.flush():
        yield delta
