"""Incremental decoder for the chat backend's UI message stream.

The response body is a sequence of event records, one per line:

    data: {"type": "text-delta", "delta": "Hel"}
    data: {"type": "tool-input-available", "toolCallId": "a", "toolName": "x", "input": {}}
    data: {"type": "tool-output-available", "toolCallId": "a", "output": {}}
    data: [DONE]

Chunks may split lines (and UTF-8 sequences) anywhere; the decoder buffers the
incomplete tail and only decodes whole lines.
"""

import codecs
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterable, Iterable

from .errors import MalformedEventError

logger = logging.getLogger(__name__)

DATA_PREFIX = "data:"
DONE_SENTINEL = "[DONE]"


@dataclass(frozen=True)
class TextDelta:
    """A fragment of assistant prose."""

    delta: str


@dataclass(frozen=True)
class ToolInputAvailable:
    """The assistant announced a tool call with its arguments."""

    tool_call_id: str
    tool_name: str
    input: Any = field(default_factory=dict)


@dataclass(frozen=True)
class ToolOutputAvailable:
    """A previously announced tool call produced its output."""

    tool_call_id: str
    output: Any = None


StreamEvent = TextDelta | ToolInputAvailable | ToolOutputAvailable


def parse_event(payload: Any) -> StreamEvent | None:
    """Convert a decoded JSON payload into a typed event.

    Args:
        payload: Decoded JSON value from one event record

    Returns:
        The event, or None for event types the client does not consume

    Raises:
        MalformedEventError: If the payload is not an object or a recognized
            event is missing required fields
    """
    if not isinstance(payload, dict):
        raise MalformedEventError(f"Event payload is not an object: {type(payload).__name__}")

    event_type = payload.get("type")

    if event_type == "text-delta":
        delta = payload.get("delta")
        if not isinstance(delta, str):
            raise MalformedEventError("text-delta without a string delta")
        return TextDelta(delta=delta)

    if event_type == "tool-input-available":
        tool_call_id = payload.get("toolCallId")
        tool_name = payload.get("toolName")
        if not isinstance(tool_call_id, str) or not isinstance(tool_name, str):
            raise MalformedEventError("tool-input-available without toolCallId/toolName")
        return ToolInputAvailable(
            tool_call_id=tool_call_id,
            tool_name=tool_name,
            input=payload.get("input", {}),
        )

    if event_type == "tool-output-available":
        tool_call_id = payload.get("toolCallId")
        if not isinstance(tool_call_id, str):
            raise MalformedEventError("tool-output-available without toolCallId")
        return ToolOutputAvailable(tool_call_id=tool_call_id, output=payload.get("output"))

    # start, finish, start-step, text-start, ... carry nothing we render
    return None


class ChunkDecoder:
    """Turns an arbitrarily chunked byte/text stream into protocol events.

    One decoder handles one response body. Feeding the same bytes split at any
    boundaries yields the same events as feeding them in one piece.
    """

    def __init__(self, strict: bool = False):
        """Initialize decoder.

        Args:
            strict: Raise MalformedEventError on undecodable lines instead of
                logging and skipping them
        """
        self.strict = strict
        self.done = False
        self.skipped_lines = 0
        self._buffer = ""
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def feed(self, data: bytes | str) -> list[StreamEvent]:
        """Add a chunk and return the events completed by it."""
        if self.done:
            return []

        text = self._utf8.decode(data) if isinstance(data, bytes) else data
        self._buffer += text
        *lines, self._buffer = self._buffer.split("\n")
        return self._decode_lines(lines)

    def finish(self) -> list[StreamEvent]:
        """Signal natural end of stream and decode any unterminated last line."""
        if self.done:
            return []

        tail = self._buffer + self._utf8.decode(b"", final=True)
        self._buffer = ""
        events = self._decode_lines([tail]) if tail else []
        self.done = True
        return events

    def _decode_lines(self, lines: list[str]) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        for raw_line in lines:
            if self.done:
                break

            line = raw_line.rstrip("\r")
            if not line.startswith(DATA_PREFIX):
                continue

            data = line[len(DATA_PREFIX):]
            if data.startswith(" "):
                data = data[1:]

            if data.strip() == DONE_SENTINEL:
                self.done = True
                break

            event = self._decode_payload(data)
            if event is not None:
                events.append(event)
        return events

    def _decode_payload(self, data: str) -> StreamEvent | None:
        try:
            return parse_event(json.loads(data))
        except json.JSONDecodeError as e:
            error = MalformedEventError(f"Invalid JSON in stream event: {e}", line=data)
        except MalformedEventError as e:
            e.line = data
            error = e

        if self.strict:
            raise error
        self.skipped_lines += 1
        logger.warning(f"Skipping malformed stream event: {error} ({data[:200]!r})")
        return None

    async def iter_events(self, chunks: AsyncIterable[bytes | str]):
        """Decode an async stream of chunks, yielding events as they complete.

        Stops reading as soon as the end-of-stream sentinel is seen.
        """
        async for chunk in chunks:
            for event in self.feed(chunk):
                yield event
            if self.done:
                return

        for event in self.finish():
            yield event


def decode_all(chunks: Iterable[bytes | str], strict: bool = False) -> list[StreamEvent]:
    """Decode a complete, already-received stream.

    Args:
        chunks: The response body in any chunking
        strict: See :class:`ChunkDecoder`

    Returns:
        All events in arrival order
    """
    decoder = ChunkDecoder(strict=strict)
    events: list[StreamEvent] = []
    for chunk in chunks:
        events.extend(decoder.feed(chunk))
        if decoder.done:
            return events
    events.extend(decoder.finish())
    return events
