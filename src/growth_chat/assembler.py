"""Applies decoded stream events to the conversation's message list."""

import json
import logging

from .models import Message, TextPart, ToolPart, unserializable
from .stream_decoder import StreamEvent, TextDelta, ToolInputAvailable, ToolOutputAvailable

logger = logging.getLogger(__name__)


class MessageAssembler:
    """Owns the ordered message list of one session.

    Only the trailing assistant message opened by :meth:`begin_turn` is ever
    edited, and every edit replaces that message object instead of mutating
    it, so snapshots handed out earlier never change.
    """

    def __init__(self, messages: list[Message] | None = None):
        self._messages: list[Message] = list(messages or [])
        self._open_id: str | None = None
        self._text_buffer = ""

    @property
    def messages(self) -> list[Message]:
        """Copy of the current message list."""
        return list(self._messages)

    @property
    def open_message_id(self) -> str | None:
        """Id of the assistant message currently being streamed, if any."""
        return self._open_id

    def snapshot(self) -> tuple[Message, ...]:
        return tuple(self._messages)

    def replace_all(self, messages: list[Message]) -> None:
        """Swap in a hydrated history. Closes any open turn."""
        self._messages = list(messages)
        self.close_turn()

    def append(self, message: Message) -> None:
        """Append a complete message (user input, synthetic warnings)."""
        self.close_turn()
        self._messages.append(message)

    def begin_turn(self, message_id: str | None = None) -> Message:
        """Open a new, empty trailing assistant message for a streaming turn."""
        message = Message.assistant(message_id=message_id)
        self._messages.append(message)
        self._open_id = message.id
        self._text_buffer = ""
        return message

    def close_turn(self) -> None:
        """Commit the trailing message; further events are ignored until the next turn."""
        self._open_id = None
        self._text_buffer = ""

    def apply(self, event: StreamEvent) -> ToolPart | None:
        """Apply one event to the trailing assistant message.

        Args:
            event: Decoded stream event

        Returns:
            The updated tool part for a tool-output event that matched a known
            call (the caller runs one-time side effects on it), otherwise None
        """
        trailing = self._trailing_open_message()
        if trailing is None:
            logger.debug(f"Dropping {type(event).__name__}: no open assistant message")
            return None

        if isinstance(event, TextDelta):
            self._apply_text(trailing, event)
        elif isinstance(event, ToolInputAvailable):
            self._apply_tool_input(trailing, event)
        elif isinstance(event, ToolOutputAvailable):
            return self._apply_tool_output(trailing, event)
        return None

    def _trailing_open_message(self) -> Message | None:
        if not self._open_id or not self._messages:
            return None
        last = self._messages[-1]
        if last.id != self._open_id or last.role != "assistant":
            return None
        return last

    def _replace_trailing(self, message: Message) -> None:
        self._messages[-1] = message

    def _apply_text(self, trailing: Message, event: TextDelta) -> None:
        # The buffer is authoritative: the text part is rebuilt from it, never patched.
        self._text_buffer += event.delta
        non_text = tuple(p for p in trailing.parts if not isinstance(p, TextPart))
        self._replace_trailing(
            Message(
                id=trailing.id,
                role="assistant",
                parts=(TextPart(self._text_buffer),) + non_text,
            )
        )

    def _apply_tool_input(self, trailing: Message, event: ToolInputAvailable) -> None:
        if self._is_duplicate_call(trailing, event):
            logger.info(
                f"Suppressing duplicate {event.tool_name} call {event.tool_call_id} "
                "(same input as an earlier call)"
            )
            return

        part = ToolPart(
            tool_call_id=event.tool_call_id,
            tool_name=event.tool_name,
            state="input-available",
            input=event.input,
        )

        existing = trailing.find_tool_part(event.tool_call_id)
        if existing is None:
            parts = trailing.parts + (part,)
        else:
            if existing.is_complete:
                logger.debug(f"Ignoring re-announced input for completed call {event.tool_call_id}")
                return
            parts = tuple(
                part if isinstance(p, ToolPart) and p.tool_call_id == event.tool_call_id else p
                for p in trailing.parts
            )
        self._replace_trailing(Message(id=trailing.id, role="assistant", parts=parts))

    @staticmethod
    def _is_duplicate_call(trailing: Message, event: ToolInputAvailable) -> bool:
        # Same tool with an identical encoded input under another id collapses into the
        # first call. This also merges two legitimately identical calls; kept for backend
        # compatibility. Inputs are compared as JSON text, so true and 1 differ.
        encoded = _encode_input(event.input)
        return any(
            p.tool_call_id != event.tool_call_id
            and p.tool_name == event.tool_name
            and _encode_input(p.input) == encoded
            for p in trailing.tool_parts()
        )

    def _apply_tool_output(self, trailing: Message, event: ToolOutputAvailable) -> ToolPart | None:
        existing = trailing.find_tool_part(event.tool_call_id)
        if existing is None:
            logger.debug(f"Output for unknown tool call {event.tool_call_id}")
            return None
        if existing.is_complete:
            # A replayed output never changes the recorded one.
            return existing

        updated = existing.with_output(event.output)
        parts = tuple(updated if p is existing else p for p in trailing.parts)
        self._replace_trailing(Message(id=trailing.id, role="assistant", parts=parts))
        return updated


def _encode_input(value) -> str:
    return json.dumps(value, default=unserializable)
