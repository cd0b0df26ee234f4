"""Send/cancel orchestration for a chat session.

A send appends the user's message, POSTs the whole history to the chat
endpoint and streams the UI message stream back into a trailing assistant
message:

    ready -> submitted -> streaming -> ready | error

Each send gets a fresh :class:`CancellationToken` and invalidates the previous
one. The token is checked before every mutation, so a superseded stream whose
reads keep arriving never edits the conversation again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from .assembler import MessageAssembler
from .clients import RATE_LIMIT_STATUS, rate_limit_message
from .errors import GrowthChatError, TransportError
from .events import EventBus, MessagesChanged, StatusChanged
from .models import ChatStatus, Message, new_id
from .stream_decoder import ChunkDecoder
from .tool_calls import SLIDER_TOOL, ToolCallTracker, ToolEffects, format_slider_response, slider_fields

logger = logging.getLogger(__name__)

RATE_LIMIT_FALLBACK = "Usage limit reached. Please try again later."


class CancellationToken:
    """Per-send marker; once cancelled, the owning stream may not mutate state."""

    def __init__(self):
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        self._cancelled = True


@dataclass
class ChatSession:
    """In-memory state of one conversation.

    Holds its own assembler and tool call tracker so that sessions never
    share idempotency records or message state.
    """

    id: str = field(default_factory=new_id)
    exercise: str = ""
    status: ChatStatus = "ready"
    error: Exception | None = None
    assembler: MessageAssembler = field(default_factory=MessageAssembler)
    tracker: ToolCallTracker = field(default_factory=ToolCallTracker)

    @property
    def messages(self) -> list[Message]:
        return self.assembler.messages

    @property
    def is_loading(self) -> bool:
        return self.status in ("submitted", "streaming")


class SessionController:
    """Drives a :class:`ChatSession` through sends and streamed responses."""

    def __init__(
        self,
        session: ChatSession,
        chat_url: str,
        bus: EventBus | None = None,
        effects: ToolEffects | None = None,
        http_client: httpx.AsyncClient | None = None,
        strict_decoding: bool = False,
    ):
        """Initialize controller.

        Args:
            session: Session to drive
            chat_url: Absolute URL of the chat endpoint
            bus: Event bus for status/message events
            effects: Tool side effects; defaults to effects without an artifact sink
            http_client: HTTP client (no timeout; the server caps response time)
            strict_decoding: Fail the turn on malformed stream lines
        """
        self.session = session
        self.chat_url = chat_url
        self.bus = bus or EventBus()
        self.effects = effects or ToolEffects(
            session_id=session.id, tracker=session.tracker, bus=self.bus
        )
        self.client = http_client or httpx.AsyncClient(timeout=None)
        self.strict_decoding = strict_decoding
        self._token: CancellationToken | None = None

    async def close(self) -> None:
        """Invalidate any in-flight stream and close the HTTP client."""
        if self._token:
            self._token.cancel()
        await self.client.aclose()

    @property
    def status(self) -> ChatStatus:
        return self.session.status

    @property
    def error(self) -> Exception | None:
        return self.session.error

    async def hydrate(self, messages: list[Message]) -> None:
        """Load a stored history into an idle session."""
        if self.session.is_loading:
            logger.warning("Not hydrating a session while a response is streaming")
            return
        self.session.assembler.replace_all(messages)
        await self._publish_messages()

    def last_assistant_message(self) -> Message | None:
        messages = self.session.messages
        if messages and messages[-1].role == "assistant":
            return messages[-1]
        return None

    async def send(self, text: str) -> None:
        """Send user text and stream the assistant's reply.

        Empty or whitespace-only text is ignored. Any request still in flight
        is cancelled first.
        """
        if not text or not text.strip():
            return

        # Invalidate the previous stream before the first suspension point.
        if self._token:
            self._token.cancel()
        token = CancellationToken()
        self._token = token

        session = self.session
        session.assembler.append(Message.user(text))
        session.error = None
        await self._publish_messages()
        await self._set_status(token, "submitted")
        if token.cancelled:
            return

        body = {
            "exercise": session.exercise,
            "id": session.id,
            "messages": [m.to_dict() for m in session.messages],
        }

        try:
            await self._request(token, body)
        except (httpx.HTTPError, GrowthChatError) as e:
            if token.cancelled:
                logger.debug(f"Ignoring error from superseded request: {e}")
                return
            await self._fail(token, e)

    async def submit_slider(self, tool_call_id: str, values: dict[str, float]) -> bool:
        """Answer a ``request_slider`` tool call with the chosen values.

        Returns:
            True if the answer was sent, False if the call is unknown or was
            already answered
        """
        part = None
        for message in reversed(self.session.messages):
            part = message.find_tool_part(tool_call_id)
            if part:
                break
        if part is None or part.tool_name != SLIDER_TOOL:
            logger.warning(f"No slider tool call {tool_call_id} in this session")
            return False

        if not self.effects.claim_slider(tool_call_id):
            return False

        await self.send(format_slider_response(slider_fields(part), values))
        return True

    async def _request(self, token: CancellationToken, body: dict[str, Any]) -> None:
        async with self.client.stream("POST", self.chat_url, json=body) as response:
            if token.cancelled:
                return

            if response.status_code == RATE_LIMIT_STATUS:
                await response.aread()
                await self._rate_limited(token, rate_limit_message(response, RATE_LIMIT_FALLBACK))
                return

            if not response.is_success:
                await response.aread()
                error_text = response.text or f"HTTP {response.status_code}"
                logger.error(f"Chat API error: {error_text}")
                raise TransportError(error_text, status_code=response.status_code)

            await self._stream(token, response)

    async def _rate_limited(self, token: CancellationToken, message: str) -> None:
        if token.cancelled:
            return
        self.session.assembler.append(Message.assistant(f"⚠️ {message}"))
        await self._publish_messages()
        await self.bus.notify("warning", "Usage Limit Reached", message)
        await self._set_status(token, "ready")

    async def _stream(self, token: CancellationToken, response: httpx.Response) -> None:
        await self._set_status(token, "streaming")
        if token.cancelled:
            return
        assembler = self.session.assembler
        assembler.begin_turn()
        await self._publish_messages()

        decoder = ChunkDecoder(strict=self.strict_decoding)
        async for event in decoder.iter_events(response.aiter_bytes()):
            if token.cancelled:
                logger.debug("Discarding events from superseded stream")
                return

            part = assembler.apply(event)
            await self._publish_messages()

            if part is not None and not token.cancelled:
                await self.effects.on_tool_output(part)

        if token.cancelled:
            return
        if decoder.skipped_lines:
            logger.warning(f"Skipped {decoder.skipped_lines} malformed stream lines")
        assembler.close_turn()
        logger.info("Stream complete")
        await self._set_status(token, "ready")

    async def _fail(self, token: CancellationToken, error: Exception) -> None:
        if token.cancelled:
            return
        if not isinstance(error, GrowthChatError):
            error = TransportError(f"Chat request failed: {error}")
        logger.error(f"Chat request failed: {error}")
        self.session.error = error
        self.session.assembler.close_turn()
        await self._set_status(token, "error")

    async def _set_status(self, token: CancellationToken, status: ChatStatus) -> None:
        if token.cancelled:
            return
        previous = self.session.status
        if previous == status:
            return
        self.session.status = status
        await self.bus.publish(
            StatusChanged(session_id=self.session.id, previous=previous, current=status)
        )

    async def _publish_messages(self) -> None:
        await self.bus.publish(
            MessagesChanged(session_id=self.session.id, messages=self.session.assembler.snapshot())
        )
