"""Typed events published by the chat controllers.

Controllers publish these through an :class:`EventBus` instead of invoking UI
callbacks, so the state machines can be observed and tested without a front end.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Literal

from .models import ChatStatus, Message, PlaybackState, VoiceState

logger = logging.getLogger(__name__)

NotificationLevel = Literal["info", "success", "warning", "error"]


@dataclass(frozen=True)
class StatusChanged:
    """The chat status moved from one state to another."""

    session_id: str
    previous: ChatStatus
    current: ChatStatus


@dataclass(frozen=True)
class MessagesChanged:
    """The session's message list was replaced by a new snapshot."""

    session_id: str
    messages: tuple[Message, ...]


@dataclass(frozen=True)
class ChartHidden:
    """The assistant asked for the open visualization to be closed."""

    session_id: str
    tool_call_id: str


@dataclass(frozen=True)
class VoiceStateChanged:
    previous: VoiceState
    current: VoiceState


@dataclass(frozen=True)
class PlaybackStateChanged:
    previous: PlaybackState
    current: PlaybackState
    message_id: str | None = None


@dataclass(frozen=True)
class Notification:
    """A transient, toast-style message for the user."""

    level: NotificationLevel
    title: str
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)


Event = (
    StatusChanged
    | MessagesChanged
    | ChartHidden
    | VoiceStateChanged
    | PlaybackStateChanged
    | Notification
)

Listener = Callable[[Event], Any]


class EventBus:
    """Fan-out of events to sync or async listeners.

    Listener failures are logged and never interrupt the publisher.
    """

    def __init__(self):
        self._listeners: list[tuple[Listener, type | None]] = []

    def subscribe(self, callback: Listener, event_type: type | None = None) -> None:
        """Add a listener.

        Args:
            callback: Function called with each event (can be async)
            event_type: Only deliver events of this class; None for all events
        """
        self._listeners.append((callback, event_type))

    async def publish(self, event: Event) -> None:
        """Deliver an event to all matching listeners, in subscription order."""
        for callback, event_type in list(self._listeners):
            if event_type is not None and not isinstance(event, event_type):
                continue
            try:
                result = callback(event)
                if asyncio.iscoroutine(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Event listener error for {type(event).__name__}: {e}")

    async def notify(
        self, level: NotificationLevel, title: str, description: str = ""
    ) -> None:
        """Publish a :class:`Notification` and log it."""
        log = logger.warning if level in ("warning", "error") else logger.info
        log(f"{title}: {description}" if description else title)
        await self.publish(Notification(level=level, title=title, description=description))
