"""Spoken replies: speech synthesis followed by playback.

    idle -> generating -> playing -> idle

Only one clip plays at a time. Starting playback always stops (and releases)
whatever was playing, and a request that is superseded while its audio is
still being generated never reaches the speakers.
"""

import asyncio
import logging
from typing import Any, Callable

from .audio import AudioClip, AudioPlayback
from .clients import SpeechClient
from .errors import RateLimitedError, SynthesisError
from .events import EventBus, PlaybackStateChanged, StatusChanged
from .models import Message, PlaybackState

logger = logging.getLogger(__name__)


class PlaybackController:
    """Plays assistant messages aloud, manually or when a turn completes."""

    def __init__(
        self,
        playback: AudioPlayback,
        speech: SpeechClient,
        bus: EventBus | None = None,
        messages: Callable[[], list[Message]] | None = None,
        voice: str | None = None,
        voice_settings: dict[str, Any] | None = None,
        auto_play: bool = True,
        auto_play_delay: float = 0.1,
    ):
        """Initialize controller.

        Args:
            playback: Audio output
            speech: Text-to-speech client
            bus: Event bus for state changes and notifications
            messages: Returns the session's current messages (for auto-play)
            voice: Voice id passed to the speech endpoint
            voice_settings: Voice settings passed to the speech endpoint
            auto_play: Speak each completed assistant turn
            auto_play_delay: Seconds to wait before auto-play starts
        """
        self.playback = playback
        self.speech = speech
        self.bus = bus or EventBus()
        self.messages = messages
        self.voice = voice
        self.voice_settings = voice_settings or {}
        self.auto_play = auto_play
        self.auto_play_delay = auto_play_delay

        self.state: PlaybackState = "idle"
        self.active_message_id: str | None = None
        self._clip: AudioClip | None = None
        self._generation = 0
        self._tasks: set[asyncio.Task] = set()

    async def on_status_changed(self, event: StatusChanged) -> None:
        """Auto-play the reply when a turn finishes streaming.

        Fires only on the exact streaming -> ready transition, so unrelated
        status churn (ready -> ready, error -> ready, rate-limit warnings)
        never speaks.
        """
        if event.previous != "streaming" or event.current != "ready":
            return
        if not self.auto_play or self.messages is None:
            return

        messages = self.messages()
        last = messages[-1] if messages else None
        if last is None or last.role != "assistant":
            return
        text_part = last.text_part()
        if not text_part or not text_part.text:
            return

        self._track(asyncio.create_task(self._auto_play(last.id, text_part.text)))

    async def _auto_play(self, message_id: str, text: str) -> None:
        if self.auto_play_delay > 0:
            await asyncio.sleep(self.auto_play_delay)
        await self.play(message_id, text)

    async def toggle(self, message_id: str, text: str) -> None:
        """Play a message, or stop it if it is the one currently active."""
        if self.active_message_id == message_id and self.state != "idle":
            await self.stop()
            return
        await self.play(message_id, text)

    async def play(self, message_id: str, text: str) -> None:
        """Generate speech for a message and start playing it."""
        await self.stop()

        self._generation += 1
        generation = self._generation
        self.active_message_id = message_id
        await self._set_state("generating")

        try:
            audio = await self.speech.synthesize(text, self.voice, self.voice_settings)
            if generation != self._generation:
                logger.debug(f"Discarding superseded speech for {message_id}")
                return
            clip = self.playback.load(audio)
        except RateLimitedError as e:
            if generation == self._generation:
                await self._reset()
                await self.bus.notify("error", "Usage Limit Reached", str(e))
            return
        except SynthesisError as e:
            if generation == self._generation:
                await self._reset()
                await self.bus.notify("error", "Failed to generate audio", str(e))
            return

        self._clip = clip
        await self._set_state("playing")
        self._track(asyncio.create_task(self._run(clip, generation)))

    async def _run(self, clip: AudioClip, generation: int) -> None:
        error: Exception | None = None
        try:
            await clip.play()
        except (SynthesisError, OSError) as e:
            logger.error(f"Playback failed: {e}")
            error = e
        finally:
            clip.release()
            if self._clip is clip:
                self._clip = None

        if generation != self._generation:
            return
        await self._reset()
        if error is not None:
            await self.bus.notify("error", "Failed to play audio", str(error))

    async def stop(self) -> None:
        """Stop any generation or playback and release the active clip."""
        self._generation += 1
        clip = self._clip
        self._clip = None
        if clip is not None:
            clip.stop()
            clip.release()
        if self.state != "idle":
            await self._reset()

    async def wait(self) -> None:
        """Wait for scheduled auto-play and running playback to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.stop()
        for task in list(self._tasks):
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    def _track(self, task: asyncio.Task) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _reset(self) -> None:
        self.active_message_id = None
        await self._set_state("idle")

    async def _set_state(self, state: PlaybackState) -> None:
        previous = self.state
        if previous == state:
            return
        self.state = state
        await self.bus.publish(
            PlaybackStateChanged(previous=previous, current=state, message_id=self.active_message_id)
        )
