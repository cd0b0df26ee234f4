"""Push-to-talk voice input: microphone capture followed by transcription.

    idle -> recording -> transcribing -> idle

The recognized text is sent exactly as if the user had typed it.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable

from .audio import AudioCapture
from .clients import TranscriptionClient
from .errors import CaptureError, RateLimitedError, TranscriptionError
from .events import EventBus, VoiceStateChanged
from .models import VoiceState

if TYPE_CHECKING:
    from .playback import PlaybackController

logger = logging.getLogger(__name__)


class VoiceCaptureController:
    """State machine for recording one utterance and turning it into a message."""

    def __init__(
        self,
        capture: AudioCapture,
        transcriber: TranscriptionClient,
        send: Callable[[str], Awaitable[None]],
        bus: EventBus | None = None,
        playback: PlaybackController | None = None,
    ):
        """Initialize controller.

        Args:
            capture: Microphone to record from
            transcriber: Speech-to-text client
            send: Called with the recognized text (normally SessionController.send)
            bus: Event bus for state changes and notifications
            playback: Playback to silence before recording starts
        """
        self.capture = capture
        self.transcriber = transcriber
        self.send = send
        self.bus = bus or EventBus()
        self.playback = playback
        self.state: VoiceState = "idle"

    async def start_recording(self) -> bool:
        """Start recording. Only valid from idle.

        Returns:
            True if recording started
        """
        if self.state != "idle":
            logger.debug(f"Ignoring start_recording while {self.state}")
            return False

        # Speech output would otherwise be recorded back.
        if self.playback:
            await self.playback.stop()

        await self._set_state("recording")
        try:
            await self.capture.open()
        except (CaptureError, OSError) as e:
            await self.capture.close()
            await self.bus.notify("error", "Microphone unavailable", str(e))
            await self._set_state("idle")
            return False
        return True

    async def stop_recording(self) -> str | None:
        """Stop recording, transcribe, and send the result.

        The capture device is released before transcription starts, whatever
        happens afterwards.

        Returns:
            The text that was sent, or None if nothing was sent
        """
        if self.state != "recording":
            logger.debug(f"Ignoring stop_recording while {self.state}")
            return None

        audio = b""
        try:
            audio = await self.capture.stop()
        except (CaptureError, OSError) as e:
            await self.bus.notify("error", "Recording failed", str(e))
        finally:
            try:
                await self.capture.close()
            except (CaptureError, OSError) as e:
                logger.warning(f"Failed to release microphone: {e}")

        if not audio:
            await self._set_state("idle")
            return None

        await self._set_state("transcribing")
        try:
            text = await self.transcriber.transcribe(
                audio,
                filename=self.capture.filename,
                content_type=self.capture.content_type,
            )
        except RateLimitedError as e:
            await self.bus.notify("error", "Usage Limit Reached", str(e))
            await self._set_state("idle")
            return None
        except TranscriptionError as e:
            await self.bus.notify("error", "Transcription failed", str(e))
            await self._set_state("idle")
            return None

        await self._set_state("idle")
        if not text.strip():
            logger.info("Transcription was empty; nothing sent")
            return None

        await self.send(text)
        return text

    async def _set_state(self, state: VoiceState) -> None:
        previous = self.state
        if previous == state:
            return
        self.state = state
        await self.bus.publish(VoiceStateChanged(previous=previous, current=state))
