"""Audio device interfaces used by the voice controllers.

Controllers only see these protocols; the sounddevice-backed implementations
live in :mod:`growth_chat.audio.local` and are imported on demand so that the
rest of the package works on machines without PortAudio.
"""

from typing import Protocol


class AudioCapture(Protocol):
    """A microphone that records one utterance at a time."""

    filename: str
    content_type: str

    async def open(self) -> None:
        """Acquire the input device and start recording."""
        ...

    async def stop(self) -> bytes:
        """Stop recording and return the encoded audio (empty if nothing was captured)."""
        ...

    async def close(self) -> None:
        """Release the input device. Safe to call more than once."""
        ...


class AudioClip(Protocol):
    """A loaded piece of generated speech."""

    async def play(self) -> None:
        """Play to the end, or until :meth:`stop` is called.

        Raises:
            SynthesisError: The output device could not be opened
        """
        ...

    def stop(self) -> None:
        ...

    def release(self) -> None:
        """Free the decoded audio and any output stream."""
        ...


class AudioPlayback(Protocol):
    """The audio output, which turns encoded bytes into playable clips."""

    def load(self, audio: bytes) -> AudioClip:
        ...


def create_audio_devices(device_type: str = "local", **kwargs) -> tuple[AudioCapture, AudioPlayback]:
    """Factory to create a capture/playback pair by type."""
    if device_type == "local":
        from .local import LocalAudioCapture, LocalAudioPlayback
        return LocalAudioCapture(**kwargs), LocalAudioPlayback()
    else:
        raise ValueError(f"Unknown audio device type: {device_type}")
