"""Exceptions raised by the chat client."""


class GrowthChatError(Exception):
    """Base class for chat client errors."""


class TransportError(GrowthChatError):
    """The chat backend could not be reached or answered with a failure status."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RateLimitedError(GrowthChatError):
    """The backend refused the request because a usage limit was hit."""


class MalformedEventError(GrowthChatError):
    """A stream line carried a payload that could not be decoded."""

    def __init__(self, message: str, line: str = ""):
        super().__init__(message)
        self.line = line


class CaptureError(GrowthChatError):
    """The audio capture device failed."""


class TranscriptionError(GrowthChatError):
    """The transcription endpoint did not return text."""


class SynthesisError(GrowthChatError):
    """The speech synthesis endpoint did not return audio."""
