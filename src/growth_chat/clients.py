"""HTTP clients for the speech and artifact endpoints.

The chat stream itself is handled by :mod:`growth_chat.session`; these are the
smaller request/response collaborators around it:
- POST transcribe (multipart ``audio``) -> ``{text}`` or ``{error}``
- POST speak ``{text, voice, voiceSettings}`` -> audio bytes or ``{error}``
- POST artifacts ``{chatId, exerciseId, type, title, data}`` (fire-and-forget)
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from .errors import RateLimitedError, SynthesisError, TranscriptionError

logger = logging.getLogger(__name__)

RATE_LIMIT_STATUS = 429
DEFAULT_LIMIT_MESSAGE = "Please try again later."


def rate_limit_message(response: httpx.Response, default: str = DEFAULT_LIMIT_MESSAGE) -> str:
    """Extract the ``{error}`` text from a rate-limited response."""
    try:
        data = response.json()
    except ValueError:
        return default
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"])
    return default


class TranscriptionClient:
    """Client for the speech-to-text endpoint."""

    def __init__(self, url: str, http_client: httpx.AsyncClient | None = None):
        self.url = url
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(60.0))

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "recording.wav",
        content_type: str = "audio/wav",
    ) -> str:
        """Send recorded audio and return the recognized text.

        Raises:
            RateLimitedError: The backend's usage limit was reached
            TranscriptionError: The request failed or returned an error body
        """
        try:
            response = await self.client.post(
                self.url,
                files={"audio": (filename, audio, content_type)},
            )
        except httpx.RequestError as e:
            raise TranscriptionError(f"Transcription request failed: {e}") from e

        if response.status_code == RATE_LIMIT_STATUS:
            raise RateLimitedError(rate_limit_message(response))

        try:
            data = response.json()
        except ValueError as e:
            raise TranscriptionError(
                f"Transcription returned non-JSON body (HTTP {response.status_code})"
            ) from e

        if not isinstance(data, dict):
            raise TranscriptionError("Transcription returned an unexpected body")
        if data.get("error") or response.status_code >= 400:
            raise TranscriptionError(str(data.get("error") or f"HTTP {response.status_code}"))

        return data.get("text") or ""


class SpeechClient:
    """Client for the text-to-speech endpoint."""

    def __init__(self, url: str, http_client: httpx.AsyncClient | None = None):
        self.url = url
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(60.0))

    async def close(self) -> None:
        await self.client.aclose()

    async def synthesize(
        self,
        text: str,
        voice: str | None = None,
        voice_settings: dict[str, Any] | None = None,
    ) -> bytes:
        """Generate speech audio for text.

        Returns:
            Encoded audio bytes (mp3 or wav, as sent by the server)

        Raises:
            RateLimitedError: The backend's usage limit was reached
            SynthesisError: The request failed or returned no audio
        """
        body: dict[str, Any] = {"text": text, "voice": voice}
        if voice_settings:
            body["voiceSettings"] = voice_settings

        try:
            response = await self.client.post(self.url, json=body)
        except httpx.RequestError as e:
            raise SynthesisError(f"Speech request failed: {e}") from e

        if response.status_code == RATE_LIMIT_STATUS:
            raise RateLimitedError(rate_limit_message(response))
        if not response.is_success:
            raise SynthesisError(f"Speech generation failed (HTTP {response.status_code})")
        if not response.content:
            raise SynthesisError("Speech generation returned no audio")

        return response.content


class ArtifactSink:
    """Fire-and-forget poster for saved visualizations.

    Requests run as background tasks; failures are logged and never reach
    the caller.
    """

    def __init__(self, url: str, http_client: httpx.AsyncClient | None = None):
        self.url = url
        self.client = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def save(
        self,
        chat_id: str,
        exercise_id: str,
        artifact_type: str,
        title: str,
        data: Any,
    ) -> asyncio.Task:
        """Schedule an artifact save without waiting for it."""
        payload = {
            "chatId": chat_id,
            "exerciseId": exercise_id,
            "type": artifact_type,
            "title": title,
            "data": data,
        }
        task = asyncio.create_task(self._post(payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _post(self, payload: dict[str, Any]) -> None:
        try:
            response = await self.client.post(self.url, json=payload)
            if not response.is_success:
                logger.error(
                    f"Artifact save failed for chat {payload['chatId']}: HTTP {response.status_code}"
                )
                return
            logger.info(f"Saved {payload['type']} artifact for chat {payload['chatId']}")
        except httpx.HTTPError as e:
            logger.error(f"Artifact save failed for chat {payload['chatId']}: {e}")

    async def drain(self) -> None:
        """Wait for all pending saves to finish."""
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        await self.client.aclose()
