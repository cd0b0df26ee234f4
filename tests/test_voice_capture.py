"""Tests for push-to-talk recording and transcription."""

from unittest.mock import AsyncMock

import pytest

from growth_chat.errors import CaptureError, RateLimitedError, TranscriptionError
from growth_chat.events import Notification, VoiceStateChanged
from growth_chat.voice_capture import VoiceCaptureController


class FakeCapture:
    filename = "recording.wav"
    content_type = "audio/wav"

    def __init__(self, log: list, audio: bytes = b"RIFF....WAVE", open_error=None, stop_error=None):
        self.log = log
        self.audio = audio
        self.open_error = open_error
        self.stop_error = stop_error

    async def open(self):
        self.log.append("open")
        if self.open_error:
            raise self.open_error

    async def stop(self):
        self.log.append("stop")
        if self.stop_error:
            raise self.stop_error
        return self.audio

    async def close(self):
        self.log.append("close")


class FakeTranscriber:
    def __init__(self, log: list, text: str = "I feel stuck", error=None):
        self.log = log
        self.text = text
        self.error = error
        self.calls = []

    async def transcribe(self, audio, filename="recording.wav", content_type="audio/wav"):
        self.log.append("transcribe")
        self.calls.append((audio, filename, content_type))
        if self.error:
            raise self.error
        return self.text


def make_controller(bus, capture=None, transcriber=None, playback=None):
    log = []
    capture = capture or FakeCapture(log)
    transcriber = transcriber or FakeTranscriber(log)
    send = AsyncMock()
    controller = VoiceCaptureController(capture, transcriber, send, bus=bus, playback=playback)
    return controller, send, log


def voice_states(recorder):
    return [e.current for e in recorder.of_type(VoiceStateChanged)]


class TestRecording:
    @pytest.mark.asyncio
    async def test_record_transcribe_and_send(self, bus, recorder):
        controller, send, log = make_controller(bus)

        assert await controller.start_recording() is True
        assert controller.state == "recording"

        text = await controller.stop_recording()

        assert text == "I feel stuck"
        send.assert_awaited_once_with("I feel stuck")
        assert controller.state == "idle"
        assert voice_states(recorder) == ["recording", "transcribing", "idle"]
        # The microphone is released before transcription starts.
        assert log == ["open", "stop", "close", "transcribe"]

    @pytest.mark.asyncio
    async def test_stops_playback_before_recording(self, bus):
        playback = AsyncMock()
        controller, _, _ = make_controller(bus, playback=playback)

        await controller.start_recording()

        playback.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_start_only_from_idle(self, bus):
        controller, _, log = make_controller(bus)

        await controller.start_recording()
        assert await controller.start_recording() is False
        assert log.count("open") == 1

    @pytest.mark.asyncio
    async def test_stop_while_idle_does_nothing(self, bus):
        controller, send, log = make_controller(bus)

        assert await controller.stop_recording() is None
        assert log == []
        send.assert_not_awaited()


class TestFailures:
    @pytest.mark.asyncio
    async def test_microphone_unavailable(self, bus, recorder):
        log = []
        capture = FakeCapture(log, open_error=CaptureError("no device"))
        controller, _, _ = make_controller(bus, capture=capture)

        assert await controller.start_recording() is False

        assert controller.state == "idle"
        assert log == ["open", "close"]
        notifications = recorder.of_type(Notification)
        assert [n.title for n in notifications] == ["Microphone unavailable"]
        assert notifications[0].level == "error"

    @pytest.mark.asyncio
    async def test_recording_failure_still_releases_device(self, bus, recorder):
        log = []
        capture = FakeCapture(log, stop_error=CaptureError("stream died"))
        controller, send, _ = make_controller(bus, capture=capture, transcriber=FakeTranscriber(log))

        await controller.start_recording()
        assert await controller.stop_recording() is None

        assert log == ["open", "stop", "close"]
        assert controller.state == "idle"
        assert [n.title for n in recorder.of_type(Notification)] == ["Recording failed"]
        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_recording_skips_transcription(self, bus):
        log = []
        controller, send, _ = make_controller(
            bus, capture=FakeCapture(log, audio=b""), transcriber=FakeTranscriber(log)
        )

        await controller.start_recording()
        assert await controller.stop_recording() is None

        assert "transcribe" not in log
        assert controller.state == "idle"
        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_blank_transcription_is_not_sent(self, bus):
        log = []
        controller, send, _ = make_controller(
            bus, capture=FakeCapture(log), transcriber=FakeTranscriber(log, text="  \n")
        )

        await controller.start_recording()
        assert await controller.stop_recording() is None

        send.assert_not_awaited()
        assert controller.state == "idle"

    @pytest.mark.asyncio
    async def test_rate_limited_transcription(self, bus, recorder):
        log = []
        transcriber = FakeTranscriber(log, error=RateLimitedError("Daily limit reached."))
        controller, send, _ = make_controller(bus, capture=FakeCapture(log), transcriber=transcriber)

        await controller.start_recording()
        await controller.stop_recording()

        notification = recorder.of_type(Notification)[0]
        assert notification.title == "Usage Limit Reached"
        assert notification.description == "Daily limit reached."
        assert controller.state == "idle"
        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_transcription_error(self, bus, recorder):
        log = []
        transcriber = FakeTranscriber(log, error=TranscriptionError("HTTP 500"))
        controller, send, _ = make_controller(bus, capture=FakeCapture(log), transcriber=transcriber)

        await controller.start_recording()
        await controller.stop_recording()

        assert [n.title for n in recorder.of_type(Notification)] == ["Transcription failed"]
        assert controller.state == "idle"
        send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_device_error_on_stop_returns_to_idle(self, bus, recorder):
        log = []
        capture = FakeCapture(log, stop_error=OSError("device unplugged"))
        controller, send, _ = make_controller(bus, capture=capture, transcriber=FakeTranscriber(log))

        await controller.start_recording()
        assert await controller.stop_recording() is None

        assert controller.state == "idle"
        assert log == ["open", "stop", "close"]
        notifications = recorder.of_type(Notification)
        assert [n.title for n in notifications] == ["Recording failed"]
        assert notifications[0].description == "device unplugged"
        send.assert_not_awaited()

        # The controller accepts a new recording afterwards.
        capture.stop_error = None
        assert await controller.start_recording() is True
