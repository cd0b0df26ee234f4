"""Local microphone and speakers via sounddevice (cross-platform audio).

Capture runs a non-blocking input callback that pushes int16 PCM blocks onto a
thread-safe queue; on stop the blocks are joined and written out as a WAV file
for the transcription endpoint. Playback decodes the synthesized speech with
soundfile (falling back to pydub for MP3) and streams it through an output
callback.
"""

import asyncio
import io
import logging
import queue
import threading

import numpy as np
import sounddevice as sd
import soundfile as sf

from ..errors import CaptureError, SynthesisError

logger = logging.getLogger(__name__)


class LocalAudioCapture:
    """Records from the default input device until stopped."""

    filename = "recording.wav"
    content_type = "audio/wav"

    def __init__(self, sample_rate: int = 16000, chunk_duration_ms: int = 100):
        """Initialize capture.

        Args:
            sample_rate: Input sample rate (Hz); transcription works well at 16kHz
            chunk_duration_ms: Duration of each captured block in milliseconds
        """
        self.sample_rate = sample_rate
        self.chunk_size = int(sample_rate * chunk_duration_ms / 1000)
        self._chunks: queue.Queue[bytes] = queue.Queue()
        self._stream: sd.InputStream | None = None

    async def open(self) -> None:
        """Open the input stream and start recording."""

        def input_callback(indata, frames, time_info, status):
            if status:
                logger.debug(f"Audio input status: {status}")
            # float32 -> int16 PCM
            audio_int16 = (indata[:, 0] * 32767).astype(np.int16)
            self._chunks.put(audio_int16.tobytes())

        self._drain()
        try:
            self._stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype=np.float32,
                blocksize=self.chunk_size,
                callback=input_callback,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            self._stream = None
            raise CaptureError(f"Could not open microphone: {e}") from e

        logger.info(f"Recording started ({self.sample_rate}Hz)")

    async def stop(self) -> bytes:
        """Stop recording and return the captured audio as WAV bytes."""
        try:
            if self._stream:
                self._stream.stop()
        except sd.PortAudioError as e:
            raise CaptureError(f"Could not stop microphone: {e}") from e

        pcm = b"".join(self._drain())
        if not pcm:
            return b""

        samples = np.frombuffer(pcm, dtype=np.int16)
        buffer = io.BytesIO()
        try:
            sf.write(buffer, samples, self.sample_rate, format="WAV", subtype="PCM_16")
        except (RuntimeError, ValueError) as e:
            # LibsndfileError derives from RuntimeError
            raise CaptureError(f"Could not encode recording: {e}") from e
        return buffer.getvalue()

    async def close(self) -> None:
        """Close the input stream."""
        if self._stream:
            self._stream.close()
            self._stream = None

    def _drain(self) -> list[bytes]:
        chunks = []
        try:
            while True:
                chunks.append(self._chunks.get_nowait())
        except queue.Empty:
            pass
        return chunks


def decode_audio(audio: bytes) -> tuple[np.ndarray, int]:
    """Decode encoded speech to mono float32 samples.

    Returns:
        (samples, sample_rate)
    """
    try:
        # soundfile handles wav/ogg/flac (and mp3 with recent libsndfile)
        data, sample_rate = sf.read(io.BytesIO(audio), dtype="float32")
    except Exception:
        # Fall back to pydub for MP3 support
        from pydub import AudioSegment

        try:
            segment = AudioSegment.from_file(io.BytesIO(audio))
        except Exception as e:
            raise SynthesisError(f"Could not decode speech audio: {e}") from e
        if segment.channels > 1:
            segment = segment.set_channels(1)
        samples = np.array(segment.get_array_of_samples())
        data = samples.astype(np.float32) / (2 ** (segment.sample_width * 8 - 1))
        sample_rate = segment.frame_rate

    # Convert to mono if stereo (for soundfile path)
    if len(data.shape) > 1:
        data = np.mean(data, axis=1)
    return data.astype(np.float32), sample_rate


class LocalAudioClip:
    """One decoded clip played through its own output stream."""

    def __init__(self, samples: np.ndarray, sample_rate: int):
        self.sample_rate = sample_rate
        self._samples: np.ndarray | None = samples
        self._position = 0
        self._lock = threading.Lock()
        self._stream: sd.OutputStream | None = None
        self._finished: asyncio.Event | None = None

    async def play(self) -> None:
        """Play the clip and return once it finishes or is stopped."""
        if self._samples is None:
            return

        loop = asyncio.get_running_loop()
        finished = asyncio.Event()
        self._finished = finished

        def output_callback(outdata, frames, time_info, status):
            if status:
                logger.debug(f"Audio output status: {status}")
            with self._lock:
                samples = self._samples
                if samples is None:
                    outdata.fill(0)
                    raise sd.CallbackStop
                chunk = samples[self._position:self._position + frames]
                self._position += len(chunk)
            outdata[:len(chunk), 0] = chunk
            if len(chunk) < frames:
                outdata[len(chunk):, 0] = 0
                raise sd.CallbackStop

        def finished_callback():
            loop.call_soon_threadsafe(finished.set)

        try:
            self._stream = sd.OutputStream(
                samplerate=self.sample_rate,
                channels=1,
                dtype=np.float32,
                callback=output_callback,
                finished_callback=finished_callback,
            )
            self._stream.start()
        except sd.PortAudioError as e:
            raise SynthesisError(f"Could not open audio output: {e}") from e
        await finished.wait()

    def stop(self) -> None:
        """Stop playback immediately."""
        if self._stream:
            self._stream.abort()
        if self._finished:
            self._finished.set()

    def release(self) -> None:
        """Close the output stream and drop the decoded samples."""
        if self._stream:
            self._stream.close()
            self._stream = None
        with self._lock:
            self._samples = None


class LocalAudioPlayback:
    """Default output device."""

    def load(self, audio: bytes) -> LocalAudioClip:
        samples, sample_rate = decode_audio(audio)
        return LocalAudioClip(samples, sample_rate)
