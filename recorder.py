"""Microphone capture adapter writing the recording to a WAV file."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
import time
import wave
from pathlib import Path
from typing import Any, List, Optional

from errors import CaptureStopError, CaptureUnavailable
from models import AudioReference

try:
    import numpy as np
except Exception:  # pragma: no cover
    np = None  # type: ignore

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: int = 44100,
        channels: int = 1,
        chunk_ms: int = 100,
        output_dir: Optional[Path] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.channels = channels
        self.chunk_ms = chunk_ms
        self._output_dir = output_dir
        self._stream: Any = None
        self._running = False
        self._started_at = 0.0
        self._chunks: List[bytes] = []
        self._lock = threading.Lock()

    def request_permission(self) -> bool:
        if sd is None:
            return False
        try:
            sd.query_devices(kind="input")
        except Exception as exc:
            logger.warning("No usable input device: %s", exc)
            return False
        return True

    def start(self) -> None:
        with self._lock:
            if self._running:
                raise CaptureUnavailable("A recording is already in progress")
            if sd is None or np is None:
                raise CaptureUnavailable("sounddevice is not installed")
            self._chunks = []
            blocksize = int(self.sample_rate * (self.chunk_ms / 1000.0))
            stream = None
            try:
                stream = sd.InputStream(
                    samplerate=self.sample_rate,
                    channels=self.channels,
                    dtype="int16",
                    blocksize=blocksize,
                    callback=self._on_audio,
                )
                stream.start()
            except Exception as exc:
                if stream is not None:
                    stream.close()
                raise CaptureUnavailable(f"Microphone could not be opened: {exc}") from exc
            self._stream = stream
            self._started_at = time.monotonic()
            self._running = True
            logger.info("Recording started (%d Hz, %d ch)", self.sample_rate, self.channels)

    def elapsed_seconds(self) -> float:
        if not self._running:
            return 0.0
        return time.monotonic() - self._started_at

    def stop(self) -> AudioReference:
        with self._lock:
            if not self._running:
                raise CaptureStopError("No active recording")
            duration = self.elapsed_seconds()
            self._running = False
            stream, self._stream = self._stream, None
            chunks, self._chunks = self._chunks, []
            try:
                try:
                    stream.stop()
                finally:
                    stream.close()
            except Exception as exc:
                raise CaptureStopError(f"Recording could not be stopped: {exc}") from exc
            return self._write_wav(b"".join(chunks), duration)

    def discard(self, audio: AudioReference) -> None:
        """Delete a recording returned by ``stop``."""
        try:
            audio.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Could not delete recording %s: %s", audio.uri, exc)
            return
        logger.debug("Deleted recording %s", audio.uri)

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        if not self._running or np is None:
            return
        self._chunks.append(np.asarray(indata, dtype=np.int16).tobytes())

    def _write_wav(self, pcm: bytes, duration: float) -> AudioReference:
        directory = str(self._output_dir) if self._output_dir else None
        try:
            fd, path = tempfile.mkstemp(prefix="heart_sound_", suffix=".wav", dir=directory)
            with os.fdopen(fd, "wb") as fh:
                with wave.open(fh, "wb") as wf:
                    wf.setnchannels(self.channels)
                    wf.setsampwidth(2)
                    wf.setframerate(self.sample_rate)
                    wf.writeframes(pcm)
            size = os.path.getsize(path)
        except OSError as exc:
            raise CaptureStopError(f"Recording could not be saved: {exc}") from exc
        logger.info("Recording saved to %s (%d bytes, %.1fs)", path, size, duration)
        return AudioReference(
            uri=Path(path).as_uri(),
            size_bytes=size,
            mime_type="audio/wav",
            duration_s=duration,
        )
