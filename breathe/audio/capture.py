"""Microphone input for ambient noise sampling."""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Optional

import pyaudio

logger = logging.getLogger(__name__)


class AudioInput(ABC):
    """Exclusively held audio source. Use as a context manager so it is always released."""

    @abstractmethod
    def open(self) -> None:
        pass

    @abstractmethod
    def close(self) -> None:
        pass

    @abstractmethod
    async def read_window(self, duration_ms: int) -> bytes:
        """Read roughly duration_ms of 16-bit mono PCM. Returns b'' when nothing was read."""
        pass

    def __enter__(self) -> "AudioInput":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class PyAudioInput(AudioInput):
    """Blocking PyAudio stream, read off the event loop."""

    def __init__(self, sample_rate: int = 16000, channels: int = 1, format: int = pyaudio.paInt16):
        self.sample_rate = sample_rate
        self.channels = channels
        self.format = format

        self.pyaudio_instance: Optional[pyaudio.PyAudio] = None
        self.stream: Optional[pyaudio.Stream] = None
        self.windows_read = 0

    def open(self) -> None:
        if self.stream is not None:
            logger.warning("Audio input already open")
            return
        self.pyaudio_instance = pyaudio.PyAudio()
        try:
            self.stream = self.pyaudio_instance.open(
                format=self.format,
                channels=self.channels,
                rate=self.sample_rate,
                input=True,
                frames_per_buffer=self._frames_for(250),
            )
        except Exception:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None
            raise
        logger.info(f"Audio input opened: {self.sample_rate}Hz, {self.channels} channel(s)")

    def close(self) -> None:
        if self.stream is not None:
            try:
                self.stream.stop_stream()
                self.stream.close()
            finally:
                self.stream = None
        if self.pyaudio_instance is not None:
            self.pyaudio_instance.terminate()
            self.pyaudio_instance = None
            logger.info(f"Audio input released after {self.windows_read} windows")

    async def read_window(self, duration_ms: int) -> bytes:
        if self.stream is None:
            return b""
        frames = self._frames_for(duration_ms)
        data = await asyncio.to_thread(self.stream.read, frames, exception_on_overflow=False)
        self.windows_read += 1
        return data or b""

    def _frames_for(self, duration_ms: int) -> int:
        return max(1, int(self.sample_rate * duration_ms / 1000))
