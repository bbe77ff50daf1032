"""Pytest configuration and fixtures for Breathe tests."""

import asyncio
import heapq
import logging
import tempfile
from typing import List
from unittest.mock import Mock, patch

import numpy as np
import pytest
from pubsub import pub

from breathe.audio.capture import AudioInput
from breathe.models.result import Result
from breathe.services.clock import Clock
from breathe.services.haptics import HapticEmitter


# Configure logging for tests
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without hardware or network")
    config.addinivalue_line("markers", "hardware: tests that need a real microphone")
    config.addinivalue_line("markers", "slow: tests that take more than a few seconds")


class ManualClock(Clock):
    """Virtual time. Sleepers wake only when a test advances the clock."""

    def __init__(self, start_epoch_ms: int = 1_700_000_000_000):
        self.now = 0
        self.start_epoch_ms = start_epoch_ms
        self._sleepers = []
        self._seq = 0

    def epoch_ms(self) -> int:
        return self.start_epoch_ms + self.now

    def monotonic_ms(self) -> int:
        return self.now

    async def sleep(self, ms: int) -> None:
        future = asyncio.get_running_loop().create_future()
        heapq.heappush(self._sleepers, (self.now + max(0, ms), self._seq, future))
        self._seq += 1
        await future

    async def settle(self, rounds: int = 20) -> None:
        for _ in range(rounds):
            await asyncio.sleep(0)

    async def advance(self, ms: int) -> None:
        """Move time forward, waking sleepers in deadline order."""
        target = self.now + ms
        await self.settle()
        while self._sleepers and self._sleepers[0][0] <= target:
            deadline, _, future = heapq.heappop(self._sleepers)
            self.now = max(self.now, deadline)
            if not future.done():
                future.set_result(None)
                await self.settle()
        self.now = max(self.now, target)
        await self.settle()

    def suspend(self, ms: int) -> None:
        """Jump forward without waking anyone, like a host process being suspended."""
        self.now += ms


class FakeHaptics(HapticEmitter):
    def __init__(self, fail: bool = False):
        self.pulses: List[int] = []
        self.fail = fail

    def pulse(self, duration_ms: int) -> None:
        self.pulses.append(duration_ms)
        if self.fail:
            raise RuntimeError("vibrator unavailable")


class FakeAudioInput(AudioInput):
    """Constant-amplitude 16-bit windows; counts open and close calls."""

    def __init__(self, amplitude: int = 1000, fail_reads: bool = False):
        self.amplitude = amplitude
        self.fail_reads = fail_reads
        self.open_count = 0
        self.close_count = 0
        self.reads = 0

    def open(self) -> None:
        self.open_count += 1

    def close(self) -> None:
        self.close_count += 1

    async def read_window(self, duration_ms: int) -> bytes:
        self.reads += 1
        if self.fail_reads:
            raise OSError("input overflowed")
        frames = 16 * duration_ms
        return np.full(frames, self.amplitude, dtype="<i2").tobytes()


class FakeRecorder:
    def __init__(self, fail: bool = False):
        self.records = []
        self.fail = fail

    async def append(self, record):
        if self.fail:
            raise OSError("disk full")
        self.records.append(record)
        return Result.success(record)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def haptics():
    return FakeHaptics()


@pytest.fixture
def recorder():
    return FakeRecorder()


@pytest.fixture
def audio_input():
    return FakeAudioInput()


@pytest.fixture
def temp_data_dir():
    """Create temporary directory for test data."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield temp_dir


@pytest.fixture(autouse=True)
def clean_pubsub():
    yield
    pub.unsubAll()


@pytest.fixture
def mock_pyaudio():
    """Mock PyAudio for testing without actual audio hardware."""
    with patch('pyaudio.PyAudio') as mock_pyaudio_class:
        mock_pyaudio_instance = Mock()
        mock_stream = Mock()

        # Configure mock stream
        mock_stream.read.return_value = b'\x00' * 8000  # Silent audio
        mock_stream.stop_stream.return_value = None
        mock_stream.close.return_value = None

        # Configure mock PyAudio instance
        mock_pyaudio_instance.open.return_value = mock_stream
        mock_pyaudio_instance.terminate.return_value = None

        # Configure mock PyAudio class
        mock_pyaudio_class.return_value = mock_pyaudio_instance

        yield {
            'class': mock_pyaudio_class,
            'instance': mock_pyaudio_instance,
            'stream': mock_stream
        }


@pytest.fixture
def audio_test_data():
    """Generate various audio test data patterns."""
    def generate_audio(pattern="sine", duration_seconds=0.25, sample_rate=16000, amplitude=1.0):
        samples = int(duration_seconds * sample_rate)

        if pattern == "sine":
            t = np.linspace(0, duration_seconds, samples, False)
            wave_data = np.sin(2 * np.pi * 440 * t) * amplitude
        elif pattern == "square":
            wave_data = np.full(samples, amplitude)
        elif pattern == "silence":
            wave_data = np.zeros(samples)
        else:
            raise ValueError(f"Unknown pattern: {pattern}")

        audio_data = (wave_data * 32767).astype(np.int16)
        return audio_data.tobytes()

    return generate_audio
