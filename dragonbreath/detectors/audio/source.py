"""
Audio sources for Dragonbreath.

MicrophoneSource captures raw audio from an input device with
sounddevice; MockAudioSource synthesizes breath-like spectra for
development and tests.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from typing import Any, Sequence

import numpy as np

from dragonbreath.core.config import AudioConfig
from dragonbreath.detectors.base import (
    AudioDeviceError,
    AudioSourceError,
    BaseAudioSource,
    MicrophonePermissionError,
)
from dragonbreath.detectors.audio.processing import (
    AudioSnapshot,
    HighPassFilter,
    SpectrumAnalyser,
)

logger = logging.getLogger(__name__)

_PERMISSION_MARKERS = ("permission", "denied", "not authorized", "unauthorized")


class MicrophoneSource(BaseAudioSource):
    """
    Capture breath audio from a microphone.

    Audio is captured raw: PortAudio applies no echo cancellation,
    noise suppression or automatic gain. When enabled, a high-pass
    stage runs on every captured block before it reaches the analyser.
    """

    def __init__(self, config: AudioConfig | None = None):
        """
        Initialize microphone source.

        Args:
            config: Audio configuration, or None for defaults
        """
        super().__init__("microphone")

        self._config = config or AudioConfig()
        self._analyser = SpectrumAnalyser.from_config(self._config)
        self._highpass: HighPassFilter | None = None
        if self._config.highpass_enabled:
            self._highpass = HighPassFilter(
                self._config.highpass_cutoff_hz,
                self._config.sample_rate,
            )

        self._stream = None
        self._buffer: deque[float] = deque(maxlen=self._config.fft_size)
        self._lock = threading.Lock()
        self._overflows = 0

    async def _open(self) -> None:
        """Open the input stream."""
        try:
            import sounddevice as sd
        except (ImportError, OSError) as e:
            raise AudioDeviceError(f"sounddevice unavailable: {e}") from e

        device_id = self._find_device(sd)

        def audio_callback(indata, frames, time_info, status):
            if status:
                self._overflows += 1
            mono = np.array(indata[:, 0], dtype=np.float64)
            if self._highpass is not None:
                mono = self._highpass.filter(mono)
            with self._lock:
                self._buffer.extend(mono)

        stream = None
        try:
            stream = sd.InputStream(
                device=device_id,
                channels=1,
                samplerate=self._config.sample_rate,
                blocksize=self._config.fft_size // 2,
                dtype=np.float32,
                callback=audio_callback,
            )
            stream.start()
        except sd.PortAudioError as e:
            self._discard_stream(stream)
            message = str(e)
            if any(marker in message.lower() for marker in _PERMISSION_MARKERS):
                raise MicrophonePermissionError(f"Microphone access refused: {message}") from e
            raise AudioDeviceError(f"Failed to open audio stream: {message}") from e
        except Exception:
            self._discard_stream(stream)
            raise

        self._stream = stream

        logger.info(
            f"Microphone opened: {self._device_name} @ {self._config.sample_rate} Hz"
            f"{' with high-pass filter' if self._highpass else ''}"
        )

    @staticmethod
    def _discard_stream(stream: Any) -> None:
        """Close a stream that failed to start."""
        if stream is None:
            return
        try:
            stream.close()
        except Exception as e:
            logger.warning(f"Failed to close audio stream after open error: {e}")

    def _find_device(self, sd: Any) -> int | None:
        """Resolve the configured device name to an index."""
        device_name = self._config.device

        if device_name:
            for i, d in enumerate(sd.query_devices()):
                if device_name.lower() in d["name"].lower() and d["max_input_channels"] > 0:
                    self._device_name = d["name"]
                    return i
            raise AudioDeviceError(f"Audio device not found: {device_name}")

        try:
            default = sd.query_devices(kind="input")
        except Exception as e:
            raise AudioDeviceError(f"No audio input device available: {e}") from e

        self._device_name = default["name"]
        return None

    def _close(self) -> None:
        """Stop and close the input stream."""
        if self._stream is not None:
            try:
                self._stream.stop()
                self._stream.close()
            finally:
                self._stream = None
                logger.info("Microphone released")

        with self._lock:
            self._buffer.clear()
        self._analyser.reset()
        if self._highpass is not None:
            self._highpass.reset()

    def _snapshot(self) -> AudioSnapshot:
        with self._lock:
            audio = np.array(self._buffer, dtype=np.float64)
        return self._analyser.analyse(audio)

    def _get_source_specific_state(self) -> dict[str, Any]:
        return {
            "sample_rate": self._config.sample_rate,
            "fft_size": self._config.fft_size,
            "highpass": self._config.highpass_enabled,
            "overflows": self._overflows,
        }


class MockAudioSource(BaseAudioSource):
    """
    Synthetic audio source for testing and development.

    Produces snapshots whose high band carries a hiss level. The level
    comes from a scripted list (one entry per poll, then silence) or,
    without a script, from a repeating exhale / rest pattern.
    """

    def __init__(
        self,
        config: AudioConfig | None = None,
        levels: Sequence[float] | None = None,
        breath_period_seconds: float = 6.0,
        exhale_seconds: float = 3.0,
        exhale_level: float = 0.4,
        noise_level: float = 0.01,
        fail_with: AudioSourceError | None = None,
        seed: int | None = None,
    ):
        """
        Initialize mock source.

        Args:
            config: Audio configuration (bands, sample rate, FFT size)
            levels: Scripted hiss volumes, consumed one per poll
            breath_period_seconds: Length of one exhale + rest cycle
            exhale_seconds: Exhale part of each cycle
            exhale_level: Hiss volume while exhaling
            noise_level: Background hiss volume
            fail_with: Error raised by initialize(), to simulate
                refused permission or a missing device
            seed: Random seed for the background noise
        """
        super().__init__("mock")

        self._config = config or AudioConfig()
        self._levels = deque(levels) if levels is not None else None
        self._breath_period = breath_period_seconds
        self._exhale_seconds = exhale_seconds
        self._exhale_level = exhale_level
        self._noise_level = noise_level
        self._fail_with = fail_with
        self._rng = np.random.default_rng(seed)
        self._opened_at = 0.0
        self.release_count = 0

    async def _open(self) -> None:
        if self._fail_with is not None:
            raise self._fail_with
        self._device_name = "Mock microphone"
        self._opened_at = time.monotonic()

    def _close(self) -> None:
        self.release_count += 1

    def _next_level(self) -> float:
        if self._levels is not None:
            return self._levels.popleft() if self._levels else 0.0

        phase = (time.monotonic() - self._opened_at) % self._breath_period
        level = self._exhale_level if phase < self._exhale_seconds else 0.0
        noise = abs(self._rng.normal(0.0, self._noise_level)) if self._noise_level else 0.0
        return level + noise

    def _snapshot(self) -> AudioSnapshot:
        config = self._config
        bins = config.fft_size // 2
        bin_size = config.sample_rate / config.fft_size
        magnitudes = np.zeros(bins, dtype=np.float64)

        level = max(0.0, min(1.0, self._next_level()))
        start = int(config.high_band_min_hz // bin_size)
        end = min(int(config.high_band_max_hz // bin_size), bins - 1)
        if start <= end:
            magnitudes[start : end + 1] = level * 255.0 / config.amplification

        return AudioSnapshot(
            magnitudes=np.clip(np.round(magnitudes), 0, 255).astype(np.uint8),
            sample_rate=config.sample_rate,
            fft_size=config.fft_size,
        )

    def _get_source_specific_state(self) -> dict[str, Any]:
        return {
            "mock": True,
            "scripted": self._levels is not None,
            "remaining_levels": len(self._levels) if self._levels is not None else None,
        }


def create_audio_source(config: AudioConfig | None = None, mock: bool = False) -> BaseAudioSource:
    """Build the microphone source, or the mock one for development."""
    if mock:
        return MockAudioSource(config)
    return MicrophoneSource(config)
