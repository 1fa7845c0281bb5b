"""
Audio signal processing for breath detection.

Turns captured audio into a single loudness value per poll:
- Optional high-pass stage to suppress voice and mains hum
- Spectrum analysis into byte-scaled frequency magnitudes
- Volume extraction, either full-band RMS or the band-ratio method
  that compares breath hiss (2-8 kHz) against voice/hum (0-600 Hz)
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

import numpy as np
from scipy import signal as scipy_signal

from dragonbreath.core.config import AudioConfig


@dataclass(frozen=True)
class AudioSnapshot:
    """Frequency magnitudes (0-255, one per bin) from a single analysis."""

    magnitudes: np.ndarray
    sample_rate: int
    fft_size: int

    @property
    def bin_size(self) -> float:
        """Width of one frequency bin in Hz."""
        return self.sample_rate / self.fft_size

    def __len__(self) -> int:
        return len(self.magnitudes)


@dataclass(frozen=True)
class VolumeSample:
    """Loudness of one snapshot."""

    volume: float  # 0.0 - 1.0
    quality: float = 0.0  # hiss / total energy, 0.0 - 1.0


SILENT_SAMPLE = VolumeSample(volume=0.0, quality=0.0)


def _clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    # NaN or inf only come from malformed input
    if not math.isfinite(value):
        return low
    return max(low, min(high, value))


class HighPassFilter:
    """Butterworth high-pass filter applied before analysis."""

    def __init__(self, cutoff_hz: float, sample_rate: int, order: int = 4):
        """
        Create high-pass filter.

        Args:
            cutoff_hz: Cutoff frequency
            sample_rate: Audio sample rate
            order: Filter order (higher = sharper cutoff)
        """
        nyquist = sample_rate / 2
        cutoff = max(0.001, min(0.999, cutoff_hz / nyquist))

        self._sos = scipy_signal.butter(order, cutoff, btype="highpass", output="sos")
        self._zi: np.ndarray | None = None

    def filter(self, audio: np.ndarray) -> np.ndarray:
        """Apply filter to an audio block, carrying state across blocks."""
        if len(audio) == 0:
            return audio
        if self._zi is None:
            self._zi = scipy_signal.sosfilt_zi(self._sos) * audio[0]
        filtered, self._zi = scipy_signal.sosfilt(self._sos, audio, zi=self._zi)
        return filtered

    def reset(self) -> None:
        """Reset filter state."""
        self._zi = None


class SpectrumAnalyser:
    """
    Frequency analysis of the most recent audio window.

    Mirrors the behaviour of a browser analyser node: Blackman window,
    FFT, exponential smoothing across calls, and magnitudes mapped from
    the [min_decibels, max_decibels] range onto 0-255.
    """

    def __init__(
        self,
        sample_rate: int,
        fft_size: int = 1024,
        smoothing_time_constant: float = 0.2,
        min_decibels: float = -100.0,
        max_decibels: float = -30.0,
    ):
        self._sample_rate = sample_rate
        self._fft_size = fft_size
        self._smoothing = smoothing_time_constant
        self._min_db = min_decibels
        self._max_db = max_decibels
        self._window = np.blackman(fft_size)
        self._previous = np.zeros(fft_size // 2)

    @classmethod
    def from_config(cls, config: AudioConfig) -> SpectrumAnalyser:
        return cls(
            sample_rate=config.sample_rate,
            fft_size=config.fft_size,
            smoothing_time_constant=config.smoothing_time_constant,
            min_decibels=config.min_decibels,
            max_decibels=config.max_decibels,
        )

    @property
    def fft_size(self) -> int:
        return self._fft_size

    @property
    def frequency_bin_count(self) -> int:
        return self._fft_size // 2

    def analyse(self, audio: np.ndarray) -> AudioSnapshot:
        """
        Analyse the latest window of audio.

        Args:
            audio: Audio samples (normalized -1 to 1); shorter input is
                zero-padded at the front, longer input uses the tail

        Returns:
            AudioSnapshot with one byte magnitude per frequency bin
        """
        frame = np.zeros(self._fft_size, dtype=np.float64)
        tail = np.asarray(audio, dtype=np.float64)[-self._fft_size :]
        if len(tail):
            frame[-len(tail) :] = tail

        spectrum = np.abs(np.fft.rfft(frame * self._window))[: self.frequency_bin_count]
        spectrum /= self._fft_size

        smoothed = self._smoothing * self._previous + (1.0 - self._smoothing) * spectrum
        self._previous = smoothed

        decibels = 20.0 * np.log10(np.maximum(smoothed, 1e-12))
        scaled = 255.0 * (decibels - self._min_db) / (self._max_db - self._min_db)
        magnitudes = np.clip(scaled, 0, 255).astype(np.uint8)

        return AudioSnapshot(
            magnitudes=magnitudes,
            sample_rate=self._sample_rate,
            fft_size=self._fft_size,
        )

    def reset(self) -> None:
        """Forget smoothing history."""
        self._previous = np.zeros(self.frequency_bin_count)


class VolumeExtractor(ABC):
    """Reduce a snapshot to a single VolumeSample. Stateless."""

    @abstractmethod
    def extract(self, snapshot: AudioSnapshot | None) -> VolumeSample:
        """Loudness of the snapshot; never raises on empty or malformed input."""


class RMSVolumeExtractor(VolumeExtractor):
    """
    Full-band RMS of all magnitude bins.

    Assumes a high-pass stage already removed voice and hum energy,
    so everything left is treated as breath.
    """

    def __init__(self, ceiling: float = 60.0):
        self._ceiling = ceiling

    def extract(self, snapshot: AudioSnapshot | None) -> VolumeSample:
        if snapshot is None or len(snapshot) == 0:
            return SILENT_SAMPLE

        magnitudes = np.asarray(snapshot.magnitudes, dtype=np.float64)
        rms = float(np.sqrt(np.mean(magnitudes ** 2)))
        return VolumeSample(volume=_clamp(rms / self._ceiling))


class BandRatioVolumeExtractor(VolumeExtractor):
    """
    Compare breath hiss against voice/hum energy.

    Pursed-lip breathing is mostly high-frequency hiss, while talking
    and room noise sit in the low band. Volume comes from the high band
    alone; quality is the share of hiss in the total.
    """

    def __init__(
        self,
        low_band: tuple[float, float] = (0.0, 600.0),
        high_band: tuple[float, float] = (2000.0, 8000.0),
        amplification: float = 4.0,
    ):
        self._low_band = low_band
        self._high_band = high_band
        self._amplification = amplification

    def extract(self, snapshot: AudioSnapshot | None) -> VolumeSample:
        if snapshot is None or len(snapshot) == 0:
            return SILENT_SAMPLE
        # bin_size divides by fft_size
        if snapshot.fft_size <= 0 or snapshot.sample_rate <= 0:
            return SILENT_SAMPLE

        magnitudes = np.asarray(snapshot.magnitudes, dtype=np.float64)
        low_avg = self._band_average(magnitudes, snapshot.bin_size, self._low_band)
        high_avg = self._band_average(magnitudes, snapshot.bin_size, self._high_band)

        # Breath sounds are quiet, so the high band is amplified
        volume = _clamp(high_avg / 255.0 * self._amplification)
        quality = _clamp(high_avg / (low_avg + high_avg + 1.0))

        return VolumeSample(volume=volume, quality=quality)

    @staticmethod
    def band_bins(
        bin_size: float, band: tuple[float, float], bin_count: int
    ) -> tuple[int, int] | None:
        """
        Map a frequency band to an inclusive bin index range.

        Returns None when the band lies entirely beyond the last bin.
        """
        start = int(math.floor(band[0] / bin_size))
        end = int(math.floor(band[1] / bin_size))

        start = max(0, start)
        if bin_count == 0 or start > bin_count - 1:
            return None
        end = max(start, min(end, bin_count - 1))
        return start, end

    def _band_average(
        self, magnitudes: np.ndarray, bin_size: float, band: tuple[float, float]
    ) -> float:
        bins = self.band_bins(bin_size, band, len(magnitudes))
        if bins is None:
            return 0.0
        start, end = bins
        return float(np.mean(magnitudes[start : end + 1]))


def create_volume_extractor(config: AudioConfig | None = None) -> VolumeExtractor:
    """Build the extractor selected in the audio configuration."""
    config = config or AudioConfig()

    if config.extraction == "rms":
        return RMSVolumeExtractor(ceiling=config.rms_ceiling)

    return BandRatioVolumeExtractor(
        low_band=(config.low_band_min_hz, config.low_band_max_hz),
        high_band=(config.high_band_min_hz, config.high_band_max_hz),
        amplification=config.amplification,
    )
