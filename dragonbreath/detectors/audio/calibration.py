"""
Noise floor calibration.

Samples the room while the user stays silent and turns the average
volume into the baseline every breath threshold is derived from.
Calibration is driven by a fixed-cadence timer: its length is a number
of ticks, not a number of audio samples, so it always lasts the same
wall-clock time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from dragonbreath.core.config import CalibrationConfig, DetectionConfig

logger = logging.getLogger(__name__)


class CalibrationPhase(str, Enum):
    """Lifecycle of a calibration run."""

    IDLE = "idle"
    SAMPLING = "sampling"
    DONE = "done"


@dataclass(frozen=True)
class CalibrationResult:
    """Result of noise floor calibration."""

    success: bool
    message: str
    noise_floor: float
    samples_collected: int = 0
    start_threshold: float = 0.0
    stop_threshold: float = 0.0
    duration_seconds: float = 0.0


def start_threshold(noise_floor: float, config: DetectionConfig) -> float:
    """Volume a quiet user must exceed to begin a breath."""
    return noise_floor * config.start_multiplier + config.start_margin


def stop_threshold(noise_floor: float, config: DetectionConfig) -> float:
    """Volume at or below which an ongoing breath ends."""
    return noise_floor * config.stop_multiplier


class CalibrationController:
    """
    Tick-based ambient noise calibration.

    IDLE -> SAMPLING -> DONE. Each tick records the current volume (when
    the source has one) and reports progress; the final tick commits
    the noise floor. A cancelled run commits nothing.
    """

    def __init__(
        self,
        sample_volume: Callable[[], float | None],
        config: CalibrationConfig | None = None,
        detection: DetectionConfig | None = None,
    ):
        """
        Initialize calibration controller.

        Args:
            sample_volume: Returns the current volume, or None while the
                audio source is not ready
            config: Calibration timing and minimum floor
            detection: Used to report the resulting thresholds
        """
        self._sample_volume = sample_volume
        self._config = config or CalibrationConfig()
        self._detection = detection or DetectionConfig()

        self._phase = CalibrationPhase.IDLE
        self._samples: list[float] = []
        self._ticks = 0
        self._progress = 0
        self._noise_floor: float | None = None
        self._started_at: float | None = None

        self._on_progress: Callable[[int], None] | None = None

    @property
    def phase(self) -> CalibrationPhase:
        return self._phase

    @property
    def progress(self) -> int:
        """Completion percentage, 0 - 100."""
        return self._progress

    @property
    def noise_floor(self) -> float | None:
        """Committed noise floor, None until a run completes."""
        return self._noise_floor

    @property
    def samples(self) -> list[float]:
        return list(self._samples)

    @property
    def tick_interval(self) -> float:
        """Seconds between ticks."""
        return self._config.tick_interval_ms / 1000.0

    def set_on_progress(self, callback: Callable[[int], None]) -> None:
        """Set callback receiving progress after every tick."""
        self._on_progress = callback

    def begin(self) -> None:
        """Enter SAMPLING with an empty sample list."""
        if self._phase == CalibrationPhase.SAMPLING:
            raise RuntimeError("Calibration already in progress")

        self._phase = CalibrationPhase.SAMPLING
        self._samples = []
        self._ticks = 0
        self._progress = 0
        self._noise_floor = None
        self._started_at = time.monotonic()

    def tick(self) -> CalibrationResult | None:
        """
        Advance calibration by one timer tick.

        Returns:
            CalibrationResult on the final tick, otherwise None
        """
        if self._phase != CalibrationPhase.SAMPLING:
            raise RuntimeError(f"Cannot tick calibration in phase {self._phase.value}")

        volume = self._sample_volume()
        if volume is not None:
            self._samples.append(float(volume))

        self._ticks += 1
        self._progress = round(100 * self._ticks / self._config.total_ticks)

        if self._on_progress:
            self._on_progress(self._progress)

        if self._ticks >= self._config.total_ticks:
            return self._finish()
        return None

    def cancel(self) -> None:
        """Abort an in-progress run without committing a floor."""
        if self._phase != CalibrationPhase.SAMPLING:
            return

        logger.info(f"Calibration cancelled after {self._ticks} of {self._config.total_ticks} ticks")
        self._phase = CalibrationPhase.IDLE
        self._samples = []
        self._ticks = 0
        self._progress = 0

    async def run(self) -> CalibrationResult:
        """
        Run a full calibration on a fixed-cadence timer.

        Cancelling the awaiting task cancels the calibration.
        """
        self.begin()

        try:
            while True:
                await asyncio.sleep(self.tick_interval)
                result = self.tick()
                if result is not None:
                    return result
        except asyncio.CancelledError:
            self.cancel()
            raise

    def _finish(self) -> CalibrationResult:
        if self._samples:
            avg_noise = sum(self._samples) / len(self._samples)
        else:
            avg_noise = 0.0
            logger.warning("Calibration collected no samples, using minimum noise floor")

        self._noise_floor = max(avg_noise, self._config.min_noise_floor)
        self._phase = CalibrationPhase.DONE

        elapsed = time.monotonic() - self._started_at if self._started_at else 0.0
        logger.info(
            f"Calibration complete. Noise floor: {self._noise_floor:.4f} "
            f"({len(self._samples)} samples, average {avg_noise:.4f})"
        )

        return CalibrationResult(
            success=bool(self._samples),
            message=(
                f"Calibration complete. Noise floor: {self._noise_floor:.4f}"
                if self._samples
                else "No audio samples received during calibration, using minimum floor"
            ),
            noise_floor=self._noise_floor,
            samples_collected=len(self._samples),
            start_threshold=start_threshold(self._noise_floor, self._detection),
            stop_threshold=stop_threshold(self._noise_floor, self._detection),
            duration_seconds=elapsed,
        )
