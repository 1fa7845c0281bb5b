"""
Breath event detection.

Converts the continuous volume stream into discrete breaths using two
thresholds: a breath starts above the start threshold and only ends
once volume falls to the lower stop threshold, so a signal hovering
near a single boundary cannot flicker on and off.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable

from dragonbreath.core.config import DetectionConfig
from dragonbreath.detectors.audio.calibration import start_threshold, stop_threshold

logger = logging.getLogger(__name__)

# Tolerance for tick timestamps that land a hair under the minimum
_DURATION_EPSILON = 1e-9


@dataclass(frozen=True)
class BreathState:
    """Per-tick breathing readout."""

    is_breathing: bool = False
    intensity: float = 0.0  # 0.0 - 1.0, display only
    duration: float = 0.0  # Seconds since the current breath started


@dataclass(frozen=True)
class CompletedBreath:
    """A finished breath long enough to count."""

    duration: float
    intensity: float
    started_at: float
    ended_at: float


IDLE_STATE = BreathState()


class BreathEventDetector:
    """
    Two-state hysteresis breath detector.

    Lifecycle per session: arm() once with the calibrated noise floor,
    then update() every tick. Before arming, passthrough() gives a raw
    intensity readout so the user can see the microphone works.
    """

    def __init__(
        self,
        config: DetectionConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize breath detector.

        Args:
            config: Detection thresholds and timing
            clock: Time source used when update() gets no timestamp
        """
        self._config = config or DetectionConfig()
        self._clock = clock

        self._noise_floor: float | None = None
        self._start_threshold = 0.0
        self._stop_threshold = 0.0

        self._state = IDLE_STATE
        self._breath_start: float | None = None
        self._breaths_discarded = 0

    @property
    def state(self) -> BreathState:
        return self._state

    @property
    def is_armed(self) -> bool:
        return self._noise_floor is not None

    @property
    def noise_floor(self) -> float | None:
        return self._noise_floor

    @property
    def start_threshold(self) -> float:
        return self._start_threshold

    @property
    def stop_threshold(self) -> float:
        return self._stop_threshold

    @property
    def breaths_discarded(self) -> int:
        """Breaths dropped for being shorter than the minimum duration."""
        return self._breaths_discarded

    def arm(self, noise_floor: float) -> None:
        """
        Freeze the noise floor for this session.

        Raises:
            RuntimeError: If already armed
            ValueError: If the floor is not positive
        """
        if self._noise_floor is not None:
            raise RuntimeError("Detector already armed for this session")
        if noise_floor <= 0:
            raise ValueError(f"Noise floor must be positive, got {noise_floor}")

        self._noise_floor = noise_floor
        self._start_threshold = start_threshold(noise_floor, self._config)
        self._stop_threshold = stop_threshold(noise_floor, self._config)
        self._state = IDLE_STATE
        self._breath_start = None

        logger.debug(
            f"Detector armed: floor={noise_floor:.4f} "
            f"start>{self._start_threshold:.4f} stop<={self._stop_threshold:.4f}"
        )

    def passthrough(self, volume: float) -> BreathState:
        """
        Show raw volume as intensity while calibrating.

        No thresholds apply and no breath is ever produced.
        """
        self._state = BreathState(
            is_breathing=False,
            intensity=max(0.0, min(1.0, volume)),
            duration=0.0,
        )
        return self._state

    def update(self, volume: float, now: float | None = None) -> CompletedBreath | None:
        """
        Process one tick of volume.

        Args:
            volume: Current volume (0.0 - 1.0)
            now: Tick timestamp in seconds, or None for the clock

        Returns:
            CompletedBreath when a qualifying breath just ended
        """
        if self._noise_floor is None:
            raise RuntimeError("Detector must be armed with a noise floor before update()")

        if now is None:
            now = self._clock()

        was_breathing = self._state.is_breathing
        if was_breathing:
            breathing = volume > self._stop_threshold
        else:
            breathing = volume > self._start_threshold

        if breathing:
            if not was_breathing:
                self._breath_start = now

            intensity = (volume - self._noise_floor) * self._config.intensity_gain
            self._state = BreathState(
                is_breathing=True,
                intensity=max(0.0, min(1.0, intensity)),
                duration=now - self._breath_start,
            )
            return None

        completed = None
        if was_breathing:
            completed = self._complete_breath(now)

        self._state = IDLE_STATE
        self._breath_start = None
        return completed

    def _complete_breath(self, now: float) -> CompletedBreath | None:
        start = self._breath_start if self._breath_start is not None else now
        duration = now - start

        if duration + _DURATION_EPSILON < self._config.min_breath_duration:
            self._breaths_discarded += 1
            logger.debug(f"Discarded {duration:.2f}s blip (minimum {self._config.min_breath_duration}s)")
            return None

        # The last intensity shown before the drop scores the breath
        return CompletedBreath(
            duration=duration,
            intensity=self._state.intensity,
            started_at=start,
            ended_at=now,
        )

    def discard(self) -> None:
        """Drop any unresolved breath without producing an event."""
        if self._state.is_breathing:
            logger.debug(f"Discarding in-flight breath of {self._state.duration:.2f}s")
        self._state = IDLE_STATE
        self._breath_start = None

    def reset(self) -> None:
        """Forget the noise floor and all breath state for a new session."""
        self._noise_floor = None
        self._start_threshold = 0.0
        self._stop_threshold = 0.0
        self._state = IDLE_STATE
        self._breath_start = None
        self._breaths_discarded = 0
