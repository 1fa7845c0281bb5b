"""
Training session lifecycle.

A session owns one pass through the exercise:

    create -> start (acquire microphone) -> calibrate -> run -> end -> reset

While calibrating or active, a per-frame poll task reads the audio
source once per frame and re-arms itself; calibration runs on its own
fixed-cadence timer task alongside it. The two write disjoint state, so
no locking is needed on the event loop. Hosts with their own loop can
skip the tasks with start(autorun=False) and call tick() and
calibration_tick() themselves.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from dragonbreath.core.config import Config
from dragonbreath.core.stats import SessionAggregator, SessionStats
from dragonbreath.detectors.base import BaseAudioSource
from dragonbreath.detectors.audio.calibration import CalibrationController, CalibrationResult
from dragonbreath.detectors.audio.detector import BreathEventDetector, BreathState, CompletedBreath
from dragonbreath.detectors.audio.processing import (
    SILENT_SAMPLE,
    VolumeSample,
    create_volume_extractor,
)
from dragonbreath.detectors.audio.source import MicrophoneSource

logger = logging.getLogger(__name__)


class SessionPhase(str, Enum):
    """Phase of a training session."""

    IDLE = "idle"
    CALIBRATING = "calibrating"
    ACTIVE = "active"
    SUMMARY = "summary"


class SessionStateError(RuntimeError):
    """Operation not allowed in the current session phase."""


@dataclass(frozen=True)
class SessionState:
    """Read-only view of a session for presenters."""

    phase: SessionPhase
    calibration_progress: int
    noise_floor: float | None
    breath: BreathState
    stats: SessionStats
    last_sample: VolumeSample
    source_ready: bool
    uptime_seconds: float = 0.0
    error_message: str | None = None


class TrainingSession:
    """
    One breathing exercise from microphone acquisition to summary.

    Usage:
        session = TrainingSession(config)
        session.set_on_breath_state(gauge.update)
        await session.start()
        await session.wait_until_active()
        ...
        stats = await session.end()
    """

    _RUNNING_PHASES = (SessionPhase.CALIBRATING, SessionPhase.ACTIVE)

    def __init__(
        self,
        config: Config | None = None,
        source: BaseAudioSource | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Initialize session.

        Args:
            config: Full configuration, or None for defaults
            source: Audio source, or None for the default microphone
            clock: Time source for breath durations
        """
        self._config = config or Config.default()
        self._source = source or MicrophoneSource(self._config.audio)
        self._clock = clock

        self._extractor = create_volume_extractor(self._config.audio)
        self._detector = BreathEventDetector(self._config.detection, clock=clock)
        self._aggregator = SessionAggregator(self._config.detection.min_breath_duration)
        self._calibration = CalibrationController(
            self._sample_calibration_volume,
            self._config.calibration,
            self._config.detection,
        )
        self._calibration.set_on_progress(self._handle_progress)

        self._phase = SessionPhase.IDLE
        self._last_sample = SILENT_SAMPLE
        self._calibration_result: CalibrationResult | None = None
        self._started_at: float | None = None
        self._error_message: str | None = None
        self._active = asyncio.Event()

        self._poll_task: asyncio.Task | None = None
        self._calibration_task: asyncio.Task | None = None

        # Callbacks
        self._on_breath_state: Callable[[BreathState], None] | None = None
        self._on_progress: Callable[[int], None] | None = None
        self._on_calibrated: Callable[[CalibrationResult], None] | None = None
        self._on_breath: Callable[[CompletedBreath, SessionStats], None] | None = None
        self._on_phase_change: Callable[[SessionPhase], None] | None = None

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def stats(self) -> SessionStats:
        return self._aggregator.stats

    @property
    def breath_state(self) -> BreathState:
        return self._detector.state

    @property
    def noise_floor(self) -> float | None:
        return self._detector.noise_floor

    @property
    def calibration_result(self) -> CalibrationResult | None:
        return self._calibration_result

    @property
    def source(self) -> BaseAudioSource:
        return self._source

    def set_on_breath_state(self, callback: Callable[[BreathState], None]) -> None:
        """Set callback receiving the breath state every frame."""
        self._on_breath_state = callback

    def set_on_progress(self, callback: Callable[[int], None]) -> None:
        """Set callback receiving calibration progress (0 - 100)."""
        self._on_progress = callback

    def set_on_calibrated(self, callback: Callable[[CalibrationResult], None]) -> None:
        """Set callback for when the noise floor is committed."""
        self._on_calibrated = callback

    def set_on_breath(self, callback: Callable[[CompletedBreath, SessionStats], None]) -> None:
        """Set callback for every breath that counts."""
        self._on_breath = callback

    def set_on_phase_change(self, callback: Callable[[SessionPhase], None]) -> None:
        self._on_phase_change = callback

    # ========================================================================
    # Lifecycle
    # ========================================================================

    async def start(self, autorun: bool = True) -> None:
        """
        Acquire the audio source and begin calibrating.

        Args:
            autorun: Spawn the poll and calibration tasks. Pass False
                to drive tick() and calibration_tick() from a host loop.

        Raises:
            MicrophonePermissionError: Microphone access refused
            AudioDeviceError: No usable input device
            SessionStateError: Session already started
        """
        if self._phase != SessionPhase.IDLE:
            raise SessionStateError(f"Cannot start a session in phase {self._phase.value}")

        try:
            await self._source.initialize()
        except Exception as e:
            logger.error(f"Could not acquire audio source: {e}")
            raise

        self._started_at = time.monotonic()
        self._error_message = None
        self._set_phase(SessionPhase.CALIBRATING)

        if autorun:
            self._calibration_task = asyncio.create_task(self._run_calibration())
            self._poll_task = asyncio.create_task(self._poll_loop())
        else:
            self._calibration.begin()

    async def wait_until_active(self, timeout: float | None = None) -> None:
        """Wait for calibration to finish."""
        await asyncio.wait_for(self._active.wait(), timeout=timeout)

    async def end(self) -> SessionStats:
        """
        Stop polling, release the microphone and return final stats.

        A breath still in progress is dropped rather than counted.
        """
        if self._phase == SessionPhase.SUMMARY:
            return self._aggregator.stats
        if self._phase == SessionPhase.IDLE:
            raise SessionStateError("Cannot end a session that was never started")

        self._set_phase(SessionPhase.SUMMARY)
        await self._cancel_tasks()

        self._calibration.cancel()
        self._detector.discard()
        self._source.release()

        stats = self._aggregator.stats
        logger.info(
            f"Session ended: {stats.total_breaths} breaths, "
            f"longest {stats.max_duration:.1f}s, avg intensity {stats.avg_intensity:.2f}"
        )
        return stats

    def reset(self) -> None:
        """Return to IDLE with fresh statistics."""
        if self._phase in self._RUNNING_PHASES:
            raise SessionStateError("End the session before resetting it")

        self._detector.reset()
        self._aggregator.reset()
        self._calibration_result = None
        self._last_sample = SILENT_SAMPLE
        self._started_at = None
        self._error_message = None
        self._active.clear()
        self._set_phase(SessionPhase.IDLE)

    # ========================================================================
    # Per-tick processing
    # ========================================================================

    def tick(self, now: float | None = None) -> BreathState:
        """
        Poll the source once and update the breath state.

        Args:
            now: Tick timestamp in seconds, or None for the clock

        Returns:
            Breath state after this tick
        """
        if self._phase not in self._RUNNING_PHASES:
            raise SessionStateError(f"Cannot tick a session in phase {self._phase.value}")

        sample = self._extractor.extract(self._source.poll_snapshot())
        self._last_sample = sample

        if self._phase == SessionPhase.CALIBRATING:
            state = self._detector.passthrough(sample.volume)
        else:
            completed = self._detector.update(sample.volume, now)
            if completed is not None:
                stats = self._aggregator.record(completed)
                logger.debug(
                    f"Breath #{stats.total_breaths}: {completed.duration:.2f}s "
                    f"at intensity {completed.intensity:.2f}"
                )
                if self._on_breath:
                    self._on_breath(completed, stats)
            state = self._detector.state

        if self._on_breath_state:
            self._on_breath_state(state)

        return state

    def calibration_tick(self) -> CalibrationResult | None:
        """Advance calibration by one timer tick (manual driving)."""
        if self._phase != SessionPhase.CALIBRATING:
            raise SessionStateError(f"Cannot calibrate in phase {self._phase.value}")

        result = self._calibration.tick()
        if result is not None:
            self._commit_calibration(result)
        return result

    def get_state(self) -> SessionState:
        """Get current session state."""
        uptime = 0.0
        if self._started_at and self._phase in self._RUNNING_PHASES:
            uptime = time.monotonic() - self._started_at

        return SessionState(
            phase=self._phase,
            calibration_progress=self._calibration.progress,
            noise_floor=self._detector.noise_floor,
            breath=self._detector.state,
            stats=self._aggregator.stats,
            last_sample=self._last_sample,
            source_ready=self._source.is_ready,
            uptime_seconds=uptime,
            error_message=self._error_message,
        )

    # ========================================================================
    # Internals
    # ========================================================================

    def _sample_calibration_volume(self) -> float | None:
        if not self._source.is_ready:
            return None
        return self._extractor.extract(self._source.poll_snapshot()).volume

    def _handle_progress(self, progress: int) -> None:
        if self._on_progress:
            self._on_progress(progress)

    def _commit_calibration(self, result: CalibrationResult) -> None:
        self._calibration_result = result
        self._detector.arm(result.noise_floor)
        self._set_phase(SessionPhase.ACTIVE)
        self._active.set()

        if self._on_calibrated:
            self._on_calibrated(result)

    def _set_phase(self, phase: SessionPhase) -> None:
        if phase == self._phase:
            return
        logger.info(f"Session phase: {self._phase.value} -> {phase.value}")
        self._phase = phase
        if self._on_phase_change:
            self._on_phase_change(phase)

    async def _run_calibration(self) -> None:
        result = await self._calibration.run()
        if self._phase == SessionPhase.CALIBRATING:
            self._commit_calibration(result)

    async def _poll_loop(self) -> None:
        """Run tick() once per frame while calibrating or active."""
        interval = 1.0 / self._config.session.frame_rate_hz

        try:
            while self._phase in self._RUNNING_PHASES:
                self.tick()
                await asyncio.sleep(interval)
        except Exception as e:
            self._error_message = str(e)
            logger.error(f"Poll loop stopped: {e}")

    async def _cancel_tasks(self) -> None:
        current = asyncio.current_task()
        tasks = [
            t for t in (self._poll_task, self._calibration_task)
            if t is not None and t is not current
        ]
        self._poll_task = None
        self._calibration_task = None

        for task in tasks:
            task.cancel()
        for task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                logger.error(f"Session task failed: {e}")
