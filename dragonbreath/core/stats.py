"""
Session statistics.

The aggregator is the only writer of SessionStats; every qualifying
breath replaces the current snapshot with an updated one.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

from dragonbreath.detectors.audio.detector import CompletedBreath


@dataclass(frozen=True)
class SessionStats:
    """Aggregated results of a training session."""

    total_breaths: int = 0
    max_duration: float = 0.0
    total_duration: float = 0.0
    avg_intensity: float = 0.0  # 0.0 - 1.0

    @property
    def avg_duration(self) -> float:
        if self.total_breaths == 0:
            return 0.0
        return self.total_duration / self.total_breaths

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SessionAggregator:
    """Accumulate completed breaths into running statistics."""

    def __init__(self, min_breath_duration: float = 0.5):
        """
        Initialize aggregator.

        Args:
            min_breath_duration: Breaths shorter than this never count
        """
        self._min_breath_duration = min_breath_duration
        self._stats = SessionStats()

    @property
    def stats(self) -> SessionStats:
        return self._stats

    def record_breath(self, duration: float, intensity: float) -> SessionStats:
        """
        Fold one breath into the statistics.

        Args:
            duration: Breath duration in seconds
            intensity: Breath intensity (clamped to 0.0 - 1.0)

        Returns:
            The updated statistics, or the unchanged ones when the
            breath is too short to count
        """
        if duration + 1e-9 < self._min_breath_duration:
            return self._stats

        intensity = max(0.0, min(1.0, intensity))
        previous = self._stats
        total = previous.total_breaths + 1

        # Weight the old mean by the pre-increment count
        self._stats = SessionStats(
            total_breaths=total,
            max_duration=max(previous.max_duration, duration),
            total_duration=previous.total_duration + duration,
            avg_intensity=(previous.avg_intensity * previous.total_breaths + intensity) / total,
        )
        return self._stats

    def record(self, breath: CompletedBreath) -> SessionStats:
        """Fold a detector event into the statistics."""
        return self.record_breath(breath.duration, breath.intensity)

    def reset(self) -> None:
        self._stats = SessionStats()
