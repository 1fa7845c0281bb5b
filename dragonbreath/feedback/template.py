"""
Local feedback messages.

Always available; also the fallback for the remote generator.
"""

from __future__ import annotations

from dragonbreath.core.stats import SessionStats
from dragonbreath.feedback.base import BaseFeedbackGenerator

NO_BREATHS_MESSAGE = (
    "The embers are still cold, young dragon. "
    "Take a deep breath and blow a long, steady hiss through pursed lips."
)


class TemplateFeedbackGenerator(BaseFeedbackGenerator):
    """Pick a mentor-style message from the session statistics."""

    def __init__(self, epic_breath_seconds: float = 4.0):
        self._epic_breath_seconds = epic_breath_seconds

    @property
    def name(self) -> str:
        return "template"

    async def generate(self, stats: SessionStats) -> str:
        return self.render(stats)

    def render(self, stats: SessionStats) -> str:
        if stats.total_breaths == 0:
            return NO_BREATHS_MESSAGE

        breaths = f"{stats.total_breaths} fire breath{'s' if stats.total_breaths != 1 else ''}"
        longest = f"{stats.max_duration:.1f} seconds"

        if stats.max_duration > self._epic_breath_seconds:
            return (
                f"A Roaring Fire! {breaths}, the longest lasting {longest}. "
                "Your lungs are becoming those of a true dragon."
            )

        return (
            f"{breaths}, the longest lasting {longest}. "
            f"Stoke the embers: stretch each exhale past {self._epic_breath_seconds:.0f} seconds "
            "and your flame will roar."
        )
