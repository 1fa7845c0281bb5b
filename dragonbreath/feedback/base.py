"""
Base feedback generator interface for Dragonbreath.

All feedback generators implement this interface for consistency.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from dragonbreath.core.stats import SessionStats


class BaseFeedbackGenerator(ABC):
    """
    Abstract base class for feedback generators.

    A generator turns the final statistics of a session into a short
    motivating message for the user. Generators must not raise: a
    failing remote service degrades to a local message.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique generator identifier."""
        pass

    @abstractmethod
    async def generate(self, stats: SessionStats) -> str:
        """
        Produce feedback for a finished session.

        Args:
            stats: Final session statistics

        Returns:
            Feedback text
        """
        pass

    async def start(self) -> None:
        """Start the generator (optional setup)."""
        pass

    async def stop(self) -> None:
        """Stop the generator (optional cleanup)."""
        pass
