"""Pytest configuration and fixtures."""

import pytest

from dragonbreath.core.config import Config
from dragonbreath.detectors.audio.detector import BreathEventDetector


@pytest.fixture
def default_config():
    """Default configuration for testing."""
    return Config.default()


@pytest.fixture
def fast_config():
    """Configuration with a short calibration and a fast frame loop."""
    return Config.from_dict({
        "calibration": {"tick_interval_ms": 5, "total_ticks": 4},
        "session": {"frame_rate_hz": 200},
    })


@pytest.fixture
def armed_detector():
    """Detector armed with a 0.02 noise floor (start > 0.08, stop <= 0.024)."""
    detector = BreathEventDetector()
    detector.arm(0.02)
    return detector


@pytest.fixture
def feed():
    """Feed volumes to a detector at a fixed tick.

    Returns (states, completed breaths).
    """

    def _feed(detector, volumes, tick=0.1, start=0.0):
        states = []
        breaths = []
        for i, volume in enumerate(volumes):
            completed = detector.update(volume, now=start + i * tick)
            states.append(detector.state)
            if completed is not None:
                breaths.append(completed)
        return states, breaths

    return _feed
