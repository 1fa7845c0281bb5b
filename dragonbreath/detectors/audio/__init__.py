"""
Audio breath detection for Dragonbreath.

Extracts breath volume from microphone spectra, calibrates the room's
noise floor, and segments the volume stream into breath events.
"""

from dragonbreath.detectors.audio.calibration import CalibrationController, CalibrationResult
from dragonbreath.detectors.audio.detector import BreathEventDetector, BreathState, CompletedBreath
from dragonbreath.detectors.audio.source import MicrophoneSource, MockAudioSource

__all__ = [
    "BreathEventDetector",
    "BreathState",
    "CalibrationController",
    "CalibrationResult",
    "CompletedBreath",
    "MicrophoneSource",
    "MockAudioSource",
]
