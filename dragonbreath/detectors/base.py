"""
Base audio source interface for Dragonbreath.

All sources (microphone, synthetic mock) inherit from BaseAudioSource
and expose the same acquire / poll / release lifecycle.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from dragonbreath.detectors.audio.processing import AudioSnapshot


class AudioSourceError(Exception):
    """Base class for failures acquiring an audio source."""


class MicrophonePermissionError(AudioSourceError, PermissionError):
    """The user or the operating system refused microphone access."""


class AudioDeviceError(AudioSourceError, ConnectionError):
    """No usable input device, or the device failed to open."""


class SourceStatus(str, Enum):
    """Operational status of an audio source."""

    RELEASED = "released"
    INITIALIZING = "initializing"
    READY = "ready"
    ERROR = "error"


@dataclass
class SourceState:
    """Current state of an audio source."""

    status: SourceStatus
    ready: bool = False
    device_name: str | None = None
    error_message: str | None = None
    snapshots_polled: int = 0
    uptime_seconds: float = 0.0
    extra: dict[str, Any] = field(default_factory=dict)


class BaseAudioSource(ABC):
    """
    Abstract base class for all audio sources.

    Sources are responsible for:
    1. Acquiring the capture device (the only step that may suspend)
    2. Producing a fresh frequency-magnitude snapshot on every poll
    3. Releasing the device deterministically

    Subclasses implement the underscored hooks; the public methods
    handle status bookkeeping.
    """

    def __init__(self, name: str):
        self._name = name
        self._status = SourceStatus.RELEASED
        self._device_name: str | None = None
        self._error_message: str | None = None
        self._start_time: float | None = None
        self._snapshots_polled = 0

    @property
    def name(self) -> str:
        """Source identifier."""
        return self._name

    @property
    def status(self) -> SourceStatus:
        return self._status

    @property
    def is_ready(self) -> bool:
        """Whether snapshots can be polled."""
        return self._status == SourceStatus.READY

    # ========================================================================
    # Abstract Methods (must be implemented by subclasses)
    # ========================================================================

    @abstractmethod
    async def _open(self) -> None:
        """
        Open the capture device.

        Raises:
            MicrophonePermissionError: If access is refused
            AudioDeviceError: If no device is usable
        """

    @abstractmethod
    def _close(self) -> None:
        """Close the capture device."""

    @abstractmethod
    def _snapshot(self) -> AudioSnapshot:
        """Analyse the latest captured audio."""

    def _get_source_specific_state(self) -> dict[str, Any]:
        return {}

    # ========================================================================
    # Public Methods
    # ========================================================================

    async def initialize(self) -> None:
        """Acquire the capture device."""
        if self.is_ready:
            return

        self._status = SourceStatus.INITIALIZING
        self._error_message = None

        try:
            await self._open()
        except AudioSourceError as e:
            self._status = SourceStatus.ERROR
            self._error_message = str(e)
            raise
        except Exception as e:
            self._status = SourceStatus.ERROR
            self._error_message = str(e)
            raise AudioDeviceError(f"Failed to open audio source: {e}") from e

        self._start_time = time.time()
        self._status = SourceStatus.READY

    def poll_snapshot(self) -> AudioSnapshot | None:
        """
        Get a fresh snapshot of the current spectrum.

        Returns None while the source is not ready.
        """
        if not self.is_ready:
            return None

        self._snapshots_polled += 1
        return self._snapshot()

    def release(self) -> None:
        """Release the capture device. Safe to call more than once."""
        if self._status == SourceStatus.RELEASED:
            return

        try:
            self._close()
        finally:
            self._status = SourceStatus.RELEASED
            self._start_time = None

    def get_state(self) -> SourceState:
        """Get current source state."""
        uptime = 0.0
        if self._start_time:
            uptime = time.time() - self._start_time

        return SourceState(
            status=self._status,
            ready=self.is_ready,
            device_name=self._device_name,
            error_message=self._error_message,
            snapshots_polled=self._snapshots_polled,
            uptime_seconds=uptime,
            extra=self._get_source_specific_state(),
        )
