"""
Configuration system for Dragonbreath.

Provides YAML-based configuration with:
- Dot-notation access
- Environment variable substitution and overrides
- Pydantic validation
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

T = TypeVar("T")


# ============================================================================
# Typed Configuration Models
# ============================================================================


class SystemConfig(BaseModel):
    """Top-level system configuration."""

    name: str = "dragonbreath"
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {valid}, got '{v}'")
        return v.upper()


class AudioConfig(BaseModel):
    """Configuration for audio capture and volume extraction."""

    device: str | None = None  # None = default input device
    sample_rate: int = Field(default=48000, ge=8000, le=96000)
    fft_size: int = Field(default=1024, ge=32, le=32768)
    smoothing_time_constant: float = Field(default=0.2, ge=0.0, lt=1.0)
    min_decibels: float = -100.0
    max_decibels: float = -30.0

    # Volume extraction
    extraction: str = "band_ratio"  # band_ratio | rms
    low_band_min_hz: float = Field(default=0.0, ge=0.0)
    low_band_max_hz: float = Field(default=600.0, ge=0.0)
    high_band_min_hz: float = Field(default=2000.0, ge=0.0)
    high_band_max_hz: float = Field(default=8000.0, ge=0.0)
    amplification: float = Field(default=4.0, gt=0.0)
    rms_ceiling: float = Field(default=60.0, gt=0.0)

    # Optional pre-analysis filter stage
    highpass_enabled: bool = False
    highpass_cutoff_hz: float = Field(default=800.0, gt=0.0)

    @field_validator("extraction")
    @classmethod
    def validate_extraction(cls, v: str) -> str:
        if v not in ("band_ratio", "rms"):
            raise ValueError(f"Extraction must be 'band_ratio' or 'rms', got '{v}'")
        return v

    @field_validator("fft_size")
    @classmethod
    def validate_fft_size(cls, v: int) -> int:
        if v & (v - 1):
            raise ValueError(f"FFT size must be a power of two, got {v}")
        return v

    @model_validator(mode="after")
    def validate_ranges(self) -> AudioConfig:
        if self.min_decibels >= self.max_decibels:
            raise ValueError("min_decibels must be lower than max_decibels")
        if self.low_band_min_hz > self.low_band_max_hz:
            raise ValueError("Low band minimum exceeds its maximum")
        if self.high_band_min_hz > self.high_band_max_hz:
            raise ValueError("High band minimum exceeds its maximum")
        return self


class SessionConfig(BaseModel):
    """Configuration for the per-frame polling loop."""

    frame_rate_hz: float = Field(default=60.0, ge=1.0, le=240.0)


class CalibrationConfig(BaseModel):
    """Configuration for noise floor calibration."""

    tick_interval_ms: int = Field(default=100, ge=1, le=10000)
    total_ticks: int = Field(default=20, ge=1, le=1000)
    min_noise_floor: float = Field(default=0.02, gt=0.0, le=1.0)

    @property
    def duration_seconds(self) -> float:
        return self.tick_interval_ms * self.total_ticks / 1000.0


class DetectionConfig(BaseModel):
    """Configuration for hysteresis breath detection."""

    start_multiplier: float = Field(default=1.5, gt=0.0)
    start_margin: float = Field(default=0.05, gt=0.0, le=1.0)
    stop_multiplier: float = Field(default=1.2, gt=0.0)
    intensity_gain: float = Field(default=2.5, gt=0.0)
    min_breath_duration: float = Field(default=0.5, ge=0.0)

    @model_validator(mode="after")
    def validate_hysteresis(self) -> DetectionConfig:
        # With a positive margin this keeps start above stop for any floor
        if self.start_multiplier < self.stop_multiplier:
            raise ValueError(
                f"start_multiplier ({self.start_multiplier}) must not be lower "
                f"than stop_multiplier ({self.stop_multiplier})"
            )
        return self


class FeedbackConfig(BaseModel):
    """Configuration for end-of-session feedback."""

    provider: str = "template"  # template | gemini
    api_key: str = ""
    model: str = "gemini-2.5-flash"
    api_url: str = "https://generativelanguage.googleapis.com/v1beta"
    timeout_seconds: float = Field(default=15.0, ge=1.0)
    epic_breath_seconds: float = Field(default=4.0, gt=0.0)

    @field_validator("provider")
    @classmethod
    def validate_provider(cls, v: str) -> str:
        if v not in ("template", "gemini"):
            raise ValueError(f"Provider must be 'template' or 'gemini', got '{v}'")
        return v


class DragonbreathConfig(BaseModel):
    """Complete Dragonbreath configuration."""

    system: SystemConfig = Field(default_factory=SystemConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    detection: DetectionConfig = Field(default_factory=DetectionConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)


# ============================================================================
# Configuration Loader
# ============================================================================


class ConfigLoader:
    """Loads and merges configuration from YAML files."""

    # Pattern for environment variable references: ${VAR} or ${VAR:-default}
    ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")

    ENV_PREFIX = "DRAGONBREATH_"

    def load_yaml(self, path: Path) -> dict[str, Any]:
        """Load single YAML file with env var substitution."""
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")

        content = path.read_text()
        content = self._substitute_env_vars(content)

        return yaml.safe_load(content) or {}

    def load_directory(self, dir_path: Path) -> dict[str, Any]:
        """Load and merge all YAML files in directory."""
        if not dir_path.is_dir():
            raise NotADirectoryError(f"Config directory not found: {dir_path}")

        config: dict[str, Any] = {}

        # Sorted for deterministic merging
        for yaml_file in sorted(dir_path.glob("*.yaml")):
            config = self.merge(config, self.load_yaml(yaml_file))

        return config

    def merge(self, base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
        """Deep merge override into base."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self.merge(result[key], value)
            else:
                result[key] = value

        return result

    def _substitute_env_vars(self, content: str) -> str:
        """Replace ${VAR} and ${VAR:-default} with environment values."""

        def replacer(match: re.Match) -> str:
            value = os.environ.get(match.group(1))
            default = match.group(2)

            if value is not None:
                return value
            elif default is not None:
                return default
            else:
                return match.group(0)

        return self.ENV_PATTERN.sub(replacer, content)

    def apply_env_overrides(self, config: dict[str, Any]) -> dict[str, Any]:
        """
        Apply environment variable overrides.

        DRAGONBREATH_DETECTION_MIN_BREATH_DURATION=0.8
            -> detection.min_breath_duration = 0.8

        The first segment after the prefix names the section; the rest
        is the field name, so fields containing underscores survive.
        """
        sections = set(DragonbreathConfig.model_fields)

        for key, value in os.environ.items():
            if not key.startswith(self.ENV_PREFIX):
                continue

            section, _, field_name = key[len(self.ENV_PREFIX) :].lower().partition("_")
            if section not in sections or not field_name:
                continue

            config.setdefault(section, {})
            config[section][field_name] = self._parse_value(value)

        return config

    def _parse_value(self, value: str) -> Any:
        """Parse string value to appropriate type."""
        if value.lower() in ("true", "yes"):
            return True
        if value.lower() in ("false", "no"):
            return False

        try:
            if "." in value or "e" in value.lower():
                return float(value)
            return int(value)
        except ValueError:
            pass

        return value


# ============================================================================
# Main Configuration Class
# ============================================================================


class Config:
    """
    Main configuration container.

    Usage:
        config = Config.load(Path("config/default.yaml"))
        floor = config.get("calibration.min_noise_floor", 0.02)

        # Or with typed access:
        gain = config.detection.intensity_gain
    """

    def __init__(self, data: dict[str, Any], source_path: Path | None = None):
        self._data = data
        self._source_path = source_path
        self._typed = DragonbreathConfig.model_validate(data)

    @classmethod
    def load(cls, path: Path) -> Config:
        """Load configuration from YAML file."""
        loader = ConfigLoader()
        data = loader.load_yaml(path)
        data = loader.apply_env_overrides(data)
        return cls(data, source_path=path)

    @classmethod
    def load_directory(cls, dir_path: Path) -> Config:
        """Load and merge all YAML files in directory."""
        loader = ConfigLoader()
        data = loader.load_directory(dir_path)
        data = loader.apply_env_overrides(data)
        return cls(data, source_path=dir_path)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Config:
        """Create configuration from dictionary."""
        return cls(data)

    @classmethod
    def default(cls) -> Config:
        """Create configuration with all defaults."""
        return cls({})

    @property
    def source_path(self) -> Path | None:
        return self._source_path

    def get(self, path: str, default: T = None) -> T:
        """
        Get config value by dot-notation path.

        Falls back to the validated model, so defaults that are not
        spelled out in the YAML still resolve.

        Example: config.get("detection.intensity_gain", 2.5)
        """
        value: Any = self._typed.model_dump()

        for key in path.split("."):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default  # type: ignore

        return value  # type: ignore

    def validate(self) -> list[str]:
        """
        Check settings that are valid on their own but not together.

        Field-level errors already raised in __init__; these are
        combinations that load fine yet degrade detection or feedback.

        Returns:
            List of warning messages, empty when consistent
        """
        warnings: list[str] = []
        audio = self.audio
        nyquist = audio.sample_rate / 2

        if audio.extraction == "band_ratio" and audio.high_band_min_hz >= nyquist:
            warnings.append(
                f"audio.high_band_min_hz ({audio.high_band_min_hz:.0f} Hz) is at or above "
                f"Nyquist ({nyquist:.0f} Hz); band-ratio volume will always be 0"
            )

        if audio.extraction == "rms" and not audio.highpass_enabled:
            warnings.append(
                "audio.extraction is 'rms' without audio.highpass_enabled; "
                "voice and hum will count as breath"
            )

        if audio.highpass_enabled and audio.highpass_cutoff_hz >= nyquist:
            warnings.append(
                f"audio.highpass_cutoff_hz ({audio.highpass_cutoff_hz:.0f} Hz) is at or above "
                f"Nyquist ({nyquist:.0f} Hz); the filter will remove almost everything"
            )

        if self.feedback.provider == "gemini" and not self.feedback.api_key:
            warnings.append(
                "feedback.provider is 'gemini' but no API key is set; "
                "template feedback will be used"
            )

        return warnings

    def to_dict(self) -> dict[str, Any]:
        """Get raw configuration as dictionary."""
        return self._data.copy()

    # ========================================================================
    # Typed Accessors
    # ========================================================================

    @property
    def system(self) -> SystemConfig:
        return self._typed.system

    @property
    def audio(self) -> AudioConfig:
        return self._typed.audio

    @property
    def session(self) -> SessionConfig:
        return self._typed.session

    @property
    def calibration(self) -> CalibrationConfig:
        return self._typed.calibration

    @property
    def detection(self) -> DetectionConfig:
        return self._typed.detection

    @property
    def feedback(self) -> FeedbackConfig:
        return self._typed.feedback
