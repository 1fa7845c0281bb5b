"""
Tests for the configuration system.

Covers:
- Pydantic model validation
- YAML loading with environment variable substitution
- Environment variable overrides
- Typed and dot-notation access
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from dragonbreath.core.config import (
    AudioConfig,
    CalibrationConfig,
    Config,
    ConfigLoader,
    DetectionConfig,
    DragonbreathConfig,
    FeedbackConfig,
    SessionConfig,
    SystemConfig,
)


# =============================================================================
# Pydantic Model Validation Tests
# =============================================================================


class TestSystemConfig:
    """Tests for SystemConfig validation."""

    def test_log_level_normalized(self):
        """Log levels are upper-cased."""
        assert SystemConfig(log_level="debug").log_level == "DEBUG"

    def test_invalid_log_level_raises(self):
        with pytest.raises(ValidationError):
            SystemConfig(log_level="LOUD")


class TestAudioConfig:
    """Tests for AudioConfig validation."""

    def test_default_values(self):
        """Defaults match the analyser node settings."""
        config = AudioConfig()
        assert config.device is None
        assert config.fft_size == 1024
        assert config.smoothing_time_constant == 0.2
        assert config.min_decibels == -100.0
        assert config.max_decibels == -30.0
        assert config.extraction == "band_ratio"
        assert config.amplification == 4.0
        assert config.highpass_enabled is False

    def test_fft_size_power_of_two(self):
        """FFT size must be a power of two."""
        AudioConfig(fft_size=2048)

        with pytest.raises(ValidationError):
            AudioConfig(fft_size=1000)

    def test_invalid_extraction_raises(self):
        with pytest.raises(ValidationError):
            AudioConfig(extraction="peak")

    def test_decibel_range(self):
        """min_decibels must be below max_decibels."""
        with pytest.raises(ValidationError):
            AudioConfig(min_decibels=-30, max_decibels=-100)

    def test_band_order(self):
        """Band edges must be ordered."""
        with pytest.raises(ValidationError):
            AudioConfig(high_band_min_hz=9000, high_band_max_hz=8000)

    def test_sample_rate_bounds(self):
        AudioConfig(sample_rate=16000)

        with pytest.raises(ValidationError):
            AudioConfig(sample_rate=1000)


class TestCalibrationConfig:
    """Tests for CalibrationConfig validation."""

    def test_default_duration(self):
        """Twenty 100 ms ticks last two seconds."""
        config = CalibrationConfig()
        assert config.total_ticks == 20
        assert config.tick_interval_ms == 100
        assert config.duration_seconds == pytest.approx(2.0)
        assert config.min_noise_floor == 0.02

    def test_floor_must_be_positive(self):
        with pytest.raises(ValidationError):
            CalibrationConfig(min_noise_floor=0.0)


class TestDetectionConfig:
    """Tests for DetectionConfig validation."""

    def test_default_values(self):
        config = DetectionConfig()
        assert config.start_multiplier == 1.5
        assert config.start_margin == 0.05
        assert config.stop_multiplier == 1.2
        assert config.intensity_gain == 2.5
        assert config.min_breath_duration == 0.5

    def test_start_below_stop_raises(self):
        """Hysteresis needs start above stop."""
        with pytest.raises(ValidationError):
            DetectionConfig(start_multiplier=1.0, stop_multiplier=1.2)

    def test_margin_must_be_positive(self):
        with pytest.raises(ValidationError):
            DetectionConfig(start_margin=0.0)


class TestFeedbackConfig:
    """Tests for FeedbackConfig validation."""

    def test_default_provider(self):
        config = FeedbackConfig()
        assert config.provider == "template"
        assert config.api_key == ""

    def test_invalid_provider_raises(self):
        with pytest.raises(ValidationError):
            FeedbackConfig(provider="oracle")


class TestDragonbreathConfig:
    """Tests for the root model."""

    def test_nested_defaults(self):
        config = DragonbreathConfig()
        assert config.system.name == "dragonbreath"
        assert config.session.frame_rate_hz == 60.0
        assert isinstance(config.session, SessionConfig)
        assert config.calibration.total_ticks == 20


# =============================================================================
# Config Loader Tests
# =============================================================================


class TestConfigLoader:
    """Tests for ConfigLoader."""

    @pytest.fixture
    def loader(self):
        """Create config loader."""
        return ConfigLoader()

    @pytest.fixture
    def temp_yaml_file(self):
        """Create a temporary YAML file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("system:\n  name: test\n  log_level: DEBUG\n")
            f.flush()
            yield Path(f.name)
        os.unlink(f.name)

    def test_load_yaml_file(self, loader, temp_yaml_file):
        """Load a simple YAML file."""
        data = loader.load_yaml(temp_yaml_file)
        assert data["system"]["name"] == "test"
        assert data["system"]["log_level"] == "DEBUG"

    def test_load_yaml_missing_file(self, loader):
        """Missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            loader.load_yaml(Path("/nonexistent/config.yaml"))

    def test_empty_yaml(self, loader, tmp_path):
        """An empty file loads as an empty dict."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert loader.load_yaml(path) == {}

    def test_env_var_substitution(self, loader, tmp_path):
        """Environment variable substitution works."""
        path = tmp_path / "feedback.yaml"
        path.write_text("feedback:\n  api_key: ${TEST_GEMINI_KEY}\n")

        with patch.dict(os.environ, {"TEST_GEMINI_KEY": "secret123"}):
            data = loader.load_yaml(path)

        assert data["feedback"]["api_key"] == "secret123"

    def test_env_var_with_default(self, loader, tmp_path):
        """Environment variable with default value."""
        path = tmp_path / "feedback.yaml"
        path.write_text("feedback:\n  provider: ${TEST_PROVIDER:-template}\n")

        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("TEST_PROVIDER", None)
            data = loader.load_yaml(path)
            assert data["feedback"]["provider"] == "template"

        with patch.dict(os.environ, {"TEST_PROVIDER": "gemini"}):
            data = loader.load_yaml(path)
            assert data["feedback"]["provider"] == "gemini"

    def test_unset_var_without_default_kept(self, loader):
        """Unknown variables without default are left as written."""
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("TEST_UNSET_VAR", None)
            assert loader._substitute_env_vars("x: ${TEST_UNSET_VAR}") == "x: ${TEST_UNSET_VAR}"

    def test_merge_configs(self, loader):
        """Deep merge of config dictionaries."""
        base = {
            "system": {"name": "base", "log_level": "INFO"},
            "detection": {"intensity_gain": 2.5},
        }
        override = {
            "system": {"log_level": "DEBUG"},
            "detection": {"min_breath_duration": 0.8},
        }

        merged = loader.merge(base, override)

        assert merged["system"]["name"] == "base"  # From base
        assert merged["system"]["log_level"] == "DEBUG"  # Overridden
        assert merged["detection"]["intensity_gain"] == 2.5  # From base
        assert merged["detection"]["min_breath_duration"] == 0.8  # Added

    def test_load_directory(self, loader):
        """Load and merge all YAML files in directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            (Path(tmpdir) / "01_base.yaml").write_text(
                "system:\n  name: dragonbreath\n  log_level: INFO\n"
            )
            (Path(tmpdir) / "02_override.yaml").write_text(
                "system:\n  log_level: DEBUG\n"
            )

            data = loader.load_directory(Path(tmpdir))

            assert data["system"]["name"] == "dragonbreath"
            assert data["system"]["log_level"] == "DEBUG"

    def test_load_directory_missing(self, loader):
        with pytest.raises(NotADirectoryError):
            loader.load_directory(Path("/nonexistent/config.d"))

    def test_apply_env_overrides(self, loader):
        """Field names with underscores survive the override."""
        config = {"detection": {"min_breath_duration": 0.5}}

        with patch.dict(os.environ, {"DRAGONBREATH_DETECTION_MIN_BREATH_DURATION": "0.8"}):
            updated = loader.apply_env_overrides(config)

        assert updated["detection"]["min_breath_duration"] == 0.8

    def test_env_override_creates_section(self, loader):
        """Overrides add sections missing from the file."""
        with patch.dict(os.environ, {"DRAGONBREATH_AUDIO_HIGHPASS_ENABLED": "true"}):
            updated = loader.apply_env_overrides({})

        assert updated["audio"]["highpass_enabled"] is True

    def test_env_override_ignores_unknown_sections(self, loader):
        """Variables that do not name a section are skipped."""
        with patch.dict(os.environ, {"DRAGONBREATH_MOCK": "1"}):
            updated = loader.apply_env_overrides({})

        assert "mock" not in updated

    def test_parse_value_boolean(self, loader):
        """Parse boolean values from strings."""
        assert loader._parse_value("true") is True
        assert loader._parse_value("True") is True
        assert loader._parse_value("yes") is True

        assert loader._parse_value("false") is False
        assert loader._parse_value("False") is False
        assert loader._parse_value("no") is False

    def test_parse_value_numbers(self, loader):
        """Parse numeric values from strings."""
        assert loader._parse_value("42") == 42
        assert loader._parse_value("3.14") == 3.14
        assert loader._parse_value("-10") == -10
        assert loader._parse_value("1e-3") == 0.001

    def test_parse_value_string(self, loader):
        """Non-numeric values remain strings."""
        assert loader._parse_value("hello") == "hello"
        assert loader._parse_value("gemini-2.5-flash") == "gemini-2.5-flash"


# =============================================================================
# Config Class Tests
# =============================================================================


class TestConfig:
    """Tests for main Config class."""

    @pytest.fixture
    def temp_config_file(self):
        """Create temporary config file."""
        with tempfile.NamedTemporaryFile(mode='w', suffix='.yaml', delete=False) as f:
            f.write("""
system:
  name: test_dragonbreath
  log_level: DEBUG

audio:
  extraction: rms
  highpass_enabled: true

detection:
  min_breath_duration: 0.8
""")
            f.flush()
            yield Path(f.name)
        os.unlink(f.name)

    def test_load_from_file(self, temp_config_file):
        """Load config from a YAML file."""
        config = Config.load(temp_config_file)

        assert config.system.name == "test_dragonbreath"
        assert config.audio.extraction == "rms"
        assert config.audio.highpass_enabled is True
        assert config.detection.min_breath_duration == 0.8
        assert config.source_path == temp_config_file

    def test_env_override_wins_over_file(self, temp_config_file):
        """Environment overrides beat file values."""
        with patch.dict(os.environ, {"DRAGONBREATH_DETECTION_MIN_BREATH_DURATION": "1.5"}):
            config = Config.load(temp_config_file)

        assert config.detection.min_breath_duration == 1.5

    def test_invalid_file_raises(self, tmp_path):
        """Validation errors surface on load."""
        path = tmp_path / "bad.yaml"
        path.write_text("detection:\n  start_margin: -1\n")

        with pytest.raises(ValidationError):
            Config.load(path)

    def test_load_from_dict(self):
        config = Config.from_dict({"calibration": {"total_ticks": 5}})

        assert config.calibration.total_ticks == 5
        assert config.calibration.tick_interval_ms == 100

    def test_default_config(self):
        """Default config validates with no input."""
        config = Config.default()

        assert config.validate() == []
        assert config.source_path is None
        assert config.feedback.provider == "template"

    def test_validate_high_band_above_nyquist(self):
        """A high band the sample rate cannot reach is reported."""
        config = Config.from_dict({"audio": {"sample_rate": 8000, "high_band_min_hz": 5000}})

        warnings = config.validate()

        assert len(warnings) == 1
        assert "high_band_min_hz" in warnings[0]

    def test_validate_rms_without_highpass(self):
        """RMS extraction needs the high-pass stage."""
        config = Config.from_dict({"audio": {"extraction": "rms"}})

        assert any("highpass_enabled" in w for w in config.validate())

        filtered = Config.from_dict({"audio": {"extraction": "rms", "highpass_enabled": True}})
        assert filtered.validate() == []

    def test_validate_highpass_cutoff_above_nyquist(self):
        config = Config.from_dict({
            "audio": {"sample_rate": 16000, "highpass_enabled": True, "highpass_cutoff_hz": 9000},
        })

        assert any("highpass_cutoff_hz" in w for w in config.validate())

    def test_validate_gemini_without_key(self):
        """Selecting Gemini without a key is reported."""
        config = Config.from_dict({"feedback": {"provider": "gemini"}})

        assert any("API key" in w for w in config.validate())

        keyed = Config.from_dict({"feedback": {"provider": "gemini", "api_key": "k"}})
        assert keyed.validate() == []

    def test_get_dot_notation(self, temp_config_file):
        """Dot-notation access reaches file values and defaults."""
        config = Config.load(temp_config_file)

        assert config.get("system.name") == "test_dragonbreath"
        assert config.get("detection.min_breath_duration") == 0.8
        assert config.get("detection.intensity_gain") == 2.5
        assert config.get("detection.missing", "fallback") == "fallback"
        assert config.get("nothing.here") is None

    def test_to_dict(self):
        """to_dict returns a copy of the raw data."""
        data = {"system": {"name": "copy"}}
        config = Config.from_dict(data)

        result = config.to_dict()
        result["system"] = {}

        assert config.to_dict()["system"]["name"] == "copy"

    def test_shipped_default_yaml(self):
        """The bundled config file loads and validates."""
        path = Path(__file__).resolve().parents[2] / "config" / "default.yaml"

        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop("GEMINI_API_KEY", None)
            os.environ.pop("DRAGONBREATH_FEEDBACK_PROVIDER", None)
            config = Config.load(path)

        assert config.feedback.provider == "template"
        assert config.feedback.api_key == ""
        assert config.calibration.min_noise_floor == 0.02
