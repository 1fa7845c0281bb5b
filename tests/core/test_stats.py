"""Tests for session statistics aggregation."""

import pytest

from dragonbreath.core.stats import SessionAggregator, SessionStats
from dragonbreath.detectors.audio.detector import CompletedBreath


class TestSessionStats:
    """Tests for the stats snapshot."""

    def test_defaults(self):
        """A fresh session has no breaths."""
        stats = SessionStats()

        assert stats.total_breaths == 0
        assert stats.max_duration == 0.0
        assert stats.total_duration == 0.0
        assert stats.avg_intensity == 0.0
        assert stats.avg_duration == 0.0

    def test_to_dict(self):
        stats = SessionStats(total_breaths=2, max_duration=3.0, total_duration=5.0, avg_intensity=0.5)

        assert stats.to_dict() == {
            "total_breaths": 2,
            "max_duration": 3.0,
            "total_duration": 5.0,
            "avg_intensity": 0.5,
        }
        assert stats.avg_duration == 2.5


class TestSessionAggregator:
    """Tests for the running aggregation."""

    def test_running_average(self):
        """Intensities 0.2, 0.8, 0.5 average to 0.5."""
        aggregator = SessionAggregator()

        for intensity in (0.2, 0.8, 0.5):
            aggregator.record_breath(1.0, intensity)

        assert aggregator.stats.total_breaths == 3
        assert aggregator.stats.avg_intensity == pytest.approx(0.5)

    def test_first_breath_sets_average(self):
        """The first breath's intensity is the average."""
        aggregator = SessionAggregator()

        stats = aggregator.record_breath(0.8, 0.35)

        assert stats.avg_intensity == pytest.approx(0.35)

    def test_max_and_total_duration(self):
        """Max tracks the longest breath, total sums them."""
        aggregator = SessionAggregator()

        for duration in (1.0, 4.5, 2.0):
            aggregator.record_breath(duration, 0.5)

        assert aggregator.stats.max_duration == 4.5
        assert aggregator.stats.total_duration == pytest.approx(7.5)

    def test_fields_never_decrease(self):
        """Counts, max and total only ever grow."""
        aggregator = SessionAggregator()
        previous = aggregator.stats

        for duration in (3.0, 0.6, 5.0, 1.2, 0.5):
            current = aggregator.record_breath(duration, 0.4)
            assert current.total_breaths == previous.total_breaths + 1
            assert current.max_duration >= previous.max_duration
            assert current.total_duration >= previous.total_duration
            previous = current

    def test_short_breath_ignored(self):
        """Breaths under the minimum leave stats unchanged."""
        aggregator = SessionAggregator()
        aggregator.record_breath(1.0, 0.6)
        before = aggregator.stats

        after = aggregator.record_breath(0.3, 1.0)

        assert after is before
        assert aggregator.stats.total_breaths == 1

    def test_boundary_duration_counts(self):
        """A breath of exactly the minimum counts, despite float error."""
        aggregator = SessionAggregator()

        aggregator.record_breath(0.7 - 0.2, 0.5)

        assert aggregator.stats.total_breaths == 1

    def test_intensity_clamped(self):
        """Out-of-range intensities are clamped before averaging."""
        aggregator = SessionAggregator()

        aggregator.record_breath(1.0, 1.7)
        aggregator.record_breath(1.0, -0.5)

        assert aggregator.stats.avg_intensity == pytest.approx(0.5)

    def test_record_completed_breath(self):
        """Detector events fold in like raw values."""
        aggregator = SessionAggregator()
        breath = CompletedBreath(duration=2.0, intensity=0.4, started_at=1.0, ended_at=3.0)

        stats = aggregator.record(breath)

        assert stats.total_breaths == 1
        assert stats.max_duration == 2.0

    def test_reset(self):
        """Reset returns to empty stats."""
        aggregator = SessionAggregator()
        aggregator.record_breath(2.0, 0.5)

        aggregator.reset()

        assert aggregator.stats == SessionStats()
