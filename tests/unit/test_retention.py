"""Unit tests for retention periods and cutoffs."""

from datetime import UTC, datetime, timedelta

import pytest

from chronomem.core.exceptions import InvalidGrainError
from chronomem.core.types import MEMORY_GRAINS, SubscriptionPlan, TemporalGrain
from chronomem.memory.retention import retention_cutoff, retention_periods

NOW = datetime(2024, 8, 31, 12, 0, 0, tzinfo=UTC)


class TestRetentionPeriods:
    """Tests for the plan table."""

    def test_every_memory_grain_has_a_period(self):
        for plan in SubscriptionPlan:
            assert set(retention_periods(plan)) == set(MEMORY_GRAINS)

    def test_docs_has_no_period(self):
        assert TemporalGrain.DOCS not in retention_periods("pro")

    def test_returns_a_copy(self):
        periods = retention_periods("free")
        periods[TemporalGrain.DAILY] = 0
        assert retention_periods("free")[TemporalGrain.DAILY] == 30


class TestRetentionCutoff:
    """Tests for cutoff computation."""

    def test_working_is_hours(self):
        assert retention_cutoff("working", "free", NOW) == NOW - timedelta(hours=24)

    def test_daily_and_weekly(self):
        assert retention_cutoff("daily", "free", NOW) == NOW - timedelta(days=30)
        assert retention_cutoff("weekly", "free", NOW) == NOW - timedelta(weeks=6)

    def test_monthly_uses_calendar_months(self):
        """Test that month arithmetic clamps to the end of a shorter month."""
        assert retention_cutoff("monthly", "free", NOW) == datetime(
            2024, 2, 29, 12, 0, 0, tzinfo=UTC
        )

    def test_quarter_is_three_months(self):
        assert retention_cutoff("quarterly", "free", NOW) == datetime(
            2023, 8, 31, 12, 0, 0, tzinfo=UTC
        )

    def test_yearly(self):
        assert retention_cutoff("yearly", "pro", NOW) == datetime(2016, 8, 31, 12, 0, 0, tzinfo=UTC)

    def test_naive_reference_is_utc(self):
        naive = datetime(2024, 8, 31, 12, 0, 0)
        assert retention_cutoff("daily", "free", naive) == NOW - timedelta(days=30)

    def test_higher_plans_retain_longer(self):
        """Test that cutoffs never move later as the plan grows."""
        for grain in MEMORY_GRAINS:
            free = retention_cutoff(grain, SubscriptionPlan.FREE, NOW)
            starter = retention_cutoff(grain, SubscriptionPlan.STARTER, NOW)
            pro = retention_cutoff(grain, SubscriptionPlan.PRO, NOW)
            assert free >= starter >= pro, grain

    def test_cutoff_is_before_now(self):
        for grain in MEMORY_GRAINS:
            assert retention_cutoff(grain, "free", NOW) < NOW

    def test_docs_rejected(self):
        with pytest.raises(InvalidGrainError):
            retention_cutoff("docs", "free", NOW)

    def test_unknown_grain_rejected(self):
        with pytest.raises(InvalidGrainError):
            retention_cutoff("hourly", "free", NOW)

    def test_unknown_plan_rejected(self):
        with pytest.raises(ValueError):
            retention_cutoff("daily", "enterprise", NOW)
