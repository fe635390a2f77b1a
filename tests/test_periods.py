"""
Unit tests for period windows, granularity and comparison windows.
"""

from datetime import date, datetime

import pytest

from usage_lens.core.periods import (
    DateWindow,
    Granularity,
    Period,
    bucket_label,
    comparison_slots,
    comparison_window,
    parse_period,
    period_window,
    select_granularity,
    week_start,
)

# A Wednesday
TODAY = date(2024, 3, 13)


class TestParsePeriod:
    """Test period name normalisation."""

    def test_known_names(self):
        """Verify names are case-insensitive."""
        assert parse_period("Week") is Period.WEEK
        assert parse_period(Period.ALL) is Period.ALL

    def test_unknown_name(self):
        """Verify unknown names list the valid ones."""
        with pytest.raises(ValueError, match="expected one of"):
            parse_period("fortnight")


class TestGranularity:
    """Test granularity selection."""

    @pytest.mark.parametrize("period, expected", [
        ("today", Granularity.HOURLY),
        ("week", Granularity.DAILY),
        ("month", Granularity.DAILY),
        ("year", Granularity.MONTHLY),
    ])
    def test_fixed_periods(self, period, expected):
        """Verify the fixed mapping for bounded periods."""
        assert select_granularity(period, 10_000) is expected

    def test_all_boundary(self):
        """Verify 365 distinct days stay daily and 366 switch to monthly."""
        assert select_granularity("all", 365) is Granularity.DAILY
        assert select_granularity("all", 366) is Granularity.MONTHLY

    def test_all_without_data(self):
        """Verify an empty history is daily."""
        assert select_granularity("all", 0) is Granularity.DAILY


class TestPeriodWindow:
    """Test current-period windows."""

    def test_week_starts_on_sunday(self):
        """Verify week windows begin on the preceding Sunday."""
        assert week_start(TODAY) == date(2024, 3, 10)
        assert week_start(date(2024, 3, 10)) == date(2024, 3, 10)
        window = period_window("week", TODAY)
        assert (window.start, window.end) == (date(2024, 3, 10), date(2024, 3, 14))

    def test_today_month_year(self):
        """Verify windows end tomorrow, exclusive."""
        assert period_window("today", TODAY) == DateWindow(TODAY, date(2024, 3, 14), "today")
        assert period_window("month", TODAY).start == date(2024, 3, 1)
        assert period_window("year", datetime(2024, 3, 13, 9)).start == date(2024, 1, 1)

    def test_all_has_no_window(self):
        """Verify all is unbounded."""
        assert period_window("all", TODAY) is None

    def test_window_contains(self):
        """Verify start inclusive, end exclusive."""
        window = DateWindow(date(2024, 1, 1), date(2024, 1, 3), "x")
        assert window.contains(date(2024, 1, 1))
        assert not window.contains(date(2024, 1, 3))

    def test_inverted_window_rejected(self):
        """Verify start after end raises."""
        with pytest.raises(ValueError):
            DateWindow(date(2024, 1, 3), date(2024, 1, 1), "x")


class TestComparisonWindow:
    """Test preceding-period windows."""

    def test_today_compares_with_yesterday(self):
        """Verify yesterday 00:00-24:00."""
        window = comparison_window("today", TODAY)
        assert (window.start, window.end, window.label) == (date(2024, 3, 12), TODAY, "yesterday")

    def test_week_compares_with_previous_sunday_week(self):
        """Verify the previous Sunday to Saturday week."""
        window = comparison_window("week", TODAY)
        assert (window.start, window.end) == (date(2024, 3, 3), date(2024, 3, 10))
        assert window.label == "last week"

    def test_month_compares_with_previous_month(self):
        """Verify month windows across a year boundary."""
        window = comparison_window("month", date(2024, 1, 15))
        assert (window.start, window.end) == (date(2023, 12, 1), date(2024, 1, 1))

    @pytest.mark.parametrize("period", ["year", "all"])
    def test_year_and_all_compare_with_last_year(self, period):
        """Verify the previous calendar year."""
        window = comparison_window(period, TODAY)
        assert (window.start, window.end, window.label) == (date(2023, 1, 1), date(2024, 1, 1), "last year")

    def test_unknown_period_has_no_comparison(self):
        """Verify None rather than an error or an empty range."""
        assert comparison_window("fortnight", TODAY) is None


class TestComparisonSlots:
    """Test slot alignment for comparison series."""

    def test_hourly(self):
        """Verify 24 hour slots."""
        labels, slot = comparison_slots(Granularity.HOURLY, "today")
        assert len(labels) == 24
        assert slot(TODAY, 13) == 13

    def test_week_by_weekday(self):
        """Verify weekday slots starting Sunday."""
        labels, slot = comparison_slots(Granularity.DAILY, "week")
        assert labels[0] == "Sun"
        assert slot(date(2024, 3, 10), 0) == 0
        assert slot(TODAY, 0) == 3

    def test_month_by_day_of_month(self):
        """Verify 31 day-of-month slots."""
        labels, slot = comparison_slots(Granularity.DAILY, "month")
        assert len(labels) == 31
        assert slot(date(2024, 2, 29), 0) == 28

    def test_monthly(self):
        """Verify 12 month slots."""
        labels, slot = comparison_slots(Granularity.MONTHLY, "year")
        assert len(labels) == 12
        assert slot(date(2024, 12, 1), 0) == 11

    def test_bucket_labels(self):
        """Verify display labels per granularity."""
        assert bucket_label(Granularity.HOURLY, 7) == "7:00"
        assert bucket_label(Granularity.MONTHLY, "2024-03") == "2024/03"
        assert bucket_label(Granularity.DAILY, "2024-03-13") == "2024-03-13"
