"""
Unit tests for timezone resolution.
"""

from datetime import date, datetime, timedelta, timezone

import pytest

from usage_lens.core.timezone import TimezoneResolver, load_zone


class TestTimezoneResolver:
    """Test date-key and hour resolution."""

    def test_utc_zone(self):
        """Verify UTC keeps the instant's own date and hour."""
        resolver = TimezoneResolver("UTC")
        assert resolver.local_date_key("2024-01-01T23:00:00Z") == "2024-01-01"
        assert resolver.local_hour("2024-01-01T23:00:00Z") == 23

    def test_positive_offset_crosses_midnight(self):
        """Verify a zone ahead of UTC moves late entries to the next day."""
        resolver = TimezoneResolver("Asia/Tokyo")
        assert resolver.local_date_key("2024-01-01T23:00:00Z") == "2024-01-02"
        assert resolver.local_hour("2024-01-01T23:00:00Z") == 8

    def test_accepts_datetimes(self):
        """Verify aware and naive datetimes are accepted; naive is UTC."""
        resolver = TimezoneResolver("America/New_York")
        aware = datetime(2024, 7, 1, 3, 0, tzinfo=timezone.utc)
        naive = datetime(2024, 7, 1, 3, 0)
        assert resolver.local_date(aware) == date(2024, 6, 30)
        assert resolver.local_hour(naive) == 23

    def test_same_local_day_across_dst_transition(self):
        """Verify every instant of a DST day maps to one key."""
        resolver = TimezoneResolver("America/New_York")
        # 2024-03-10 is 23 hours long in New York
        start = datetime(2024, 3, 10, 5, 0, tzinfo=timezone.utc)
        keys = {resolver.local_date_key(start + timedelta(minutes=30 * i)) for i in range(46)}
        assert keys == {"2024-03-10"}
        assert resolver.local_date_key(start + timedelta(hours=23)) == "2024-03-11"

    def test_keys_are_zero_padded(self):
        """Verify month and day are always two digits."""
        resolver = TimezoneResolver("UTC")
        assert resolver.local_date_key("2024-02-03T04:05:06Z") == "2024-02-03"

    def test_system_zone_by_default(self):
        """Verify no zone means the system zone, without fallback."""
        resolver = TimezoneResolver()
        ts = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
        assert resolver.local_datetime(ts) == ts.astimezone().replace(tzinfo=None)
        assert resolver.fallback_count == 0
        assert not resolver.is_fallback


class TestTimezoneFallback:
    """Test the flagged fallback on conversion failures."""

    def test_invalid_zone_falls_back_to_utc_wall_clock(self, caplog):
        """Verify an unknown zone is logged and counted."""
        with caplog.at_level("WARNING", logger="usage_lens.core.timezone"):
            resolver = TimezoneResolver("Mars/Olympus_Mons")
            key = resolver.local_date_key("2024-01-01T23:00:00Z")

        assert resolver.is_fallback
        assert key == "2024-01-01"
        assert resolver.fallback_count == 1
        assert any("timezone fallback" in r.getMessage() for r in caplog.records)

    def test_unparseable_timestamp_read_as_local(self):
        """Verify a leading date and hour are used when parsing fails."""
        resolver = TimezoneResolver("Asia/Tokyo")
        assert resolver.local_date_key("2024-01-05 07h garbage") == "2024-01-05"
        assert resolver.local_hour("2024-01-05 07h garbage") == 7
        assert resolver.fallback_count == 2

    def test_unusable_value_is_none(self):
        """Verify values without any date are dropped."""
        resolver = TimezoneResolver("UTC")
        assert resolver.local_date_key("garbage") is None
        assert resolver.local_hour(None) is None
        assert resolver.fallback_count == 0

    def test_load_zone(self):
        """Verify zone loading returns None for unknown names."""
        assert load_zone(None) is None
        assert load_zone("UTC") is not None
        assert load_zone("Not/AZone") is None

    def test_fork_has_its_own_counter(self):
        """Verify a forked resolver keeps the zone but counts separately."""
        resolver = TimezoneResolver("Mars/Olympus_Mons")
        forked = resolver.fork()
        forked.local_date_key("2024-01-01T23:00:00Z")

        assert forked.is_fallback
        assert forked.fallback_count == 1
        assert resolver.fallback_count == 0
