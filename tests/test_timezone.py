"""
Tests for local date/time resolution.
"""

from datetime import date, datetime, timezone

from crm_reminders.utils.timezone import (
    format_date_label,
    local_date,
    local_date_time,
    local_time,
    resolve_zone,
    time_to_minutes,
    zoned_parts,
)


class TestResolveZone:
    def test_known_zone_is_kept(self):
        assert resolve_zone("America/New_York") == "America/New_York"

    def test_blank_or_missing_zone_uses_default(self):
        assert resolve_zone(None) == "Africa/Harare"
        assert resolve_zone("   ") == "Africa/Harare"

    def test_unknown_zone_uses_default(self):
        assert resolve_zone("Mars/Olympus_Mons") == "Africa/Harare"
        assert resolve_zone("Not/A/Zone", default="UTC") == "UTC"


class TestZonedParts:
    def test_harare_is_two_hours_ahead_of_utc(self):
        parts = zoned_parts(datetime(2026, 2, 5, 6, 56, tzinfo=timezone.utc), "Africa/Harare")

        assert parts.date == date(2026, 2, 5)
        assert parts.time_string == "08:56"
        assert parts.minutes == 8 * 60 + 56

    def test_naive_instant_is_treated_as_utc(self):
        assert local_time(datetime(2026, 2, 5, 6, 56), "Africa/Harare") == "08:56"

    def test_local_date_can_differ_from_utc_date(self):
        instant = datetime(2026, 2, 5, 23, 30, tzinfo=timezone.utc)

        assert local_date(instant, "Africa/Harare") == "2026-02-06"
        assert local_date(instant, "America/Los_Angeles") == "2026-02-05"

    def test_invalid_zone_falls_back_instead_of_raising(self):
        instant = datetime(2026, 2, 5, 6, 56, tzinfo=timezone.utc)

        assert local_date_time(instant, "garbage") == ("2026-02-05", "08:56")


class TestTimeToMinutes:
    def test_parses_hours_and_minutes(self):
        assert time_to_minutes("09:00") == 540
        assert time_to_minutes("0:10") == 10

    def test_seconds_are_ignored(self):
        assert time_to_minutes("23:59:59") == 23 * 60 + 59

    def test_malformed_values_return_none(self):
        for value in ["", "9", "24:00", "12:60", "noon", None, 900]:
            assert time_to_minutes(value) is None


def test_format_date_label():
    assert format_date_label(date(2026, 2, 5)) == "Thu, Feb 5, 2026"
    assert format_date_label("2026-02-05") == "Thu, Feb 5, 2026"
    assert format_date_label("not-a-date") == "not-a-date"
