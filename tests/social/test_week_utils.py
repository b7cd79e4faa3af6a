"""Week boundary tests for stats windows."""

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from showcase.social.week_utils import get_monday, get_week_start, localize, start_of_day


class TestGetMonday:
    """Test Monday calculation."""

    def test_monday_returns_itself(self):
        assert get_monday(date(2024, 1, 15)) == date(2024, 1, 15)

    def test_wednesday_goes_back_two_days(self):
        assert get_monday(datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)) == date(2024, 1, 15)

    def test_sunday_belongs_to_preceding_monday(self):
        """Sunday 23:59:59 is the last second of the ISO week."""
        assert get_monday(datetime(2024, 1, 21, 23, 59, 59, tzinfo=timezone.utc)) == date(2024, 1, 15)

    def test_year_boundary(self):
        assert get_monday(date(2025, 1, 1)) == date(2024, 12, 30)


class TestWindows:

    def test_week_start_is_monday_midnight(self):
        now = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)
        assert get_week_start(now) == datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)

    def test_start_of_day_keeps_timezone(self):
        tz = ZoneInfo("Europe/Berlin")
        now = datetime(2024, 1, 17, 0, 30, tzinfo=tz)
        start = start_of_day(now)
        assert start == datetime(2024, 1, 17, 0, 0, tzinfo=tz)
        assert start.tzinfo is tz

    def test_localize_naive_uses_default_zone(self):
        local = localize(datetime(2024, 1, 17, 12, 0), "Asia/Tokyo")
        assert local.utcoffset().total_seconds() == 9 * 3600

    def test_localize_keeps_aware_values(self):
        aware = datetime(2024, 1, 17, 12, 0, tzinfo=timezone.utc)
        assert localize(aware, "Asia/Tokyo") is aware
