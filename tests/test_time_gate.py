"""
Time gate tests - quiet hours and business hours are evaluated independently.
"""

from datetime import datetime, timezone

import pytz

from commerce_governor.core.schema import BusinessHoursConfig, DaySchedule, QuietHoursPeriod, default_business_hours
from commerce_governor.core.time_gate import (
    business_hours_status, in_quiet_hours, is_business_open, period_is_active,
)


def utc(year, month, day, hour, minute=0):
    return datetime(year, month, day, hour, minute, tzinfo=timezone.utc)


class TestQuietHours:
    """Quiet hours suppress the AI responder."""

    def test_same_day_window_inclusive(self):
        period = QuietHoursPeriod(start="13:00", end="14:00", timezone="UTC")
        assert period_is_active(period, utc(2024, 5, 6, 13, 0))
        assert period_is_active(period, utc(2024, 5, 6, 14, 0))
        assert not period_is_active(period, utc(2024, 5, 6, 14, 1))

    def test_overnight_window(self):
        period = QuietHoursPeriod(start="22:00", end="07:00", timezone="UTC")
        assert period_is_active(period, utc(2024, 5, 6, 23, 30))
        assert period_is_active(period, utc(2024, 5, 6, 6, 59))
        assert not period_is_active(period, utc(2024, 5, 6, 12, 0))

    def test_timezone_conversion(self):
        # 03:00 UTC is 23:00 the previous evening in New York (EDT)
        period = QuietHoursPeriod(start="22:00", end="23:30", timezone="America/New_York")
        assert period_is_active(period, utc(2024, 5, 7, 3, 0))

    def test_day_filter_uses_local_day(self):
        # Monday 02:00 UTC is Sunday 22:00 in New York
        period = QuietHoursPeriod(start="21:00", end="23:00", timezone="America/New_York", days=["sunday"])
        assert period_is_active(period, utc(2024, 5, 6, 2, 0))
        period.days = ["monday"]
        assert not period_is_active(period, utc(2024, 5, 6, 2, 0))

    def test_disabled_and_malformed_periods(self):
        disabled = QuietHoursPeriod(enabled=False, start="00:00", end="23:59")
        malformed = QuietHoursPeriod(start="late", end="early")
        assert not in_quiet_hours([disabled, malformed], utc(2024, 5, 6, 12, 0))

    def test_any_period_suffices(self):
        periods = [
            QuietHoursPeriod(start="01:00", end="02:00"),
            QuietHoursPeriod(start="11:00", end="13:00"),
        ]
        assert in_quiet_hours(periods, utc(2024, 5, 6, 12, 0))
        assert not in_quiet_hours([], utc(2024, 5, 6, 12, 0))


class TestBusinessHours:
    """Business hours describe when the business itself is open."""

    def test_missing_or_disabled_config_is_open(self):
        assert is_business_open(None)
        assert is_business_open(BusinessHoursConfig(enabled=False), utc(2024, 5, 5, 3, 0))

    def test_default_schedule_weekdays(self):
        config = default_business_hours()
        config.enabled = True
        # Monday 10:00 in New York = 14:00 UTC
        assert is_business_open(config, utc(2024, 5, 6, 14, 0))
        # Monday 17:00 local is closed (end exclusive)
        assert not is_business_open(config, utc(2024, 5, 6, 21, 0))
        # Saturday
        assert not is_business_open(config, utc(2024, 5, 11, 15, 0))

    def test_holiday_closes(self):
        config = BusinessHoursConfig(
            timezone="UTC", enabled=True, holidays=["2024-05-06"],
            schedule=[DaySchedule(day="monday", start="00:00", end="23:59")],
        )
        assert not is_business_open(config, utc(2024, 5, 6, 12, 0))

    def test_status_payload(self):
        config = BusinessHoursConfig(timezone="UTC", enabled=True, out_of_hours_behavior="auto_reply",
                                     schedule=[DaySchedule(day="monday")])
        status = business_hours_status(config, utc(2024, 5, 6, 8, 0))
        assert status == {
            "is_open": False,
            "enabled": True,
            "out_of_hours_behavior": "auto_reply",
            "timezone": "UTC",
            "local_time": "2024-05-06 08:00",
        }

    def test_naive_datetime_treated_as_utc(self):
        config = BusinessHoursConfig(timezone="UTC", enabled=True, schedule=[DaySchedule(day="monday")])
        assert is_business_open(config, datetime(2024, 5, 6, 10, 0))
        assert pytz.UTC.localize(datetime(2024, 5, 6, 10, 0)).weekday() == 0
