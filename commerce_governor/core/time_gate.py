"""
Time gate: quiet hours and business hours.
Two separate evaluators. Quiet hours suppress the AI responder inside the orchestration engine;
business hours decide whether the business is open and are consulted by message ingress.
"""

from datetime import datetime, time
from typing import List, Optional

import pytz

from .schema import WEEKDAYS, BusinessHoursConfig, QuietHoursPeriod
from ..util.logging import logger


def _parse_hhmm(value: str) -> time:
    hours, minutes = value.strip().split(":")[:2]
    return time(int(hours), int(minutes))


def _local_now(tz_name: str, now: Optional[datetime]) -> datetime:
    try:
        tz = pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        logger.warning(f"Unknown timezone '{tz_name}', falling back to UTC")
        tz = pytz.UTC
    if now is None:
        return datetime.now(tz)
    if now.tzinfo is None:
        now = pytz.UTC.localize(now)
    return now.astimezone(tz)


def period_is_active(period: QuietHoursPeriod, now: Optional[datetime] = None) -> bool:
    """True if `now` falls inside the period, both ends inclusive.

    Windows with start > end run overnight. The day tested is the current local day.
    """
    if not period.enabled:
        return False

    local = _local_now(period.timezone, now)
    if period.days and WEEKDAYS[local.weekday()] not in period.days:
        return False

    try:
        start, end = _parse_hhmm(period.start), _parse_hhmm(period.end)
    except ValueError:
        logger.warning(f"Ignoring quiet hours period with malformed times: {period.start}-{period.end}")
        return False

    current = time(local.hour, local.minute)
    if start <= end:
        return start <= current <= end
    return current >= start or current <= end


def in_quiet_hours(periods: List[QuietHoursPeriod], now: Optional[datetime] = None) -> bool:
    """True if any enabled period is active."""
    return any(period_is_active(p, now) for p in periods)


def is_business_open(config: Optional[BusinessHoursConfig], now: Optional[datetime] = None) -> bool:
    """Whether the business is open at `now`. A missing or disabled config is always open."""
    if config is None or not config.enabled:
        return True

    local = _local_now(config.timezone, now)
    if local.strftime("%Y-%m-%d") in config.holidays:
        return False

    today = config.day(WEEKDAYS[local.weekday()])
    if today is None or not today.enabled:
        return False

    try:
        start, end = _parse_hhmm(today.start), _parse_hhmm(today.end)
    except ValueError:
        logger.warning(f"Malformed business hours for {today.day}: {today.start}-{today.end}")
        return False

    current = time(local.hour, local.minute)
    return start <= current < end


def business_hours_status(config: Optional[BusinessHoursConfig], now: Optional[datetime] = None) -> dict:
    """Open/closed status as exposed to ingress and operators."""
    is_open = is_business_open(config, now)
    tz_name = config.timezone if config else "UTC"
    return {
        "is_open": is_open,
        "enabled": bool(config and config.enabled),
        "out_of_hours_behavior": config.out_of_hours_behavior if config else "queue",
        "timezone": tz_name,
        "local_time": _local_now(tz_name, now).strftime("%Y-%m-%d %H:%M"),
    }
