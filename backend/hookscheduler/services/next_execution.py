"""Next fire time computation for webhook schedules.

Everything here is pure: the same timing definition and reference time always
produce the same answer. Results are returned as aware UTC datetimes.
"""

import calendar
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from hookscheduler.database.models import models as db_models
from hookscheduler.schemas.scheduler import Frequency, TimingSpec

logger = logging.getLogger(__name__)

# A fire time must lie strictly after now + FORWARD_BUFFER
FORWARD_BUFFER = timedelta(seconds=1)

_FIXED_STEPS = {
    Frequency.SECONDS: timedelta(seconds=1),
    Frequency.MINUTES: timedelta(minutes=1),
    Frequency.HOURS: timedelta(hours=1),
}


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return ``value`` as an aware UTC datetime (naive values are taken as UTC)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the length of the target month."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(value.day, last_day))


def with_day_of_month(value: datetime, day: int) -> datetime:
    """Move ``value`` to ``day`` of its month, clamped to the month's last day."""
    last_day = calendar.monthrange(value.year, value.month)[1]
    return value.replace(day=min(day, last_day))


def sunday_based_weekday(value: datetime) -> int:
    return (value.weekday() + 1) % 7


def timing_from_schedule(db_schedule: db_models.Schedule) -> TimingSpec:
    return TimingSpec(
        frequency=db_schedule.frequency,
        interval=db_schedule.interval or 1,
        schedule_at=ensure_utc(db_schedule.schedule_at),
        use_specific_time=bool(db_schedule.use_specific_time),
        specific_hour=db_schedule.specific_hour,
        specific_minute=db_schedule.specific_minute,
        days_of_week=db_schedule.days_of_week or [],
        day_of_month=db_schedule.day_of_month,
        timezone=db_schedule.timezone or "UTC",
    )


def compute_next_execution(
    timing: TimingSpec,
    now: datetime,
    last_executed: Optional[datetime] = None,
) -> Optional[datetime]:
    """Return the next instant the schedule should fire, or None if it never fires again."""
    now = ensure_utc(now)
    anchor = ensure_utc(timing.schedule_at)

    if timing.frequency == Frequency.ONCE:
        if last_executed is not None:
            return None
        # A one-time schedule that never ran is still due, even if overdue
        return anchor

    if (
        timing.use_specific_time
        and timing.specific_hour is not None
        and timing.specific_minute is not None
    ):
        candidate = _next_at_specific_time(timing, now)
        if candidate is not None:
            return candidate

    return _next_by_interval(timing, anchor, now)


def _next_by_interval(timing: TimingSpec, anchor: datetime, now: datetime) -> datetime:
    threshold = now + FORWARD_BUFFER
    if anchor > threshold:
        return anchor

    frequency = timing.frequency
    interval = timing.interval

    if frequency in _FIXED_STEPS:
        step = _FIXED_STEPS[frequency] * interval
        return anchor + step * ((threshold - anchor) // step + 1)

    tz = ZoneInfo(timing.timezone)
    local_anchor = anchor.astimezone(tz).replace(tzinfo=None)
    local_threshold = threshold.astimezone(tz).replace(tzinfo=None)

    if frequency in (Frequency.DAYS, Frequency.WEEKS):
        step = timedelta(days=interval * (7 if frequency == Frequency.WEEKS else 1))
        estimate = (local_threshold - local_anchor) // step

        def occurrence(k: int) -> datetime:
            return _localize(local_anchor + step * k, tz)
    else:
        months = interval * (12 if frequency == Frequency.YEARS else 1)
        month_diff = (local_threshold.year - local_anchor.year) * 12 + (
            local_threshold.month - local_anchor.month
        )
        estimate = month_diff // months

        def occurrence(k: int) -> datetime:
            return _localize(add_months(local_anchor, months * k), tz)

    # Start just below the estimate, then settle on the first occurrence past the threshold
    k = max(estimate - 1, 0)
    while k > 0 and occurrence(k - 1) > threshold:
        k -= 1
    while occurrence(k) <= threshold:
        k += 1
    return occurrence(k)


def _next_at_specific_time(timing: TimingSpec, now: datetime) -> Optional[datetime]:
    tz = ZoneInfo(timing.timezone)
    threshold = now + FORWARD_BUFFER
    local = (
        threshold.astimezone(tz)
        .replace(tzinfo=None)
        .replace(hour=timing.specific_hour, minute=timing.specific_minute, second=0, microsecond=0)
    )
    interval = timing.interval
    frequency = timing.frequency

    if frequency in (Frequency.HOURS, Frequency.DAYS):
        step = timedelta(hours=interval) if frequency == Frequency.HOURS else timedelta(days=interval)
        while _localize(local, tz) <= threshold:
            local += step
        return _localize(local, tz)

    if frequency == Frequency.WEEKS:
        if timing.days_of_week:
            allowed = set(timing.days_of_week)
            for _ in range(7 * interval + 7):
                if sunday_based_weekday(local) in allowed and _localize(local, tz) > threshold:
                    return _localize(local, tz)
                local += timedelta(days=1)
            logger.warning("No matching weekday found for days %s", sorted(allowed))
            return None
        if _localize(local, tz) <= threshold:
            local += timedelta(days=7 * interval)
        return _localize(local, tz)

    if frequency in (Frequency.MONTHS, Frequency.YEARS) and timing.day_of_month:
        months = interval * (12 if frequency == Frequency.YEARS else 1)
        local = with_day_of_month(local, timing.day_of_month)
        if _localize(local, tz) <= threshold:
            local = with_day_of_month(add_months(local, months), timing.day_of_month)
        return _localize(local, tz)

    return None


def _localize(local: datetime, tz: ZoneInfo) -> datetime:
    return local.replace(tzinfo=tz).astimezone(timezone.utc)
