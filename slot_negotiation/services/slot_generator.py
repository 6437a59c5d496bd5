"""
Slot Generator: turns calendar busy data into candidate meeting slots.

Pure and synchronous. Invalid constraints yield an empty list instead of
raising, because the output is only a suggestion for a human picking slots.

Day and business-hour arithmetic happens in the wall clock of the
configured zone, not in UTC: 9:00-18:00 means local office hours.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from typing import Iterable

DEFAULT_BUSINESS_HOUR_START = 9
DEFAULT_BUSINESS_HOUR_END = 18
DEFAULT_STEP_MINUTES = 30
DEFAULT_MAX_RESULTS = 100


@dataclass(frozen=True)
class BusyPeriod:
    """A blocked interval from a free/busy lookup. Half-open: [start, end)."""
    start: datetime
    end: datetime

    @classmethod
    def parse(cls, start: str, end: str) -> "BusyPeriod | None":
        """Build from ISO 8601 strings; None when either side is unparsable."""
        try:
            return cls(datetime.fromisoformat(start), datetime.fromisoformat(end))
        except (TypeError, ValueError):
            return None


@dataclass
class SlotGenerationOptions:
    """Constraints for candidate generation.

    ``start_date``/``end_date`` are inclusive calendar days and may be given
    as ``date`` objects or ``YYYY-MM-DD`` strings.
    """
    start_date: date | str
    end_date: date | str
    duration_minutes: int
    business_hour_start: int = DEFAULT_BUSINESS_HOUR_START
    business_hour_end: int = DEFAULT_BUSINESS_HOUR_END
    step_minutes: int = DEFAULT_STEP_MINUTES
    max_results: int = DEFAULT_MAX_RESULTS
    tz: tzinfo = field(default=timezone.utc)


@dataclass(frozen=True)
class SlotCandidate:
    """A free window. ``day_of_week`` uses 0=Sunday .. 6=Saturday."""
    start_at: datetime
    end_at: datetime
    day_of_week: int
    date_key: str


def generate_slots(
    busy_periods: Iterable[BusyPeriod],
    options: SlotGenerationOptions,
) -> list[SlotCandidate]:
    """
    Compute free candidate slots on business days.

    - Monday to Friday only
    - Inside [business_hour_start, business_hour_end) local time
    - A candidate is kept only if its whole duration is free
    - Chronological order; stops at ``max_results``
    """
    duration_minutes = options.duration_minutes
    step_minutes = options.step_minutes
    max_results = options.max_results
    hour_start = options.business_hour_start
    hour_end = options.business_hour_end

    if duration_minutes <= 0 or step_minutes <= 0 or max_results <= 0:
        return []
    if hour_start >= hour_end:
        return []
    if not 0 <= hour_start <= 23 or not 1 <= hour_end <= 24:
        return []

    first_day = _parse_day(options.start_date)
    last_day = _parse_day(options.end_date)
    if first_day is None or last_day is None or first_day > last_day:
        return []

    tz = options.tz
    busy = sorted(
        (
            (_to_local(b.start, tz), _to_local(b.end, tz))
            for b in busy_periods
        ),
        key=lambda interval: interval[0],
    )

    duration = timedelta(minutes=duration_minutes)
    step = timedelta(minutes=step_minutes)
    results: list[SlotCandidate] = []

    day = first_day
    while day <= last_day and len(results) < max_results:
        # date.weekday(): Monday=0 .. Sunday=6
        if day.weekday() < 5:
            window_start = datetime.combine(day, time(hour_start), tzinfo=tz)
            window_end = datetime.combine(day, time.min, tzinfo=tz) + timedelta(hours=hour_end)
            day_of_week = (day.weekday() + 1) % 7
            date_key = day.isoformat()

            # Only intervals touching today's window can block a candidate
            day_busy = [
                (start, end) for start, end in busy
                if start < window_end and end > window_start
            ]

            slot_start = window_start
            while slot_start + duration <= window_end and len(results) < max_results:
                slot_end = slot_start + duration
                overlaps = any(
                    start < slot_end and end > slot_start
                    for start, end in day_busy
                )
                if not overlaps:
                    results.append(SlotCandidate(
                        start_at=slot_start,
                        end_at=slot_end,
                        day_of_week=day_of_week,
                        date_key=date_key,
                    ))
                slot_start += step

        day += timedelta(days=1)

    return results


def _parse_day(value: date | str) -> date | None:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        return None


def _to_local(moment: datetime, tz: tzinfo) -> datetime:
    # Naive instants are taken as already being in the business zone
    if moment.tzinfo is None:
        return moment.replace(tzinfo=tz)
    return moment.astimezone(tz)
