# app/core.py

import calendar
from datetime import datetime, timedelta, date, time, timezone
from typing import Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from app.schemas import RecurrenceRule, RepetitionType, ServiceRef, WorkDay

MAX_OCCURRENCES = 52


def total_duration(services: Sequence[ServiceRef]) -> int:
    """Minutes the services occupy back to back, buffers included."""
    return sum(s.duration_minutes + s.buffer_after_minutes for s in services)


def compute_end(start_at: Optional[datetime], services: Sequence[ServiceRef]) -> Optional[datetime]:
    if start_at is None:
        return None
    return start_at + timedelta(minutes=total_duration(services))


def overlaps(start_a, end_a, start_b, end_b) -> bool:
    # half-open [start, end); empty intervals never overlap
    if start_a >= end_a or start_b >= end_b:
        return False
    return start_a < end_b and start_b < end_a


def has_conflict(start: datetime, end: datetime, existing: Iterable) -> bool:
    """
    True if any item of ``existing`` overlaps ``[start, end)``.

    Items are anything with ``start_at``/``end_at``; walk-ins (either one
    missing) never occupy grid time and are skipped.
    """
    for item in existing:
        if item.start_at is None or item.end_at is None:
            continue
        if overlaps(start, end, item.start_at, item.end_at):
            return True
    return False


def local_day(instant: datetime, tz: ZoneInfo) -> date:
    return instant.astimezone(tz).date()


def day_bounds(day: date, tz: ZoneInfo):
    start = datetime.combine(day, time.min, tzinfo=tz)
    return start, start + timedelta(days=1)


def generate_time_slots(day: date, tz: ZoneInfo, start_hour: int = 8, end_hour: int = 18,
                        interval_minutes: int = 30) -> List[datetime]:
    start = datetime.combine(day, time(hour=start_hour), tzinfo=tz)
    end = datetime.combine(day, time.min, tzinfo=tz) + timedelta(hours=end_hour)
    return slots_between(start, end, interval_minutes)


def slots_between(start: datetime, end: datetime, interval_minutes: int = 30) -> List[datetime]:
    slots = []
    current = start
    step = timedelta(minutes=interval_minutes)
    while current < end:
        slots.append(current)
        current += step
    return slots


def weekday_number(day: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (day.weekday() + 1) % 7


def work_day_for(day: date, week: Iterable[WorkDay]) -> WorkDay:
    number = weekday_number(day)
    for work_day in week:
        if work_day.day_of_week == number:
            return work_day
    return WorkDay(day_of_week=number, is_working=False)


def working_window(day: date, tz: ZoneInfo, work_day: WorkDay) -> Optional[Tuple[datetime, datetime]]:
    if not work_day.is_working:
        return None
    return (
        datetime.combine(day, work_day.start_time, tzinfo=tz),
        datetime.combine(day, work_day.end_time, tzinfo=tz),
    )


def blocked_windows(day: date, tz: ZoneInfo, work_day: WorkDay,
                    absences: Iterable = ()) -> List[Tuple[datetime, datetime]]:
    """
    Time on ``day`` a professional cannot be booked for even when free:
    the break of ``work_day`` and every absence, clipped to the day.
    """
    blocked = []
    if work_day.break_start is not None:
        blocked.append((
            datetime.combine(day, work_day.break_start, tzinfo=tz),
            datetime.combine(day, work_day.break_end, tzinfo=tz),
        ))
    day_start, day_end = day_bounds(day, tz)
    for absence in absences:
        if overlaps(absence.start_at, absence.end_at, day_start, day_end):
            blocked.append((max(absence.start_at, day_start), min(absence.end_at, day_end)))
    return sorted(blocked)


def drop_target_start(day: date, time_slot: str, tz: ZoneInfo) -> datetime:
    """Start instant for a drop on the ``time_slot`` ("HH:MM") row of ``day``."""
    slot = time.fromisoformat(time_slot)
    return datetime.combine(day, slot.replace(second=0, microsecond=0), tzinfo=tz)


def is_late_cancellation(start_at: datetime, cancel_time: datetime, limit_minutes: int) -> bool:
    minutes_before = (start_at - cancel_time).total_seconds() / 60
    return minutes_before < limit_minutes


def suggest_next_visit(last_visit: datetime, interval_days: int = 30) -> datetime:
    return last_visit + timedelta(days=interval_days)


def _add_months(moment: datetime, months: int, anchor_day: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(anchor_day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def expand_recurrence(start_at: datetime, rule: RecurrenceRule) -> List[datetime]:
    """
    Start instants of a repeating series, the first occurrence included.

    The series stops after ``rule.count`` occurrences or on ``rule.end_date``
    (inclusive, compared in the start's own timezone), whichever is set, and
    never exceeds MAX_OCCURRENCES.
    """
    if rule.count is None and rule.end_date is None:
        raise ValueError("a recurrence needs either a count or an end date")

    limit = min(rule.count or MAX_OCCURRENCES, MAX_OCCURRENCES)
    occurrences = []
    current = start_at
    step = 0
    while len(occurrences) < limit:
        if rule.end_date is not None and current.date() > rule.end_date:
            break
        occurrences.append(current)
        step += 1
        if rule.type == RepetitionType.weekly:
            current = start_at + timedelta(weeks=step)
        elif rule.type == RepetitionType.biweekly:
            current = start_at + timedelta(weeks=2 * step)
        else:
            current = _add_months(start_at, step, start_at.day)
    return occurrences


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
