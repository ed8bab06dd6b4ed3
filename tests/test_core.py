from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo

import pytest

from app.core import (
    blocked_windows,
    compute_end,
    day_bounds,
    drop_target_start,
    expand_recurrence,
    generate_time_slots,
    has_conflict,
    is_late_cancellation,
    local_day,
    overlaps,
    suggest_next_visit,
    total_duration,
    weekday_number,
    work_day_for,
    working_window,
)
from app.schemas import Absence, AbsenceKind, Appointment, RecurrenceRule, RepetitionType, WorkDay

from conftest import at, service

SAO_PAULO = ZoneInfo("America/Sao_Paulo")


def test_end_time_adds_durations_and_buffers():
    start = datetime(2024, 3, 15, 9, 0, tzinfo=timezone.utc)
    services = [service(30), service(15, buffer=5)]

    assert total_duration(services) == 50
    assert compute_end(start, services) == datetime(2024, 3, 15, 9, 50, tzinfo=timezone.utc)


def test_walk_in_has_no_end():
    assert compute_end(None, [service(30)]) is None


def test_overlap_is_half_open():
    assert overlaps(at(10), at(11), at(10, 30), at(11, 30))
    assert not overlaps(at(10), at(11), at(11), at(12))
    assert not overlaps(at(11), at(12), at(10), at(11))


def test_empty_interval_never_overlaps():
    assert not overlaps(at(10, 30), at(10, 30), at(10), at(11))


def test_has_conflict_skips_walk_ins():
    walk_in = Appointment(company_id="c", professional_id="ana")
    booked = Appointment(company_id="c", professional_id="ana", start_at=at(10), end_at=at(10, 30))

    assert not has_conflict(at(10), at(11), [walk_in])
    assert has_conflict(at(10), at(11), [walk_in, booked])


def test_local_day_uses_salon_timezone():
    # 01:00 UTC is still the previous evening in Sao Paulo
    assert local_day(datetime(2024, 6, 4, 1, 0, tzinfo=timezone.utc), SAO_PAULO) == date(2024, 6, 3)


def test_day_bounds_cover_one_local_day():
    start, end = day_bounds(date(2024, 6, 3), SAO_PAULO)

    assert start.utcoffset() == timedelta(hours=-3)
    assert end - start == timedelta(days=1)


def test_time_slots_fill_the_working_day():
    slots = generate_time_slots(date(2024, 6, 3), SAO_PAULO, 8, 18, 30)

    assert len(slots) == 20
    assert slots[0].hour == 8 and slots[0].minute == 0
    assert slots[-1].hour == 17 and slots[-1].minute == 30


def test_drop_target_start_is_local_time():
    start = drop_target_start(date(2024, 6, 3), "14:30", SAO_PAULO)

    assert start.astimezone(timezone.utc) == datetime(2024, 6, 3, 17, 30, tzinfo=timezone.utc)


def test_late_cancellation_inside_limit():
    assert is_late_cancellation(at(10), at(9), 120)
    assert not is_late_cancellation(at(10), at(7), 120)


def test_next_visit_suggestion():
    assert suggest_next_visit(at(10), 30) == at(10) + timedelta(days=30)


def test_weekly_recurrence_with_count():
    starts = expand_recurrence(at(10), RecurrenceRule(type=RepetitionType.weekly, count=3))

    assert starts == [at(10), at(10, day=10), at(10, day=17)]


def test_biweekly_recurrence_until_end_date():
    rule = RecurrenceRule(type=RepetitionType.biweekly, end_date=date(2024, 7, 1))

    assert expand_recurrence(at(10), rule) == [at(10), at(10, day=17), datetime(2024, 7, 1, 10, tzinfo=timezone.utc)]


def test_monthly_recurrence_clamps_to_month_end():
    start = datetime(2024, 1, 31, 10, tzinfo=timezone.utc)
    starts = expand_recurrence(start, RecurrenceRule(type=RepetitionType.monthly, count=3))

    assert [s.date() for s in starts] == [date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)]


def test_recurrence_needs_a_stop_condition():
    with pytest.raises(ValueError):
        expand_recurrence(at(10), RecurrenceRule(type=RepetitionType.weekly))


def test_weekdays_count_from_sunday():
    assert weekday_number(date(2024, 6, 2)) == 0
    assert weekday_number(date(2024, 6, 3)) == 1
    assert weekday_number(date(2024, 6, 8)) == 6


def test_missing_weekday_is_a_day_off():
    week = [WorkDay(day_of_week=1, start_time="09:00", end_time="17:00")]

    assert work_day_for(date(2024, 6, 3), week).start_time.hour == 9
    assert working_window(date(2024, 6, 4), SAO_PAULO, work_day_for(date(2024, 6, 4), week)) is None


def test_working_window_uses_local_hours():
    work_day = WorkDay(day_of_week=1, start_time="09:00", end_time="17:30")

    start, end = working_window(date(2024, 6, 3), SAO_PAULO, work_day)

    assert start == datetime(2024, 6, 3, 12, 0, tzinfo=timezone.utc)
    assert end == datetime(2024, 6, 3, 20, 30, tzinfo=timezone.utc)


def test_blocked_windows_clip_absences_to_the_day():
    work_day = WorkDay(day_of_week=1, start_time="09:00", end_time="18:00",
                       break_start="12:00", break_end="13:00")
    vacation = Absence(
        company_id="salon-1",
        professional_id="ana",
        kind=AbsenceKind.vacation,
        start_at=datetime(2024, 6, 3, 18, 0, tzinfo=timezone.utc),
        end_at=datetime(2024, 6, 10, 0, 0, tzinfo=timezone.utc),
    )
    elsewhere = vacation.model_copy(update={
        "start_at": datetime(2024, 7, 1, tzinfo=timezone.utc),
        "end_at": datetime(2024, 7, 2, tzinfo=timezone.utc),
    })

    blocked = blocked_windows(date(2024, 6, 3), SAO_PAULO, work_day, [vacation, elsewhere])

    _, day_end = day_bounds(date(2024, 6, 3), SAO_PAULO)
    assert blocked == [
        (datetime(2024, 6, 3, 15, 0, tzinfo=timezone.utc), datetime(2024, 6, 3, 16, 0, tzinfo=timezone.utc)),
        (datetime(2024, 6, 3, 18, 0, tzinfo=timezone.utc), day_end),
    ]


def test_working_day_needs_hours():
    with pytest.raises(ValueError):
        WorkDay(day_of_week=1, start_time="18:00", end_time="09:00")
