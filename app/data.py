# app/data.py

from app.config import (
    AGENDA_CLOSE_HOUR,
    AGENDA_OPEN_HOUR,
    AGENDA_SLOT_MINUTES,
)

TERMINAL_STATUSES = {"done", "no_show", "canceled"}

# Any status is reachable from a non-terminal one; terminal statuses are final.
STATUS_TRANSITIONS = {
    "scheduled": {"scheduled", "in_progress", "done", "no_show", "canceled"},
    "in_progress": {"scheduled", "in_progress", "done", "no_show", "canceled"},
    "done": set(),
    "no_show": set(),
    "canceled": set(),
}

PRIORITY_RANK = {
    "urgent": 0,
    "vip": 1,
    "normal": 2,
}

DEFAULT_AGENDA_SETTINGS = {
    "allow_overbooking": False,
    "late_cancel_limit_minutes": 120,
    "suggest_next_visit_days": 30,
}

shop_settings = {
    "open_hour": AGENDA_OPEN_HOUR,
    "close_hour": AGENDA_CLOSE_HOUR,
    "slot_minutes": AGENDA_SLOT_MINUTES,
}

# Week used for a professional until their own is saved: Monday to Friday
# within shop hours, lunch break at noon.
DEFAULT_WORK_WEEK = [
    {
        "day_of_week": day,
        "is_working": 1 <= day <= 5,
        "start_time": f"{shop_settings['open_hour']:02d}:00",
        "end_time": f"{shop_settings['close_hour']:02d}:00",
        "break_start": "12:00",
        "break_end": "13:00",
    }
    for day in range(7)
]
