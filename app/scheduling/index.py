# app/scheduling/index.py

import bisect
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from app.core import local_day
from app.schemas import Appointment

logger = logging.getLogger(__name__)

BucketKey = Tuple[str, date]


@dataclass(frozen=True)
class Snapshot:
    """What an appointment looked like in the index before a change."""

    appointment_id: str
    previous: Optional[Appointment]          # None: it was not indexed
    walk_in_position: Optional[int] = None


def _sort_key(appointment: Appointment):
    return (appointment.start_at, appointment.id)


class ScheduleIndex:
    """
    Per professional, per local day view of the agenda.

    Scheduled appointments live in buckets keyed by (professional_id, day)
    and sorted by start time; walk-ins live in their own list in arrival
    order. Soft-deleted appointments are never indexed. Every write returns
    a Snapshot that ``restore`` turns back into the exact previous state.
    """

    def __init__(self, tz: ZoneInfo):
        self.tz = tz
        self._by_id: Dict[str, Appointment] = {}
        self._buckets: Dict[BucketKey, List[Appointment]] = {}
        self._walk_ins: List[str] = []
        self._loaded_days = set()

    def __len__(self):
        return len(self._by_id)

    def __contains__(self, appointment_id: str) -> bool:
        return appointment_id in self._by_id

    # --- reads ---

    def get(self, appointment_id: str) -> Optional[Appointment]:
        appointment = self._by_id.get(appointment_id)
        return appointment.model_copy(deep=True) if appointment else None

    def appointments_for(self, professional_id: str, day: date) -> List[Appointment]:
        bucket = self._buckets.get((professional_id, day), [])
        return [a.model_copy(deep=True) for a in bucket]

    def unscheduled(self) -> List[Appointment]:
        return [self._by_id[i].model_copy(deep=True) for i in self._walk_ins]

    def buckets(self, day: Optional[date] = None) -> Dict[BucketKey, List[Appointment]]:
        return {
            key: [a.model_copy(deep=True) for a in bucket]
            for key, bucket in sorted(self._buckets.items())
            if day is None or key[1] == day
        }

    def candidates_near(self, professional_id: str, start: datetime, end: datetime) -> List[Appointment]:
        """
        Everything of ``professional_id`` that could touch ``[start, end)``.

        The previous day is included so appointments running past midnight
        are seen.
        """
        first = local_day(start, self.tz) - timedelta(days=1)
        last = local_day(max(start, end), self.tz)
        found = []
        day = first
        while day <= last:
            found.extend(self._buckets.get((professional_id, day), []))
            day += timedelta(days=1)
        return [a.model_copy(deep=True) for a in found]

    def occupied_windows(self, professional_id: str, day: date) -> List[Tuple[datetime, datetime]]:
        """Merged busy windows, ignoring terminal appointments."""
        windows: List[Tuple[datetime, datetime]] = []
        for appointment in self._buckets.get((professional_id, day), []):
            if appointment.is_terminal or appointment.end_at is None:
                continue
            start, end = appointment.start_at, appointment.end_at
            if windows and start <= windows[-1][1]:
                windows[-1] = (windows[-1][0], max(windows[-1][1], end))
            else:
                windows.append((start, end))
        return windows

    def free_windows(self, professional_id: str, day: date, open_at: datetime, close_at: datetime,
                     blocked: Iterable[Tuple[datetime, datetime]] = ()) -> List[Tuple[datetime, datetime]]:
        """Gaps in ``[open_at, close_at)`` left by appointments and ``blocked`` windows (breaks, absences)."""
        busy = sorted(self.occupied_windows(professional_id, day) + list(blocked))
        free = []
        cursor = open_at
        for start, end in busy:
            if end <= cursor:
                continue
            if start >= close_at:
                break
            if start > cursor:
                free.append((cursor, start))
            cursor = max(cursor, end)
        if cursor < close_at:
            free.append((cursor, close_at))
        return free

    def is_loaded(self, day: date) -> bool:
        return day in self._loaded_days

    # --- writes ---

    def load_day(self, day: date, appointments: Iterable[Appointment]) -> None:
        """Replace whatever the index holds for ``day`` with a fresh load."""
        for key in [k for k in self._buckets if k[1] == day]:
            for appointment in list(self._buckets[key]):
                self._detach(appointment.id)
        count = 0
        for appointment in appointments:
            self.upsert(appointment)
            count += 1
        self._loaded_days.add(day)
        logger.debug(f"Loaded {count} appointments for {day}")

    def upsert(self, appointment: Appointment) -> Snapshot:
        snapshot = self._snapshot(appointment.id)
        self._detach(appointment.id)
        if appointment.deleted_at is None:
            position = snapshot.walk_in_position if appointment.is_walk_in else None
            self._attach(appointment.model_copy(deep=True), position)
        return snapshot

    def remove(self, appointment_id: str) -> Snapshot:
        snapshot = self._snapshot(appointment_id)
        self._detach(appointment_id)
        return snapshot

    def restore(self, snapshot: Snapshot) -> None:
        self._detach(snapshot.appointment_id)
        if snapshot.previous is not None:
            self._attach(snapshot.previous.model_copy(deep=True), snapshot.walk_in_position)

    # --- internals ---

    def _snapshot(self, appointment_id: str) -> Snapshot:
        current = self._by_id.get(appointment_id)
        if current is None:
            return Snapshot(appointment_id, None)
        position = self._walk_ins.index(appointment_id) if current.is_walk_in else None
        return Snapshot(appointment_id, current.model_copy(deep=True), position)

    def _attach(self, appointment: Appointment, walk_in_position: Optional[int] = None) -> None:
        self._by_id[appointment.id] = appointment
        if appointment.is_walk_in:
            if walk_in_position is None or walk_in_position > len(self._walk_ins):
                self._walk_ins.append(appointment.id)
            else:
                self._walk_ins.insert(walk_in_position, appointment.id)
            return

        key = (appointment.professional_id, local_day(appointment.start_at, self.tz))
        bucket = self._buckets.setdefault(key, [])
        keys = [_sort_key(a) for a in bucket]
        bucket.insert(bisect.bisect_right(keys, _sort_key(appointment)), appointment)

    def _detach(self, appointment_id: str) -> None:
        current = self._by_id.pop(appointment_id, None)
        if current is None:
            return
        if current.is_walk_in:
            self._walk_ins.remove(appointment_id)
            return

        key = (current.professional_id, local_day(current.start_at, self.tz))
        bucket = self._buckets[key]
        bucket[:] = [a for a in bucket if a.id != appointment_id]
        if not bucket:
            del self._buckets[key]
