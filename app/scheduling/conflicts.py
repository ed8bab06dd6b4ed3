# app/scheduling/conflicts.py

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import List, Optional
from zoneinfo import ZoneInfo

from app.core import overlaps
from app.scheduling.index import ScheduleIndex
from app.schemas import Appointment

logger = logging.getLogger(__name__)


class Outcome(str, Enum):
    accept = "accept"
    reject = "reject"
    requires_decision = "requires_decision"


@dataclass(frozen=True)
class ConflictDecision:
    outcome: Outcome
    professional_id: str
    start_at: datetime
    end_at: datetime
    conflicting: Optional[Appointment] = None
    remaining: int = 0      # further conflicts left after ``conflicting``

    @property
    def accepted(self) -> bool:
        return self.outcome == Outcome.accept

    def describe(self, tz: Optional[ZoneInfo] = None) -> str:
        if self.conflicting is None:
            return "No conflict"
        other = self.conflicting
        start = other.start_at.astimezone(tz) if tz else other.start_at
        end = other.end_at.astimezone(tz) if tz else other.end_at
        services = ", ".join(s.name or s.id for s in other.services) or "no services"
        client = other.client_name or other.client_id or "walk-in client"
        professional = other.professional_name or other.professional_id
        text = (
            f"Overlaps appointment {other.id} of {client} with {professional} "
            f"({services}) from {start:%H:%M} to {end:%H:%M}"
        )
        if self.remaining:
            text += f"; {self.remaining} more conflicting appointment(s) in that window"
        return text


class ConflictResolver:
    """
    Decides whether ``[start, end)`` can go on a professional's agenda.

    The overbooking policy is handed in by the caller; this class only
    reads the index.
    """

    def __init__(self, index: ScheduleIndex):
        self.index = index

    def conflicts(self, professional_id: str, start: datetime, end: datetime,
                  exclude_id: Optional[str] = None) -> List[Appointment]:
        found = []
        for appointment in self.index.candidates_near(professional_id, start, end):
            if appointment.id == exclude_id:
                continue
            if appointment.is_terminal:
                continue
            if appointment.start_at is None or appointment.end_at is None:
                continue
            if overlaps(start, end, appointment.start_at, appointment.end_at):
                found.append(appointment)
        # earliest first, ties by id
        found.sort(key=lambda a: (a.start_at, a.id))
        return found

    def resolve(self, professional_id: str, start: datetime, end: datetime,
                exclude_id: Optional[str] = None, allow_overbooking: bool = False) -> ConflictDecision:
        found = self.conflicts(professional_id, start, end, exclude_id)
        if not found:
            return ConflictDecision(Outcome.accept, professional_id, start, end)

        first = found[0]
        outcome = Outcome.requires_decision if allow_overbooking else Outcome.reject
        logger.info(
            f"Conflict for professional {professional_id} at {start.isoformat()}: "
            f"{first.id} ({len(found)} total), outcome={outcome.value}"
        )
        return ConflictDecision(outcome, professional_id, start, end, first, len(found) - 1)
