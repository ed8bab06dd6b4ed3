# app/scheduling/ports.py
#
# Contracts the scheduling engine needs from the outside world. The engine
# only ever talks to these; app/store.py has the SQLModel-backed versions.

from datetime import date, datetime
from typing import Any, Dict, List, Optional, Protocol

from app.schemas import AgendaSettings, Appointment


class AppointmentStore(Protocol):
    """
    Remote persistence for appointments, always scoped by ``company_id``.

    Implementations raise PersistenceError when the store refuses a write and
    ConnectionError (or let a timeout happen) when it cannot be reached.
    """

    async def load_day_appointments(self, company_id: str, day: date) -> List[Appointment]:
        """Non-deleted appointments starting on ``day`` plus all walk-ins."""

    async def load_appointment(self, company_id: str, appointment_id: str) -> Optional[Appointment]:
        """A single appointment, deleted ones included."""

    async def insert_appointment(self, appointment: Appointment,
                                 waitlist_entry_id: Optional[str] = None) -> Appointment:
        """Insert; when ``waitlist_entry_id`` is given the entry is deleted in the same transaction."""

    async def update_appointment(self, company_id: str, appointment_id: str,
                                 patch: Dict[str, Any]) -> None:
        ...

    async def soft_delete_appointment(self, company_id: str, appointment_id: str,
                                      deleted_at: datetime) -> None:
        ...


class SettingsProvider(Protocol):
    async def get_agenda_settings(self, company_id: str) -> AgendaSettings:
        ...


class QueueStorage(Protocol):
    """Durable FIFO backing for the offline sync queue."""

    async def load(self) -> list:
        """Items in enqueue order."""

    async def append(self, item) -> None:
        ...

    async def update(self, item) -> None:
        ...

    async def remove(self, item_id: str) -> None:
        ...


class WaitlistStore(Protocol):
    async def has_client(self, company_id: str, client_id: str) -> bool:
        ...

    async def list_waitlist(self, company_id: str) -> list:
        ...

    async def get_waitlist_entry(self, company_id: str, entry_id: str):
        ...

    async def add_waitlist_entry(self, entry):
        ...

    async def delete_waitlist_entry(self, company_id: str, entry_id: str) -> bool:
        ...

    async def set_waitlist_positions(self, company_id: str, positions: Dict[str, int]) -> None:
        ...

    async def recent_clients(self, company_id: str, professional_id: str, since: datetime,
                             limit: int = 3) -> list:
        """Clients seen by other professionals since ``since``, most recent first."""
