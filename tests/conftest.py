# tests/conftest.py

import asyncio
import os
from datetime import datetime, timezone
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest

# keep the app off the on-disk database during tests
os.environ["DATABASE_URL"] = "sqlite://"

from app.core import local_day  # noqa: E402
from app.scheduling.connectivity import ConnectivityMonitor
from app.scheduling.errors import PersistenceError
from app.scheduling.index import ScheduleIndex
from app.scheduling.pipeline import MutationPipeline
from app.scheduling.sync_queue import OfflineSyncQueue
from app.schemas import (
    AgendaSettings,
    AppointmentStatus,
    NewAppointment,
    ServiceRef,
)

COMPANY = "salon-1"
UTC = ZoneInfo("UTC")
NOW = datetime(2024, 6, 3, 8, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: int = 3) -> datetime:
    return datetime(2024, 6, day, hour, minute, tzinfo=timezone.utc)


def service(duration: int, buffer: int = 0, service_id: Optional[str] = None) -> ServiceRef:
    return ServiceRef(
        id=service_id or f"svc-{duration}-{buffer}",
        name=f"Service {duration}min",
        duration_minutes=duration,
        buffer_after_minutes=buffer,
    )


def draft(professional_id: str, start_at: Optional[datetime], *services: ServiceRef, **extra) -> NewAppointment:
    return NewAppointment(
        professional_id=professional_id,
        start_at=start_at,
        services=list(services) or [service(30)],
        **extra,
    )


class FakeClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeStore:
    """
    In-memory AppointmentStore / WaitlistStore.

    ``failures`` holds exceptions raised by the next writes, one per write;
    a None entry lets that write through.
    """

    def __init__(self, tz: ZoneInfo = UTC):
        self.tz = tz
        self.appointments = {}
        self.waitlist = {}
        self.clients = {(COMPANY, "c1"), (COMPANY, "c2")}
        self.recent = []
        self.failures: List[BaseException] = []
        self.writes: List[tuple] = []
        self.write_delay = 0.0

    async def _write(self, name: str, *args) -> None:
        if self.write_delay:
            await asyncio.sleep(self.write_delay)
        else:
            await asyncio.sleep(0)
        self.writes.append((name,) + args)
        failure = self.failures.pop(0) if self.failures else None
        if failure is not None:
            raise failure

    async def load_day_appointments(self, company_id, day):
        return [
            a.model_copy(deep=True) for a in self.appointments.values()
            if a.company_id == company_id and a.deleted_at is None
            and (a.start_at is None or local_day(a.start_at, self.tz) == day)
        ]

    async def load_appointment(self, company_id, appointment_id):
        found = self.appointments.get(appointment_id)
        if found is None or found.company_id != company_id:
            return None
        return found.model_copy(deep=True)

    async def insert_appointment(self, appointment, waitlist_entry_id=None):
        await self._write("insert", appointment.id)
        self.appointments[appointment.id] = appointment.model_copy(deep=True)
        if waitlist_entry_id is not None:
            self.waitlist.pop(waitlist_entry_id, None)
        return appointment

    async def update_appointment(self, company_id, appointment_id, patch):
        await self._write("update", appointment_id, dict(patch))
        current = self.appointments.get(appointment_id)
        if current is None:
            raise PersistenceError(f"appointment {appointment_id} not found", appointment_id)
        patch = dict(patch)
        if "status" in patch:
            patch["status"] = AppointmentStatus(patch["status"])
        self.appointments[appointment_id] = current.model_copy(update=patch)

    async def soft_delete_appointment(self, company_id, appointment_id, deleted_at):
        await self.update_appointment(company_id, appointment_id, {"deleted_at": deleted_at})

    async def has_client(self, company_id, client_id):
        return (company_id, client_id) in self.clients

    async def list_waitlist(self, company_id):
        return [e.model_copy() for e in self.waitlist.values() if e.company_id == company_id]

    async def get_waitlist_entry(self, company_id, entry_id):
        entry = self.waitlist.get(entry_id)
        return entry.model_copy() if entry and entry.company_id == company_id else None

    async def add_waitlist_entry(self, entry):
        self.waitlist[entry.id] = entry.model_copy()
        return entry

    async def delete_waitlist_entry(self, company_id, entry_id):
        return self.waitlist.pop(entry_id, None) is not None

    async def set_waitlist_positions(self, company_id, positions: Dict[str, int]):
        for entry_id, position in positions.items():
            self.waitlist[entry_id] = self.waitlist[entry_id].model_copy(update={"position": position})

    async def recent_clients(self, company_id, professional_id, since, limit=3):
        return self.recent[:limit]


class FakeSettings:
    def __init__(self, **values):
        self.value = AgendaSettings(**values)
        self.calls = 0

    async def get_agenda_settings(self, company_id):
        self.calls += 1
        return self.value


class FakeQueueStorage:
    def __init__(self):
        self.items = []

    async def load(self):
        return [item.model_copy(deep=True) for item in self.items]

    async def append(self, item):
        self.items.append(item.model_copy(deep=True))

    async def update(self, item):
        self.items = [item.model_copy(deep=True) if i.id == item.id else i for i in self.items]

    async def remove(self, item_id):
        self.items = [i for i in self.items if i.id != item_id]


@pytest.fixture
def clock():
    return FakeClock(NOW)


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def settings():
    return FakeSettings()


@pytest.fixture
def queue_storage():
    return FakeQueueStorage()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor()


@pytest.fixture
def index():
    return ScheduleIndex(UTC)


@pytest.fixture
def sync_queue(queue_storage, store, connectivity, clock):
    return OfflineSyncQueue(queue_storage, store, connectivity, clock=clock, max_retries=3)


@pytest.fixture
def pipeline(store, settings, index, sync_queue, connectivity, clock):
    return MutationPipeline(
        COMPANY, store, settings, index, sync_queue, connectivity,
        clock=clock, known_professionals=["ana", "bia"],
    )
