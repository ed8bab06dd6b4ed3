# app/scheduling/mutations.py
#
# One variant per mutation kind. Each carries its own payload and knows how
# to write itself to the store, so the sync queue never dispatches on names.

from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from app.schemas import Appointment, AppointmentStatus


class _Mutation(BaseModel):
    company_id: str
    appointment_id: str


class CreateAppointment(_Mutation):
    kind: Literal["create_appointment"] = "create_appointment"
    appointment: Appointment
    waitlist_entry_id: Optional[str] = None

    async def send(self, store):
        await store.insert_appointment(self.appointment, waitlist_entry_id=self.waitlist_entry_id)


class MoveAppointment(_Mutation):
    """Also used to unschedule (``start_at`` None) a displaced appointment."""

    kind: Literal["move_appointment"] = "move_appointment"
    professional_id: str
    start_at: Optional[datetime]
    end_at: Optional[datetime]
    overbooked: bool = False

    async def send(self, store):
        await store.update_appointment(self.company_id, self.appointment_id, {
            "professional_id": self.professional_id,
            "start_at": self.start_at,
            "end_at": self.end_at,
            "overbooked": self.overbooked,
        })


class SetStatus(_Mutation):
    kind: Literal["set_status"] = "set_status"
    status: AppointmentStatus

    async def send(self, store):
        await store.update_appointment(self.company_id, self.appointment_id, {"status": self.status.value})


class SoftDelete(_Mutation):
    kind: Literal["soft_delete"] = "soft_delete"
    deleted_at: datetime

    async def send(self, store):
        await store.soft_delete_appointment(self.company_id, self.appointment_id, self.deleted_at)


class Restore(_Mutation):
    kind: Literal["restore"] = "restore"
    overbooked: bool = False

    async def send(self, store):
        await store.update_appointment(self.company_id, self.appointment_id, {
            "deleted_at": None,
            "overbooked": self.overbooked,
        })


Mutation = Annotated[
    Union[CreateAppointment, MoveAppointment, SetStatus, SoftDelete, Restore],
    Field(discriminator="kind"),
]

mutation_adapter = TypeAdapter(Mutation)
