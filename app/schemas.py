# app/schemas.py

from pydantic import BaseModel, Field, field_validator, model_validator
from enum import Enum
from datetime import datetime, date, time
from typing import List, Optional, Literal
from uuid import uuid4


def new_id() -> str:
    return uuid4().hex


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"

class UserRole(str, Enum):
    owner = "owner"
    staff = "staff"

class AppointmentStatus(str, Enum):
    scheduled = "scheduled"
    in_progress = "in_progress"
    done = "done"
    no_show = "no_show"
    canceled = "canceled"

class WaitlistPriority(str, Enum):
    urgent = "urgent"
    vip = "vip"
    normal = "normal"

class ConflictChoice(str, Enum):
    substitute = "substitute"
    force_overbook = "force_overbook"

class RepetitionType(str, Enum):
    weekly = "weekly"
    biweekly = "biweekly"
    monthly = "monthly"

class AbsenceKind(str, Enum):
    vacation = "vacation"
    time_off = "time_off"
    leave = "leave"


# --- scheduling domain ---

class ServiceRef(BaseModel):
    id: str
    name: str = ""
    duration_minutes: int = Field(ge=0)
    buffer_after_minutes: int = Field(default=0, ge=0)

class Appointment(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    professional_id: str
    client_id: Optional[str] = None
    services: List[ServiceRef] = Field(default_factory=list)
    start_at: Optional[datetime] = None   # None = walk-in
    end_at: Optional[datetime] = None     # derived from start_at + services
    status: AppointmentStatus = AppointmentStatus.scheduled
    overbooked: bool = False
    notes: Optional[str] = None
    deleted_at: Optional[datetime] = None

    # display only
    client_name: Optional[str] = None
    professional_name: Optional[str] = None

    @property
    def is_walk_in(self) -> bool:
        return self.start_at is None

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            AppointmentStatus.done,
            AppointmentStatus.no_show,
            AppointmentStatus.canceled,
        )

class NewAppointment(BaseModel):
    """A create intent with its services already resolved from the catalog."""
    professional_id: str
    client_id: Optional[str] = None
    services: List[ServiceRef] = Field(default_factory=list)
    start_at: Optional[datetime] = None
    notes: Optional[str] = None
    client_name: Optional[str] = None
    professional_name: Optional[str] = None

class AgendaSettings(BaseModel):
    allow_overbooking: bool = False
    late_cancel_limit_minutes: int = Field(default=120, ge=0)
    suggest_next_visit_days: int = Field(default=30, ge=1)

class WaitlistEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    client_id: str
    professional_id: Optional[str] = None   # None = any professional
    desired_date: Optional[date] = None
    priority: WaitlistPriority = WaitlistPriority.normal
    position: int = Field(default=1, ge=1)
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    client_name: Optional[str] = None

class RecentClient(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    last_visit_at: Optional[datetime] = None

class RecurrenceRule(BaseModel):
    type: RepetitionType
    count: Optional[int] = Field(default=None, ge=1, le=52)
    end_date: Optional[date] = None

class DragSource(BaseModel):
    appointment_id: str

class DropTarget(BaseModel):
    professional_id: str
    time_slot: str      # "HH:MM"
    date: date

    @field_validator("time_slot")
    @classmethod
    def check_time_slot(cls, value: str) -> str:
        try:
            time.fromisoformat(value)
        except ValueError:
            raise ValueError("time_slot must be HH:MM")
        return value


# --- API payloads ---

class UserPublic(BaseModel):
    id: int
    email: str
    role: UserRole
    company_id: str

class UserCreate(BaseModel):
    email: str
    password: str = Field(min_length=8, max_length=72)
    role: UserRole = UserRole.owner
    # signed-in callers may leave it out; a new salon's first login must name it
    company_id: Optional[str] = Field(default=None, min_length=1)

class ProfessionalCreate(BaseModel):
    name: str = Field(min_length=1)
    color: str = "#6366f1"

class ProfessionalPublic(BaseModel):
    id: str
    name: str
    color: str
    active: bool

class ServiceCreate(BaseModel):
    name: str = Field(min_length=1)
    duration_minutes: int = Field(gt=0)
    buffer_after_minutes: int = Field(default=0, ge=0)

class ServicePublic(BaseModel):
    id: str
    name: str
    duration_minutes: int
    buffer_after_minutes: int

class ClientCreate(BaseModel):
    name: str = Field(min_length=1)
    phone: Optional[str] = None

class ClientPublic(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None

class AppointmentCreate(BaseModel):
    professional_id: str
    client_id: Optional[str] = None
    start_at: Optional[datetime] = None
    service_ids: List[str]
    notes: Optional[str] = None
    choice: Optional[ConflictChoice] = None

class RecurringAppointmentCreate(BaseModel):
    appointment: AppointmentCreate
    rule: RecurrenceRule

class AppointmentMove(BaseModel):
    new_start_at: datetime
    new_professional_id: Optional[str] = None
    choice: Optional[ConflictChoice] = None

class AppointmentDrop(BaseModel):
    source: DragSource
    target: DropTarget
    choice: Optional[ConflictChoice] = None

class StatusUpdate(BaseModel):
    status: AppointmentStatus

class RestoreRequest(BaseModel):
    choice: Optional[ConflictChoice] = None

class SettingsUpdate(BaseModel):
    allow_overbooking: Optional[bool] = None
    late_cancel_limit_minutes: Optional[int] = Field(default=None, ge=0)
    suggest_next_visit_days: Optional[int] = Field(default=None, ge=1)

class WaitlistCreate(BaseModel):
    client_id: str
    professional_id: Optional[str] = None
    desired_date: Optional[date] = None
    priority: WaitlistPriority = WaitlistPriority.normal
    notes: Optional[str] = None

class WaitlistReorder(BaseModel):
    ordered_ids: List[str]

class WaitlistConvert(BaseModel):
    professional_id: Optional[str] = None
    start_at: Optional[datetime] = None
    service_ids: List[str]
    choice: Optional[ConflictChoice] = None

class SlotSuggestions(BaseModel):
    waitlist: List[WaitlistEntry]
    recent_clients: List[RecentClient]

class ProfessionalDay(BaseModel):
    professional_id: str
    appointments: List[Appointment]

class DayAgendaResponse(BaseModel):
    date: date
    professionals: List[ProfessionalDay]
    walk_ins: List[Appointment]

class AvailabilityResponse(BaseModel):
    professional_id: str
    date: date
    is_working: bool = True
    available_starts: List[str]

class ConfirmationMessage(BaseModel):
    message: str
    whatsapp_url: Optional[str] = None
    suggested_next_visit: Optional[datetime] = None

class MutationResponse(BaseModel):
    state: str
    appointment: Optional[Appointment] = None
    displaced: Optional[Appointment] = None
    late_cancellation: bool = False
    message: Optional[str] = None

class SyncQueueItemPublic(BaseModel):
    id: str
    action: str
    appointment_id: str
    enqueued_at: datetime
    retry_count: int

class DroppedWritePublic(SyncQueueItemPublic):
    message: str
    last_error: Optional[str] = None

class DrainResponse(BaseModel):
    ran: bool
    synced: List[str] = Field(default_factory=list)
    failed: List[str] = Field(default_factory=list)
    dropped: List[str] = Field(default_factory=list)

class PurgeResponse(BaseModel):
    purged: int

# --- work schedules and absences ---

class WorkDay(BaseModel):
    day_of_week: int = Field(ge=0, le=6) # 0 = Sunday
    is_working: bool = True
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    break_start: Optional[time] = None
    break_end: Optional[time] = None

    @model_validator(mode="after")
    def check_hours(self) -> "WorkDay":
        if self.is_working:
            if self.start_time is None or self.end_time is None or self.end_time <= self.start_time:
                raise ValueError("a working day needs start_time before end_time")
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end go together")
        if self.break_start is not None and self.break_end <= self.break_start:
            raise ValueError("break_end must be after break_start")
        return self

class ScheduleUpdate(BaseModel):
    days: List[WorkDay]

    @field_validator("days")
    @classmethod
    def check_days(cls, value: List[WorkDay]) -> List[WorkDay]:
        numbers = [d.day_of_week for d in value]
        if len(numbers) != len(set(numbers)):
            raise ValueError("each day_of_week may appear once")
        return value

class ProfessionalScheduleResponse(BaseModel):
    professional_id: str
    days: List[WorkDay]

class AbsenceCreate(BaseModel):
    professional_id: str
    kind: AbsenceKind = AbsenceKind.time_off
    start_at: datetime
    end_at: datetime
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_period(self) -> "AbsenceCreate":
        if self.start_at.tzinfo is None or self.end_at.tzinfo is None:
            raise ValueError("start_at and end_at must include a UTC offset")
        if self.end_at <= self.start_at:
            raise ValueError("end_at must be after start_at")
        return self

class Absence(AbsenceCreate):
    id: str = Field(default_factory=new_id)
    company_id: str
    created_at: Optional[datetime] = None
    professional_name: Optional[str] = None
