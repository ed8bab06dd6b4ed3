# app/models.py

from typing import Optional
from datetime import datetime, date as Date

from sqlalchemy import Index, UniqueConstraint
from sqlalchemy.types import JSON
from sqlmodel import SQLModel, Field, Column

class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    email: str = Field(index=True, unique=True)
    password_hash: str
    role: str # owner or staff
    company_id: str = Field(index=True)

class Professional(SQLModel, table=True):
    id: str = Field(primary_key=True)
    company_id: str = Field(index=True)
    name: str
    color: str = "#6366f1"
    active: bool = True

class Service(SQLModel, table=True):
    id: str = Field(primary_key=True)
    company_id: str = Field(index=True)
    name: str
    duration_minutes: int
    buffer_after_minutes: int = 0

class Client(SQLModel, table=True):
    id: str = Field(primary_key=True)
    company_id: str = Field(index=True)
    name: str
    phone: Optional[str] = None

class Appointment(SQLModel, table=True):
    __table_args__ = (
        Index("ix_appointment_company_start", "company_id", "start_at"),
    )

    id: str = Field(primary_key=True)
    company_id: str = Field(index=True)
    professional_id: str = Field(index=True)
    client_id: Optional[str] = None

    # stored as naive UTC
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    status: str = "scheduled"
    overbooked: bool = False
    notes: Optional[str] = None
    deleted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    last_write_at: Optional[datetime] = None

class AppointmentService(SQLModel, table=True):
    appointment_id: str = Field(primary_key=True)
    service_id: str = Field(primary_key=True)
    order_index: int = 0

class AgendaSettings(SQLModel, table=True):
    company_id: str = Field(primary_key=True)
    allow_overbooking: bool = False
    late_cancel_limit_minutes: int = 120
    suggest_next_visit_days: int = 30

class ProfessionalSchedule(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("professional_id", "day_of_week", name="uq_schedule_day"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    company_id: str = Field(index=True)
    professional_id: str = Field(index=True)
    day_of_week: int # 0 = Sunday
    is_working: bool = True
    start_time: Optional[str] = None # "HH:MM", salon local time
    end_time: Optional[str] = None
    break_start: Optional[str] = None
    break_end: Optional[str] = None

class ProfessionalAbsence(SQLModel, table=True):
    id: str = Field(primary_key=True)
    company_id: str = Field(index=True)
    professional_id: str = Field(index=True)
    kind: str # vacation, time_off or leave

    # stored as naive UTC
    start_at: datetime
    end_at: datetime
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

class WaitlistEntry(SQLModel, table=True):
    id: str = Field(primary_key=True)
    company_id: str = Field(index=True)
    client_id: str
    professional_id: Optional[str] = None
    desired_date: Optional[Date] = None
    priority: str = "normal"
    position: int = 1
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

class SyncQueueRecord(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("item_id", name="uq_sync_item"),
    )

    seq: Optional[int] = Field(default=None, primary_key=True)   # FIFO order
    item_id: str
    company_id: str = Field(index=True)
    action: str
    payload: dict = Field(sa_column=Column(JSON))
    enqueued_at: datetime
    retry_count: int = 0
