# app/store.py
#
# SQLModel-backed implementations of the scheduling ports. The blocking
# session work runs in FastAPI's threadpool so the event loop stays free.

import logging
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo

from fastapi.concurrency import run_in_threadpool
from sqlalchemy import and_, or_, text
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlmodel import Session, select

from app.core import day_bounds, overlaps
from app.data import DEFAULT_AGENDA_SETTINGS, DEFAULT_WORK_WEEK, TERMINAL_STATUSES
from app.models import (
    AgendaSettings as AgendaSettingsModel,
    Appointment as AppointmentModel,
    AppointmentService as AppointmentServiceModel,
    Client as ClientModel,
    Professional as ProfessionalModel,
    ProfessionalAbsence as AbsenceModel,
    ProfessionalSchedule as ProfessionalScheduleModel,
    Service as ServiceModel,
    SyncQueueRecord,
    WaitlistEntry as WaitlistEntryModel,
)
from app.scheduling.errors import PersistenceError
from app.scheduling.mutations import mutation_adapter
from app.scheduling.sync_queue import SyncQueueItem
from app.schemas import (
    Absence,
    AgendaSettings,
    Appointment,
    RecentClient,
    ServiceRef,
    SettingsUpdate,
    WaitlistEntry,
    WorkDay,
)

logger = logging.getLogger(__name__)

UNREACHABLE_ERRORS = (OperationalError, DisconnectionError)


def is_unreachable(exc: SQLAlchemyError) -> bool:
    return isinstance(exc, UNREACHABLE_ERRORS) or getattr(exc, "connection_invalidated", False)


async def _in_thread(func, *args):
    """Run blocking session work in the threadpool; a lost database surfaces as ConnectionError."""
    try:
        return await run_in_threadpool(func, *args)
    except SQLAlchemyError as exc:
        if is_unreachable(exc):
            raise ConnectionError(f"database unreachable: {exc}") from exc
        raise


def _ping(engine) -> None:
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))


async def database_reachable(engine) -> bool:
    try:
        await _in_thread(_ping, engine)
    except ConnectionError:
        return False
    return True


def to_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def from_db_time(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class SqlStore:
    """Appointments, catalog and waitlist for every company, always filtered by company_id."""

    def __init__(self, engine, tz: ZoneInfo):
        self.engine = engine
        self.tz = tz

    # --- appointments ---

    async def load_day_appointments(self, company_id: str, day: date) -> List[Appointment]:
        return await _in_thread(self._load_day, company_id, day)

    async def load_appointment(self, company_id: str, appointment_id: str) -> Optional[Appointment]:
        return await _in_thread(self._load_one, company_id, appointment_id)

    async def insert_appointment(self, appointment: Appointment,
                                 waitlist_entry_id: Optional[str] = None) -> Appointment:
        return await _in_thread(self._insert, appointment, waitlist_entry_id)

    async def update_appointment(self, company_id: str, appointment_id: str, patch: Dict[str, Any]) -> None:
        await _in_thread(self._update, company_id, appointment_id, patch)

    async def soft_delete_appointment(self, company_id: str, appointment_id: str, deleted_at: datetime) -> None:
        await _in_thread(self._update, company_id, appointment_id, {"deleted_at": deleted_at})

    async def list_deleted(self, company_id: str, since: datetime) -> List[Appointment]:
        return await _in_thread(self._list_deleted, company_id, since)

    async def purge_deleted(self, company_id: str, before: datetime) -> int:
        return await _in_thread(self._purge, company_id, before)

    # --- catalog ---

    async def load_services(self, company_id: str, service_ids: List[str]) -> List[ServiceRef]:
        return await _in_thread(self._load_services, company_id, service_ids)

    async def load_professional_ids(self, company_id: str) -> List[str]:
        return await _in_thread(self._professional_ids, company_id)

    # --- waitlist ---

    async def list_waitlist(self, company_id: str) -> List[WaitlistEntry]:
        return await _in_thread(self._list_waitlist, company_id)

    async def has_client(self, company_id: str, client_id: str) -> bool:
        return await _in_thread(self._has_client, company_id, client_id)

    async def get_waitlist_entry(self, company_id: str, entry_id: str) -> Optional[WaitlistEntry]:
        entries = await self.list_waitlist(company_id)
        return next((e for e in entries if e.id == entry_id), None)

    async def add_waitlist_entry(self, entry: WaitlistEntry) -> WaitlistEntry:
        return await _in_thread(self._add_waitlist_entry, entry)

    async def delete_waitlist_entry(self, company_id: str, entry_id: str) -> bool:
        return await _in_thread(self._delete_waitlist_entry, company_id, entry_id)

    async def set_waitlist_positions(self, company_id: str, positions: Dict[str, int]) -> None:
        await _in_thread(self._set_positions, company_id, positions)

    async def recent_clients(self, company_id: str, professional_id: str, since: datetime,
                             limit: int = 3) -> List[RecentClient]:
        return await _in_thread(self._recent_clients, company_id, professional_id, since, limit)

    # --- work schedules and absences ---

    async def load_schedule(self, company_id: str, professional_id: str) -> List[WorkDay]:
        return await _in_thread(self._load_schedule, company_id, professional_id)

    async def replace_schedule(self, company_id: str, professional_id: str,
                               days: List[WorkDay]) -> List[WorkDay]:
        return await _in_thread(self._replace_schedule, company_id, professional_id, days)

    async def list_absences(self, company_id: str, professional_id: Optional[str] = None,
                            start: Optional[datetime] = None, end: Optional[datetime] = None) -> List[Absence]:
        """Absences overlapping ``[start, end)``, earliest first; open-ended when a bound is None."""
        return await _in_thread(self._list_absences, company_id, professional_id, start, end)

    async def add_absence(self, absence: Absence) -> Absence:
        return await _in_thread(self._add_absence, absence)

    async def delete_absence(self, company_id: str, absence_id: str) -> bool:
        return await _in_thread(self._delete_absence, company_id, absence_id)

    # --- sync helpers (threadpool) ---

    def _load_day(self, company_id: str, day: date) -> List[Appointment]:
        start, end = day_bounds(day, self.tz)
        with Session(self.engine) as session:
            rows = session.exec(
                select(AppointmentModel)
                .where(AppointmentModel.company_id == company_id)
                .where(AppointmentModel.deleted_at.is_(None))
                .where(or_(
                    AppointmentModel.start_at.is_(None),
                    and_(AppointmentModel.start_at >= to_db_time(start), AppointmentModel.start_at < to_db_time(end)),
                ))
                .order_by(AppointmentModel.start_at)
            ).all()
            return self._to_domain(session, rows)

    def _load_one(self, company_id: str, appointment_id: str) -> Optional[Appointment]:
        with Session(self.engine) as session:
            row = self._get_row(session, company_id, appointment_id)
            if row is None:
                return None
            return self._to_domain(session, [row])[0]

    def _list_deleted(self, company_id: str, since: datetime) -> List[Appointment]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AppointmentModel)
                .where(AppointmentModel.company_id == company_id)
                .where(AppointmentModel.deleted_at.is_not(None))
                .where(AppointmentModel.deleted_at >= to_db_time(since))
                .order_by(AppointmentModel.deleted_at.desc())
            ).all()
            return self._to_domain(session, rows)

    def _insert(self, appointment: Appointment, waitlist_entry_id: Optional[str]) -> Appointment:
        try:
            with Session(self.engine) as session:
                existing = session.get(AppointmentModel, appointment.id)
                if existing is not None:
                    # replayed from the sync queue after a write that did land
                    logger.info(f"Appointment {appointment.id} already stored, insert skipped")
                    return appointment

                if self._professional(session, appointment.company_id, appointment.professional_id) is None:
                    raise PersistenceError(f"professional {appointment.professional_id} does not exist",
                                           appointment.id)
                if appointment.start_at is not None and not appointment.overbooked:
                    self._check_slot_free(session, appointment.company_id, appointment.id,
                                          appointment.professional_id, appointment.start_at, appointment.end_at)

                now = datetime.now(timezone.utc).replace(tzinfo=None)
                session.add(AppointmentModel(
                    id=appointment.id,
                    company_id=appointment.company_id,
                    professional_id=appointment.professional_id,
                    client_id=appointment.client_id,
                    start_at=to_db_time(appointment.start_at),
                    end_at=to_db_time(appointment.end_at),
                    status=appointment.status.value,
                    overbooked=appointment.overbooked,
                    notes=appointment.notes,
                    created_at=now,
                    last_write_at=now,
                ))
                for index, service in enumerate(appointment.services):
                    session.add(AppointmentServiceModel(
                        appointment_id=appointment.id,
                        service_id=service.id,
                        order_index=index,
                    ))

                if waitlist_entry_id is not None:
                    entry = session.get(WaitlistEntryModel, waitlist_entry_id)
                    if entry is not None and entry.company_id == appointment.company_id:
                        session.delete(entry)

                session.commit()
        except SQLAlchemyError as exc:
            if is_unreachable(exc):
                raise
            raise PersistenceError(f"could not insert appointment: {exc}", appointment.id) from exc
        return appointment

    def _update(self, company_id: str, appointment_id: str, patch: Dict[str, Any]) -> None:
        try:
            with Session(self.engine) as session:
                row = self._get_row(session, company_id, appointment_id)
                if row is None:
                    raise PersistenceError(f"appointment {appointment_id} not found", appointment_id)

                for key, value in patch.items():
                    if key in ("start_at", "end_at", "deleted_at"):
                        value = to_db_time(value)
                    setattr(row, key, value)

                placed = row.start_at is not None and row.deleted_at is None
                if placed and not row.overbooked and row.status not in TERMINAL_STATUSES:
                    if "start_at" in patch or "professional_id" in patch or "deleted_at" in patch:
                        self._check_slot_free(session, company_id, row.id, row.professional_id,
                                              from_db_time(row.start_at), from_db_time(row.end_at))

                row.last_write_at = datetime.now(timezone.utc).replace(tzinfo=None)
                session.add(row)
                session.commit()
        except SQLAlchemyError as exc:
            if is_unreachable(exc):
                raise
            raise PersistenceError(f"could not update appointment: {exc}", appointment_id) from exc

    def _purge(self, company_id: str, before: datetime) -> int:
        try:
            with Session(self.engine) as session:
                rows = session.exec(
                    select(AppointmentModel)
                    .where(AppointmentModel.company_id == company_id)
                    .where(AppointmentModel.deleted_at.is_not(None))
                    .where(AppointmentModel.deleted_at < to_db_time(before))
                ).all()
                for row in rows:
                    links = session.exec(
                        select(AppointmentServiceModel).where(AppointmentServiceModel.appointment_id == row.id)
                    ).all()
                    for link in links:
                        session.delete(link)
                    session.delete(row)
                session.commit()
                return len(rows)
        except SQLAlchemyError as exc:
            if is_unreachable(exc):
                raise
            raise PersistenceError(f"could not purge trash: {exc}") from exc

    def _check_slot_free(self, session: Session, company_id: str, appointment_id: str,
                         professional_id: str, start: datetime, end: datetime) -> None:
        """Final say on double booking: two non-overbooked live appointments may not overlap."""
        rows = session.exec(
            select(AppointmentModel)
            .where(AppointmentModel.company_id == company_id)
            .where(AppointmentModel.professional_id == professional_id)
            .where(AppointmentModel.id != appointment_id)
            .where(AppointmentModel.deleted_at.is_(None))
            .where(AppointmentModel.overbooked == False)  # noqa: E712
            .where(AppointmentModel.start_at < to_db_time(end))
            .where(AppointmentModel.end_at > to_db_time(start))
        ).all()
        for row in rows:
            if row.status in TERMINAL_STATUSES:
                continue
            if overlaps(start, end, from_db_time(row.start_at), from_db_time(row.end_at)):
                raise PersistenceError(f"slot already taken by appointment {row.id}", appointment_id)

    def _get_row(self, session: Session, company_id: str, appointment_id: str) -> Optional[AppointmentModel]:
        row = session.get(AppointmentModel, appointment_id)
        if row is None or row.company_id != company_id:
            return None
        return row

    def _professional(self, session: Session, company_id: str, professional_id: str):
        row = session.get(ProfessionalModel, professional_id)
        if row is None or row.company_id != company_id:
            return None
        return row

    def _to_domain(self, session: Session, rows) -> List[Appointment]:
        if not rows:
            return []
        ids = [r.id for r in rows]
        services: Dict[str, List[ServiceRef]] = {i: [] for i in ids}
        links = session.exec(
            select(AppointmentServiceModel, ServiceModel)
            .join(ServiceModel, ServiceModel.id == AppointmentServiceModel.service_id)
            .where(AppointmentServiceModel.appointment_id.in_(ids))
            .order_by(AppointmentServiceModel.order_index)
        ).all()
        for link, service in links:
            services[link.appointment_id].append(ServiceRef(
                id=service.id,
                name=service.name,
                duration_minutes=service.duration_minutes,
                buffer_after_minutes=service.buffer_after_minutes,
            ))

        professional_names = {
            p.id: p.name for p in session.exec(
                select(ProfessionalModel).where(ProfessionalModel.id.in_([r.professional_id for r in rows]))
            ).all()
        }
        client_ids = {r.client_id for r in rows if r.client_id}
        client_names = {}
        if client_ids:
            client_names = {
                c.id: c.name for c in session.exec(select(ClientModel).where(ClientModel.id.in_(list(client_ids)))).all()
            }

        return [
            Appointment(
                id=r.id,
                company_id=r.company_id,
                professional_id=r.professional_id,
                client_id=r.client_id,
                services=services[r.id],
                start_at=from_db_time(r.start_at),
                end_at=from_db_time(r.end_at),
                status=r.status,
                overbooked=r.overbooked,
                notes=r.notes,
                deleted_at=from_db_time(r.deleted_at),
                client_name=client_names.get(r.client_id),
                professional_name=professional_names.get(r.professional_id),
            )
            for r in rows
        ]

    def _load_services(self, company_id: str, service_ids: List[str]) -> List[ServiceRef]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ServiceModel)
                .where(ServiceModel.company_id == company_id)
                .where(ServiceModel.id.in_(service_ids))
            ).all()
            by_id = {r.id: r for r in rows}
        # keep the caller's order, it decides the sequence of services
        return [
            ServiceRef(
                id=by_id[i].id,
                name=by_id[i].name,
                duration_minutes=by_id[i].duration_minutes,
                buffer_after_minutes=by_id[i].buffer_after_minutes,
            )
            for i in service_ids if i in by_id
        ]

    def _professional_ids(self, company_id: str) -> List[str]:
        with Session(self.engine) as session:
            return list(session.exec(
                select(ProfessionalModel.id)
                .where(ProfessionalModel.company_id == company_id)
                .where(ProfessionalModel.active == True)  # noqa: E712
            ).all())

    def _has_client(self, company_id: str, client_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(ClientModel, client_id)
            return row is not None and row.company_id == company_id

    def _list_waitlist(self, company_id: str) -> List[WaitlistEntry]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(WaitlistEntryModel, ClientModel)
                .join(
                    ClientModel,
                    and_(ClientModel.id == WaitlistEntryModel.client_id,
                         ClientModel.company_id == WaitlistEntryModel.company_id),
                    isouter=True,
                )
                .where(WaitlistEntryModel.company_id == company_id)
            ).all()
            return [
                WaitlistEntry(
                    id=entry.id,
                    company_id=entry.company_id,
                    client_id=entry.client_id,
                    professional_id=entry.professional_id,
                    desired_date=entry.desired_date,
                    priority=entry.priority,
                    position=entry.position,
                    notes=entry.notes,
                    created_at=from_db_time(entry.created_at),
                    client_name=client.name if client else None,
                )
                for entry, client in rows
            ]

    def _add_waitlist_entry(self, entry: WaitlistEntry) -> WaitlistEntry:
        with Session(self.engine) as session:
            session.add(WaitlistEntryModel(
                id=entry.id,
                company_id=entry.company_id,
                client_id=entry.client_id,
                professional_id=entry.professional_id,
                desired_date=entry.desired_date,
                priority=entry.priority.value,
                position=entry.position,
                notes=entry.notes,
                created_at=to_db_time(entry.created_at),
            ))
            session.commit()
        return entry

    def _delete_waitlist_entry(self, company_id: str, entry_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(WaitlistEntryModel, entry_id)
            if row is None or row.company_id != company_id:
                return False
            session.delete(row)
            session.commit()
            return True

    def _set_positions(self, company_id: str, positions: Dict[str, int]) -> None:
        with Session(self.engine) as session:
            for entry_id, position in positions.items():
                row = session.get(WaitlistEntryModel, entry_id)
                if row is None or row.company_id != company_id:
                    continue
                row.position = position
                session.add(row)
            session.commit()

    def _recent_clients(self, company_id: str, professional_id: str, since: datetime,
                        limit: int) -> List[RecentClient]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(AppointmentModel, ClientModel)
                .join(ClientModel, ClientModel.id == AppointmentModel.client_id)
                .where(AppointmentModel.company_id == company_id)
                .where(AppointmentModel.professional_id != professional_id)
                .where(AppointmentModel.deleted_at.is_(None))
                .where(AppointmentModel.start_at >= to_db_time(since))
                .order_by(AppointmentModel.start_at.desc())
            ).all()
        seen = {}
        for appointment, client in rows:
            if client.id in seen:
                continue
            seen[client.id] = RecentClient(
                id=client.id,
                name=client.name,
                phone=client.phone,
                last_visit_at=from_db_time(appointment.start_at),
            )
            if len(seen) >= limit:
                break
        return list(seen.values())

    def _load_schedule(self, company_id: str, professional_id: str) -> List[WorkDay]:
        with Session(self.engine) as session:
            rows = session.exec(
                select(ProfessionalScheduleModel)
                .where(ProfessionalScheduleModel.company_id == company_id)
                .where(ProfessionalScheduleModel.professional_id == professional_id)
            ).all()
            if not rows:
                return [WorkDay(**day) for day in DEFAULT_WORK_WEEK]
            saved = {
                row.day_of_week: WorkDay(
                    day_of_week=row.day_of_week,
                    is_working=row.is_working,
                    start_time=row.start_time,
                    end_time=row.end_time,
                    break_start=row.break_start,
                    break_end=row.break_end,
                )
                for row in rows
            }
        # days left out of a saved week are days off
        return [saved.get(day) or WorkDay(day_of_week=day, is_working=False) for day in range(7)]

    def _replace_schedule(self, company_id: str, professional_id: str, days: List[WorkDay]) -> List[WorkDay]:
        def hhmm(value):
            return value.strftime("%H:%M") if value is not None else None

        with Session(self.engine) as session:
            for row in session.exec(
                select(ProfessionalScheduleModel)
                .where(ProfessionalScheduleModel.company_id == company_id)
                .where(ProfessionalScheduleModel.professional_id == professional_id)
            ).all():
                session.delete(row)
            session.flush()
            for day in days:
                session.add(ProfessionalScheduleModel(
                    company_id=company_id,
                    professional_id=professional_id,
                    day_of_week=day.day_of_week,
                    is_working=day.is_working,
                    start_time=hhmm(day.start_time),
                    end_time=hhmm(day.end_time),
                    break_start=hhmm(day.break_start),
                    break_end=hhmm(day.break_end),
                ))
            session.commit()
        logger.info(f"Work schedule of professional {professional_id} replaced ({len(days)} days)")
        return self._load_schedule(company_id, professional_id)

    def _list_absences(self, company_id: str, professional_id: Optional[str],
                       start: Optional[datetime], end: Optional[datetime]) -> List[Absence]:
        with Session(self.engine) as session:
            statement = (
                select(AbsenceModel, ProfessionalModel)
                .join(ProfessionalModel, ProfessionalModel.id == AbsenceModel.professional_id, isouter=True)
                .where(AbsenceModel.company_id == company_id)
                .order_by(AbsenceModel.start_at)
            )
            if professional_id is not None:
                statement = statement.where(AbsenceModel.professional_id == professional_id)
            if start is not None:
                statement = statement.where(AbsenceModel.end_at > to_db_time(start))
            if end is not None:
                statement = statement.where(AbsenceModel.start_at < to_db_time(end))
            return [
                Absence(
                    id=row.id,
                    company_id=row.company_id,
                    professional_id=row.professional_id,
                    kind=row.kind,
                    start_at=from_db_time(row.start_at),
                    end_at=from_db_time(row.end_at),
                    notes=row.notes,
                    created_at=from_db_time(row.created_at),
                    professional_name=professional.name if professional else None,
                )
                for row, professional in session.exec(statement).all()
            ]

    def _add_absence(self, absence: Absence) -> Absence:
        with Session(self.engine) as session:
            if self._professional(session, absence.company_id, absence.professional_id) is None:
                raise PersistenceError(f"professional {absence.professional_id} does not exist")
            session.add(AbsenceModel(
                id=absence.id,
                company_id=absence.company_id,
                professional_id=absence.professional_id,
                kind=absence.kind.value,
                start_at=to_db_time(absence.start_at),
                end_at=to_db_time(absence.end_at),
                notes=absence.notes,
                created_at=to_db_time(absence.created_at),
            ))
            session.commit()
        logger.info(f"Absence {absence.id} ({absence.kind.value}) added for professional {absence.professional_id}")
        return absence

    def _delete_absence(self, company_id: str, absence_id: str) -> bool:
        with Session(self.engine) as session:
            row = session.get(AbsenceModel, absence_id)
            if row is None or row.company_id != company_id:
                return False
            session.delete(row)
            session.commit()
            return True


class SqlSettingsProvider:
    """Agenda settings per company; a default row is created on first read."""

    def __init__(self, engine):
        self.engine = engine

    async def get_agenda_settings(self, company_id: str) -> AgendaSettings:
        return await _in_thread(self._get, company_id)

    async def update_agenda_settings(self, company_id: str, data: SettingsUpdate) -> AgendaSettings:
        return await _in_thread(self._update, company_id, data)

    def _get(self, company_id: str) -> AgendaSettings:
        with Session(self.engine) as session:
            row = self._get_or_create(session, company_id)
            return AgendaSettings(
                allow_overbooking=row.allow_overbooking,
                late_cancel_limit_minutes=row.late_cancel_limit_minutes,
                suggest_next_visit_days=row.suggest_next_visit_days,
            )

    def _update(self, company_id: str, data: SettingsUpdate) -> AgendaSettings:
        with Session(self.engine) as session:
            row = self._get_or_create(session, company_id)
            for key, value in data.model_dump(exclude_none=True).items():
                setattr(row, key, value)
            session.add(row)
            session.commit()
        logger.info(f"Agenda settings updated for company {company_id}")
        return self._get(company_id)

    @staticmethod
    def _get_or_create(session: Session, company_id: str) -> AgendaSettingsModel:
        row = session.get(AgendaSettingsModel, company_id)
        if row is None:
            row = AgendaSettingsModel(company_id=company_id, **DEFAULT_AGENDA_SETTINGS)
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.info(f"Created default agenda settings for company {company_id}")
        return row


class SqlQueueStorage:
    """Sync queue rows, optionally limited to one company."""

    def __init__(self, engine, company_id: Optional[str] = None):
        self.engine = engine
        self.company_id = company_id

    async def load(self) -> List[SyncQueueItem]:
        return await _in_thread(self._load)

    async def append(self, item: SyncQueueItem) -> None:
        await _in_thread(self._append, item)

    async def update(self, item: SyncQueueItem) -> None:
        await _in_thread(self._update, item)

    async def remove(self, item_id: str) -> None:
        await _in_thread(self._remove, item_id)

    def _load(self) -> List[SyncQueueItem]:
        with Session(self.engine) as session:
            statement = select(SyncQueueRecord).order_by(SyncQueueRecord.seq)
            if self.company_id is not None:
                statement = statement.where(SyncQueueRecord.company_id == self.company_id)
            return [
                SyncQueueItem(
                    id=row.item_id,
                    company_id=row.company_id,
                    mutation=mutation_adapter.validate_python(row.payload),
                    enqueued_at=from_db_time(row.enqueued_at),
                    retry_count=row.retry_count,
                )
                for row in session.exec(statement).all()
            ]

    def _append(self, item: SyncQueueItem) -> None:
        with Session(self.engine) as session:
            session.add(SyncQueueRecord(
                item_id=item.id,
                company_id=item.company_id,
                action=item.action,
                payload=mutation_adapter.dump_python(item.mutation, mode="json"),
                enqueued_at=to_db_time(item.enqueued_at),
                retry_count=item.retry_count,
            ))
            session.commit()

    def _find(self, session: Session, item_id: str) -> Optional[SyncQueueRecord]:
        return session.exec(select(SyncQueueRecord).where(SyncQueueRecord.item_id == item_id)).first()

    def _update(self, item: SyncQueueItem) -> None:
        with Session(self.engine) as session:
            row = self._find(session, item.id)
            if row is None:
                return
            row.retry_count = item.retry_count
            session.add(row)
            session.commit()

    def _remove(self, item_id: str) -> None:
        with Session(self.engine) as session:
            row = self._find(session, item_id)
            if row is not None:
                session.delete(row)
                session.commit()
