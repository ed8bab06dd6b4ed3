# app/scheduling/pipeline.py

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from app.core import (
    compute_end,
    drop_target_start,
    expand_recurrence,
    is_late_cancellation,
    local_day,
    utcnow,
)
from app.data import STATUS_TRANSITIONS
from app.scheduling.conflicts import ConflictDecision, ConflictResolver, Outcome
from app.scheduling.connectivity import ConnectivityMonitor
from app.scheduling.errors import PersistenceError, SchedulingError, SyncExhaustedError, ValidationError
from app.scheduling.index import ScheduleIndex, Snapshot
from app.scheduling.mutations import (
    CreateAppointment,
    MoveAppointment,
    Restore,
    SetStatus,
    SoftDelete,
)
from app.scheduling.sync_queue import OfflineSyncQueue
from app.schemas import (
    AgendaSettings,
    Appointment,
    AppointmentStatus,
    ConflictChoice,
    DragSource,
    DropTarget,
    NewAppointment,
    RecurrenceRule,
)

logger = logging.getLogger(__name__)

OFFLINE_ERRORS = (ConnectionError, asyncio.TimeoutError)


class MutationState(str, Enum):
    pending = "pending"
    validating = "validating"
    accepted = "accepted"
    rejected = "rejected"
    requires_decision = "requires_decision"
    applying = "applying"
    optimistically_applied = "optimistically_applied"
    confirmed = "confirmed"
    pending_sync = "pending_sync"
    rolled_back = "rolled_back"


@dataclass(frozen=True)
class MutationEvent:
    action: str
    appointment_id: str
    state: MutationState
    appointment: Optional[Appointment] = None
    error: Optional[SchedulingError] = None


@dataclass
class MutationResult:
    action: str
    state: MutationState
    appointment: Optional[Appointment] = None
    decision: Optional[ConflictDecision] = None
    error: Optional[SchedulingError] = None
    displaced: Optional[Appointment] = None
    late_cancellation: bool = False

    @property
    def ok(self) -> bool:
        return self.state in (MutationState.confirmed, MutationState.pending_sync)

    def message(self, tz=None) -> str:
        if self.error is not None:
            return str(self.error)
        if self.decision is not None and not self.decision.accepted and not self.ok:
            return self.decision.describe(tz)
        if self.state == MutationState.pending_sync:
            return "Saved on this device, will sync when the connection is back"
        if self.state == MutationState.confirmed:
            return "Saved"
        return self.state.value


@dataclass
class Commit:
    """One optimistic change still waiting for the store's answer."""

    appointment_id: str
    snapshot: Snapshot
    settled: bool = False


class MutationPipeline:
    """
    Runs create / move / status / delete intents for one company.

    Every intent is validated and checked against the schedule index, then
    applied to the index and announced to observers before the store is
    written. A store refusal rolls the index back to its snapshot; an
    unreachable store (or a write slower than ``timeout``) sends the
    mutation to the offline queue instead.

    All checks and the local apply of one intent happen without yielding to
    the event loop, so two intents cannot interleave between check and
    apply. Store writes for the same appointment are serialized.
    """

    def __init__(self, company_id: str, store, settings_provider, index: ScheduleIndex,
                 sync_queue: OfflineSyncQueue, connectivity: ConnectivityMonitor,
                 clock: Callable[[], datetime] = utcnow, timeout: Optional[float] = None,
                 known_professionals: Optional[Iterable[str]] = None,
                 trash_retention_days: int = 30):
        if not company_id:
            raise ValueError("MutationPipeline needs a resolved company_id")
        self.company_id = company_id
        self.store = store
        self.settings_provider = settings_provider
        self.index = index
        self.resolver = ConflictResolver(index)
        self.sync_queue = sync_queue
        self.connectivity = connectivity
        self.clock = clock
        self.timeout = timeout
        self.known_professionals = set(known_professionals) if known_professionals is not None else None
        self.trash_retention_days = trash_retention_days

        self._settings: Optional[AgendaSettings] = None
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._in_flight: Dict[str, List[Commit]] = {}
        # soft deletes the store has not seen yet
        self._trashed: Dict[str, Appointment] = {}
        self._observers: List[Callable[[MutationEvent], None]] = []
        sync_queue.on_failure(self._forget_dropped)

    # --- observers ---

    def subscribe(self, observer: Callable[[MutationEvent], None]) -> None:
        self._observers.append(observer)

    def _emit(self, action: str, appointment_id: str, state: MutationState,
              appointment: Optional[Appointment] = None, error: Optional[SchedulingError] = None) -> None:
        event = MutationEvent(action, appointment_id, state, appointment, error)
        for observer in list(self._observers):
            observer(event)

    # --- loading ---

    async def load_day(self, day: date) -> List[Appointment]:
        appointments = await self._call(self.store.load_day_appointments(self.company_id, day))
        self.index.load_day(day, appointments)
        return appointments

    async def settings(self, refresh: bool = False) -> AgendaSettings:
        if self._settings is None or refresh:
            try:
                self._settings = await self._call(self.settings_provider.get_agenda_settings(self.company_id))
            except OFFLINE_ERRORS:
                if self._settings is None:
                    logger.warning("Agenda settings unreachable, using defaults (no overbooking)")
                    self._settings = AgendaSettings()
        return self._settings

    async def _ensure_loaded(self, start: datetime, end: datetime) -> None:
        day = local_day(start, self.index.tz) - timedelta(days=1)
        last = local_day(max(start, end), self.index.tz)
        while day <= last:
            if not self.index.is_loaded(day):
                try:
                    await self.load_day(day)
                except OFFLINE_ERRORS:
                    logger.warning(f"Could not load {day} while offline, checking against local data only")
            day += timedelta(days=1)

    async def _find(self, appointment_id: str, include_deleted: bool = False) -> Optional[Appointment]:
        trashed = self._trashed.get(appointment_id)
        if trashed is not None:
            return trashed.model_copy(deep=True) if include_deleted else None
        found = None if include_deleted else self.index.get(appointment_id)
        if found is not None:
            return found
        try:
            found = await self._call(self.store.load_appointment(self.company_id, appointment_id))
        except OFFLINE_ERRORS:
            logger.warning(f"Appointment {appointment_id} is not cached and the store is unreachable")
            return None
        if found is not None and found.deleted_at is not None and not include_deleted:
            return None
        return found

    # --- intents ---

    async def create_appointment(self, draft: NewAppointment, choice: Optional[ConflictChoice] = None,
                                 waitlist_entry_id: Optional[str] = None) -> MutationResult:
        action = "create_appointment"
        appointment = Appointment(
            company_id=self.company_id,
            professional_id=draft.professional_id,
            client_id=draft.client_id,
            services=draft.services,
            start_at=draft.start_at,
            end_at=compute_end(draft.start_at, draft.services),
            notes=draft.notes,
            client_name=draft.client_name,
            professional_name=draft.professional_name,
        )
        self._emit(action, appointment.id, MutationState.pending, appointment)
        self._emit(action, appointment.id, MutationState.validating, appointment)

        error = (
            self._check_professional(appointment.professional_id)
            or self._check_services(appointment)
            or self._check_start(appointment.start_at)
        )
        if error:
            return self._invalid(action, appointment, error)

        def to_mutation(candidate: Appointment) -> CreateAppointment:
            return CreateAppointment(
                company_id=self.company_id,
                appointment_id=candidate.id,
                appointment=candidate,
                waitlist_entry_id=waitlist_entry_id,
            )

        if appointment.is_walk_in:
            # walk-ins never occupy grid time
            return await self._accept_and_commit(action, appointment, to_mutation)

        await self._ensure_loaded(appointment.start_at, appointment.end_at)
        settings = await self.settings()
        return await self._place(action, appointment, to_mutation, choice, settings)

    async def create_recurring(self, draft: NewAppointment, rule: RecurrenceRule) -> List[MutationResult]:
        """One create per occurrence; conflicting occurrences are reported, never forced."""
        if draft.start_at is None:
            error = ValidationError("start_at", "a recurring series needs a start time")
            return [self._invalid("create_appointment", None, error)]
        try:
            starts = expand_recurrence(draft.start_at, rule)
        except ValueError as exc:
            return [self._invalid("create_appointment", None, ValidationError("rule", str(exc)))]

        results = []
        for start in starts:
            results.append(await self.create_appointment(draft.model_copy(update={"start_at": start})))
        created = sum(1 for r in results if r.ok)
        logger.info(f"Recurring series: {created}/{len(results)} occurrences created")
        return results

    async def move_appointment(self, appointment_id: str, new_start_at: datetime,
                               new_professional_id: Optional[str] = None,
                               choice: Optional[ConflictChoice] = None) -> MutationResult:
        action = "move_appointment"
        self._emit(action, appointment_id, MutationState.pending)
        self._emit(action, appointment_id, MutationState.validating)

        current = await self._find(appointment_id)
        if current is None:
            return self._invalid(action, None, ValidationError("appointment_id", f"appointment {appointment_id} not found"),
                                 appointment_id)
        professional_id = new_professional_id or current.professional_id
        error = (
            self._check_not_terminal(current, "moved")
            or self._check_professional(professional_id)
            or self._check_services(current)
            or self._check_start(new_start_at)
        )
        if error:
            return self._invalid(action, current, error)

        new_end_at = compute_end(new_start_at, current.services)
        await self._ensure_loaded(new_start_at, new_end_at)
        settings = await self.settings()

        # the index may have moved on while we were loading
        current = self.index.get(appointment_id) or current
        candidate = current.model_copy(update={
            "professional_id": professional_id,
            "start_at": new_start_at,
            "end_at": compute_end(new_start_at, current.services),
            "overbooked": False,
        })
        return await self._place(action, candidate, self._move_mutation, choice, settings)

    async def move_from_drop(self, source: DragSource, target: DropTarget,
                             choice: Optional[ConflictChoice] = None) -> MutationResult:
        start = drop_target_start(target.date, target.time_slot, self.index.tz)
        return await self.move_appointment(source.appointment_id, start, target.professional_id, choice)

    async def set_status(self, appointment_id: str, status: AppointmentStatus) -> MutationResult:
        action = "set_status"
        self._emit(action, appointment_id, MutationState.pending)
        self._emit(action, appointment_id, MutationState.validating)

        current = await self._find(appointment_id)
        if current is None:
            return self._invalid(action, None, ValidationError("appointment_id", f"appointment {appointment_id} not found"),
                                 appointment_id)
        allowed = STATUS_TRANSITIONS[current.status.value]
        if status.value not in allowed:
            error = ValidationError("status", f"cannot change a {current.status.value} appointment to {status.value}")
            return self._invalid(action, current, error)

        late = False
        if status == AppointmentStatus.canceled and current.start_at is not None:
            settings = await self.settings()
            late = is_late_cancellation(current.start_at, self.clock(), settings.late_cancel_limit_minutes)

        current = self.index.get(appointment_id) or current
        candidate = current.model_copy(update={"status": status})
        result = await self._accept_and_commit(
            action, candidate,
            lambda c: SetStatus(company_id=self.company_id, appointment_id=c.id, status=status),
        )
        result.late_cancellation = late
        if late:
            logger.info(f"Late cancellation of appointment {appointment_id}")
        return result

    async def soft_delete(self, appointment_id: str) -> MutationResult:
        action = "soft_delete"
        self._emit(action, appointment_id, MutationState.pending)
        self._emit(action, appointment_id, MutationState.validating)

        current = await self._find(appointment_id)
        if current is None:
            return self._invalid(action, None, ValidationError("appointment_id", f"appointment {appointment_id} not found"),
                                 appointment_id)
        deleted_at = self.clock()
        candidate = current.model_copy(update={"deleted_at": deleted_at})
        result = await self._accept_and_commit(
            action, candidate,
            lambda c: SoftDelete(company_id=self.company_id, appointment_id=c.id, deleted_at=deleted_at),
        )
        if result.state == MutationState.pending_sync:
            self._trashed[appointment_id] = candidate
        return result

    async def restore(self, appointment_id: str, choice: Optional[ConflictChoice] = None) -> MutationResult:
        """Bring back a soft-deleted appointment, re-checking its old slot first."""
        action = "restore"
        self._emit(action, appointment_id, MutationState.pending)
        self._emit(action, appointment_id, MutationState.validating)

        current = await self._find(appointment_id, include_deleted=True)
        if current is None:
            return self._invalid(action, None, ValidationError("appointment_id", f"appointment {appointment_id} not found"),
                                 appointment_id)
        if current.deleted_at is None:
            return self._invalid(action, current, ValidationError("deleted_at", "appointment is not deleted"))
        if current.deleted_at < self.clock() - timedelta(days=self.trash_retention_days):
            error = ValidationError("deleted_at", f"deleted more than {self.trash_retention_days} days ago")
            return self._invalid(action, current, error)

        candidate = current.model_copy(update={"deleted_at": None, "overbooked": False})

        def to_mutation(c: Appointment) -> Restore:
            return Restore(company_id=self.company_id, appointment_id=c.id, overbooked=c.overbooked)

        if candidate.is_walk_in or candidate.is_terminal:
            result = await self._accept_and_commit(action, candidate, to_mutation)
        else:
            await self._ensure_loaded(candidate.start_at, candidate.end_at)
            settings = await self.settings()
            result = await self._place(action, candidate, to_mutation, choice, settings)
        if result.ok:
            self._trashed.pop(appointment_id, None)
        return result

    # --- placement and commit ---

    async def _place(self, action: str, candidate: Appointment, to_mutation,
                     choice: Optional[ConflictChoice], settings: AgendaSettings) -> MutationResult:
        # no awaits until the candidate (and any displaced appointment) is applied
        decision = self.resolver.resolve(
            candidate.professional_id, candidate.start_at, candidate.end_at,
            exclude_id=candidate.id, allow_overbooking=settings.allow_overbooking,
        )
        displaced: Optional[Appointment] = None
        displaced_commit: Optional[Commit] = None

        if decision.outcome == Outcome.reject or (decision.outcome == Outcome.requires_decision and choice is None):
            state = MutationState.rejected if decision.outcome == Outcome.reject else MutationState.requires_decision
            self._emit(action, candidate.id, state, candidate)
            return MutationResult(action, state, candidate, decision=decision)

        if decision.outcome == Outcome.requires_decision and choice == ConflictChoice.force_overbook:
            candidate = candidate.model_copy(update={"overbooked": True})
            logger.info(f"Overbooking {candidate.id} over {decision.conflicting.id}")
        elif decision.outcome == Outcome.requires_decision:
            displaced = decision.conflicting.model_copy(update={
                "start_at": None, "end_at": None, "overbooked": False,
            })
            displaced_commit = self._apply("move_appointment", displaced)
            logger.info(f"Substituting {decision.conflicting.id} with {candidate.id}, moved it to walk-ins")

            follow_up = self.resolver.resolve(
                candidate.professional_id, candidate.start_at, candidate.end_at,
                exclude_id=candidate.id, allow_overbooking=settings.allow_overbooking,
            )
            if not follow_up.accepted:
                # the displacement stands on its own; the next conflict needs its own decision
                state, error = await self._persist(self._move_mutation(displaced), displaced_commit)
                if state == MutationState.rolled_back:
                    self._emit(action, candidate.id, MutationState.rolled_back, candidate, error)
                    return MutationResult(action, MutationState.rolled_back, candidate, decision=decision, error=error)
                self._emit(action, candidate.id, MutationState.requires_decision, candidate)
                return MutationResult(action, MutationState.requires_decision, candidate,
                                      decision=follow_up, displaced=displaced)

        self._emit(action, candidate.id, MutationState.accepted, candidate)
        commit = self._apply(action, candidate)

        if displaced is not None:
            state, error = await self._persist(self._move_mutation(displaced), displaced_commit)
            if state == MutationState.rolled_back:
                self._rollback(action, candidate.id, commit, error, candidate)
                return MutationResult(action, MutationState.rolled_back, candidate, decision=decision, error=error)

        state, error = await self._persist(to_mutation(candidate), commit)
        return MutationResult(action, state, self.index.get(candidate.id) or candidate,
                              decision=decision, error=error, displaced=displaced)

    async def _accept_and_commit(self, action: str, candidate: Appointment, to_mutation) -> MutationResult:
        self._emit(action, candidate.id, MutationState.accepted, candidate)
        commit = self._apply(action, candidate)
        state, error = await self._persist(to_mutation(candidate), commit)
        return MutationResult(action, state, candidate, error=error)

    def _apply(self, action: str, appointment: Appointment) -> Commit:
        self._emit(action, appointment.id, MutationState.applying, appointment)
        snapshot = self.index.upsert(appointment)
        commit = Commit(appointment.id, snapshot)
        self._in_flight.setdefault(appointment.id, []).append(commit)
        self._emit(action, appointment.id, MutationState.optimistically_applied, appointment)
        return commit

    def _settle(self, commit: Commit) -> None:
        commit.settled = True
        chain = self._in_flight.get(commit.appointment_id, [])
        while chain and chain[0].settled:
            chain.pop(0)
        if not chain:
            self._in_flight.pop(commit.appointment_id, None)

    def _rollback(self, action: str, appointment_id: str, commit: Commit,
                  error: Optional[SchedulingError], appointment: Optional[Appointment] = None) -> None:
        """
        Undo ``commit`` in the index.

        Only the newest change for an appointment touches the index. A
        refused older change hands its snapshot to the next change still
        waiting on the store, so a chain of refusals ends on the last state
        the store accepted.
        """
        chain = self._in_flight.get(appointment_id, [])
        position = next((i for i, c in enumerate(chain) if c is commit), len(chain))
        newer = chain[position + 1:]
        if not newer:
            self.index.restore(commit.snapshot)
        elif not newer[0].settled:
            newer[0].snapshot = commit.snapshot
            logger.info(f"Not rolling back {appointment_id} yet: a newer change is still being saved")
        else:
            logger.info(f"Not rolling back {appointment_id}: a newer change already reached the store")
        if position < len(chain):
            del chain[position]
        self._settle(commit)
        self._emit(action, appointment_id, MutationState.rolled_back, appointment, error)

    async def _persist(self, mutation, commit: Commit) -> Tuple[MutationState, Optional[SchedulingError]]:
        appointment_id = mutation.appointment_id
        lock = self._locks.setdefault(appointment_id, asyncio.Lock())
        self._lock_users[appointment_id] = self._lock_users.get(appointment_id, 0) + 1
        try:
            async with lock:
                return await self._write(mutation, commit)
        finally:
            self._lock_users[appointment_id] -= 1
            if not self._lock_users[appointment_id]:
                del self._lock_users[appointment_id]
                del self._locks[appointment_id]

    async def _write(self, mutation, commit: Commit) -> Tuple[MutationState, Optional[SchedulingError]]:
        action = mutation.kind
        appointment_id = mutation.appointment_id
        appointment = self.index.get(appointment_id)
        if not self.connectivity.is_online:
            return await self._queue(mutation, commit, appointment)
        if await self.sync_queue.has_pending(appointment_id):
            # older queued writes for this appointment must land first
            queued = await self._queue(mutation, commit, appointment)
            self.sync_queue.schedule_drain()
            return queued
        try:
            await self._call(mutation.send(self.store))
        except OFFLINE_ERRORS as exc:
            logger.warning(f"Store unreachable for {action} on {appointment_id} ({exc!r}), queueing")
            self.connectivity.set_online(False)
            return await self._queue(mutation, commit, appointment)
        except PersistenceError as exc:
            logger.error(f"Store refused {action} on {appointment_id}: {exc}")
            if exc.appointment_id is None:
                exc.appointment_id = appointment_id
            self._rollback(action, appointment_id, commit, exc, appointment)
            return MutationState.rolled_back, exc

        self._settle(commit)
        self._emit(action, appointment_id, MutationState.confirmed, appointment)
        return MutationState.confirmed, None

    async def _queue(self, mutation, commit: Commit, appointment: Optional[Appointment]):
        await self.sync_queue.enqueue(mutation)
        self._settle(commit)
        self._emit(mutation.kind, mutation.appointment_id, MutationState.pending_sync, appointment)
        return MutationState.pending_sync, None

    def _forget_dropped(self, error: SyncExhaustedError) -> None:
        if error.item.mutation.kind == "soft_delete":
            self._trashed.pop(error.item.mutation.appointment_id, None)

    async def _call(self, awaitable):
        if self.timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, self.timeout)

    def _move_mutation(self, appointment: Appointment) -> MoveAppointment:
        return MoveAppointment(
            company_id=self.company_id,
            appointment_id=appointment.id,
            professional_id=appointment.professional_id,
            start_at=appointment.start_at,
            end_at=appointment.end_at,
            overbooked=appointment.overbooked,
        )

    # --- validation ---

    def _invalid(self, action: str, appointment: Optional[Appointment], error: ValidationError,
                 appointment_id: Optional[str] = None) -> MutationResult:
        appointment_id = appointment.id if appointment is not None else (appointment_id or "")
        logger.info(f"Rejected {action} for {appointment_id or 'new appointment'}: {error}")
        self._emit(action, appointment_id, MutationState.rejected, appointment, error)
        return MutationResult(action, MutationState.rejected, appointment, error=error)

    def _check_professional(self, professional_id: Optional[str]) -> Optional[ValidationError]:
        if not professional_id:
            return ValidationError("professional_id", "a professional is required")
        if self.known_professionals is not None and professional_id not in self.known_professionals:
            return ValidationError("professional_id", f"unknown professional {professional_id}")
        return None

    @staticmethod
    def _check_services(appointment: Appointment) -> Optional[ValidationError]:
        if not appointment.services:
            return ValidationError("services", "at least one service is required")
        return None

    @staticmethod
    def _check_start(start_at: Optional[datetime]) -> Optional[ValidationError]:
        if start_at is not None and start_at.tzinfo is None:
            return ValidationError("start_at", "start time must include a UTC offset")
        return None

    @staticmethod
    def _check_not_terminal(appointment: Appointment, verb: str) -> Optional[ValidationError]:
        if appointment.is_terminal:
            return ValidationError("status", f"a {appointment.status.value} appointment cannot be {verb}")
        return None
