import asyncio
import itertools
from datetime import date, timedelta

import pytest

from app.core import compute_end, overlaps
from app.scheduling.conflicts import Outcome
from app.scheduling.errors import PersistenceError, ValidationError
from app.scheduling.index import ScheduleIndex
from app.scheduling.pipeline import MutationPipeline, MutationState
from app.schemas import (
    AppointmentStatus,
    ConflictChoice,
    DragSource,
    DropTarget,
    RecurrenceRule,
    RepetitionType,
)

from conftest import COMPANY, UTC, at, draft, service

DAY = date(2024, 6, 3)


async def book(pipeline, professional_id, start, *services, **extra):
    result = await pipeline.create_appointment(draft(professional_id, start, *services), **extra)
    assert result.ok, result.message()
    return result.appointment


def state_of(index):
    return index.buckets(), [a.id for a in index.unscheduled()]


def test_pipeline_needs_a_company(store, settings, index, sync_queue, connectivity):
    with pytest.raises(ValueError):
        MutationPipeline("", store, settings, index, sync_queue, connectivity)


async def test_create_derives_end_from_services(pipeline, store):
    result = await pipeline.create_appointment(draft("ana", at(9), service(30), service(15, buffer=5)))

    assert result.state == MutationState.confirmed
    assert result.appointment.end_at == at(9, 50)
    assert store.appointments[result.appointment.id].end_at == at(9, 50)


async def test_create_emits_states_in_order(pipeline):
    seen = []
    pipeline.subscribe(lambda event: seen.append(event.state))

    await book(pipeline, "ana", at(9))

    assert seen == [
        MutationState.pending,
        MutationState.validating,
        MutationState.accepted,
        MutationState.applying,
        MutationState.optimistically_applied,
        MutationState.confirmed,
    ]


async def test_overlap_rejected_with_conflicting_appointment(pipeline, store, index):
    existing = await book(pipeline, "ana", at(10), service(20, buffer=10))
    before = state_of(index)
    writes = len(store.writes)

    result = await pipeline.create_appointment(draft("ana", at(10, 15), service(25, buffer=5)))

    assert result.state == MutationState.rejected
    assert result.decision.outcome == Outcome.reject
    assert result.decision.conflicting.id == existing.id
    assert existing.id in result.message()
    assert state_of(index) == before
    assert len(store.writes) == writes


async def test_forced_overbook_keeps_both(pipeline, settings, index):
    settings.value.allow_overbooking = True
    existing = await book(pipeline, "ana", at(10), service(20, buffer=10))

    pending = await pipeline.create_appointment(draft("ana", at(10, 15), service(25, buffer=5)))
    assert pending.state == MutationState.requires_decision
    assert pending.decision.conflicting.id == existing.id

    forced = await pipeline.create_appointment(
        draft("ana", at(10, 15), service(25, buffer=5)),
        choice=ConflictChoice.force_overbook,
    )

    assert forced.state == MutationState.confirmed
    assert forced.appointment.overbooked is True
    assert [a.id for a in index.appointments_for("ana", DAY)] == [existing.id, forced.appointment.id]


async def test_choice_ignored_when_overbooking_disabled(pipeline):
    await book(pipeline, "ana", at(10))

    result = await pipeline.create_appointment(draft("ana", at(10)), choice=ConflictChoice.force_overbook)

    assert result.state == MutationState.rejected


async def test_substitute_moves_conflict_to_walk_ins(pipeline, settings, store, index):
    settings.value.allow_overbooking = True
    existing = await book(pipeline, "ana", at(10))

    result = await pipeline.create_appointment(draft("ana", at(10)), choice=ConflictChoice.substitute)

    assert result.state == MutationState.confirmed
    assert result.displaced.id == existing.id
    assert [a.id for a in index.unscheduled()] == [existing.id]
    assert store.appointments[existing.id].start_at is None
    assert [a.id for a in index.appointments_for("ana", DAY)] == [result.appointment.id]


async def test_substitute_with_second_conflict_asks_again(pipeline, settings, index):
    settings.value.allow_overbooking = True
    first = await book(pipeline, "ana", at(10))
    second = await book(pipeline, "ana", at(10, 30))

    result = await pipeline.create_appointment(draft("ana", at(10), service(60)), choice=ConflictChoice.substitute)

    assert result.state == MutationState.requires_decision
    assert result.displaced.id == first.id
    assert result.decision.conflicting.id == second.id
    assert result.appointment.id not in index


async def test_walk_ins_never_conflict(pipeline, index):
    for _ in range(5):
        result = await pipeline.create_appointment(draft("ana", None))
        assert result.state == MutationState.confirmed
        assert result.decision is None

    await book(pipeline, "ana", at(10))

    assert len(index.unscheduled()) == 5


@pytest.mark.parametrize("kwargs, field", [
    ({"professional_id": "zoe"}, "professional_id"),
    ({"professional_id": ""}, "professional_id"),
])
async def test_unknown_professional_is_invalid(pipeline, kwargs, field):
    result = await pipeline.create_appointment(draft(start_at=at(9), **kwargs))

    assert result.state == MutationState.rejected
    assert isinstance(result.error, ValidationError)
    assert result.error.field == field


async def test_naive_start_is_invalid(pipeline):
    result = await pipeline.create_appointment(draft("ana", at(9).replace(tzinfo=None)))

    assert result.error.field == "start_at"


async def test_appointment_without_services_is_invalid(pipeline):
    result = await pipeline.create_appointment(draft("ana", at(9)).model_copy(update={"services": []}))

    assert result.error.field == "services"


async def test_move_failure_rolls_back(pipeline, store, index):
    appointment = await book(pipeline, "ana", at(9))
    before = state_of(index)
    store.failures.append(PersistenceError("row locked"))

    result = await pipeline.move_appointment(appointment.id, at(14), new_professional_id="bia")

    assert result.state == MutationState.rolled_back
    assert isinstance(result.error, PersistenceError)
    assert result.error.appointment_id == appointment.id
    assert state_of(index) == before
    restored = index.get(appointment.id)
    assert (restored.professional_id, restored.start_at) == ("ana", at(9))


async def test_move_recomputes_end(pipeline, index):
    appointment = await book(pipeline, "ana", at(9), service(40, buffer=5))

    result = await pipeline.move_appointment(appointment.id, at(15))

    assert result.ok
    assert index.get(appointment.id).end_at == at(15, 45)


async def test_drop_moves_to_local_slot(pipeline, index):
    appointment = await book(pipeline, "ana", at(9))

    result = await pipeline.move_from_drop(
        DragSource(appointment_id=appointment.id),
        DropTarget(professional_id="bia", time_slot="16:30", date=DAY),
    )

    assert result.ok
    moved = index.get(appointment.id)
    assert (moved.professional_id, moved.start_at) == ("bia", at(16, 30))


async def test_finished_appointment_cannot_move(pipeline):
    appointment = await book(pipeline, "ana", at(9))
    await pipeline.set_status(appointment.id, AppointmentStatus.done)

    result = await pipeline.move_appointment(appointment.id, at(11))

    assert result.state == MutationState.rejected
    assert result.error.field == "status"


async def test_terminal_status_is_final(pipeline):
    appointment = await book(pipeline, "ana", at(9))
    await pipeline.set_status(appointment.id, AppointmentStatus.no_show)

    result = await pipeline.set_status(appointment.id, AppointmentStatus.scheduled)

    assert result.state == MutationState.rejected


async def test_late_cancellation_is_flagged(pipeline, clock):
    appointment = await book(pipeline, "ana", at(9))
    clock.now = at(8)

    result = await pipeline.set_status(appointment.id, AppointmentStatus.canceled)

    assert result.ok
    assert result.late_cancellation is True


async def test_canceled_slot_can_be_booked_again(pipeline):
    appointment = await book(pipeline, "ana", at(9))
    await pipeline.set_status(appointment.id, AppointmentStatus.canceled)

    result = await pipeline.create_appointment(draft("ana", at(9)))

    assert result.ok


async def test_soft_delete_and_restore(pipeline, store, index):
    appointment = await book(pipeline, "ana", at(9))

    deleted = await pipeline.soft_delete(appointment.id)
    assert deleted.ok
    assert appointment.id not in index
    assert store.appointments[appointment.id].deleted_at is not None

    restored = await pipeline.restore(appointment.id)
    assert restored.ok
    assert appointment.id in index
    assert store.appointments[appointment.id].deleted_at is None


async def test_restore_checks_the_old_slot(pipeline):
    appointment = await book(pipeline, "ana", at(9))
    await pipeline.soft_delete(appointment.id)
    taken = await book(pipeline, "ana", at(9))

    result = await pipeline.restore(appointment.id)

    assert result.state == MutationState.rejected
    assert result.decision.conflicting.id == taken.id


async def test_restore_after_retention_is_refused(pipeline, clock):
    appointment = await book(pipeline, "ana", at(9))
    await pipeline.soft_delete(appointment.id)
    clock.now = clock.now + timedelta(days=31)

    result = await pipeline.restore(appointment.id)

    assert result.error.field == "deleted_at"


async def test_offline_write_is_queued_and_kept_locally(pipeline, connectivity, queue_storage, store, index):
    connectivity.set_online(False)

    result = await pipeline.create_appointment(draft("ana", at(9)))

    assert result.state == MutationState.pending_sync
    assert result.appointment.id in index
    assert store.appointments == {}
    assert [item.action for item in queue_storage.items] == ["create_appointment"]


async def test_unreachable_store_queues_instead_of_rolling_back(pipeline, store, queue_storage, index):
    store.failures.append(ConnectionError("reset by peer"))

    result = await pipeline.create_appointment(draft("ana", at(9)))

    assert result.state == MutationState.pending_sync
    assert result.appointment.id in index
    assert len(queue_storage.items) == 1


async def test_slow_store_counts_as_offline(store, settings, sync_queue, connectivity, clock, queue_storage):
    store.write_delay = 0.2
    pipeline = MutationPipeline(
        COMPANY, store, settings, ScheduleIndex(UTC), sync_queue, connectivity,
        clock=clock, timeout=0.01,
    )

    result = await pipeline.create_appointment(draft("ana", at(9)))

    assert result.state == MutationState.pending_sync
    assert len(queue_storage.items) == 1


async def test_writes_queue_behind_pending_ones(pipeline, connectivity, queue_storage, sync_queue, store):
    connectivity.set_online(False)
    created = await pipeline.create_appointment(draft("ana", at(9)))
    connectivity.set_online(True)

    moved = await pipeline.move_appointment(created.appointment.id, at(11))

    assert moved.state == MutationState.pending_sync
    assert [item.action for item in queue_storage.items] == ["create_appointment", "move_appointment"]

    report = await sync_queue.drain()

    assert len(report.synced) == 2
    assert queue_storage.items == []
    assert store.appointments[created.appointment.id].start_at == at(11)


async def test_superseded_failure_does_not_roll_back(pipeline, store, index):
    appointment = await book(pipeline, "ana", at(9))
    store.failures.append(PersistenceError("conflict on server"))

    first, second = await asyncio.gather(
        pipeline.move_appointment(appointment.id, at(11)),
        pipeline.move_appointment(appointment.id, at(14)),
    )

    assert first.state == MutationState.rolled_back
    assert second.state == MutationState.confirmed
    assert index.get(appointment.id).start_at == at(14)
    assert store.appointments[appointment.id].start_at == at(14)


async def test_chain_of_refused_moves_returns_to_saved_time(pipeline, store, index):
    appointment = await book(pipeline, "ana", at(9))
    store.failures.extend([PersistenceError("conflict on server"), PersistenceError("conflict on server")])

    first, second = await asyncio.gather(
        pipeline.move_appointment(appointment.id, at(11)),
        pipeline.move_appointment(appointment.id, at(14)),
    )

    assert first.state == MutationState.rolled_back
    assert second.state == MutationState.rolled_back
    assert store.appointments[appointment.id].start_at == at(9)
    assert index.get(appointment.id).start_at == at(9)


async def test_refused_move_after_saved_one_keeps_saved_time(pipeline, store, index):
    appointment = await book(pipeline, "ana", at(9))
    store.failures.extend([None, PersistenceError("conflict on server")])

    first, second = await asyncio.gather(
        pipeline.move_appointment(appointment.id, at(11)),
        pipeline.move_appointment(appointment.id, at(14)),
    )

    assert first.state == MutationState.confirmed
    assert second.state == MutationState.rolled_back
    assert index.get(appointment.id).start_at == at(11)


async def test_bookkeeping_is_released_after_writes(pipeline):
    appointment = await book(pipeline, "ana", at(9))
    await asyncio.gather(
        pipeline.move_appointment(appointment.id, at(11)),
        pipeline.move_appointment(appointment.id, at(14)),
    )

    assert pipeline._locks == {}
    assert pipeline._in_flight == {}


async def test_unreachable_store_marks_connectivity_lost(pipeline, store, connectivity, queue_storage):
    store.failures.append(ConnectionError("reset by peer"))
    await pipeline.create_appointment(draft("ana", at(9)))

    later = await pipeline.create_appointment(draft("bia", at(9)))

    assert connectivity.is_online is False
    assert later.state == MutationState.pending_sync
    assert len(queue_storage.items) == 2


async def test_offline_delete_can_be_undone(pipeline, connectivity, store, index, queue_storage, sync_queue):
    appointment = await book(pipeline, "ana", at(9))
    connectivity.set_online(False)

    deleted = await pipeline.soft_delete(appointment.id)
    restored = await pipeline.restore(appointment.id)

    assert deleted.state == MutationState.pending_sync
    assert restored.state == MutationState.pending_sync
    assert index.get(appointment.id).start_at == at(9)
    assert [item.action for item in queue_storage.items] == ["soft_delete", "restore"]

    connectivity.set_online(True)
    await sync_queue.drain()

    assert store.appointments[appointment.id].deleted_at is None


async def test_offline_deleted_appointment_is_not_moved(pipeline, connectivity):
    appointment = await book(pipeline, "ana", at(9))
    connectivity.set_online(False)
    await pipeline.soft_delete(appointment.id)

    moved = await pipeline.move_appointment(appointment.id, at(11))

    assert moved.state == MutationState.rejected


async def test_recurring_series_reports_each_occurrence(pipeline):
    await book(pipeline, "ana", at(9, day=10))

    results = await pipeline.create_recurring(
        draft("ana", at(9)),
        RecurrenceRule(type=RepetitionType.weekly, count=3),
    )

    assert [r.state for r in results] == [
        MutationState.confirmed,
        MutationState.rejected,
        MutationState.confirmed,
    ]


async def test_recurring_needs_start(pipeline):
    results = await pipeline.create_recurring(draft("ana", None), RecurrenceRule(type=RepetitionType.weekly, count=2))

    assert results[0].error.field == "start_at"


async def test_settings_fall_back_to_no_overbooking_when_unreachable(pipeline, settings):
    async def unreachable(company_id):
        raise ConnectionError("down")

    settings.get_agenda_settings = unreachable

    assert (await pipeline.settings()).allow_overbooking is False


async def test_no_silent_overlap_after_many_mutations(pipeline, index, settings):
    settings.value.allow_overbooking = True
    starts = [at(9), at(9, 15), at(9, 30), at(10), at(10, 10), at(11)]
    booked = []
    for professional_id, start in itertools.product(["ana", "bia"], starts):
        result = await pipeline.create_appointment(draft(professional_id, start, service(25, buffer=5)))
        if result.ok:
            booked.append(result.appointment.id)
    for appointment_id, start in zip(booked, reversed(starts)):
        await pipeline.move_appointment(appointment_id, start, choice=ConflictChoice.substitute)

    for professional_id in ("ana", "bia"):
        live = [
            a for a in index.appointments_for(professional_id, DAY)
            if not a.is_terminal and not a.overbooked
        ]
        for a in live:
            assert a.end_at == compute_end(a.start_at, a.services)
        for a, b in itertools.combinations(live, 2):
            assert not overlaps(a.start_at, a.end_at, b.start_at, b.end_at)
