import asyncio

from app.scheduling.errors import PersistenceError, SyncExhaustedError
from app.scheduling.mutations import MoveAppointment, SetStatus, mutation_adapter
from app.scheduling.pipeline import MutationState
from app.scheduling.sync_queue import SyncQueueItem
from app.schemas import AppointmentStatus

from conftest import COMPANY, NOW, at, draft


def set_status(appointment_id, status=AppointmentStatus.done):
    return SetStatus(company_id=COMPANY, appointment_id=appointment_id, status=status)


async def test_status_change_dropped_after_fourth_failure(pipeline, connectivity, store, sync_queue, queue_storage):
    created = await pipeline.create_appointment(draft("ana", at(9)))
    appointment_id = created.appointment.id
    errors = []
    sync_queue.on_failure(errors.append)

    connectivity.set_online(False)
    result = await pipeline.set_status(appointment_id, AppointmentStatus.in_progress)
    assert result.state == MutationState.pending_sync

    connectivity.set_online(True)
    store.failures = [PersistenceError("server error") for _ in range(10)]

    reports = []
    for _ in range(5):
        reports.append(await sync_queue.drain())
        await asyncio.sleep(0)

    attempts = [w for w in store.writes if w[0] == "update"]
    assert len(attempts) == 4
    assert [len(r.failed) for r in reports[:3]] == [1, 1, 1]
    assert len(reports[3].dropped) == 1
    assert queue_storage.items == []
    assert len(errors) == 1
    assert isinstance(errors[0], SyncExhaustedError)
    assert errors[0].item.retry_count == 4
    assert list(sync_queue.dropped) == errors


async def test_dropped_delete_is_no_longer_restorable(pipeline, connectivity, store, sync_queue):
    created = await pipeline.create_appointment(draft("ana", at(9)))
    connectivity.set_online(False)
    await pipeline.soft_delete(created.appointment.id)

    connectivity.set_online(True)
    store.failures = [PersistenceError("server error") for _ in range(10)]
    for _ in range(5):
        await sync_queue.drain()

    restored = await pipeline.restore(created.appointment.id)

    assert restored.state == MutationState.rejected
    assert restored.error.field == "deleted_at"


async def test_drain_is_fifo(sync_queue, store, queue_storage):
    store.appointments = {}
    first = await sync_queue.enqueue(set_status("a1"))
    second = await sync_queue.enqueue(set_status("a2"))
    store.failures = [PersistenceError("missing"), PersistenceError("missing")]

    report = await sync_queue.drain()

    assert [w[1] for w in store.writes] == ["a1", "a2"]
    assert report.failed == [first, second]


async def test_failure_holds_back_later_writes_for_same_appointment(sync_queue, store, queue_storage):
    await sync_queue.enqueue(set_status("a1", AppointmentStatus.in_progress))
    await sync_queue.enqueue(set_status("a1", AppointmentStatus.done))
    store.failures = [ConnectionError("flaky")]

    report = await sync_queue.drain()

    assert len(store.writes) == 1
    assert len(report.failed) == 1
    assert len(queue_storage.items) == 2


async def test_drain_does_nothing_offline(sync_queue, connectivity, store):
    await sync_queue.enqueue(set_status("a1"))
    connectivity.set_online(False)

    assert await sync_queue.drain() is None
    assert store.writes == []


async def test_reconnect_triggers_drain(pipeline, connectivity, store, queue_storage):
    connectivity.set_online(False)
    created = await pipeline.create_appointment(draft("ana", at(9)))

    connectivity.set_online(True)
    for _ in range(5):
        await asyncio.sleep(0)

    assert queue_storage.items == []
    assert created.appointment.id in store.appointments


async def test_concurrent_drains_run_once(sync_queue, store):
    await sync_queue.enqueue(set_status("a1"))
    store.appointments = {}
    store.failures = [PersistenceError("nope")]

    first, second = await asyncio.gather(sync_queue.drain(), sync_queue.drain())

    assert second is None
    assert first.failed


def test_queue_item_survives_json():
    item = SyncQueueItem(
        company_id=COMPANY,
        mutation=MoveAppointment(
            company_id=COMPANY, appointment_id="a1", professional_id="ana",
            start_at=at(9), end_at=at(9, 30),
        ),
        enqueued_at=NOW,
    )

    payload = mutation_adapter.dump_python(item.mutation, mode="json")
    parsed = mutation_adapter.validate_python(payload)

    assert isinstance(parsed, MoveAppointment)
    assert parsed.start_at == at(9)
    assert item.action == "move_appointment"
