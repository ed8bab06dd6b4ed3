import asyncio

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

from app.db import init_db
from app.deps import watch_connectivity
from app.scheduling.connectivity import ConnectivityMonitor
from app.scheduling.errors import PersistenceError
from app.scheduling.index import ScheduleIndex
from app.scheduling.pipeline import MutationPipeline, MutationState
from app.store import SqlStore, database_reachable

from conftest import COMPANY, UTC, at, draft


@pytest.fixture
def lost_engine(tmp_path):
    # the parent directory does not exist, so every connect fails
    return create_engine(f"sqlite:///{tmp_path}/gone/agenda.db")


@pytest.fixture
def live_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    return engine


async def test_lost_database_reads_raise_connection_error(lost_engine):
    store = SqlStore(lost_engine, UTC)

    with pytest.raises(ConnectionError):
        await store.load_appointment(COMPANY, "a1")
    with pytest.raises(ConnectionError):
        await store.list_waitlist(COMPANY)


async def test_lost_database_writes_raise_connection_error(lost_engine):
    store = SqlStore(lost_engine, UTC)

    with pytest.raises(ConnectionError):
        await store.update_appointment(COMPANY, "a1", {"status": "done"})


async def test_missing_row_is_still_a_refusal(live_engine):
    store = SqlStore(live_engine, UTC)

    with pytest.raises(PersistenceError):
        await store.update_appointment(COMPANY, "a1", {"status": "done"})


async def test_lost_database_queues_the_write(lost_engine, settings, sync_queue, connectivity, clock, queue_storage):
    pipeline = MutationPipeline(
        COMPANY, SqlStore(lost_engine, UTC), settings, ScheduleIndex(UTC), sync_queue, connectivity,
        clock=clock, known_professionals=["ana"],
    )

    result = await pipeline.create_appointment(draft("ana", at(9)))

    assert result.state == MutationState.pending_sync
    assert [item.action for item in queue_storage.items] == ["create_appointment"]
    assert connectivity.is_online is False


async def test_database_reachable(live_engine, lost_engine):
    assert await database_reachable(live_engine) is True
    assert await database_reachable(lost_engine) is False


async def test_watcher_brings_connectivity_back(live_engine):
    monitor = ConnectivityMonitor(online=False)
    watcher = asyncio.create_task(watch_connectivity(live_engine, monitor, 0.01))

    for _ in range(100):
        if monitor.is_online:
            break
        await asyncio.sleep(0.01)
    watcher.cancel()

    assert monitor.is_online is True
