# app/scheduling/sync_queue.py

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from pydantic import BaseModel, Field

from app.core import utcnow
from app.scheduling.connectivity import ConnectivityMonitor
from app.scheduling.errors import PersistenceError, SyncExhaustedError
from app.scheduling.mutations import Mutation
from app.schemas import new_id

logger = logging.getLogger(__name__)


class SyncQueueItem(BaseModel):
    id: str = Field(default_factory=new_id)
    company_id: str
    mutation: Mutation
    enqueued_at: datetime
    retry_count: int = 0

    @property
    def action(self) -> str:
        return self.mutation.kind


@dataclass
class DrainReport:
    synced: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    dropped: List[str] = field(default_factory=list)


class OfflineSyncQueue:
    """
    Durable FIFO of writes that could not reach the store.

    Items are replayed in enqueue order. A failed item gets its retry count
    bumped; once the count passes ``max_retries`` it is dropped, kept in
    ``dropped`` and every failure listener receives a SyncExhaustedError.
    """

    def __init__(self, storage, store, connectivity: ConnectivityMonitor,
                 clock: Callable[[], datetime] = utcnow, max_retries: int = 3,
                 timeout: Optional[float] = None, keep_dropped: int = 100):
        self.storage = storage
        self.store = store
        self.connectivity = connectivity
        self.clock = clock
        self.max_retries = max_retries
        self.timeout = timeout
        self._draining = False
        self._tasks = set()
        self._failure_listeners: List[Callable[[SyncExhaustedError], None]] = []
        # most recent give-ups, newest last
        self.dropped = deque(maxlen=keep_dropped)
        connectivity.subscribe(self._on_connectivity_change)

    @property
    def draining(self) -> bool:
        return self._draining

    def on_failure(self, listener: Callable[[SyncExhaustedError], None]) -> None:
        self._failure_listeners.append(listener)

    async def enqueue(self, mutation) -> str:
        item = SyncQueueItem(
            company_id=mutation.company_id,
            mutation=mutation,
            enqueued_at=self.clock(),
        )
        await self.storage.append(item)
        logger.info(f"Queued {item.action} for appointment {mutation.appointment_id} (item {item.id})")
        return item.id

    async def pending(self) -> List[SyncQueueItem]:
        return await self.storage.load()

    async def has_pending(self, appointment_id: str) -> bool:
        """Whether an older write for this appointment is still waiting in the queue."""
        return any(item.mutation.appointment_id == appointment_id for item in await self.storage.load())

    async def drain(self) -> Optional[DrainReport]:
        """
        One replay pass over the queue.

        Returns None without doing anything when offline or when another
        pass is already running.
        """
        if self._draining or not self.connectivity.is_online:
            return None

        self._draining = True
        report = DrainReport()
        try:
            held_back = set()
            for item in await self.storage.load():
                if not self.connectivity.is_online:
                    logger.info("Went offline during sync, stopping pass")
                    break
                appointment_id = item.mutation.appointment_id
                if appointment_id in held_back:
                    # keep per-appointment order behind an earlier failure
                    continue
                try:
                    await self._send(item)
                except (PersistenceError, ConnectionError, asyncio.TimeoutError) as exc:
                    held_back.add(appointment_id)
                    await self._record_failure(item, exc, report)
                else:
                    await self.storage.remove(item.id)
                    report.synced.append(item.id)
                await asyncio.sleep(0)
        finally:
            self._draining = False

        if report.synced or report.failed or report.dropped:
            logger.info(
                f"Sync pass done: {len(report.synced)} synced, "
                f"{len(report.failed)} failed, {len(report.dropped)} dropped"
            )
        return report

    def schedule_drain(self) -> Optional[asyncio.Task]:
        """Start a drain in the background; needs a running event loop."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, sync drain not scheduled")
            return None
        task = loop.create_task(self.drain())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _send(self, item: SyncQueueItem) -> None:
        if self.timeout is None:
            await item.mutation.send(self.store)
        else:
            await asyncio.wait_for(item.mutation.send(self.store), self.timeout)

    async def _record_failure(self, item: SyncQueueItem, exc: BaseException, report: DrainReport) -> None:
        item.retry_count += 1
        if item.retry_count > self.max_retries:
            await self.storage.remove(item.id)
            report.dropped.append(item.id)
            error = SyncExhaustedError(item, exc)
            logger.error(str(error))
            self.dropped.append(error)
            for listener in list(self._failure_listeners):
                listener(error)
            return

        await self.storage.update(item)
        report.failed.append(item.id)
        logger.warning(
            f"Sync of {item.action} for appointment {item.mutation.appointment_id} failed "
            f"(attempt {item.retry_count}): {exc!r}"
        )

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self.schedule_drain()
