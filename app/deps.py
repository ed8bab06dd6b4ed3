# app/deps.py

import asyncio
import logging
from typing import Dict, Tuple
from zoneinfo import ZoneInfo

from fastapi import Depends, HTTPException

from app.auth import get_current_user
from app.config import (
    AGENDA_TIMEZONE,
    PERSISTENCE_TIMEOUT_SECONDS,
    RECENT_CLIENTS_DAYS,
    SYNC_MAX_RETRIES,
    TRASH_RETENTION_DAYS,
)
from app.db import get_engine
from app.scheduling.connectivity import ConnectivityMonitor
from app.scheduling.index import ScheduleIndex
from app.scheduling.pipeline import MutationPipeline
from app.scheduling.sync_queue import OfflineSyncQueue
from app.scheduling.waitlist import WaitlistService
from app.store import SqlQueueStorage, SqlSettingsProvider, SqlStore, database_reachable

logger = logging.getLogger(__name__)

agenda_tz = ZoneInfo(AGENDA_TIMEZONE)

# one connectivity signal for the whole process
connectivity = ConnectivityMonitor()

# pipelines keep their schedule index and sync queue between requests
_pipelines: Dict[Tuple[str, object], MutationPipeline] = {}

def get_company_id(current_user: dict = Depends(get_current_user)) -> str:
    company_id = current_user.get("company_id")
    if not company_id:
        raise HTTPException(status_code=403, detail="User is not linked to a company")
    return company_id

def get_settings_provider(bind=Depends(get_engine)) -> SqlSettingsProvider:
    return SqlSettingsProvider(bind)

def build_pipeline(company_id: str, bind) -> MutationPipeline:
    store = SqlStore(bind, agenda_tz)
    sync_queue = OfflineSyncQueue(
        SqlQueueStorage(bind, company_id),
        store,
        connectivity,
        max_retries=SYNC_MAX_RETRIES,
        timeout=PERSISTENCE_TIMEOUT_SECONDS,
    )
    logger.info(f"Scheduling pipeline started for company {company_id}")
    return MutationPipeline(
        company_id,
        store,
        SqlSettingsProvider(bind),
        ScheduleIndex(agenda_tz),
        sync_queue,
        connectivity,
        timeout=PERSISTENCE_TIMEOUT_SECONDS,
        trash_retention_days=TRASH_RETENTION_DAYS,
    )

async def get_pipeline(
    company_id: str = Depends(get_company_id),
    bind=Depends(get_engine),
) -> MutationPipeline:
    key = (company_id, bind)
    pipeline = _pipelines.get(key)
    if pipeline is None:
        pipeline = build_pipeline(company_id, bind)
        _pipelines[key] = pipeline
    pipeline.known_professionals = set(await pipeline.store.load_professional_ids(company_id))
    return pipeline

def get_waitlist_service(pipeline: MutationPipeline = Depends(get_pipeline)) -> WaitlistService:
    return WaitlistService(
        pipeline.company_id,
        pipeline.store,
        pipeline,
        recent_days=RECENT_CLIENTS_DAYS,
    )

def reset_pipelines() -> None:
    _pipelines.clear()
    connectivity.set_online(True)

async def watch_connectivity(bind, monitor: ConnectivityMonitor, interval: float) -> None:
    """Check the database while offline; coming back online starts every queue's drain."""
    while True:
        await asyncio.sleep(interval)
        if not monitor.is_online and await database_reachable(bind):
            monitor.set_online(True)
