# app/routers/trash_routes.py

import logging
from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends

from app.config import TRASH_RETENTION_DAYS
from app.core import utcnow
from app.deps import get_pipeline
from app.scheduling.pipeline import MutationPipeline
from app.schemas import Appointment, PurgeResponse

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/trash",
    tags=["trash"],
)


@router.get("", response_model=List[Appointment])
async def list_trash(pipeline: MutationPipeline = Depends(get_pipeline)):
    since = utcnow() - timedelta(days=TRASH_RETENTION_DAYS)
    return await pipeline.store.list_deleted(pipeline.company_id, since)


@router.post("/purge", response_model=PurgeResponse)
async def purge_trash(pipeline: MutationPipeline = Depends(get_pipeline)):
    before = utcnow() - timedelta(days=TRASH_RETENTION_DAYS)
    purged = await pipeline.store.purge_deleted(pipeline.company_id, before)
    logger.info(f"Purged {purged} appointments deleted before {before:%Y-%m-%d} for company {pipeline.company_id}")
    return PurgeResponse(purged=purged)
