# app/routers/sync_routes.py

from typing import List

from fastapi import APIRouter, Depends

from app.deps import get_pipeline
from app.scheduling.pipeline import MutationPipeline
from app.schemas import DrainResponse, DroppedWritePublic, SyncQueueItemPublic

router = APIRouter(
    prefix="/sync",
    tags=["sync"],
)


@router.get("/queue", response_model=List[SyncQueueItemPublic])
async def list_queue(pipeline: MutationPipeline = Depends(get_pipeline)):
    return [
        SyncQueueItemPublic(
            id=item.id,
            action=item.action,
            appointment_id=item.mutation.appointment_id,
            enqueued_at=item.enqueued_at,
            retry_count=item.retry_count,
        )
        for item in await pipeline.sync_queue.pending()
    ]


@router.post("/drain", response_model=DrainResponse)
async def drain_queue(pipeline: MutationPipeline = Depends(get_pipeline)):
    report = await pipeline.sync_queue.drain()
    if report is None:
        return DrainResponse(ran=False)
    return DrainResponse(ran=True, synced=report.synced, failed=report.failed, dropped=report.dropped)


@router.get("/dropped", response_model=List[DroppedWritePublic])
async def list_dropped(pipeline: MutationPipeline = Depends(get_pipeline)):
    """Writes the queue gave up on, newest first."""
    return [
        DroppedWritePublic(
            id=error.item.id,
            action=error.item.action,
            appointment_id=error.item.mutation.appointment_id,
            enqueued_at=error.item.enqueued_at,
            retry_count=error.item.retry_count,
            message=str(error),
            last_error=str(error.last_error) if error.last_error is not None else None,
        )
        for error in reversed(pipeline.sync_queue.dropped)
    ]
