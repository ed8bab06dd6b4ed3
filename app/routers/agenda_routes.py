# app/routers/agenda_routes.py

import logging
from datetime import date, timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from app.core import blocked_windows, day_bounds, slots_between, work_day_for, working_window
from app.data import DEFAULT_WORK_WEEK, shop_settings
from app.deps import agenda_tz, get_pipeline
from app.scheduling.pipeline import OFFLINE_ERRORS, MutationPipeline
from app.schemas import AvailabilityResponse, DayAgendaResponse, ProfessionalDay, WorkDay

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/agenda",
    tags=["agenda"],
)


async def _refresh_day(pipeline: MutationPipeline, day: date) -> None:
    # queued writes only exist in the index, a reload would hide them
    if pipeline.index.is_loaded(day) and await pipeline.sync_queue.pending():
        return
    try:
        await pipeline.load_day(day)
    except OFFLINE_ERRORS:
        logger.warning(f"Store unreachable, serving {day} from memory")


@router.get("/{day}", response_model=DayAgendaResponse)
async def day_agenda(
    day: date,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    await _refresh_day(pipeline, day)
    buckets = pipeline.index.buckets(day)

    professional_ids = set(pipeline.known_professionals or ())
    professional_ids.update(key[0] for key in buckets)

    return DayAgendaResponse(
        date=day,
        professionals=[
            ProfessionalDay(professional_id=pid, appointments=buckets.get((pid, day), []))
            for pid in sorted(professional_ids)
        ],
        walk_ins=pipeline.index.unscheduled(),
    )


@router.get("/{day}/availability/{professional_id}", response_model=AvailabilityResponse)
async def availability(
    day: date,
    professional_id: str,
    duration_minutes: Optional[int] = None,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    if professional_id not in (pipeline.known_professionals or ()):
        raise HTTPException(status_code=404, detail="Professional not found")

    slot_minutes = shop_settings["slot_minutes"]
    duration = timedelta(minutes=duration_minutes or slot_minutes)
    if duration <= timedelta(0):
        raise HTTPException(status_code=422, detail="duration_minutes must be positive")

    await _refresh_day(pipeline, day)

    day_start, day_end = day_bounds(day, agenda_tz)
    try:
        week = await pipeline.store.load_schedule(pipeline.company_id, professional_id)
        absences = await pipeline.store.list_absences(pipeline.company_id, professional_id, day_start, day_end)
    except OFFLINE_ERRORS:
        logger.warning(f"Store unreachable, using the default week for {professional_id}")
        week, absences = [WorkDay(**d) for d in DEFAULT_WORK_WEEK], []

    work_day = work_day_for(day, week)
    window = working_window(day, agenda_tz, work_day)
    if window is None:
        return AvailabilityResponse(professional_id=professional_id, date=day, is_working=False, available_starts=[])

    open_at, close_at = window
    blocked = blocked_windows(day, agenda_tz, work_day, absences)
    free = pipeline.index.free_windows(professional_id, day, open_at, close_at, blocked=blocked)

    starts = [
        slot.strftime("%H:%M")
        for slot in slots_between(open_at, close_at, slot_minutes)
        if any(start <= slot and slot + duration <= end for start, end in free)
    ]
    return AvailabilityResponse(professional_id=professional_id, date=day, available_starts=starts)
