# app/routers/schedules_routes.py

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response

from app.core import utcnow
from app.deps import get_pipeline
from app.scheduling.errors import PersistenceError
from app.scheduling.pipeline import MutationPipeline
from app.schemas import (
    Absence,
    AbsenceCreate,
    ProfessionalScheduleResponse,
    ScheduleUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    tags=["schedules"],
)


def _require_professional(pipeline: MutationPipeline, professional_id: str) -> None:
    if professional_id not in (pipeline.known_professionals or ()):
        raise HTTPException(status_code=404, detail="Professional not found")


@router.get("/professionals/{professional_id}/schedule", response_model=ProfessionalScheduleResponse)
async def get_schedule(
    professional_id: str,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    _require_professional(pipeline, professional_id)
    days = await pipeline.store.load_schedule(pipeline.company_id, professional_id)
    return ProfessionalScheduleResponse(professional_id=professional_id, days=days)


@router.put("/professionals/{professional_id}/schedule", response_model=ProfessionalScheduleResponse)
async def replace_schedule(
    professional_id: str,
    data: ScheduleUpdate,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    """Replace the whole week; days not sent become days off."""
    _require_professional(pipeline, professional_id)
    days = await pipeline.store.replace_schedule(pipeline.company_id, professional_id, data.days)
    return ProfessionalScheduleResponse(professional_id=professional_id, days=days)


@router.get("/absences", response_model=List[Absence])
async def list_absences(
    professional_id: Optional[str] = None,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    # current and upcoming only
    return await pipeline.store.list_absences(pipeline.company_id, professional_id, start=utcnow())


@router.post("/absences", response_model=Absence, status_code=201)
async def create_absence(
    data: AbsenceCreate,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    _require_professional(pipeline, data.professional_id)
    absence = Absence(company_id=pipeline.company_id, created_at=utcnow(), **data.model_dump())
    try:
        return await pipeline.store.add_absence(absence)
    except PersistenceError as exc:
        raise HTTPException(status_code=404, detail=str(exc))


@router.delete("/absences/{absence_id}", status_code=204)
async def delete_absence(
    absence_id: str,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    if not await pipeline.store.delete_absence(pipeline.company_id, absence_id):
        raise HTTPException(status_code=404, detail="Absence not found")
    return Response(status_code=204)
