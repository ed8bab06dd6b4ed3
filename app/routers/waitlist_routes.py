# app/routers/waitlist_routes.py

from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Response

from app.deps import agenda_tz, get_waitlist_service
from app.responses import mutation_response
from app.routers.appointments_routes import resolve_services
from app.scheduling.errors import ValidationError
from app.scheduling.waitlist import WaitlistService
from app.schemas import (
    MutationResponse,
    SlotSuggestions,
    WaitlistConvert,
    WaitlistCreate,
    WaitlistEntry,
    WaitlistReorder,
)

router = APIRouter(
    prefix="/waitlist",
    tags=["waitlist"],
)


@router.get("", response_model=List[WaitlistEntry])
async def list_waitlist(service: WaitlistService = Depends(get_waitlist_service)):
    return await service.list_ranked()


@router.post("", response_model=WaitlistEntry, status_code=201)
async def add_to_waitlist(
    data: WaitlistCreate,
    service: WaitlistService = Depends(get_waitlist_service),
):
    try:
        return await service.add(data)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"field": exc.field, "message": exc.message})


@router.delete("/{entry_id}", status_code=204)
async def remove_from_waitlist(
    entry_id: str,
    service: WaitlistService = Depends(get_waitlist_service),
):
    if not await service.remove(entry_id):
        raise HTTPException(status_code=404, detail="Waitlist entry not found")
    return Response(status_code=204)


@router.put("/order", response_model=List[WaitlistEntry])
async def reorder_waitlist(
    data: WaitlistReorder,
    service: WaitlistService = Depends(get_waitlist_service),
):
    try:
        return await service.reorder(data.ordered_ids)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail={"field": exc.field, "message": exc.message})


@router.get("/suggestions", response_model=SlotSuggestions)
async def slot_suggestions(
    professional_id: str,
    start_at: datetime,
    service: WaitlistService = Depends(get_waitlist_service),
):
    return await service.suggest_for_slot(professional_id, start_at)


@router.post("/{entry_id}/convert", response_model=MutationResponse, status_code=201)
async def convert_entry(
    entry_id: str,
    data: WaitlistConvert,
    response: Response,
    service: WaitlistService = Depends(get_waitlist_service),
):
    services = await resolve_services(service.pipeline, data.service_ids)
    try:
        result = await service.convert(
            entry_id, services,
            professional_id=data.professional_id,
            start_at=data.start_at,
            choice=data.choice,
        )
    except ValidationError as exc:
        raise HTTPException(status_code=404, detail=exc.message)
    return mutation_response(result, response, agenda_tz)
