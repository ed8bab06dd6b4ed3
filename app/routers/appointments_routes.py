# app/routers/appointments_routes.py

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlmodel import Session

from app.core import suggest_next_visit
from app.db import get_session
from app.deps import agenda_tz, get_pipeline
from app.models import Client
from app.notifications import compose_confirmation_message, whatsapp_link
from app.responses import batch_response, mutation_response
from app.scheduling.pipeline import MutationPipeline
from app.schemas import (
    AppointmentCreate,
    AppointmentDrop,
    AppointmentMove,
    ConfirmationMessage,
    MutationResponse,
    NewAppointment,
    RecurringAppointmentCreate,
    RestoreRequest,
    ServiceRef,
    StatusUpdate,
)

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/appointments",
    tags=["appointments"],
)


async def resolve_services(pipeline: MutationPipeline, service_ids: List[str]) -> List[ServiceRef]:
    if not service_ids:
        raise HTTPException(status_code=422, detail="At least one service is required")
    services = await pipeline.store.load_services(pipeline.company_id, service_ids)
    missing = set(service_ids) - {s.id for s in services}
    if missing:
        raise HTTPException(status_code=422, detail=f"Unknown services: {', '.join(sorted(missing))}")
    return services


async def _draft(pipeline: MutationPipeline, appt: AppointmentCreate) -> NewAppointment:
    return NewAppointment(
        professional_id=appt.professional_id,
        client_id=appt.client_id,
        services=await resolve_services(pipeline, appt.service_ids),
        start_at=appt.start_at,
        notes=appt.notes,
    )


@router.post("", response_model=MutationResponse, status_code=201)
async def create_appointment(
    appt: AppointmentCreate,
    response: Response,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    result = await pipeline.create_appointment(await _draft(pipeline, appt), choice=appt.choice)
    return mutation_response(result, response, agenda_tz)


@router.post("/recurring", response_model=List[MutationResponse], status_code=201)
async def create_recurring(
    data: RecurringAppointmentCreate,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    if data.appointment.start_at is None:
        raise HTTPException(status_code=422, detail="A recurring series needs a start time")
    results = await pipeline.create_recurring(await _draft(pipeline, data.appointment), data.rule)
    if not any(r.ok for r in results):
        # nothing was booked; report the first reason
        first = results[0]
        raise HTTPException(status_code=409 if first.decision else 422, detail=first.message(agenda_tz))
    return batch_response(results, agenda_tz)


@router.post("/drop", response_model=MutationResponse)
async def drop_appointment(
    data: AppointmentDrop,
    response: Response,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    result = await pipeline.move_from_drop(data.source, data.target, choice=data.choice)
    return mutation_response(result, response, agenda_tz)


@router.patch("/{appointment_id}/move", response_model=MutationResponse)
async def move_appointment(
    appointment_id: str,
    data: AppointmentMove,
    response: Response,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    result = await pipeline.move_appointment(
        appointment_id, data.new_start_at,
        new_professional_id=data.new_professional_id,
        choice=data.choice,
    )
    return mutation_response(result, response, agenda_tz)


@router.patch("/{appointment_id}/status", response_model=MutationResponse)
async def set_status(
    appointment_id: str,
    data: StatusUpdate,
    response: Response,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    result = await pipeline.set_status(appointment_id, data.status)
    return mutation_response(result, response, agenda_tz)


@router.delete("/{appointment_id}", response_model=MutationResponse)
async def delete_appointment(
    appointment_id: str,
    response: Response,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    result = await pipeline.soft_delete(appointment_id)
    return mutation_response(result, response, agenda_tz)


@router.post("/{appointment_id}/restore", response_model=MutationResponse)
async def restore_appointment(
    appointment_id: str,
    response: Response,
    data: Optional[RestoreRequest] = None,
    pipeline: MutationPipeline = Depends(get_pipeline),
):
    result = await pipeline.restore(appointment_id, choice=data.choice if data else None)
    return mutation_response(result, response, agenda_tz)


@router.get("/{appointment_id}/confirmation-message", response_model=ConfirmationMessage)
async def confirmation_message(
    appointment_id: str,
    pipeline: MutationPipeline = Depends(get_pipeline),
    session: Session = Depends(get_session),
):
    appointment = await pipeline.store.load_appointment(pipeline.company_id, appointment_id)
    if appointment is None:
        appointment = pipeline.index.get(appointment_id)
    if appointment is None or appointment.deleted_at is not None:
        raise HTTPException(status_code=404, detail="Appointment not found")
    if appointment.start_at is None:
        raise HTTPException(status_code=422, detail="Walk-in appointments have no time to confirm")

    client = session.get(Client, appointment.client_id) if appointment.client_id else None
    if client is not None and client.company_id != pipeline.company_id:
        client = None
    message = compose_confirmation_message(
        client.name if client else (appointment.client_name or "there"),
        ", ".join(s.name for s in appointment.services),
        appointment.start_at,
        appointment.professional_name or appointment.professional_id,
        tz=agenda_tz,
    )
    settings = await pipeline.settings()
    phone = client.phone if client else None
    return ConfirmationMessage(
        message=message,
        whatsapp_url=whatsapp_link(message, phone),
        suggested_next_visit=suggest_next_visit(appointment.start_at, settings.suggest_next_visit_days),
    )
