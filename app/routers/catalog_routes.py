# app/routers/catalog_routes.py

from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from app.db import get_session
from app.deps import get_company_id
from app.models import Client, Professional, Service
from app.schemas import (
    ClientCreate,
    ClientPublic,
    ProfessionalCreate,
    ProfessionalPublic,
    ServiceCreate,
    ServicePublic,
    new_id,
)

router = APIRouter(
    tags=["catalog"],
)


@router.post("/professionals", response_model=ProfessionalPublic, status_code=201)
def create_professional(
    data: ProfessionalCreate,
    session: Session = Depends(get_session),
    company_id: str = Depends(get_company_id),
):
    professional = Professional(id=new_id(), company_id=company_id, name=data.name, color=data.color)
    session.add(professional)
    session.commit()
    session.refresh(professional)
    return professional


@router.get("/professionals", response_model=List[ProfessionalPublic])
def list_professionals(
    session: Session = Depends(get_session),
    company_id: str = Depends(get_company_id),
):
    return session.exec(
        select(Professional)
        .where(Professional.company_id == company_id)
        .where(Professional.active == True)  # noqa: E712
        .order_by(Professional.name)
    ).all()


@router.post("/services", response_model=ServicePublic, status_code=201)
def create_service(
    data: ServiceCreate,
    session: Session = Depends(get_session),
    company_id: str = Depends(get_company_id),
):
    existing = session.exec(
        select(Service)
        .where(Service.company_id == company_id)
        .where(Service.name == data.name)
    ).first()
    if existing is not None:
        raise HTTPException(status_code=409, detail="A service with that name already exists")

    service = Service(
        id=new_id(),
        company_id=company_id,
        name=data.name,
        duration_minutes=data.duration_minutes,
        buffer_after_minutes=data.buffer_after_minutes,
    )
    session.add(service)
    session.commit()
    session.refresh(service)
    return service


@router.get("/services", response_model=List[ServicePublic])
def list_services(
    session: Session = Depends(get_session),
    company_id: str = Depends(get_company_id),
):
    return session.exec(
        select(Service).where(Service.company_id == company_id).order_by(Service.name)
    ).all()


@router.post("/clients", response_model=ClientPublic, status_code=201)
def create_client(
    data: ClientCreate,
    session: Session = Depends(get_session),
    company_id: str = Depends(get_company_id),
):
    client = Client(id=new_id(), company_id=company_id, name=data.name, phone=data.phone)
    session.add(client)
    session.commit()
    session.refresh(client)
    return client
