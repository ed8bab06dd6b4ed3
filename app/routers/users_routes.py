# app/routers/users_routes.py

from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlmodel import Session, select

from app.auth import company_has_users, get_current_user, get_optional_user, register_user
from app.db import get_session
from app.deps import get_company_id
from app.models import User
from app.schemas import UserCreate, UserPublic

router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserPublic)
def me(current_user: dict = Depends(get_current_user)):
    return current_user


@router.get("/users", response_model=List[UserPublic])
def list_company_users(
    company_id: str = Depends(get_company_id),
    session: Session = Depends(get_session),
):
    """Everyone with a login at the caller's salon."""
    return session.exec(
        select(User).where(User.company_id == company_id).order_by(User.email)
    ).all()


@router.post("/users", status_code=201, response_model=UserPublic)
def create_user(
    user: UserCreate,
    session: Session = Depends(get_session),
    current_user: Optional[dict] = Depends(get_optional_user),
):
    """
    Add a login to the caller's salon.

    Without a token only the first login of a salon with no users yet can
    be created.
    """
    if current_user is not None:
        company_id = user.company_id or current_user["company_id"]
        if company_id != current_user["company_id"]:
            raise HTTPException(status_code=403, detail="Users can only be added to your own company")
    else:
        company_id = user.company_id
        if not company_id:
            raise HTTPException(status_code=422, detail="company_id is required for the first user")
        if company_has_users(session, company_id):
            raise HTTPException(
                status_code=401,
                detail="Sign in to add users to an existing company",
                headers={"WWW-Authenticate": "Bearer"},
            )

    created = register_user(session, user.email, user.password, user.role.value, company_id)
    if created is None:
        raise HTTPException(status_code=409, detail="Email already registered")
    return created
