# app/auth.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException
from fastapi.security import OAuth2PasswordBearer
from jose import jwt, JWTError
from passlib.context import CryptContext

from sqlmodel import Session, select

from app.config import ACCESS_TOKEN_EXPIRE_MINUTES, ALGORITHM, SECRET_KEY
from app.db import get_session
from app.models import User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="auth/login")
oauth2_optional = OAuth2PasswordBearer(tokenUrl="auth/login", auto_error=False)

def create_access_token(data: dict, expires_minutes: int = ACCESS_TOKEN_EXPIRE_MINUTES) -> str:
    to_encode = data.copy()
    to_encode["exp"] = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def hash_password(password: str) -> str:
    return pwd_context.hash(password)

def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)

def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )

def _user_from_token(token: str, session: Session) -> dict:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise _unauthorized("Invalid token")

    email = payload.get("sub")
    if email is None:
        raise _unauthorized("Invalid token")

    user = session.exec(
        select(User).where(User.email == email)
    ).first()
    if user is None:
        raise _unauthorized("User not found")

    return {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "company_id": user.company_id,
    }

def get_current_user(
    token: str = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> dict:
    return _user_from_token(token, session)

def get_optional_user(
    token: Optional[str] = Depends(oauth2_optional),
    session: Session = Depends(get_session),
) -> Optional[dict]:
    """The signed-in user, or None for anonymous calls."""
    if token is None:
        return None
    return _user_from_token(token, session)

def company_has_users(session: Session, company_id: str) -> bool:
    return session.exec(select(User.id).where(User.company_id == company_id)).first() is not None

def authenticate_user(session: Session, email: str, password: str):
    """The matching User row, or None when the email or password is wrong."""
    user = session.exec(select(User).where(User.email == email)).first()
    if user is None or not verify_password(password, user.password_hash):
        logger.info(f"Failed login for {email}")
        return None
    return user

def register_user(session: Session, email: str, password: str, role: str, company_id: str):
    """Insert a new login; None if the email is taken."""
    if session.exec(select(User).where(User.email == email)).first() is not None:
        return None
    user = User(email=email, password_hash=hash_password(password), role=role, company_id=company_id)
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info(f"User {email} created for company {company_id}")
    return user
