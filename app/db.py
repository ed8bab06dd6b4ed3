# app/db.py

import logging

from fastapi import Depends
from sqlmodel import SQLModel, create_engine, Session

from app.config import DATABASE_URL

logger = logging.getLogger(__name__)

connect_args = {}
if DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}  # required for SQLite + FastAPI

# Engine = connection to the database
engine = create_engine(
    DATABASE_URL,
    echo=False,          # set to True to see SQL
    connect_args=connect_args,
)

def init_db(bind=None):
    # importing registers the tables on SQLModel.metadata
    from app import models  # noqa: F401

    SQLModel.metadata.create_all(bind or engine)
    logger.info("Database tables ready")

def get_engine():
    return engine

# Dependency: one session per request
def get_session(bind=Depends(get_engine)):
    with Session(bind) as session:
        yield session
