# app/config.py

import os
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./agenda.db")

# JWT
SECRET_KEY = os.getenv("SECRET_KEY", "change-me-later")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

# Agenda grid (local time of the salon)
AGENDA_TIMEZONE = os.getenv("AGENDA_TIMEZONE", "America/Sao_Paulo")
AGENDA_OPEN_HOUR = int(os.getenv("AGENDA_OPEN_HOUR", "8"))
AGENDA_CLOSE_HOUR = int(os.getenv("AGENDA_CLOSE_HOUR", "18"))
AGENDA_SLOT_MINUTES = int(os.getenv("AGENDA_SLOT_MINUTES", "30"))

# Remote writes slower than this are treated as "offline" and queued
PERSISTENCE_TIMEOUT_SECONDS = float(os.getenv("PERSISTENCE_TIMEOUT_SECONDS", "10"))
SYNC_MAX_RETRIES = int(os.getenv("SYNC_MAX_RETRIES", "3"))

TRASH_RETENTION_DAYS = int(os.getenv("TRASH_RETENTION_DAYS", "30"))
RECENT_CLIENTS_DAYS = int(os.getenv("RECENT_CLIENTS_DAYS", "30"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# How often a lost database is checked to bring the agenda back online
CONNECTIVITY_CHECK_SECONDS = float(os.getenv("CONNECTIVITY_CHECK_SECONDS", "5"))
