# app/main.py

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import CONNECTIVITY_CHECK_SECONDS
from app.db import get_engine, init_db
from app.deps import connectivity, watch_connectivity
from app.logging_config import setup_logging
from app.routers import (
    agenda_routes,
    appointments_routes,
    auth_routes,
    catalog_routes,
    schedules_routes,
    settings_routes,
    sync_routes,
    trash_routes,
    users_routes,
    waitlist_routes,
)

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()
    bind = app.dependency_overrides.get(get_engine, get_engine)()
    watcher = asyncio.create_task(watch_connectivity(bind, connectivity, CONNECTIVITY_CHECK_SECONDS))
    logger.info("Agenda API started")
    yield
    watcher.cancel()


app = FastAPI(title="Salon Agenda API", lifespan=lifespan)

@app.exception_handler(ConnectionError)
async def database_unreachable(request: Request, exc: ConnectionError):
    logger.warning(f"{request.method} {request.url.path} failed, database unreachable: {exc}")
    return JSONResponse(status_code=503, content={"detail": "Database unreachable, try again shortly"})

@app.get("/health")
def health_check():
    return {"status": "ok"}

app.include_router(auth_routes.router)
app.include_router(users_routes.router)
app.include_router(catalog_routes.router)
app.include_router(schedules_routes.router)
app.include_router(agenda_routes.router)
app.include_router(appointments_routes.router)
app.include_router(waitlist_routes.router)
app.include_router(trash_routes.router)
app.include_router(settings_routes.router)
app.include_router(sync_routes.router)
