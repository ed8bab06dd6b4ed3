# app/routers/settings_routes.py

from fastapi import APIRouter, Depends

from app.deps import get_pipeline, get_settings_provider
from app.scheduling.pipeline import MutationPipeline
from app.schemas import AgendaSettings, SettingsUpdate
from app.store import SqlSettingsProvider

router = APIRouter(
    prefix="/settings",
    tags=["settings"],
)


@router.get("/agenda", response_model=AgendaSettings)
async def get_agenda_settings(pipeline: MutationPipeline = Depends(get_pipeline)):
    return await pipeline.settings(refresh=True)


@router.patch("/agenda", response_model=AgendaSettings)
async def update_agenda_settings(
    data: SettingsUpdate,
    pipeline: MutationPipeline = Depends(get_pipeline),
    provider: SqlSettingsProvider = Depends(get_settings_provider),
):
    await provider.update_agenda_settings(pipeline.company_id, data)
    # the pipeline caches settings per company
    return await pipeline.settings(refresh=True)
