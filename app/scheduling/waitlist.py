# app/scheduling/waitlist.py

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional

from app.core import utcnow
from app.data import PRIORITY_RANK
from app.scheduling.errors import ValidationError
from app.schemas import (
    ConflictChoice,
    NewAppointment,
    ServiceRef,
    SlotSuggestions,
    WaitlistCreate,
    WaitlistEntry,
)

logger = logging.getLogger(__name__)

SUGGESTION_LIMIT = 5
RECENT_CLIENTS_LIMIT = 3


def _rank_key(entry: WaitlistEntry):
    created = entry.created_at.timestamp() if entry.created_at else 0.0
    return (PRIORITY_RANK[entry.priority.value], entry.position, created, entry.id)


def rank(entries: Iterable[WaitlistEntry]) -> List[WaitlistEntry]:
    """urgent, then vip, then normal; by position inside each band."""
    return sorted(entries, key=_rank_key)


def reorder(entries: Iterable[WaitlistEntry], ordered_ids: List[str]) -> List[WaitlistEntry]:
    """
    Renumber positions 1..n following ``ordered_ids``.

    This is a full renumbering, so two concurrent reorders race and the last
    one written wins. Entries missing from ``ordered_ids`` keep their position.
    """
    by_id = {e.id: e for e in entries}
    unknown = [i for i in ordered_ids if i not in by_id]
    if unknown:
        raise ValidationError("ordered_ids", f"unknown waitlist entries: {', '.join(unknown)}")
    if len(set(ordered_ids)) != len(ordered_ids):
        raise ValidationError("ordered_ids", "ids cannot repeat")

    changed = []
    for index, entry_id in enumerate(ordered_ids):
        entry = by_id[entry_id]
        if entry.position != index + 1:
            changed.append(entry.model_copy(update={"position": index + 1}))
    return changed


def suggest_for_slot(entries: Iterable[WaitlistEntry], professional_id: str,
                     limit: int = SUGGESTION_LIMIT) -> List[WaitlistEntry]:
    matching = [e for e in entries if e.professional_id in (None, professional_id)]
    return rank(matching)[:limit]


class WaitlistService:
    """Waitlist operations for one company, on top of the store and the pipeline."""

    def __init__(self, company_id: str, store, pipeline=None,
                 clock: Callable[[], datetime] = utcnow, recent_days: int = 30):
        if not company_id:
            raise ValueError("WaitlistService needs a resolved company_id")
        self.company_id = company_id
        self.store = store
        self.pipeline = pipeline
        self.clock = clock
        self.recent_days = recent_days

    async def list_ranked(self) -> List[WaitlistEntry]:
        return rank(await self.store.list_waitlist(self.company_id))

    async def add(self, data: WaitlistCreate) -> WaitlistEntry:
        if not await self.store.has_client(self.company_id, data.client_id):
            raise ValidationError("client_id", f"unknown client {data.client_id}")
        entries = await self.store.list_waitlist(self.company_id)
        next_position = max((e.position for e in entries), default=0) + 1
        entry = WaitlistEntry(
            company_id=self.company_id,
            client_id=data.client_id,
            professional_id=data.professional_id,
            desired_date=data.desired_date,
            priority=data.priority,
            position=next_position,
            notes=data.notes,
            created_at=self.clock(),
        )
        saved = await self.store.add_waitlist_entry(entry)
        logger.info(f"Waitlist entry {saved.id} added ({saved.priority.value}, position {saved.position})")
        return saved

    async def remove(self, entry_id: str) -> bool:
        return await self.store.delete_waitlist_entry(self.company_id, entry_id)

    async def reorder(self, ordered_ids: List[str]) -> List[WaitlistEntry]:
        entries = await self.store.list_waitlist(self.company_id)
        changed = reorder(entries, ordered_ids)
        if changed:
            await self.store.set_waitlist_positions(self.company_id, {e.id: e.position for e in changed})
        return rank(await self.store.list_waitlist(self.company_id))

    async def suggest_for_slot(self, professional_id: str, when: datetime) -> SlotSuggestions:
        entries = await self.store.list_waitlist(self.company_id)
        since = self.clock() - timedelta(days=self.recent_days)
        recent = await self.store.recent_clients(
            self.company_id, professional_id, since, limit=RECENT_CLIENTS_LIMIT,
        )
        logger.debug(f"Slot {when.isoformat()} for {professional_id}: {len(entries)} waitlist entries checked")
        return SlotSuggestions(
            waitlist=suggest_for_slot(entries, professional_id),
            recent_clients=recent,
        )

    async def convert(self, entry_id: str, services: List[ServiceRef],
                      professional_id: Optional[str] = None, start_at: Optional[datetime] = None,
                      choice: Optional[ConflictChoice] = None):
        """
        Book the entry's client. The entry id rides along with the create, and
        the store deletes it in the same transaction as the insert.
        """
        if self.pipeline is None:
            raise RuntimeError("WaitlistService.convert needs a MutationPipeline")
        entry = await self.store.get_waitlist_entry(self.company_id, entry_id)
        if entry is None:
            raise ValidationError("entry_id", f"waitlist entry {entry_id} not found")

        draft = NewAppointment(
            professional_id=professional_id or entry.professional_id or "",
            client_id=entry.client_id,
            client_name=entry.client_name,
            services=services,
            start_at=start_at,
            notes=entry.notes,
        )
        return await self.pipeline.create_appointment(draft, choice=choice, waitlist_entry_id=entry.id)
