from fastapi import APIRouter, Depends

from ..auth.security import require_admin, require_client
from ..config import settings
from ..db import get_store
from ..errors import NotFoundError
from ..logging import structlog
from ..services import enrichment, validation
from ..services.events import publish
from ..services.ledger import new_id
from ..services.locks import locked
from ..storage.provider import CollectionStore, FACTIONS, JOBS


router = APIRouter(prefix="/api/factions", tags=["factions"])
logger = structlog.get_logger(__name__)


def _index_of(factions, faction_id: str) -> int:
    for i, faction in enumerate(factions):
        if faction.get("id") == faction_id:
            return i
    raise NotFoundError("Faction not found")


def _enriched(store: CollectionStore, faction: dict) -> dict:
    return enrichment.factions_with_job_counts([faction], store.read(JOBS))[0]


@router.get("")
def list_factions(store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    return enrichment.factions_view(store)


@router.post("")
async def create_faction(payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    async with locked(FACTIONS):
        fields = validation.validate_faction(payload, settings.emblem_dir)
        factions = store.read(FACTIONS)
        faction = {"id": new_id(), **fields}
        factions.append(faction)
        store.write(FACTIONS, factions)
    logger.info("faction_created", faction_id=faction["id"], title=faction["title"])
    await publish(store, ["factions", "jobs"], action="create")
    return {"success": True, "faction": _enriched(store, faction)}


@router.put("/{faction_id}")
async def update_faction(faction_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    async with locked(FACTIONS):
        fields = validation.validate_faction(payload, settings.emblem_dir)
        factions = store.read(FACTIONS)
        idx = _index_of(factions, faction_id)
        factions[idx] = {**factions[idx], **fields, "id": faction_id}
        store.write(FACTIONS, factions)
    await publish(store, ["factions", "jobs"])
    return {"success": True, "faction": _enriched(store, factions[idx])}


@router.delete("/{faction_id}")
async def delete_faction(faction_id: str, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    # Jobs keep the stale factionId and enrich to faction: null
    async with locked(FACTIONS):
        factions = store.read(FACTIONS)
        factions.pop(_index_of(factions, faction_id))
        store.write(FACTIONS, factions)
    logger.info("faction_deleted", faction_id=faction_id)
    await publish(store, ["factions", "jobs"], action="delete")
    return {"success": True}
