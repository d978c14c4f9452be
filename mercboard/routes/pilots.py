from fastapi import APIRouter, Depends

from ..auth.security import require_admin, require_client
from ..db import get_store
from ..errors import NotFoundError, ValidationError
from ..logging import structlog
from ..services import balance, enrichment, validation
from ..services.events import publish
from ..services.ledger import new_id
from ..services.locks import locked
from ..storage.provider import CollectionStore, LEDGER, PILOTS, RESERVES


router = APIRouter(prefix="/api/pilots", tags=["pilots"])
logger = structlog.get_logger(__name__)


def _index_of(pilots, pilot_id: str, label: str = "Pilot") -> int:
    for i, pilot in enumerate(pilots):
        if pilot.get("id") == pilot_id:
            return i
    raise NotFoundError(f"{label} not found")


def _held_index(pilot: dict, reserve_id: str, message: str = "Reserve not found for this pilot") -> int:
    for i, held in enumerate(pilot.get("reserves") or []):
        if held.get("reserveId") == reserve_id:
            return i
    raise NotFoundError(message)


def _enriched(store: CollectionStore, pilot_id: str) -> dict:
    return next(p for p in enrichment.pilots_view(store) if p["id"] == pilot_id)


def _transactions(store: CollectionStore):
    return store.read(LEDGER).get("transactions", [])


@router.get("")
def list_pilots(store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    return enrichment.pilots_view(store)


@router.post("")
async def create_pilot(payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    async with locked(PILOTS):
        fields = validation.validate_pilot(payload, _transactions(store), store.read(RESERVES))
        pilots = store.read(PILOTS)
        # relatedJobs is filled in by job progression, not at creation
        pilot = {"id": new_id(), **fields, "relatedJobs": []}
        pilots.append(pilot)
        store.write(PILOTS, pilots)
    logger.info("pilot_created", pilot_id=pilot["id"], callsign=pilot["callsign"])
    await publish(store, ["pilots", "manna"], action="create")
    return {"success": True, "pilot": _enriched(store, pilot["id"])}


@router.put("/{pilot_id}")
async def update_pilot(pilot_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    async with locked(PILOTS):
        pilots = store.read(PILOTS)
        idx = _index_of(pilots, pilot_id)
        fields = validation.validate_pilot(payload, _transactions(store), store.read(RESERVES))
        pilots[idx] = {"id": pilot_id, **fields}
        store.write(PILOTS, pilots)
    await publish(store, ["pilots", "manna"])
    return {"success": True, "pilot": _enriched(store, pilot_id)}


@router.delete("/{pilot_id}")
async def delete_pilot(pilot_id: str, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    async with locked(PILOTS):
        pilots = store.read(PILOTS)
        pilots.pop(_index_of(pilots, pilot_id))
        store.write(PILOTS, pilots)
    logger.info("pilot_deleted", pilot_id=pilot_id)
    await publish(store, ["pilots", "manna"], action="delete")
    return {"success": True}


@router.get("/{pilot_id}/balance")
def pilot_balance_history(pilot_id: str, store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    pilots = store.read(PILOTS)
    pilot = pilots[_index_of(pilots, pilot_id)]
    total, entries = balance.pilot_history(pilot, _transactions(store))
    return {"success": True, "balance": total, "transactions": entries}


@router.put("/{pilot_id}/notes")
async def update_pilot_notes(pilot_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    notes = validation.optional_string(payload.get("notes"), "Notes")
    async with locked(PILOTS):
        pilots = store.read(PILOTS)
        idx = _index_of(pilots, pilot_id)
        pilots[idx]["notes"] = notes
        store.write(PILOTS, pilots)
    await publish(store, ["pilots"])
    return {"success": True, "pilot": _enriched(store, pilot_id)}


@router.put("/{pilot_id}/personal-transactions")
async def update_personal_transactions(
    pilot_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)
):
    async with locked(PILOTS):
        pilots = store.read(PILOTS)
        idx = _index_of(pilots, pilot_id)
        pilots[idx]["personalTransactions"] = validation.transaction_ids(
            payload.get("personalTransactions"), _transactions(store)
        )
        store.write(PILOTS, pilots)
    await publish(store, ["pilots", "manna"])
    return {"success": True, "pilot": _enriched(store, pilot_id)}


@router.put("/{pilot_id}/reserves-management")
async def update_pilot_reserves(pilot_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    if not isinstance(payload.get("reserves"), list):
        raise ValidationError("Reserves must be an array")
    async with locked(PILOTS):
        pilots = store.read(PILOTS)
        idx = _index_of(pilots, pilot_id)
        pilots[idx]["reserves"] = validation.validate_pilot_reserves(payload["reserves"], store.read(RESERVES))
        store.write(PILOTS, pilots)
    await publish(store, ["pilots"])
    return {"success": True, "pilot": _enriched(store, pilot_id)}


@router.put("/{pilot_id}/reserves/{reserve_id}/cycle")
async def cycle_reserve_status(
    pilot_id: str, reserve_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_client)
):
    status = validation.deployment_status(payload.get("deploymentStatus"))
    async with locked(PILOTS):
        pilots = store.read(PILOTS)
        pilot = pilots[_index_of(pilots, pilot_id)]
        pilot["reserves"][_held_index(pilot, reserve_id)]["deploymentStatus"] = status
        store.write(PILOTS, pilots)
    await publish(store, ["pilots"])
    return {"success": True, "pilot": _enriched(store, pilot_id)}


@router.post("/{pilot_id}/reserves/{reserve_id}/transfer")
async def transfer_reserve(
    pilot_id: str, reserve_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_client)
):
    target_id = payload.get("targetPilotId")
    if not target_id:
        raise ValidationError("Target pilot ID is required")
    async with locked(PILOTS):
        pilots = store.read(PILOTS)
        source = pilots[_index_of(pilots, pilot_id, "Source pilot")]
        target = pilots[_index_of(pilots, target_id, "Target pilot")]
        if source is target:
            raise ValidationError("Cannot transfer reserve to the same pilot")
        held = source["reserves"].pop(_held_index(source, reserve_id, "Reserve not found for source pilot"))
        target.setdefault("reserves", []).append(held)
        store.write(PILOTS, pilots)
    logger.info("reserve_transferred", reserve_id=reserve_id, source=pilot_id, target=target_id)
    await publish(store, ["pilots"])
    return {"success": True}


@router.delete("/{pilot_id}/reserves/{reserve_id}")
async def remove_reserve(pilot_id: str, reserve_id: str, store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    async with locked(PILOTS):
        pilots = store.read(PILOTS)
        pilot = pilots[_index_of(pilots, pilot_id)]
        pilot["reserves"].pop(_held_index(pilot, reserve_id))
        store.write(PILOTS, pilots)
    await publish(store, ["pilots"])
    return {"success": True}


@router.post("/progress-operation")
async def progress_operation(store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    """Advance every active pilot's operation counter, wrapping 3 back to 0."""
    async with locked(PILOTS):
        pilots = store.read(PILOTS)
        progressed = 0
        reset = []
        for pilot in pilots:
            if not pilot.get("active"):
                continue
            progressed += 1
            current = pilot.get("personalOperationProgress") or 0
            if current >= 3:
                pilot["personalOperationProgress"] = 0
                reset.append({"name": pilot.get("name"), "callsign": pilot.get("callsign")})
            else:
                pilot["personalOperationProgress"] = current + 1
        store.write(PILOTS, pilots)
    logger.info("pilot_operation_progressed", pilots=progressed, reset=len(reset))
    await publish(store, ["pilots"], action="progress-operation")
    return {"success": True, "pilotsProgressed": progressed, "resetPilots": reset}
