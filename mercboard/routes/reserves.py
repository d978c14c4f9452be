import random

from fastapi import APIRouter, Depends

from ..auth.security import require_admin, require_client
from ..db import get_store
from ..errors import ConflictError, NotFoundError, ValidationError
from ..logging import structlog
from ..schemas.purchases import ProcurementRequest
from ..services import purchases, validation
from ..services.events import publish
from ..services.ledger import new_id
from ..services.locks import locked
from ..storage.provider import CollectionStore, PILOTS, RESERVES, STORE_CONFIG


router = APIRouter(prefix="/api", tags=["reserves"])
logger = structlog.get_logger(__name__)


def _index_of(reserves, reserve_id: str) -> int:
    for i, reserve in enumerate(reserves):
        if reserve.get("id") == reserve_id:
            return i
    raise NotFoundError("Reserve not found")


# ---------- reserve catalog ----------

@router.get("/reserves")
def list_reserves(store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    return store.read(RESERVES)


@router.post("/reserves")
async def create_reserve(payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    fields = validation.validate_reserve(payload)
    async with locked(RESERVES):
        reserves = store.read(RESERVES)
        # Anything added through the API is custom; the seeded catalog is not
        reserve = {"id": new_id(), **fields, "isCustom": True}
        reserves.append(reserve)
        store.write(RESERVES, reserves)
    logger.info("reserve_created", reserve_id=reserve["id"], name=reserve["name"])
    await publish(store, ["reserves"], action="create")
    return {"success": True, "reserve": reserve}


@router.put("/reserves/{reserve_id}")
async def update_reserve(reserve_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    fields = validation.validate_reserve(payload)
    async with locked(RESERVES):
        reserves = store.read(RESERVES)
        idx = _index_of(reserves, reserve_id)
        reserves[idx] = {"id": reserve_id, **fields, "isCustom": bool(reserves[idx].get("isCustom"))}
        store.write(RESERVES, reserves)
    await publish(store, ["reserves", "pilots"])
    return {"success": True, "reserve": reserves[idx]}


@router.delete("/reserves/{reserve_id}")
async def delete_reserve(reserve_id: str, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    """Delete a catalog reserve. Refused while any pilot holds it; removed from stock otherwise."""
    async with locked(RESERVES, STORE_CONFIG, PILOTS):
        reserves = store.read(RESERVES)
        idx = _index_of(reserves, reserve_id)
        owned = any(
            held.get("reserveId") == reserve_id
            for pilot in store.read(PILOTS)
            for held in (pilot.get("reserves") or [])
        )
        if owned:
            raise ConflictError("Cannot delete reserve: it is currently owned by one or more pilots")

        store_config = store.read(STORE_CONFIG)
        stock = store_config.get("currentStock") or []
        pruned = [rid for rid in stock if rid != reserve_id]
        stock_changed = len(pruned) != len(stock)
        if stock_changed:
            store_config["currentStock"] = pruned
            store.write(STORE_CONFIG, store_config)
        deleted = reserves.pop(idx)
        store.write(RESERVES, reserves)

    logger.info("reserve_deleted", reserve_id=reserve_id, removed_from_stock=stock_changed)
    await publish(store, ["reserves"] + (["store-config"] if stock_changed else []), action="delete")
    return {"success": True, "reserve": deleted}


# ---------- store configuration ----------

@router.get("/store-config")
def get_store_config(store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    return store.read(STORE_CONFIG)


@router.put("/store-config")
async def update_store_config(payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    """Partial update: only the keys present in the body are replaced."""
    async with locked(STORE_CONFIG):
        store_config = store.read(STORE_CONFIG)
        if payload.get("resupplyItems") is not None:
            store_config["resupplyItems"] = validation.validate_resupply_items(payload["resupplyItems"])
        if "currentStock" in payload:
            if not isinstance(payload["currentStock"], list):
                raise ValidationError("Current stock must be an array")
            store_config["currentStock"] = validation.reserve_ids(payload["currentStock"], store.read(RESERVES))
        if payload.get("resupplySettings") is not None:
            if not isinstance(payload["resupplySettings"], dict):
                raise ValidationError("Resupply settings must be an object")
            store_config["resupplySettings"] = payload["resupplySettings"]
        store.write(STORE_CONFIG, store_config)
    await publish(store, ["store-config"])
    return {"success": True, "storeConfig": store_config}


@router.post("/store-config/add-random")
async def add_random_stock(payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    rank_filter = payload.get("rankFilter")
    candidates = store.read(RESERVES)
    if rank_filter and rank_filter != "all":
        rank = validation.parse_int(rank_filter)
        candidates = [r for r in candidates if r.get("rank") == rank]
    if payload.get("hideDefaultReserves"):
        candidates = [r for r in candidates if r.get("isCustom")]
    if not candidates:
        raise ValidationError("No reserves match the current filter")

    chosen = random.choice(candidates)
    async with locked(STORE_CONFIG):
        store_config = store.read(STORE_CONFIG)
        store_config.setdefault("currentStock", []).append(chosen["id"])
        store.write(STORE_CONFIG, store_config)
    await publish(store, ["store-config"])
    return {"success": True, "storeConfig": store_config, "addedReserve": chosen}


@router.post("/store-config/remove-stock")
async def remove_stock(payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    """Drop the first stock occurrence of ``reserveIds[0]``, or every occurrence of each id with ``removeAll``."""
    reserve_ids = payload.get("reserveIds")
    if not isinstance(reserve_ids, list) or not reserve_ids:
        raise ValidationError("No reserves selected to remove")
    async with locked(STORE_CONFIG):
        store_config = store.read(STORE_CONFIG)
        stock = store_config.get("currentStock") or []
        if payload.get("removeAll"):
            kept = [rid for rid in stock if rid not in reserve_ids]
            removed = len(stock) - len(kept)
            store_config["currentStock"] = kept
        else:
            if reserve_ids[0] not in stock:
                raise NotFoundError("Reserve not found in stock")
            stock.remove(reserve_ids[0])
            store_config["currentStock"] = stock
            removed = 1
        store.write(STORE_CONFIG, store_config)
    await publish(store, ["store-config"])
    return {"success": True, "storeConfig": store_config, "removedCount": removed}


# ---------- procurement ----------

@router.post("/procurement/purchase")
async def procurement_purchase(req: ProcurementRequest, store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    result = await purchases.procurement_purchase(store, req.itemId, req.itemType, req.expensePilots, req.assignee)
    await publish(store, result.events, action="purchase")
    return result.body
