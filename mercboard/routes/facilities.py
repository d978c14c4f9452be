from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query

from ..auth.security import require_admin, require_client
from ..db import get_store
from ..errors import ConflictError, NotFoundError, ValidationError
from ..logging import structlog
from ..schemas.purchases import ExpenseRequest, MinorSlotPurchaseRequest
from ..services import purchases, validation
from ..services.events import publish
from ..services.locks import locked
from ..services.pricing import MINOR_SLOT_UNLOCK_PRICE, apply_cost_modifier, split_share
from ..services.seed import minor_facility_options
from ..storage.provider import CollectionStore, CORE_MAJOR_FACILITIES, MINOR_FACILITY_SLOTS, MINOR_SLOTS_COUNT


router = APIRouter(prefix="/api/facilities", tags=["facilities"])
logger = structlog.get_logger(__name__)

CORE_MAJOR_COUNT = 9


def _slot(minor: dict, slot_number: int) -> dict:
    slot = next((s for s in minor.get("slots", []) if s.get("slotNumber") == slot_number), None)
    if slot is None:
        raise NotFoundError("Invalid slot number")
    return slot


def _facility(facilities, index: int) -> dict:
    if index < 0 or index >= len(facilities):
        raise NotFoundError("Invalid facility index")
    return facilities[index]


# ---------- core / major ----------

@router.get("/core-major")
def get_core_major(store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    return store.read(CORE_MAJOR_FACILITIES)


@router.put("/core-major")
async def replace_core_major(payload: Any = Body(...), store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    if not isinstance(payload, list) or len(payload) != CORE_MAJOR_COUNT:
        raise ValidationError(f"Core/Major facilities must have exactly {CORE_MAJOR_COUNT} facilities")
    facilities = []
    for i, raw in enumerate(payload):
        try:
            facilities.append(validation.validate_core_major_facility(raw))
        except ValidationError as e:
            raise ValidationError(f"Facility at index {i}: {e.message}")
    async with locked(CORE_MAJOR_FACILITIES):
        store.write(CORE_MAJOR_FACILITIES, facilities)
    await publish(store, ["facilities-core-major"])
    return {"success": True, "facilities": facilities}


@router.patch("/core-major/{index}/purchased")
async def set_purchased(index: int, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    async with locked(CORE_MAJOR_FACILITIES):
        facilities = store.read(CORE_MAJOR_FACILITIES)
        _facility(facilities, index)["isPurchased"] = bool(payload.get("isPurchased"))
        store.write(CORE_MAJOR_FACILITIES, facilities)
    await publish(store, ["facilities-core-major"])
    return {"success": True, "facilities": facilities}


@router.patch("/core-major/{index}/upgrades/{upgrade_index}")
async def set_upgrade_count(
    index: int, upgrade_index: int, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)
):
    async with locked(CORE_MAJOR_FACILITIES):
        facilities = store.read(CORE_MAJOR_FACILITIES)
        upgrades = _facility(facilities, index).get("upgrades") or []
        if not upgrades:
            raise ValidationError("Facility has no upgrades configured")
        if upgrade_index < 0 or upgrade_index >= len(upgrades):
            raise NotFoundError("Invalid upgrade index")
        upgrade = upgrades[upgrade_index]
        max_purchases = upgrade.get("maxPurchases") or 0
        count = validation.parse_int(payload.get("upgradeCount"))
        if count is None or count < 0 or count > max_purchases:
            raise ValidationError(f"Upgrade count must be between 0 and {max_purchases}")
        upgrade["upgradeCount"] = count
        store.write(CORE_MAJOR_FACILITIES, facilities)
    await publish(store, ["facilities-core-major"])
    return {"success": True, "facilities": facilities}


@router.post("/core-major/{index}/purchase")
async def purchase_core_major(
    index: int, req: ExpenseRequest, store: CollectionStore = Depends(get_store), _=Depends(require_client)
):
    result = await purchases.purchase_facility(store, index, req.expensePilots)
    await publish(store, result.events, action="purchase")
    return result.body


@router.post("/core-major/{index}/upgrades/{upgrade_index}/purchase")
async def purchase_core_major_upgrade(
    index: int, upgrade_index: int, req: ExpenseRequest, store: CollectionStore = Depends(get_store), _=Depends(require_client)
):
    result = await purchases.purchase_upgrade(store, index, upgrade_index, req.expensePilots)
    await publish(store, result.events, action="purchase")
    return result.body


# ---------- minor slots ----------

@router.get("/minor-slots")
def get_minor_slots(store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    return store.read(MINOR_FACILITY_SLOTS)


@router.put("/minor-slots")
async def replace_minor_slots(payload: Any = Body(...), store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    slots = payload.get("slots") if isinstance(payload, dict) else None
    if not isinstance(slots, list) or len(slots) != MINOR_SLOTS_COUNT:
        raise ValidationError(f"Minor facilities must have exactly {MINOR_SLOTS_COUNT} slots")
    cleaned = []
    for i, raw in enumerate(slots):
        try:
            cleaned.append(validation.validate_minor_slot(raw, i + 1))
        except ValidationError as e:
            raise ValidationError(f"Slot at index {i}: {e.message}")
    names = [s["facilityName"] for s in cleaned if s["facilityName"]]
    if len(names) != len(set(names)):
        raise ValidationError("A minor facility can only occupy one slot")
    minor = {"slots": cleaned}
    async with locked(MINOR_FACILITY_SLOTS):
        store.write(MINOR_FACILITY_SLOTS, minor)
    await publish(store, ["facilities-minor-slots"])
    return {"success": True, "minorFacilities": minor}


@router.get("/minor-options")
def get_minor_options(_=Depends(require_client)):
    return minor_facility_options()


@router.put("/minor-slots/{slot_number}/assign")
async def admin_assign_slot(
    slot_number: int, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)
):
    """Place a facility in a slot without charging anyone."""
    name = validation.required_string(payload.get("facilityName"), "Facility name")
    description = payload.get("facilityDescription")
    if description is not None and not isinstance(description, str):
        raise ValidationError("Facility description must be a string")
    async with locked(MINOR_FACILITY_SLOTS):
        minor = store.read(MINOR_FACILITY_SLOTS)
        slot = _slot(minor, slot_number)
        if not slot.get("enabled"):
            raise ConflictError("Cannot assign facility to disabled slot")
        if any(s.get("slotNumber") != slot_number and s.get("facilityName") == name for s in minor["slots"]):
            raise ConflictError("This facility is already assigned to another slot")
        slot["facilityName"] = name
        slot["facilityDescription"] = (description or "").strip()
        store.write(MINOR_FACILITY_SLOTS, minor)
    await publish(store, ["facilities-minor-slots"])
    return {"success": True, "minorFacilities": minor}


@router.delete("/minor-slots/{slot_number}/clear")
async def admin_clear_slot(slot_number: int, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    async with locked(MINOR_FACILITY_SLOTS):
        minor = store.read(MINOR_FACILITY_SLOTS)
        slot = _slot(minor, slot_number)
        slot["facilityName"] = ""
        slot["facilityDescription"] = ""
        store.write(MINOR_FACILITY_SLOTS, minor)
    await publish(store, ["facilities-minor-slots"])
    return {"success": True, "minorFacilities": minor}


@router.patch("/minor-slots/{slot_number}/toggle-enabled")
async def admin_toggle_slot(
    slot_number: int, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)
):
    if slot_number not in purchases.UNLOCKABLE_SLOTS:
        raise ValidationError("Only slots 5 and 6 can be enabled/disabled")
    async with locked(MINOR_FACILITY_SLOTS):
        minor = store.read(MINOR_FACILITY_SLOTS)
        slot = _slot(minor, slot_number)
        slot["enabled"] = bool(payload.get("enabled"))
        if not slot["enabled"]:
            slot["facilityName"] = ""
            slot["facilityDescription"] = ""
        store.write(MINOR_FACILITY_SLOTS, minor)
    await publish(store, ["facilities-minor-slots"])
    return {"success": True, "minorFacilities": minor}


@router.post("/minor-slots/{slot_number}/enable")
async def purchase_slot_unlock(
    slot_number: int, req: ExpenseRequest, store: CollectionStore = Depends(get_store), _=Depends(require_client)
):
    result = await purchases.enable_minor_slot(store, slot_number, req.expensePilots)
    await publish(store, result.events, action="purchase")
    return result.body


@router.post("/minor-slots/{slot_number}/assign")
async def purchase_minor_facility(
    slot_number: int, req: MinorSlotPurchaseRequest, store: CollectionStore = Depends(get_store), _=Depends(require_client)
):
    result = await purchases.assign_minor_slot(
        store, slot_number, req.facilityName, req.facilityDescription, req.expensePilots
    )
    await publish(store, result.events, action="purchase")
    return result.body


@router.delete("/minor-slots/{slot_number}/demolish")
async def demolish_minor_facility(slot_number: int, store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    """Free a slot. Demolition is not refunded."""
    async with locked(MINOR_FACILITY_SLOTS):
        minor = store.read(MINOR_FACILITY_SLOTS)
        slot = _slot(minor, slot_number)
        if not slot.get("facilityName"):
            raise ConflictError("Slot is already empty")
        slot["facilityName"] = ""
        slot["facilityDescription"] = ""
        store.write(MINOR_FACILITY_SLOTS, minor)
    logger.info("minor_facility_demolished", slot=slot_number)
    await publish(store, ["facilities-minor-slots"])
    return {"success": True, "minorFacilities": minor}


# ---------- pricing ----------

@router.get("/price-preview")
def price_preview(
    basePrice: Optional[float] = Query(default=None),
    kind: Optional[str] = Query(default=None),
    payers: int = Query(default=1, ge=1),
    store: CollectionStore = Depends(get_store),
    _=Depends(require_client),
):
    """What a facility purchase would charge right now, using the same rule the purchase applies.

    ``kind=minor-slot`` previews a slot unlock; otherwise ``basePrice`` is required.
    """
    if kind == "minor-slot":
        base = MINOR_SLOT_UNLOCK_PRICE
    elif basePrice is None:
        raise ValidationError("basePrice is required")
    else:
        base = basePrice
    modifier = store.read_settings().get("facilityCostModifier", 0)
    price = apply_cost_modifier(base, modifier)
    return {
        "success": True,
        "basePrice": base,
        "modifier": modifier,
        "price": price,
        "payers": payers,
        "costPerPilot": split_share(price, payers) if price > 0 else 0,
    }
