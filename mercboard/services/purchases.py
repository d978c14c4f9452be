"""
Locked purchase flows.

Every flow follows the same shape: take the locks for the collections it
touches, read them, run every check (item state, payers, funds), and only
then write, item collection first, then the ledger, then pilots. A failed
check raises before the first write, so a rejected purchase leaves no trace.

Flows return the response body plus the push events the caller should emit
once the request has succeeded.
"""
from typing import List, Optional

import structlog

from . import validation
from .ledger import Charge, prepare_charge
from .locks import locked
from .pricing import MINOR_SLOT_UNLOCK_PRICE, apply_cost_modifier
from .seed import find_minor_option
from ..errors import ConflictError, NotFoundError, ValidationError
from ..storage.provider import (
    CollectionStore,
    CORE_MAJOR_FACILITIES,
    LEDGER,
    MINOR_FACILITY_SLOTS,
    PILOTS,
    RESERVES,
    STORE_CONFIG,
)


logger = structlog.get_logger(__name__)

UNLOCKABLE_SLOTS = (5, 6)
ITEM_TYPES = ("reserve", "resupply")


class PurchaseResult:
    def __init__(self, body: dict, events: List[str]) -> None:
        self.body = body
        self.events = events


def _commit_charge(store: CollectionStore, charge: Charge, pilots: List[dict], ledger: dict) -> None:
    if charge.transaction is None:
        return
    charge.apply(pilots, ledger["transactions"])
    store.write(LEDGER, ledger)
    store.write(PILOTS, pilots)


def _charge_body(charge: Charge) -> dict:
    return {"price": charge.price, "costPerPilot": charge.share, "transaction": charge.transaction}


def _facility_at(facilities: List[dict], index: int) -> dict:
    if index < 0 or index >= len(facilities):
        raise NotFoundError("Invalid facility index")
    return facilities[index]


def _slot(slots_doc: dict, slot_number: int) -> dict:
    slot = next((s for s in slots_doc.get("slots", []) if s.get("slotNumber") == slot_number), None)
    if slot is None:
        raise NotFoundError("Invalid slot number")
    return slot


def _modifier(store: CollectionStore):
    return store.read_settings().get("facilityCostModifier", 0)


async def purchase_facility(store: CollectionStore, index: int, expense_pilots) -> PurchaseResult:
    async with locked(CORE_MAJOR_FACILITIES, LEDGER, PILOTS):
        facilities = store.read(CORE_MAJOR_FACILITIES)
        facility = _facility_at(facilities, index)
        if facility.get("isPurchased"):
            raise ConflictError("Facility is already purchased")
        if not facility.get("facilityPrice"):
            raise ConflictError("Core facilities cannot be purchased (they are already owned)")

        pilots = store.read(PILOTS)
        ledger = store.read(LEDGER)
        payers = validation.expense_pilots(expense_pilots, pilots)
        price = apply_cost_modifier(facility["facilityPrice"], _modifier(store))
        charge = prepare_charge(
            pilots, ledger["transactions"], payers, price, f"Purchased facility: {facility['facilityName']}"
        )

        facility["isPurchased"] = True
        store.write(CORE_MAJOR_FACILITIES, facilities)
        _commit_charge(store, charge, pilots, ledger)

    logger.info("facility_purchased", facility=facility["facilityName"], price=price, payers=len(payers))
    return PurchaseResult(
        {"success": True, "facilities": facilities, **_charge_body(charge)},
        ["facilities-core-major", "manna", "pilots"],
    )


async def purchase_upgrade(store: CollectionStore, facility_index: int, upgrade_index: int, expense_pilots) -> PurchaseResult:
    async with locked(CORE_MAJOR_FACILITIES, LEDGER, PILOTS):
        facilities = store.read(CORE_MAJOR_FACILITIES)
        facility = _facility_at(facilities, facility_index)
        upgrades = facility.get("upgrades") or []
        if upgrade_index < 0 or upgrade_index >= len(upgrades):
            raise NotFoundError("Invalid upgrade index")
        upgrade = upgrades[upgrade_index]
        if not facility.get("isPurchased"):
            raise ConflictError("Cannot purchase upgrades for an unpurchased facility")
        if (upgrade.get("upgradeCount") or 0) >= (upgrade.get("maxPurchases") or 0):
            raise ConflictError("Upgrade is already at maximum purchases")

        pilots = store.read(PILOTS)
        ledger = store.read(LEDGER)
        payers = validation.expense_pilots(expense_pilots, pilots)
        price = apply_cost_modifier(upgrade.get("upgradePrice", 0), _modifier(store))
        charge = prepare_charge(
            pilots,
            ledger["transactions"],
            payers,
            price,
            f"Purchased upgrade: {upgrade['upgradeName']} for {facility['facilityName']}",
        )

        upgrade["upgradeCount"] = (upgrade.get("upgradeCount") or 0) + 1
        store.write(CORE_MAJOR_FACILITIES, facilities)
        _commit_charge(store, charge, pilots, ledger)

    logger.info(
        "upgrade_purchased",
        facility=facility["facilityName"],
        upgrade=upgrade["upgradeName"],
        count=upgrade["upgradeCount"],
        price=price,
    )
    return PurchaseResult(
        {"success": True, "facilities": facilities, **_charge_body(charge)},
        ["facilities-core-major", "manna", "pilots"],
    )


async def enable_minor_slot(store: CollectionStore, slot_number: int, expense_pilots) -> PurchaseResult:
    if slot_number not in UNLOCKABLE_SLOTS:
        raise ValidationError("Only slots 5 and 6 can be unlocked")

    async with locked(MINOR_FACILITY_SLOTS, LEDGER, PILOTS):
        minor = store.read(MINOR_FACILITY_SLOTS)
        slot = _slot(minor, slot_number)
        if slot.get("enabled"):
            raise ConflictError("Slot is already enabled")

        pilots = store.read(PILOTS)
        ledger = store.read(LEDGER)
        payers = validation.expense_pilots(expense_pilots, pilots)
        price = apply_cost_modifier(MINOR_SLOT_UNLOCK_PRICE, _modifier(store))
        charge = prepare_charge(
            pilots, ledger["transactions"], payers, price, f"Unlocked minor facility slot {slot_number}"
        )

        slot["enabled"] = True
        store.write(MINOR_FACILITY_SLOTS, minor)
        _commit_charge(store, charge, pilots, ledger)

    logger.info("minor_slot_unlocked", slot=slot_number, price=price, payers=len(payers))
    return PurchaseResult(
        {"success": True, "minorFacilities": minor, **_charge_body(charge)},
        ["facilities-minor-slots", "manna", "pilots"],
    )


async def assign_minor_slot(
    store: CollectionStore,
    slot_number: int,
    facility_name,
    facility_description,
    expense_pilots,
) -> PurchaseResult:
    name = validation.required_string(facility_name, "Facility name")
    if facility_description is not None and not isinstance(facility_description, str):
        raise ValidationError("Facility description must be a string")

    async with locked(MINOR_FACILITY_SLOTS, LEDGER, PILOTS):
        minor = store.read(MINOR_FACILITY_SLOTS)
        slot = _slot(minor, slot_number)
        if not slot.get("enabled"):
            raise ConflictError("Cannot assign facility to disabled slot")
        if slot.get("facilityName"):
            raise ConflictError("Slot already has a facility assigned. Demolish it first.")
        if any(s.get("slotNumber") != slot_number and s.get("facilityName") == name for s in minor["slots"]):
            raise ConflictError("This facility is already assigned to another slot")
        option = find_minor_option(name)
        if option is None:
            raise ValidationError("Invalid facility name: not found in available options")

        pilots = store.read(PILOTS)
        ledger = store.read(LEDGER)
        payers = validation.expense_pilots(expense_pilots, pilots)
        price = apply_cost_modifier(option.get("minorFacilityPrice", 0), _modifier(store))
        charge = prepare_charge(pilots, ledger["transactions"], payers, price, f"Purchased minor facility: {name}")

        slot["facilityName"] = name
        slot["facilityDescription"] = (
            facility_description.strip() if facility_description else option.get("minorFacilityDescription", "")
        )
        store.write(MINOR_FACILITY_SLOTS, minor)
        _commit_charge(store, charge, pilots, ledger)

    logger.info("minor_facility_purchased", slot=slot_number, facility=name, price=price)
    return PurchaseResult(
        {"success": True, "minorFacilities": minor, **_charge_body(charge)},
        ["facilities-minor-slots", "manna", "pilots"],
    )


def _procurement_item(store_config: dict, reserves: List[dict], item_id: str, item_type: str) -> dict:
    if item_type == "resupply":
        item = next((i for i in store_config.get("resupplyItems", []) if i.get("id") == item_id), None)
        if item is None or not item.get("enabled"):
            raise NotFoundError("Resupply item not found or not available")
        return item
    if item_id not in (store_config.get("currentStock") or []):
        raise NotFoundError("Reserve not in stock")
    item = next((r for r in reserves if r.get("id") == item_id), None)
    if item is None:
        raise NotFoundError("Reserve not found")
    return item


async def procurement_purchase(
    store: CollectionStore,
    item_id: Optional[str],
    item_type: Optional[str],
    expense_pilots,
    assignee: Optional[str],
) -> PurchaseResult:
    """Buy a stocked reserve or a resupply item. Procurement prices ignore the facility modifier."""
    if not item_id or not item_type:
        raise ValidationError("Invalid purchase request: missing required fields")
    if item_type not in ITEM_TYPES:
        raise ValidationError("Invalid item type")
    if not assignee:
        raise ValidationError("Assignee is required for all purchases")

    async with locked(STORE_CONFIG, LEDGER, PILOTS):
        store_config = store.read(STORE_CONFIG)
        reserves = store.read(RESERVES)
        item = _procurement_item(store_config, reserves, item_id, item_type)

        pilots = store.read(PILOTS)
        ledger = store.read(LEDGER)
        payers = validation.expense_pilots(expense_pilots, pilots)
        assignee_pilot = next((p for p in pilots if p.get("id") == assignee), None)
        if assignee_pilot is None:
            raise ValidationError("Invalid assignee pilot ID")

        price = validation.parse_number(item.get("price"))
        if price is None or price <= 0:
            raise ValidationError("Invalid item price: must be a positive number")
        charge = prepare_charge(
            pilots,
            ledger["transactions"],
            payers,
            price,
            f"Purchased {item.get('name')} for {assignee_pilot.get('name')}",
        )

        if item_type == "reserve":
            assignee_pilot.setdefault("reserves", []).append(
                {"reserveId": item_id, "deploymentStatus": validation.DEFAULT_DEPLOYMENT_STATUS}
            )
            store_config["currentStock"].remove(item_id)  # first occurrence only
            store.write(STORE_CONFIG, store_config)
        charge.apply(pilots, ledger["transactions"])
        store.write(LEDGER, ledger)
        store.write(PILOTS, pilots)

    logger.info("procurement_purchased", item=item.get("name"), item_type=item_type, assignee=assignee, price=price)
    events = ["manna", "pilots", "store-config"]
    return PurchaseResult(
        {"success": True, "storeConfig": store_config, **_charge_body(charge)},
        events,
    )
