import asyncio

import pytest

from mercboard.errors import ConflictError, NotFoundError, ValidationError
from mercboard.services import balance, purchases
from mercboard.storage.memory_provider import MemoryCollectionStore
from mercboard.storage.provider import (
    CORE_MAJOR_FACILITIES,
    LEDGER,
    MINOR_FACILITY_SLOTS,
    PILOTS,
    RESERVES,
    SETTINGS,
    STORE_CONFIG,
    empty_minor_slots,
    empty_store_config,
)

from conftest import make_pilot


def _facility(name, price, purchased=False, upgrades=()):
    return {
        "facilityName": name,
        "facilityPrice": price,
        "facilityDescription": "",
        "isPurchased": purchased,
        "upgrades": list(upgrades),
    }


def _upgrade(name, price, max_purchases=1, count=0):
    return {
        "upgradeName": name,
        "upgradePrice": price,
        "upgradeDescription": "",
        "upgradeCount": count,
        "maxPurchases": max_purchases,
    }


@pytest.fixture
def store():
    store = MemoryCollectionStore()
    store.write(
        LEDGER,
        {
            "transactions": [
                {"id": "t1", "amount": 100, "description": "pay", "date": "2025-01-01T00:00:00.000Z"},
                {"id": "t2", "amount": 40, "description": "pay", "date": "2025-01-01T00:00:00.000Z"},
            ]
        },
    )
    store.write(PILOTS, [make_pilot("p1", "Ada", ["t1"]), make_pilot("p2", "Bo", ["t2"])])
    store.write(
        CORE_MAJOR_FACILITIES,
        [
            _facility("Command Center", 0, purchased=True, upgrades=[_upgrade("Uplink", 50, max_purchases=2)]),
            _facility("Armory", 150),
            _facility("Foundry", 100),
            _facility("Lab", 100),
        ],
    )
    store.write(MINOR_FACILITY_SLOTS, empty_minor_slots())
    return store


def _balances(store):
    transactions = store.read(LEDGER)["transactions"]
    return {p["id"]: balance.pilot_balance(p, transactions) for p in store.read(PILOTS)}


class TestFacilityPurchase:
    def test_all_or_nothing_on_insufficient_funds(self, store):
        ledger_before = store.read(LEDGER)
        with pytest.raises(ConflictError, match="Insufficient funds for: Bo"):
            asyncio.run(purchases.purchase_facility(store, 1, ["p1", "p2"]))
        assert store.read(CORE_MAJOR_FACILITIES)[1]["isPurchased"] is False
        assert store.read(LEDGER) == ledger_before
        assert _balances(store) == {"p1": 100, "p2": 40}

    def test_single_payer(self, store):
        result = asyncio.run(purchases.purchase_facility(store, 2, ["p1"]))
        assert result.body["price"] == 100
        assert result.body["costPerPilot"] == 100
        assert result.events == ["facilities-core-major", "manna", "pilots"]
        assert store.read(CORE_MAJOR_FACILITIES)[2]["isPurchased"] is True
        assert _balances(store) == {"p1": 0, "p2": 40}

    def test_split_share_rounds_up(self, store):
        store.write(SETTINGS, {"facilityCostModifier": -50})
        result = asyncio.run(purchases.purchase_facility(store, 2, ["p1", "p2"]))
        assert result.body["price"] == 50
        assert result.body["costPerPilot"] == 25
        txn = result.body["transaction"]
        assert txn["amount"] == -25
        assert txn["description"] == "Purchased facility: Foundry"
        assert _balances(store) == {"p1": 75, "p2": 15}

    def test_already_purchased(self, store):
        with pytest.raises(ConflictError):
            asyncio.run(purchases.purchase_facility(store, 0, ["p1"]))

    def test_bad_index(self, store):
        with pytest.raises(NotFoundError):
            asyncio.run(purchases.purchase_facility(store, 9, ["p1"]))

    def test_free_purchase_creates_no_transaction(self, store):
        store.write(SETTINGS, {"facilityCostModifier": -100})
        result = asyncio.run(purchases.purchase_facility(store, 2, ["p2"]))
        assert result.body["price"] == 0
        assert result.body["transaction"] is None
        assert len(store.read(LEDGER)["transactions"]) == 2
        assert store.read(CORE_MAJOR_FACILITIES)[2]["isPurchased"] is True

    def test_concurrent_purchases_of_same_facility(self, store):
        async def run():
            return await asyncio.gather(
                purchases.purchase_facility(store, 2, ["p1"]),
                purchases.purchase_facility(store, 2, ["p1"]),
                return_exceptions=True,
            )

        results = asyncio.run(run())
        assert isinstance(results[0], purchases.PurchaseResult)
        assert isinstance(results[1], ConflictError)
        assert results[1].message == "Facility is already purchased"
        assert len(store.read(LEDGER)["transactions"]) == 3

    def test_concurrent_purchases_cannot_overspend(self, store):
        async def run():
            return await asyncio.gather(
                purchases.purchase_facility(store, 2, ["p1"]),
                purchases.purchase_facility(store, 3, ["p1"]),
                return_exceptions=True,
            )

        results = asyncio.run(run())
        ok = [r for r in results if isinstance(r, purchases.PurchaseResult)]
        failed = [r for r in results if isinstance(r, ConflictError)]
        assert len(ok) == 1
        assert len(failed) == 1
        assert _balances(store)["p1"] == 0
        assert [f["isPurchased"] for f in store.read(CORE_MAJOR_FACILITIES)[2:]].count(True) == 1


class TestUpgradePurchase:
    def test_counts_up_to_max(self, store):
        asyncio.run(purchases.purchase_upgrade(store, 0, 0, ["p1"]))
        asyncio.run(purchases.purchase_upgrade(store, 0, 0, ["p1"]))
        assert store.read(CORE_MAJOR_FACILITIES)[0]["upgrades"][0]["upgradeCount"] == 2
        with pytest.raises(ConflictError, match="maximum"):
            asyncio.run(purchases.purchase_upgrade(store, 0, 0, ["p1"]))
        assert _balances(store)["p1"] == 0

    def test_unpurchased_facility(self, store):
        facilities = store.read(CORE_MAJOR_FACILITIES)
        facilities[1]["upgrades"] = [_upgrade("Racks", 50)]
        store.write(CORE_MAJOR_FACILITIES, facilities)
        with pytest.raises(ConflictError, match="unpurchased"):
            asyncio.run(purchases.purchase_upgrade(store, 1, 0, ["p1"]))


class TestMinorSlots:
    def test_unlock_only_slots_five_and_six(self, store):
        with pytest.raises(ValidationError):
            asyncio.run(purchases.enable_minor_slot(store, 3, ["p1"]))

    def test_unlock_charges_modified_price(self, store):
        store.write(SETTINGS, {"facilityCostModifier": -99})
        result = asyncio.run(purchases.enable_minor_slot(store, 5, ["p1"]))
        assert result.body["price"] == 50
        slot = next(s for s in store.read(MINOR_FACILITY_SLOTS)["slots"] if s["slotNumber"] == 5)
        assert slot["enabled"] is True
        with pytest.raises(ConflictError, match="already enabled"):
            asyncio.run(purchases.enable_minor_slot(store, 5, ["p1"]))

    def test_assign_from_catalog(self, store):
        store.write(SETTINGS, {"facilityCostModifier": -90})
        result = asyncio.run(purchases.assign_minor_slot(store, 1, "Garden", None, ["p1"]))
        assert result.body["price"] == 50
        slot = store.read(MINOR_FACILITY_SLOTS)["slots"][0]
        assert slot["facilityName"] == "Garden"
        assert slot["facilityDescription"].startswith("Fresh food")

    def test_assign_rejects_duplicates_and_unknown(self, store):
        store.write(SETTINGS, {"facilityCostModifier": -100})
        asyncio.run(purchases.assign_minor_slot(store, 1, "Garden", "", ["p1"]))
        with pytest.raises(ConflictError, match="another slot"):
            asyncio.run(purchases.assign_minor_slot(store, 2, "Garden", "", ["p1"]))
        with pytest.raises(ConflictError, match="Demolish"):
            asyncio.run(purchases.assign_minor_slot(store, 1, "Bar", "", ["p1"]))
        with pytest.raises(ValidationError, match="not found in available options"):
            asyncio.run(purchases.assign_minor_slot(store, 2, "Casino", "", ["p1"]))

    def test_disabled_slot(self, store):
        with pytest.raises(ConflictError, match="disabled slot"):
            asyncio.run(purchases.assign_minor_slot(store, 6, "Bar", "", ["p1"]))


class TestProcurement:
    @pytest.fixture
    def stocked(self, store):
        store.write(RESERVES, [{"id": "r1", "rank": 1, "name": "Hooks", "price": 60, "description": "", "isCustom": False}])
        config = empty_store_config()
        config["currentStock"] = ["r1", "r1"]
        store.write(STORE_CONFIG, config)
        return store

    def test_reserve_goes_to_assignee(self, stocked):
        result = asyncio.run(purchases.procurement_purchase(stocked, "r1", "reserve", ["p1", "p2"], "p2"))
        assert result.body["costPerPilot"] == 30
        assert stocked.read(STORE_CONFIG)["currentStock"] == ["r1"]
        held = next(p for p in stocked.read(PILOTS) if p["id"] == "p2")["reserves"]
        assert held == [{"reserveId": "r1", "deploymentStatus": "In Reserve"}]
        assert result.events == ["manna", "pilots", "store-config"]

    def test_ignores_facility_modifier(self, stocked):
        stocked.write(SETTINGS, {"facilityCostModifier": 300})
        result = asyncio.run(purchases.procurement_purchase(stocked, "r1", "reserve", ["p1"], "p1"))
        assert result.body["price"] == 60

    def test_out_of_stock(self, stocked):
        with pytest.raises(NotFoundError, match="not in stock"):
            asyncio.run(purchases.procurement_purchase(stocked, "r9", "reserve", ["p1"], "p1"))

    def test_disabled_resupply_item(self, stocked):
        config = stocked.read(STORE_CONFIG)
        config["resupplyItems"][0]["enabled"] = False
        stocked.write(STORE_CONFIG, config)
        with pytest.raises(NotFoundError):
            asyncio.run(
                purchases.procurement_purchase(stocked, config["resupplyItems"][0]["id"], "resupply", ["p1"], "p1")
            )

    def test_requires_assignee(self, stocked):
        with pytest.raises(ValidationError, match="Assignee"):
            asyncio.run(purchases.procurement_purchase(stocked, "r1", "reserve", ["p1"], None))

    def test_insufficient_funds_leaves_stock(self, stocked):
        with pytest.raises(ConflictError, match="Insufficient funds for: Bo"):
            asyncio.run(purchases.procurement_purchase(stocked, "r1", "reserve", ["p2"], "p2"))
        assert stocked.read(STORE_CONFIG)["currentStock"] == ["r1", "r1"]
