from mercboard.storage.provider import CORE_MAJOR_FACILITIES, LEDGER, MINOR_FACILITY_SLOTS, SETTINGS

ARMORY = 3  # first Major facility in the default layout, price 5000


def _slot(store, number):
    return next(s for s in store.read(MINOR_FACILITY_SLOTS)["slots"] if s["slotNumber"] == number)


class TestCoreMajor:
    def test_purchase_matches_preview(self, client, client_headers, store, fund_pilots):
        fund_pilots(store, 3000, 3000)
        store.write(SETTINGS, {**store.read_settings(), "facilityCostModifier": 20})

        preview = client.get(
            "/api/facilities/price-preview?basePrice=5000&payers=2", headers=client_headers
        ).json()
        assert preview["price"] == 6000
        assert preview["costPerPilot"] == 3000

        r = client.post(
            f"/api/facilities/core-major/{ARMORY}/purchase",
            json={"expensePilots": ["p1", "p2"]},
            headers=client_headers,
        )
        assert r.status_code == 200, r.text
        body = r.json()
        assert body["price"] == preview["price"]
        assert body["costPerPilot"] == preview["costPerPilot"]
        assert body["facilities"][ARMORY]["isPurchased"] is True
        pilots = client.get("/api/pilots", headers=client_headers).json()
        assert [p["balance"] for p in pilots] == [0, 0]

    def test_insufficient_funds(self, client, client_headers, store, fund_pilots):
        fund_pilots(store, 1000, 9000)
        r = client.post(
            f"/api/facilities/core-major/{ARMORY}/purchase",
            json={"expensePilots": ["p1", "p2"]},
            headers=client_headers,
        )
        assert r.status_code == 409
        assert r.json() == {"success": False, "message": "Insufficient funds for: Pilot 1"}
        assert store.read(CORE_MAJOR_FACILITIES)[ARMORY]["isPurchased"] is False
        assert len(store.read(LEDGER)["transactions"]) == 2

    def test_expense_pilots_required(self, client, client_headers, store, fund_pilots):
        fund_pilots(store, 9000)
        r = client.post(f"/api/facilities/core-major/{ARMORY}/purchase", json={}, headers=client_headers)
        assert r.status_code == 400
        assert "expensePilots must be a non-empty array" in r.json()["message"]

    def test_expense_pilots_must_be_ids(self, client, client_headers, store, fund_pilots):
        fund_pilots(store, 9000)
        for bad in ([["p1"]], [{"id": "p1"}], ["p1", 7]):
            r = client.post(
                f"/api/facilities/core-major/{ARMORY}/purchase", json={"expensePilots": bad}, headers=client_headers
            )
            assert r.status_code == 400, bad
            assert r.json() == {"success": False, "message": "expensePilots must be an array of IDs"}
        assert store.read(CORE_MAJOR_FACILITIES)[ARMORY]["isPurchased"] is False
        assert len(store.read(LEDGER)["transactions"]) == 1

    def test_core_facility_not_for_sale(self, client, client_headers, store, fund_pilots):
        fund_pilots(store, 9000)
        r = client.post("/api/facilities/core-major/0/purchase", json={"expensePilots": ["p1"]}, headers=client_headers)
        assert r.status_code == 409

    def test_upgrade_purchase(self, client, client_headers, store, fund_pilots):
        fund_pilots(store, 1500)
        r = client.post(
            "/api/facilities/core-major/0/upgrades/0/purchase",
            json={"expensePilots": ["p1"]},
            headers=client_headers,
        )
        assert r.status_code == 200
        assert r.json()["facilities"][0]["upgrades"][0]["upgradeCount"] == 1

    def test_replace_requires_nine(self, client, admin_headers, store):
        facilities = store.read(CORE_MAJOR_FACILITIES)
        r = client.put("/api/facilities/core-major", json=facilities[:8], headers=admin_headers)
        assert r.status_code == 400
        assert "exactly 9" in r.json()["message"]

        facilities[4]["facilityPrice"] = -5
        r = client.put("/api/facilities/core-major", json=facilities, headers=admin_headers)
        assert r.status_code == 400
        assert r.json()["message"].startswith("Facility at index 4:")

    def test_admin_upgrade_count_bounds(self, client, admin_headers):
        r = client.patch(
            "/api/facilities/core-major/0/upgrades/0", json={"upgradeCount": 2}, headers=admin_headers
        )
        assert r.status_code == 400
        ok = client.patch("/api/facilities/core-major/0/upgrades/0", json={"upgradeCount": 1}, headers=admin_headers)
        assert ok.status_code == 200

    def test_admin_mark_purchased(self, client, admin_headers, store):
        r = client.patch(f"/api/facilities/core-major/{ARMORY}/purchased", json={"isPurchased": True}, headers=admin_headers)
        assert r.status_code == 200
        assert store.read(CORE_MAJOR_FACILITIES)[ARMORY]["isPurchased"] is True


class TestMinorSlots:
    def test_unlock_assign_demolish(self, client, client_headers, store, fund_pilots):
        fund_pilots(store, 10000)
        r = client.post("/api/facilities/minor-slots/5/enable", json={"expensePilots": ["p1"]}, headers=client_headers)
        assert r.status_code == 200
        assert r.json()["price"] == 5000

        r = client.post(
            "/api/facilities/minor-slots/5/assign",
            json={"facilityName": "Garden", "expensePilots": ["p1"]},
            headers=client_headers,
        )
        assert r.status_code == 200
        assert _slot(store, 5)["facilityName"] == "Garden"
        pilots = client.get("/api/pilots", headers=client_headers).json()
        assert pilots[0]["balance"] == 4500

        assert client.delete("/api/facilities/minor-slots/5/demolish", headers=client_headers).status_code == 200
        again = client.delete("/api/facilities/minor-slots/5/demolish", headers=client_headers)
        assert again.status_code == 409
        assert again.json()["message"] == "Slot is already empty"

    def test_preview_for_slot_unlock(self, client, client_headers):
        body = client.get("/api/facilities/price-preview?kind=minor-slot&payers=3", headers=client_headers).json()
        assert body["price"] == 5000
        assert body["costPerPilot"] == 1667

    def test_options(self, client, client_headers):
        options = client.get("/api/facilities/minor-options", headers=client_headers).json()
        assert "Garden" in [o["minorFacilityName"] for o in options]

    def test_admin_toggle_only_upper_slots(self, client, admin_headers, store):
        assert client.patch(
            "/api/facilities/minor-slots/2/toggle-enabled", json={"enabled": False}, headers=admin_headers
        ).status_code == 400

        client.patch("/api/facilities/minor-slots/6/toggle-enabled", json={"enabled": True}, headers=admin_headers)
        client.put(
            "/api/facilities/minor-slots/6/assign", json={"facilityName": "Bar"}, headers=admin_headers
        )
        assert _slot(store, 6)["facilityName"] == "Bar"

        client.patch("/api/facilities/minor-slots/6/toggle-enabled", json={"enabled": False}, headers=admin_headers)
        slot = _slot(store, 6)
        assert slot["enabled"] is False
        assert slot["facilityName"] == ""

    def test_replace_rejects_duplicate_names(self, client, admin_headers, store):
        slots = store.read(MINOR_FACILITY_SLOTS)["slots"]
        slots[0]["facilityName"] = "Bar"
        slots[1]["facilityName"] = "Bar"
        r = client.put("/api/facilities/minor-slots", json={"slots": slots}, headers=admin_headers)
        assert r.status_code == 400
        assert _slot(store, 1)["facilityName"] == ""

    def test_admin_clear(self, client, admin_headers, store):
        client.put("/api/facilities/minor-slots/1/assign", json={"facilityName": "Chapel"}, headers=admin_headers)
        assert client.delete("/api/facilities/minor-slots/1/clear", headers=admin_headers).status_code == 200
        assert _slot(store, 1)["facilityName"] == ""
