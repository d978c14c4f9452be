from mercboard.storage.provider import LEDGER, PILOTS


def _balances(client, headers):
    return {p["id"]: p["balance"] for p in client.get("/api/pilots", headers=headers).json()}


class TestTransactions:
    def test_defaults_to_active_pilots(self, client, admin_headers, store, fund_pilots):
        fund_pilots(store, 100, 50)
        r = client.post("/api/manna/transaction", json={"amount": 30, "description": "Bounty"}, headers=admin_headers)
        assert r.status_code == 200
        body = r.json()
        assert body["transaction"]["amount"] == 30
        assert body["balances"] == {"activeBalance": 210, "totalBalance": 210}
        assert _balances(client, admin_headers) == {"p1": 130, "p2": 80}

    def test_explicit_pilots(self, client, admin_headers, store, fund_pilots):
        fund_pilots(store, 100, 50)
        r = client.post(
            "/api/manna/transaction",
            json={"amount": -20, "description": "Repairs", "pilotIds": ["p2"]},
            headers=admin_headers,
        )
        assert r.status_code == 200
        assert _balances(client, admin_headers) == {"p1": 100, "p2": 30}

    def test_rejects_zero_and_unknown_pilots(self, client, admin_headers, store, fund_pilots):
        fund_pilots(store, 100)
        zero = client.post("/api/manna/transaction", json={"amount": 0, "description": "x"}, headers=admin_headers)
        assert zero.status_code == 400
        assert zero.json()["message"] == "Transaction amount must be non-zero"

        unknown = client.post(
            "/api/manna/transaction",
            json={"amount": 5, "description": "x", "pilotIds": ["ghost"]},
            headers=admin_headers,
        )
        assert unknown.status_code == 400
        assert len(store.read(LEDGER)["transactions"]) == 1

    def test_create_with_date(self, client, admin_headers, store, fund_pilots):
        fund_pilots(store, 100)
        r = client.post(
            "/api/manna/transaction",
            json={"amount": 10, "description": "Back pay", "date": "2024-12-24T18:00:00.000Z"},
            headers=admin_headers,
        )
        assert r.status_code == 200
        assert r.json()["transaction"]["date"] == "2024-12-24T18:00:00.000Z"

        bad = client.post(
            "/api/manna/transaction",
            json={"amount": 10, "description": "Back pay", "date": "Christmas"},
            headers=admin_headers,
        )
        assert bad.status_code == 400
        assert bad.json()["message"] == "Transaction date must be an ISO timestamp"
        assert len(store.read(LEDGER)["transactions"]) == 2

    def test_update(self, client, admin_headers, store, fund_pilots):
        fund_pilots(store, 100)
        txn_id = store.read(LEDGER)["transactions"][0]["id"]
        r = client.put(
            f"/api/manna/transaction/{txn_id}",
            json={"amount": 250, "description": "Corrected", "date": "2025-02-01T08:00:00.000Z"},
            headers=admin_headers,
        )
        assert r.status_code == 200
        assert r.json()["transaction"]["description"] == "Corrected"
        assert _balances(client, admin_headers) == {"p1": 250}

    def test_delete_prunes_pilot_references(self, client, admin_headers, store, fund_pilots):
        fund_pilots(store, 100, 50)
        txn_id = client.post(
            "/api/manna/transaction", json={"amount": 30, "description": "Bounty"}, headers=admin_headers
        ).json()["transaction"]["id"]

        r = client.delete(f"/api/manna/transaction/{txn_id}", headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["balances"]["activeBalance"] == 150
        for pilot in store.read(PILOTS):
            assert txn_id not in pilot["personalTransactions"]
        assert client.delete(f"/api/manna/transaction/{txn_id}", headers=admin_headers).status_code == 404

    def test_reassign(self, client, admin_headers, store, fund_pilots):
        fund_pilots(store, 100, 50)
        txn_id = client.post(
            "/api/manna/transaction", json={"amount": 30, "description": "Bounty"}, headers=admin_headers
        ).json()["transaction"]["id"]
        r = client.put(f"/api/manna/transaction/{txn_id}/pilots", json={"pilotIds": ["p1"]}, headers=admin_headers)
        assert r.status_code == 200
        assert r.json()["balances"]["activeBalance"] == 180
        assert _balances(client, admin_headers) == {"p1": 130, "p2": 50}


class TestCompanyView:
    def test_summary(self, client, client_headers, store, fund_pilots):
        pilots = fund_pilots(store, 100, 50)
        pilots[1]["active"] = False
        store.write(PILOTS, pilots)
        body = client.get("/api/manna", headers=client_headers).json()
        assert body["balances"] == {"activeBalance": 100, "totalBalance": 150}
        assert [p["pilotId"] for p in body["pilotBalances"]] == ["p1"]

    def test_history_counts_shared_entries_once(self, client, admin_headers, store, fund_pilots):
        fund_pilots(store, 100, 50)
        client.post("/api/manna/transaction", json={"amount": 30, "description": "Bounty"}, headers=admin_headers)
        history = client.get("/api/manna/history", headers=admin_headers).json()["history"]
        assert len(history) == 3
        newest = history[0]
        assert newest["description"] == "Bounty"
        assert newest["pilotCount"] == 2
        assert newest["totalAmount"] == 60
        assert newest["cumulativeBalance"] == 210

    def test_history_limit(self, client, admin_headers, store, fund_pilots):
        fund_pilots(store, 100, 50, 25)
        history = client.get("/api/manna/history?limit=2", headers=admin_headers).json()["history"]
        assert len(history) == 2
