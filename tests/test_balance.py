from mercboard.services import balance


def _txn(txn_id, amount, date):
    return {"id": txn_id, "amount": amount, "description": txn_id, "date": date}


TRANSACTIONS = [
    _txn("t1", 1000, "2025-01-01T00:00:00.000Z"),
    _txn("t2", -300, "2025-01-02T00:00:00.000Z"),
    _txn("t3", 500, "2025-01-03T00:00:00.000Z"),
]

PILOTS = [
    {"id": "a", "name": "Ada", "callsign": "A", "active": True, "personalTransactions": ["t1", "t2"]},
    {"id": "b", "name": "Bo", "callsign": "B", "active": True, "personalTransactions": ["t1", "t3"]},
    {"id": "c", "name": "Cy", "callsign": "C", "active": False, "personalTransactions": ["t3"]},
]


class TestPilotBalance:
    def test_sum_of_referenced_transactions(self):
        assert balance.pilot_balance(PILOTS[0], TRANSACTIONS) == 700
        assert balance.pilot_balance(PILOTS[1], TRANSACTIONS) == 1500

    def test_dangling_reference_contributes_nothing(self):
        pilot = {"id": "x", "personalTransactions": ["t1", "gone"]}
        assert balance.pilot_balance(pilot, TRANSACTIONS) == 1000

    def test_no_transactions(self):
        assert balance.pilot_balance({"id": "x"}, TRANSACTIONS) == 0


class TestCompanyBalances:
    def test_active_and_total(self):
        result = balance.company_balances(PILOTS, TRANSACTIONS)
        assert result == {"activeBalance": 2200, "totalBalance": 2700}
        assert balance.total_active_balance(PILOTS, TRANSACTIONS) == 2200

    def test_active_pilot_balances(self):
        rows = balance.active_pilot_balances(PILOTS, TRANSACTIONS)
        assert [r["pilotId"] for r in rows] == ["a", "b"]
        assert [r["balance"] for r in rows] == [700, 1500]


class TestHistory:
    def test_shared_transaction_listed_once(self):
        feed = balance.deduplicated_history(PILOTS, TRANSACTIONS)
        ids = [e["id"] for e in feed]
        assert ids == ["t3", "t2", "t1"]
        shared = feed[-1]
        assert shared["pilotCount"] == 2
        assert shared["totalAmount"] == 2000

    def test_inactive_sharers_are_not_counted(self):
        feed = balance.deduplicated_history(PILOTS, TRANSACTIONS)
        t3 = next(e for e in feed if e["id"] == "t3")
        assert [p["id"] for p in t3["pilots"]] == ["b"]

    def test_feed_matches_active_balance(self):
        feed = balance.company_feed(PILOTS, TRANSACTIONS)
        assert feed[0]["cumulativeBalance"] == balance.total_active_balance(PILOTS, TRANSACTIONS)
        assert [e["cumulativeBalance"] for e in feed] == [2200, 1700, 2000]

    def test_limit(self):
        feed = balance.company_feed(PILOTS, TRANSACTIONS, limit=1)
        assert len(feed) == 1
        assert feed[0]["id"] == "t3"

    def test_pilot_history_running_balance(self):
        total, entries = balance.pilot_history(PILOTS[0], TRANSACTIONS)
        assert total == 700
        assert [e["id"] for e in entries] == ["t2", "t1"]
        assert [e["pilotBalance"] for e in entries] == [700, 1000]
