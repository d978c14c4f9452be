import pytest
from fastapi.testclient import TestClient

from mercboard.auth.security import ROLE_ADMIN, ROLE_CLIENT, create_role_token
from mercboard.config import settings
from mercboard.db import set_store
from mercboard.main import create_app
from mercboard.services.ledger import new_transaction
from mercboard.storage.local_provider import LocalCollectionStore
from mercboard.storage.provider import LEDGER, PILOTS


@pytest.fixture
def emblem_dir(tmp_path, monkeypatch):
    path = tmp_path / "logo_art"
    path.mkdir()
    monkeypatch.setattr(settings, "emblem_dir", str(path))
    return path


@pytest.fixture
def store(tmp_path):
    return LocalCollectionStore(str(tmp_path / "data"))


@pytest.fixture
def client(store, emblem_dir):
    # A fresh app per test so rate-limit counters never carry over
    set_store(store)
    app = create_app()
    with TestClient(app) as c:
        yield c
    set_store(None)


@pytest.fixture
def admin_headers():
    return {"Authorization": f"Bearer {create_role_token(ROLE_ADMIN)}"}


@pytest.fixture
def client_headers():
    return {"Authorization": f"Bearer {create_role_token(ROLE_CLIENT)}"}


def make_pilot(pilot_id: str, name: str, txn_ids=(), active: bool = True) -> dict:
    return {
        "id": pilot_id,
        "name": name,
        "callsign": name.upper(),
        "ll": 1,
        "notes": "",
        "active": active,
        "relatedJobs": [],
        "personalOperationProgress": 0,
        "personalTransactions": list(txn_ids),
        "reserves": [],
    }


@pytest.fixture
def fund_pilots():
    """Replace pilots and ledger: one funding transaction per pilot, ids p1, p2, ..."""

    def _fund(target_store, *balances, active=True):
        transactions = []
        pilots = []
        for i, amount in enumerate(balances, start=1):
            txn = new_transaction(amount, f"Funding {i}", "2025-01-0%dT12:00:00.000Z" % i)
            transactions.append(txn)
            pilots.append(make_pilot(f"p{i}", f"Pilot {i}", [txn["id"]], active))
        target_store.write(LEDGER, {"transactions": transactions})
        target_store.write(PILOTS, pilots)
        return pilots

    return _fund
