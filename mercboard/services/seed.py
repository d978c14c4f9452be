"""
First-run seeding and migrate-if-needed passes.

``initialize_store`` is idempotent: collections that already exist are left
alone apart from the migrations, each of which only rewrites a collection
when at least one record actually changed.
"""
import json
import os
from typing import Any, List

import structlog

from .ledger import new_id, new_transaction
from .validation import DEFAULT_DEPLOYMENT_STATUS, DEFAULT_JOB_STATE
from ..storage.provider import (
    CollectionStore,
    CORE_MAJOR_FACILITIES,
    DEFAULT_RESUPPLY_ITEMS,
    FACTIONS,
    JOBS,
    LEDGER,
    MINOR_FACILITY_SLOTS,
    PILOTS,
    RESERVES,
    SETTINGS,
    STORE_CONFIG,
    empty_minor_slots,
    empty_store_config,
)


logger = structlog.get_logger(__name__)

DEFAULT_DATA_DIR = os.path.join(os.path.dirname(os.path.dirname(__file__)), "default_data")

# Reserves placed in stock on a fresh install
DEFAULT_STOCK = [
    "c56a0d97-1527-49e8-a7d5-9115df3d5706",
    "6ec6dd1b-91b2-41ce-9144-7cab48708caa",
    "b2046bf1-a3b2-406b-8a01-ce7c6fd6e9a9",
    "43e883f9-d78e-41e3-98f5-4a2de26ce332",
    "9a779369-1548-4f23-96ab-8189d361fcb4",
]


def load_default(filename: str) -> Any:
    with open(os.path.join(DEFAULT_DATA_DIR, filename), "r", encoding="utf-8") as f:
        return json.load(f)


def minor_facility_options() -> List[dict]:
    """Catalog of minor facilities that may be built in a slot. Read-only."""
    return load_default("minor_facilities.json")


def find_minor_option(name: str):
    return next((o for o in minor_facility_options() if o.get("minorFacilityName") == name), None)


# ---------- seed content ----------

def _seed_factions() -> List[dict]:
    rows = [
        ("Conglomerate Finibus", "token--mantle.svg", "Shipping cartel with a long memory for unpaid debts.", 2, 3, 1),
        ("Shimano Industries", "token--lovely.svg", "Frame manufacturer that outsources its dirty work.", 3, 5, 0),
        ("Collective Malorum", "token--cgo.svg", "Loose union of separatist cells on the rim worlds.", 1, 1, 2),
        ("Phoenix Syndicate", "token--world.svg", "Old-money financiers funding reconstruction efforts.", 4, 8, 0),
        ("Void Runners", "token--dot.svg", "Smugglers who pay well and forget nothing.", 0, 0, 3),
    ]
    return [
        {
            "id": new_id(),
            "title": title,
            "emblem": emblem,
            "brief": brief,
            "standing": standing,
            "jobsCompletedOffset": completed,
            "jobsFailedOffset": failed,
        }
        for title, emblem, brief, standing, completed, failed in rows
    ]


def _seed_jobs(factions: List[dict]) -> List[dict]:
    fids = [f["id"] for f in factions] or [""]
    rows = [
        ("Cargo Escort", 1, "Escort", "Complete"),
        ("Data Heist", 2, "Infiltration", "Active"),
        ("Reactor Sabotage", 3, "Sabotage", "Failed"),
        ("Colony Defense", 2, "Defense", "Active"),
        ("Salvage Recovery", 1, "Recovery", "Pending"),
        ("VIP Extraction", 3, "Extraction", "Pending"),
    ]
    jobs = []
    for i, (name, rank, job_type, state) in enumerate(rows):
        jobs.append(
            {
                "id": new_id(),
                "name": name,
                "rank": rank,
                "jobType": job_type,
                "description": f"{job_type} contract.",
                "clientBrief": "Details on acceptance.",
                "currencyPay": f"{rank * 1000} manna",
                "additionalPay": "",
                "emblem": "",
                "state": state,
                "factionId": fids[i % len(fids)],
            }
        )
    return jobs


def _seed_transactions() -> List[dict]:
    rows = [
        ("2025-01-05T12:00:00.000Z", 5000, "Initial company funds"),
        ("2025-01-12T12:00:00.000Z", 3000, "Cargo Escort payout"),
        ("2025-01-19T12:00:00.000Z", -800, "Frame repairs"),
        ("2025-01-26T12:00:00.000Z", 2500, "Salvage sale"),
        ("2025-02-02T12:00:00.000Z", -1200, "Supplies"),
        ("2025-02-09T12:00:00.000Z", 4000, "Colony Defense advance"),
    ]
    return [new_transaction(amount, desc, date) for date, amount, desc in rows]


def _seed_pilots(jobs: List[dict], transactions: List[dict]) -> List[dict]:
    job_ids = [j["id"] for j in jobs if j.get("state") != "Pending"]
    txn_ids = [t["id"] for t in transactions]

    def txns(*idx):
        return [txn_ids[i] for i in idx if i < len(txn_ids)]

    def held(*pairs):
        return [{"reserveId": rid, "deploymentStatus": status} for rid, status in pairs]

    return [
        {
            "id": new_id(), "name": "Mara Voss", "callsign": "Hollow", "ll": 3,
            "notes": "Prefers long range.", "active": True, "relatedJobs": job_ids[0:3],
            "personalOperationProgress": 2, "personalTransactions": txns(0, 2, 4),
            "reserves": held(
                ("24d0834e-82cc-4236-a70c-868e1bd8c714", "In Reserve"),
                ("f3ec4d0c-1004-4866-856b-7be954f01162", "Deployed"),
            ),
        },
        {
            "id": new_id(), "name": "Tomas Reyes", "callsign": "Brick", "ll": 5,
            "notes": "", "active": True, "relatedJobs": job_ids[1:4],
            "personalOperationProgress": 0, "personalTransactions": txns(0, 1, 3, 5),
            "reserves": held(
                ("af2fe676-7485-42c2-9dbf-9e6241efa35e", "Deployed"),
                ("4c0e4340-b55e-49f3-b4ff-c6232072b391", "Expended"),
            ),
        },
        {
            "id": new_id(), "name": "Ines Kato", "callsign": "Lantern", "ll": 2,
            "notes": "On medical leave.", "active": False, "relatedJobs": job_ids[0:2],
            "personalOperationProgress": 0, "personalTransactions": txns(2, 3),
            "reserves": held(("577cacbe-fc7f-4dd4-80e4-8fe8c1f0bf45", "Expended")),
        },
        {
            "id": new_id(), "name": "Oren Falk", "callsign": "Static", "ll": 7,
            "notes": "", "active": True, "relatedJobs": job_ids[2:5],
            "personalOperationProgress": 1, "personalTransactions": txns(1, 4),
            "reserves": held(("45aa66a4-6851-442d-bf8b-3f18f44a172e", "In Reserve")),
        },
    ]


# ---------- migrations ----------

def migrate_jobs(jobs: List[dict]) -> bool:
    changed = False
    for job in jobs:
        if job.get("state") is None:
            job["state"] = DEFAULT_JOB_STATE
            changed = True
        if "factionId" not in job:
            job["factionId"] = ""
            changed = True
    return changed


def migrate_factions(factions: List[dict]) -> bool:
    """Legacy stored ``jobsCompleted``/``jobsFailed`` become the offsets."""
    changed = False
    for faction in factions:
        legacy_completed = faction.pop("jobsCompleted", None)
        legacy_failed = faction.pop("jobsFailed", None)
        if legacy_completed is not None or legacy_failed is not None:
            changed = True
        if "jobsCompletedOffset" not in faction:
            faction["jobsCompletedOffset"] = legacy_completed or 0
            changed = True
        if "jobsFailedOffset" not in faction:
            faction["jobsFailedOffset"] = legacy_failed or 0
            changed = True
    return changed


def migrate_transactions(ledger: dict) -> bool:
    changed = False
    for txn in ledger.get("transactions", []):
        if not txn.get("id"):
            txn["id"] = new_id()
            changed = True
    return changed


def migrate_pilots(pilots: List[dict]) -> bool:
    changed = False
    for pilot in pilots:
        if "personalOperationProgress" not in pilot:
            pilot["personalOperationProgress"] = 0
            changed = True
        if "personalTransactions" not in pilot:
            pilot["personalTransactions"] = []
            changed = True
        reserves = pilot.get("reserves")
        if isinstance(reserves, str):
            # Old free-text reserves field; keep the text in notes
            if "notes" not in pilot:
                pilot["notes"] = reserves
            pilot["reserves"] = []
            changed = True
        elif not isinstance(reserves, list):
            pilot["reserves"] = []
            changed = True
        elif any(isinstance(r, str) for r in reserves):
            pilot["reserves"] = [
                {"reserveId": r, "deploymentStatus": DEFAULT_DEPLOYMENT_STATUS} if isinstance(r, str) else r
                for r in reserves
            ]
            changed = True
    return changed


def migrate_store_config(config: Any) -> bool:
    if not isinstance(config, dict):
        return False
    if not config.get("resupplyItems"):
        config["resupplyItems"] = [dict(item) for item in DEFAULT_RESUPPLY_ITEMS]
        return True
    return False


_MIGRATIONS = (
    (JOBS, migrate_jobs),
    (FACTIONS, migrate_factions),
    (LEDGER, migrate_transactions),
    (PILOTS, migrate_pilots),
    (STORE_CONFIG, migrate_store_config),
)


def initialize_store(store: CollectionStore) -> None:
    # Order matters: pilots reference jobs and transactions, jobs reference factions
    if not store.exists(FACTIONS):
        store.write(FACTIONS, _seed_factions())
    if not store.exists(JOBS):
        store.write(JOBS, _seed_jobs(store.read(FACTIONS)))
    if not store.exists(LEDGER):
        store.write(LEDGER, {"transactions": _seed_transactions()})
    if not store.exists(RESERVES):
        store.write(RESERVES, load_default("reserves.json"))
    if not store.exists(PILOTS):
        store.write(PILOTS, _seed_pilots(store.read(JOBS), store.read(LEDGER)["transactions"]))
    if not store.exists(CORE_MAJOR_FACILITIES):
        store.write(CORE_MAJOR_FACILITIES, load_default("core_major_facilities.json"))
    if not store.exists(MINOR_FACILITY_SLOTS):
        store.write(MINOR_FACILITY_SLOTS, empty_minor_slots())
    if not store.exists(STORE_CONFIG):
        known = {r["id"] for r in store.read(RESERVES)}
        config = empty_store_config()
        config["currentStock"] = [rid for rid in DEFAULT_STOCK if rid in known]
        store.write(STORE_CONFIG, config)
    if not store.exists(SETTINGS):
        store.write(SETTINGS, store.read_settings())

    for name, migrate in _MIGRATIONS:
        doc = store.read(name)
        if migrate(doc):
            store.write(name, doc)
            logger.info("collection_migrated", collection=name)
