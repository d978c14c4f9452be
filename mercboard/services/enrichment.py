"""
Read-time joins.

Stored documents are never returned as-is: jobs carry their faction, factions
their live job counts, pilots their derived balance and resolved reserves.
Nothing built here is written back to the store.
"""
from typing import Dict, List

from . import balance
from .validation import standing_label
from ..storage.provider import (
    CollectionStore,
    FACTIONS,
    JOBS,
    LEDGER,
    PILOTS,
    RESERVES,
)


def _by_id(items: List[dict]) -> Dict[str, dict]:
    return {item["id"]: item for item in items if item.get("id")}


def jobs_with_factions(jobs: List[dict], factions: List[dict]) -> List[dict]:
    factions_by_id = _by_id(factions)
    return [
        {**job, "faction": factions_by_id.get(job.get("factionId") or "")}
        for job in jobs
    ]


def factions_with_job_counts(factions: List[dict], jobs: List[dict]) -> List[dict]:
    """Completed/failed counts are offset + matching jobs in the live job set."""
    completed: Dict[str, int] = {}
    failed: Dict[str, int] = {}
    for job in jobs:
        fid = job.get("factionId")
        if not fid:
            continue
        if job.get("state") == "Complete":
            completed[fid] = completed.get(fid, 0) + 1
        elif job.get("state") == "Failed":
            failed[fid] = failed.get(fid, 0) + 1

    out = []
    for faction in factions:
        fid = faction.get("id")
        out.append(
            {
                **faction,
                "standingLabel": standing_label(faction.get("standing")),
                "jobsCompleted": (faction.get("jobsCompletedOffset") or 0) + completed.get(fid, 0),
                "jobsFailed": (faction.get("jobsFailedOffset") or 0) + failed.get(fid, 0),
            }
        )
    return out


def pilots_with_balance(pilots: List[dict], transactions: List[dict]) -> List[dict]:
    amounts = {t["id"]: t.get("amount", 0) for t in transactions if t.get("id")}
    return [{**p, "balance": balance.pilot_balance(p, (), amounts)} for p in pilots]


def pilots_with_reserves(pilots: List[dict], reserves: List[dict]) -> List[dict]:
    reserves_by_id = _by_id(reserves)
    out = []
    for pilot in pilots:
        resolved = []
        for held in pilot.get("reserves") or []:
            reserve = reserves_by_id.get(held.get("reserveId"))
            resolved.append({**(reserve or {}), **held, "found": reserve is not None})
        out.append({**pilot, "reserves": resolved})
    return out


# ---------- collection views (what reads return and broadcasts carry) ----------

def jobs_view(store: CollectionStore) -> List[dict]:
    return jobs_with_factions(store.read(JOBS), store.read(FACTIONS))


def factions_view(store: CollectionStore) -> List[dict]:
    return factions_with_job_counts(store.read(FACTIONS), store.read(JOBS))


def pilots_view(store: CollectionStore) -> List[dict]:
    transactions = store.read(LEDGER).get("transactions", [])
    pilots = pilots_with_balance(store.read(PILOTS), transactions)
    return pilots_with_reserves(pilots, store.read(RESERVES))


def manna_view(store: CollectionStore) -> dict:
    transactions = store.read(LEDGER).get("transactions", [])
    pilots = store.read(PILOTS)
    return {
        "transactions": transactions,
        "balances": balance.company_balances(pilots, transactions),
        "pilotBalances": balance.active_pilot_balances(pilots, transactions),
    }
