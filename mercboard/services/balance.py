"""
Derived balances.

A pilot's balance is never stored: it is the sum of the ledger transactions
its ``personalTransactions`` list references. One ledger entry may be shared
by several pilots (a squad expense), so the company-wide feed counts a shared
entry once but reports its aggregate impact as ``amount * referencing pilots``.

Everything here is pure: inputs are the raw pilot list and ledger transaction
list, outputs are fresh dicts.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple


def _txn_amounts(transactions: Iterable[dict]) -> Dict[str, int]:
    return {t["id"]: t.get("amount", 0) for t in transactions if t.get("id")}


def _date_key(txn: dict) -> datetime:
    raw = txn.get("date") or ""
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        return datetime.min.replace(tzinfo=timezone.utc)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def sort_oldest_first(transactions: Iterable[dict]) -> List[dict]:
    return sorted(transactions, key=_date_key)


def pilot_balance(pilot: dict, transactions: Iterable[dict], amounts: Optional[Dict[str, int]] = None) -> int:
    """Sum of referenced transaction amounts; dangling IDs contribute nothing."""
    if amounts is None:
        amounts = _txn_amounts(transactions)
    return sum(amounts.get(txn_id, 0) for txn_id in (pilot.get("personalTransactions") or []))


def total_active_balance(pilots: Iterable[dict], transactions: Iterable[dict]) -> int:
    amounts = _txn_amounts(transactions)
    return sum(pilot_balance(p, (), amounts) for p in pilots if p.get("active"))


def company_balances(pilots: Iterable[dict], transactions: Iterable[dict]) -> dict:
    amounts = _txn_amounts(transactions)
    active_balance = 0
    total_balance = 0
    for pilot in pilots:
        balance = pilot_balance(pilot, (), amounts)
        total_balance += balance
        if pilot.get("active"):
            active_balance += balance
    return {"activeBalance": active_balance, "totalBalance": total_balance}


def active_pilot_balances(pilots: Iterable[dict], transactions: Iterable[dict]) -> List[dict]:
    amounts = _txn_amounts(transactions)
    return [
        {
            "pilotId": p.get("id"),
            "name": p.get("name"),
            "callsign": p.get("callsign"),
            "balance": pilot_balance(p, (), amounts),
        }
        for p in pilots
        if p.get("active")
    ]


def deduplicated_history(pilots: Iterable[dict], transactions: Iterable[dict], limit: int = 0) -> List[dict]:
    """Company feed, newest first: each transaction once, with the active pilots sharing it.

    Transactions no active pilot references are left out of the feed (they still
    count toward the referencing inactive pilots' own balances).
    """
    referencing: Dict[str, List[dict]] = {}
    for pilot in pilots:
        if not pilot.get("active"):
            continue
        for txn_id in dict.fromkeys(pilot.get("personalTransactions") or []):
            referencing.setdefault(txn_id, []).append(
                {"id": pilot.get("id"), "name": pilot.get("name"), "callsign": pilot.get("callsign")}
            )

    feed = []
    for txn in transactions:
        sharers = referencing.get(txn.get("id"))
        if not sharers:
            continue
        feed.append(
            {
                **txn,
                "pilots": sharers,
                "pilotCount": len(sharers),
                "totalAmount": txn.get("amount", 0) * len(sharers),
            }
        )

    feed = sort_oldest_first(feed)
    feed.reverse()
    if limit and limit > 0:
        feed = feed[:limit]
    return feed


def with_cumulative_balances(entries_oldest_first: Iterable[dict]) -> List[dict]:
    running = 0
    out = []
    for entry in entries_oldest_first:
        running += entry.get("totalAmount", entry.get("amount", 0))
        out.append({**entry, "cumulativeBalance": running})
    return out


def company_feed(pilots: Iterable[dict], transactions: Iterable[dict], limit: int = 0) -> List[dict]:
    """Deduplicated feed with running totals computed oldest→newest, returned newest first."""
    newest_first = deduplicated_history(pilots, transactions)
    oldest_first = list(reversed(newest_first))
    result = list(reversed(with_cumulative_balances(oldest_first)))
    if limit and limit > 0:
        result = result[:limit]
    return result


def pilot_history(pilot: dict, transactions: Iterable[dict]) -> Tuple[int, List[dict]]:
    """Return ``(balance, entries)`` where entries carry a running ``pilotBalance``, newest first."""
    referenced = set(pilot.get("personalTransactions") or [])
    mine = sort_oldest_first(t for t in transactions if t.get("id") in referenced)
    running = 0
    entries = []
    for txn in mine:
        running += txn.get("amount", 0)
        entries.append({**txn, "pilotBalance": running})
    entries.reverse()
    return running, entries
