import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from . import balance
from .pricing import split_share
from ..errors import ConflictError


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def new_transaction(amount: int, description: str, date: Optional[str] = None) -> dict:
    return {"id": new_id(), "date": date or utc_now_iso(), "amount": amount, "description": description}


def attach(pilots: List[dict], txn_id: str, pilot_ids: Iterable[str]) -> None:
    wanted = set(pilot_ids)
    for pilot in pilots:
        if pilot.get("id") in wanted:
            pilot.setdefault("personalTransactions", []).append(txn_id)


def detach(pilots: List[dict], txn_id: str) -> List[str]:
    """Remove every reference to ``txn_id``; returns the IDs of pilots that held one."""
    touched = []
    for pilot in pilots:
        refs = pilot.get("personalTransactions") or []
        if txn_id in refs:
            pilot["personalTransactions"] = [r for r in refs if r != txn_id]
            touched.append(pilot.get("id"))
    return touched


def referencing_pilot_ids(pilots: Iterable[dict], txn_id: str) -> List[str]:
    return [p.get("id") for p in pilots if txn_id in (p.get("personalTransactions") or [])]


class Charge:
    """A split debit that has passed every check but is not yet applied.

    ``transaction`` is ``None`` for a free purchase (price 0); applying it is
    then a no-op.
    """

    def __init__(self, payer_ids: List[str], price: int, share: int, transaction: Optional[dict]) -> None:
        self.payer_ids = payer_ids
        self.price = price
        self.share = share
        self.transaction = transaction

    def apply(self, pilots: List[dict], transactions: List[dict]) -> None:
        if self.transaction is None:
            return
        transactions.append(self.transaction)
        attach(pilots, self.transaction["id"], self.payer_ids)


def prepare_charge(pilots: List[dict], transactions: List[dict], payer_ids: List[str], price: int, description: str) -> Charge:
    """Per-payer share and funds check. Raises ``ConflictError`` naming every payer who is short."""
    share = split_share(price, len(payer_ids)) if price > 0 else 0
    if share == 0:
        return Charge(payer_ids, price, 0, None)

    amounts = {t["id"]: t.get("amount", 0) for t in transactions if t.get("id")}
    wanted = set(payer_ids)
    short = [
        p.get("name") or p.get("id")
        for p in pilots
        if p.get("id") in wanted and balance.pilot_balance(p, (), amounts) < share
    ]
    if short:
        raise ConflictError(f"Insufficient funds for: {', '.join(short)}")
    return Charge(payer_ids, price, share, new_transaction(-share, description))
