from fastapi import APIRouter, Depends, Query

from ..auth.security import require_admin, require_client
from ..db import get_store
from ..errors import NotFoundError
from ..logging import structlog
from ..schemas.manna import TransactionCreate, TransactionPilots, TransactionUpdate
from ..services import balance, enrichment, ledger, validation
from ..services.events import publish
from ..services.locks import locked
from ..storage.provider import CollectionStore, LEDGER, PILOTS


router = APIRouter(prefix="/api/manna", tags=["manna"])
logger = structlog.get_logger(__name__)


def _find(doc: dict, txn_id: str) -> dict:
    txn = next((t for t in doc.get("transactions", []) if t.get("id") == txn_id), None)
    if txn is None:
        raise NotFoundError("Transaction not found")
    return txn


@router.get("")
def get_manna(store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    return {"success": True, **enrichment.manna_view(store)}


@router.get("/history")
def get_history(
    limit: int = Query(default=0, ge=0),
    store: CollectionStore = Depends(get_store),
    _=Depends(require_client),
):
    """Company feed: each transaction once, newest first, with running company balance."""
    transactions = store.read(LEDGER).get("transactions", [])
    return {"success": True, "history": balance.company_feed(store.read(PILOTS), transactions, limit)}


@router.post("/transaction")
async def create_transaction(req: TransactionCreate, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    amount = validation.transaction_amount(req.amount)
    description = validation.required_string(req.description, "Transaction description")
    # Back-dated entries are allowed; absent means now
    date = validation.transaction_date(req.date) if req.date else None
    async with locked(LEDGER, PILOTS):
        pilots = store.read(PILOTS)
        if req.pilotIds:
            pilot_ids = validation.pilot_ids(req.pilotIds, pilots)
        else:
            # Unspecified means every active pilot, which may be nobody
            pilot_ids = [p["id"] for p in pilots if p.get("active")]
        doc = store.read(LEDGER)
        txn = ledger.new_transaction(amount, description, date)
        doc["transactions"].append(txn)
        store.write(LEDGER, doc)
        if pilot_ids:
            ledger.attach(pilots, txn["id"], pilot_ids)
            store.write(PILOTS, pilots)
    logger.info("transaction_created", transaction_id=txn["id"], amount=amount, pilots=len(pilot_ids))
    await publish(store, ["manna", "pilots"], action="transaction")
    return {"success": True, "transaction": txn, **enrichment.manna_view(store)}


@router.put("/transaction/{txn_id}")
async def update_transaction(
    txn_id: str, req: TransactionUpdate, store: CollectionStore = Depends(get_store), _=Depends(require_admin)
):
    amount = validation.transaction_amount(req.amount)
    description = validation.required_string(req.description, "Transaction description")
    date = validation.transaction_date(req.date)
    async with locked(LEDGER):
        doc = store.read(LEDGER)
        txn = _find(doc, txn_id)
        txn.update({"amount": amount, "description": description, "date": date})
        store.write(LEDGER, doc)
    await publish(store, ["manna", "pilots"])
    return {"success": True, "transaction": txn}


@router.delete("/transaction/{txn_id}")
async def delete_transaction(txn_id: str, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    """Remove a ledger entry and prune every pilot reference to it."""
    async with locked(LEDGER, PILOTS):
        doc = store.read(LEDGER)
        _find(doc, txn_id)
        doc["transactions"] = [t for t in doc["transactions"] if t.get("id") != txn_id]
        pilots = store.read(PILOTS)
        touched = ledger.detach(pilots, txn_id)
        store.write(LEDGER, doc)
        if touched:
            store.write(PILOTS, pilots)
    logger.info("transaction_deleted", transaction_id=txn_id, pilots_pruned=len(touched))
    await publish(store, ["manna", "pilots"], action="delete")
    return {"success": True, "balances": balance.company_balances(pilots, doc["transactions"])}


@router.put("/transaction/{txn_id}/pilots")
async def reassign_transaction(
    txn_id: str, req: TransactionPilots, store: CollectionStore = Depends(get_store), _=Depends(require_admin)
):
    """Replace the set of pilots sharing a transaction."""
    async with locked(LEDGER, PILOTS):
        doc = store.read(LEDGER)
        _find(doc, txn_id)
        pilots = store.read(PILOTS)
        pilot_ids = validation.pilot_ids(req.pilotIds, pilots)
        ledger.detach(pilots, txn_id)
        ledger.attach(pilots, txn_id, pilot_ids)
        store.write(PILOTS, pilots)
    logger.info("transaction_reassigned", transaction_id=txn_id, pilots=len(pilot_ids))
    await publish(store, ["pilots", "manna"])
    return {
        "success": True,
        "balances": balance.company_balances(pilots, doc["transactions"]),
        "pilots": enrichment.pilots_view(store),
    }
