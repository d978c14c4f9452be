from fastapi import APIRouter, Depends

from ..auth.security import ROLE_ADMIN, get_current_role, require_admin
from ..db import get_store
from ..logging import structlog
from ..services import validation
from ..services.events import public_settings, publish
from ..services.locks import locked
from ..storage.provider import CollectionStore, SETTINGS


router = APIRouter(prefix="/api/settings", tags=["settings"])
logger = structlog.get_logger(__name__)


@router.get("")
def get_settings(store: CollectionStore = Depends(get_store), role: str = Depends(get_current_role)):
    current = store.read_settings()
    # Only admins see the role passwords
    return current if role == ROLE_ADMIN else public_settings(current)


@router.put("")
async def update_settings(payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    cleaned = validation.validate_settings(payload)
    async with locked(SETTINGS):
        merged = {**store.read_settings(), **cleaned}
        store.write(SETTINGS, merged)
    logger.info("settings_updated", modifier=merged["facilityCostModifier"], progress=merged["operationProgress"])
    await publish(store, ["settings"])
    return {"success": True, "settings": merged}
