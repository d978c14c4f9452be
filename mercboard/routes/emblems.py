import os

from fastapi import APIRouter, Depends

from ..auth.security import require_admin, require_client
from ..config import settings
from ..db import get_store
from ..errors import ConflictError, NotFoundError, StorageError, ValidationError
from ..logging import structlog
from ..services.locks import locked
from ..services.validation import SAFE_EMBLEM_PATTERN, is_safe_emblem_filename
from ..storage.provider import CollectionStore, FACTIONS, JOBS


router = APIRouter(prefix="/api/emblems", tags=["emblems"])
logger = structlog.get_logger(__name__)


@router.get("")
def list_emblems(_=Depends(require_client)):
    if not os.path.isdir(settings.emblem_dir):
        return []
    return sorted(f for f in os.listdir(settings.emblem_dir) if SAFE_EMBLEM_PATTERN.match(f))


@router.delete("/{filename}")
async def delete_emblem(filename: str, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    if not is_safe_emblem_filename(filename):
        raise ValidationError("Invalid emblem filename")
    path = os.path.join(settings.emblem_dir, filename)
    # Jobs and factions are locked so nothing can start using the file mid-delete
    async with locked(JOBS, FACTIONS):
        if not os.path.isfile(path):
            raise NotFoundError("Emblem not found")
        in_use = any(j.get("emblem") == filename for j in store.read(JOBS)) or any(
            f.get("emblem") == filename for f in store.read(FACTIONS)
        )
        if in_use:
            raise ConflictError("Cannot delete emblem: it is currently in use by one or more jobs or factions")
        try:
            os.unlink(path)
        except OSError as e:
            logger.error("emblem_delete_failed", filename=filename, error=str(e))
            raise StorageError("Failed to delete emblem file") from e
    logger.info("emblem_deleted", filename=filename)
    return {"success": True, "message": "Emblem deleted successfully"}
