"""
Local filesystem collection store.
One pretty-printed JSON document per collection inside the data directory.
"""
import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from .provider import (
    CollectionStore,
    CORE_MAJOR_FACILITIES,
    FACTIONS,
    JOBS,
    LEDGER,
    MINOR_FACILITY_SLOTS,
    PILOTS,
    RESERVES,
    SETTINGS,
    STORE_CONFIG,
)
from ..errors import StorageError


logger = structlog.get_logger(__name__)

# File names kept compatible with existing data directories
FILE_NAMES = {
    JOBS: "jobs.json",
    FACTIONS: "factions.json",
    PILOTS: "pilots.json",
    LEDGER: "manna.json",
    CORE_MAJOR_FACILITIES: "base_core_major_facilities.json",
    MINOR_FACILITY_SLOTS: "minor_facilities_slots.json",
    RESERVES: "reserves.json",
    STORE_CONFIG: "store-config.json",
    SETTINGS: "settings.json",
}


class LocalCollectionStore(CollectionStore):
    """JSON-file collection store for a single server process."""

    def __init__(self, base_dir: str = "data"):
        self.base_dir = Path(base_dir)
        self.base_dir.mkdir(parents=True, exist_ok=True)

    def _get_path(self, name: str) -> Path:
        try:
            return self.base_dir / FILE_NAMES[name]
        except KeyError:
            raise KeyError(f"Unknown collection: {name}")

    def exists(self, name: str) -> bool:
        return self._get_path(name).exists()

    def read(self, name: str) -> Any:
        """Load a collection; a missing or unreadable document yields its default."""
        path = self._get_path(name)
        try:
            with open(path, "r", encoding="utf-8") as f:
                value = json.load(f)
        except FileNotFoundError:
            return self.default(name)
        except (OSError, ValueError) as e:
            logger.warning("collection_read_failed", collection=name, path=str(path), error=str(e))
            return self.default(name)
        if value is None:
            return self.default(name)
        return value

    def write(self, name: str, value: Any) -> None:
        """Replace the whole document atomically (temp file + rename)."""
        path = self._get_path(name)
        tmp_name = None
        try:
            fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(self.base_dir))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(value, f, indent=2, ensure_ascii=False)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
            tmp_name = None
        except (OSError, TypeError, ValueError) as e:
            logger.error("collection_write_failed", collection=name, path=str(path), error=str(e))
            raise StorageError(f"Failed to write {name}") from e
        finally:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
