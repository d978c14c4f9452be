from typing import Optional

from .config import settings
from .storage.provider import CollectionStore
from .storage.local_provider import LocalCollectionStore
from .storage.memory_provider import MemoryCollectionStore


_store: Optional[CollectionStore] = None


def build_store() -> CollectionStore:
    if settings.storage_provider == "memory":
        return MemoryCollectionStore()
    return LocalCollectionStore(settings.data_dir)


def set_store(store: Optional[CollectionStore]) -> None:
    global _store
    _store = store


def get_store() -> CollectionStore:
    """FastAPI dependency: the process-wide collection store."""
    global _store
    if _store is None:
        _store = build_store()
    return _store
