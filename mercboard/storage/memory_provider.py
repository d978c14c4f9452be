import copy
import json
from typing import Any, Dict

from .provider import CollectionStore
from ..errors import StorageError


class MemoryCollectionStore(CollectionStore):
    """In-process store with the same copy semantics as the file store."""

    def __init__(self) -> None:
        self._docs: Dict[str, Any] = {}

    def exists(self, name: str) -> bool:
        return name in self._docs

    def read(self, name: str) -> Any:
        if name not in self._docs:
            return self.default(name)
        return copy.deepcopy(self._docs[name])

    def write(self, name: str, value: Any) -> None:
        self.default(name)  # rejects unknown names
        try:
            # Round-trip through JSON so stored values match what the file store would keep
            self._docs[name] = json.loads(json.dumps(value))
        except (TypeError, ValueError) as e:
            raise StorageError(f"Failed to write {name}") from e
