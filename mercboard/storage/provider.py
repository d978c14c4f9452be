import copy
from typing import Any, Callable, Dict


# Collection names (the key every provider stores a document under)
JOBS = "jobs"
FACTIONS = "factions"
PILOTS = "pilots"
LEDGER = "ledger"
CORE_MAJOR_FACILITIES = "coreMajorFacilities"
MINOR_FACILITY_SLOTS = "minorFacilitySlots"
RESERVES = "reserves"
STORE_CONFIG = "storeConfig"
SETTINGS = "settings"

ALL_COLLECTIONS = (
    JOBS,
    FACTIONS,
    PILOTS,
    LEDGER,
    CORE_MAJOR_FACILITIES,
    MINOR_FACILITY_SLOTS,
    RESERVES,
    STORE_CONFIG,
    SETTINGS,
)

MINOR_SLOTS_COUNT = 6

DEFAULT_PORTAL_SETTINGS: Dict[str, Any] = {
    "portalHeading": "HERM00R MERCENARY PORTAL",
    "unt": "",
    "currentGalacticPos": "",
    "colorScheme": "grey",
    "userGroup": "FREELANCE_OPERATORS",
    "operationProgress": 0,
    "openTable": False,
    "clientPassword": "IMHOTEP",
    "adminPassword": "TARASQUE",
    "facilityCostModifier": 0,
}

DEFAULT_RESUPPLY_ITEMS = [
    {"id": "limited-restock", "name": "Limited restock", "price": 2000, "enabled": True},
    {"id": "repair", "name": "Repair", "price": 4000, "enabled": True},
    {"id": "core-battery", "name": "Core Battery", "price": 8000, "enabled": True},
]


def empty_minor_slots() -> dict:
    # Slots 5 and 6 start locked
    return {
        "slots": [
            {"slotNumber": n, "facilityName": "", "facilityDescription": "", "enabled": n <= 4}
            for n in range(1, MINOR_SLOTS_COUNT + 1)
        ]
    }


def empty_store_config() -> dict:
    return {
        "currentStock": [],
        "resupplyItems": copy.deepcopy(DEFAULT_RESUPPLY_ITEMS),
        "resupplySettings": {
            "enabled": False,
            "rankDistribution": {"rank1Count": 5, "rank2Count": 3, "rank3Count": 1},
        },
    }


# Value returned by read() when a collection has never been written
COLLECTION_DEFAULTS: Dict[str, Callable[[], Any]] = {
    JOBS: list,
    FACTIONS: list,
    PILOTS: list,
    LEDGER: lambda: {"transactions": []},
    CORE_MAJOR_FACILITIES: list,
    MINOR_FACILITY_SLOTS: empty_minor_slots,
    RESERVES: list,
    STORE_CONFIG: empty_store_config,
    SETTINGS: lambda: dict(DEFAULT_PORTAL_SETTINGS),
}


class CollectionStore:
    """Whole-document access to the board's named JSON collections.

    There is deliberately no partial update: callers read a collection,
    change it in memory and write it back. Concurrent writers must hold the
    matching mutation lock (see ``services.locks``).
    """

    def read(self, name: str) -> Any:
        raise NotImplementedError

    def write(self, name: str, value: Any) -> None:
        raise NotImplementedError

    def exists(self, name: str) -> bool:
        raise NotImplementedError

    def default(self, name: str) -> Any:
        try:
            return COLLECTION_DEFAULTS[name]()
        except KeyError:
            raise KeyError(f"Unknown collection: {name}")

    def read_settings(self) -> dict:
        """Portal settings merged over the defaults, so older documents gain new keys."""
        stored = self.read(SETTINGS)
        merged = dict(DEFAULT_PORTAL_SETTINGS)
        if isinstance(stored, dict):
            merged.update(stored)
        return merged
