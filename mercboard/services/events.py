"""Push-event payloads, built from a fresh read after the writes they announce."""
from typing import Callable, Dict, Iterable

from . import enrichment
from .broadcast import hub
from ..storage.provider import (
    CollectionStore,
    CORE_MAJOR_FACILITIES,
    MINOR_FACILITY_SLOTS,
    RESERVES,
    STORE_CONFIG,
)


PASSWORD_FIELDS = ("clientPassword", "adminPassword")


def public_settings(settings: dict) -> dict:
    return {k: v for k, v in settings.items() if k not in PASSWORD_FIELDS}


_BUILDERS: Dict[str, Callable[[CollectionStore], dict]] = {
    "jobs": lambda s: {"jobs": enrichment.jobs_view(s)},
    "factions": lambda s: {"factions": enrichment.factions_view(s)},
    "pilots": lambda s: {"pilots": enrichment.pilots_view(s)},
    "manna": lambda s: enrichment.manna_view(s),
    "settings": lambda s: {"settings": public_settings(s.read_settings())},
    "reserves": lambda s: {"reserves": s.read(RESERVES)},
    "store-config": lambda s: {"storeConfig": s.read(STORE_CONFIG)},
    "facilities-core-major": lambda s: {"facilities": s.read(CORE_MAJOR_FACILITIES)},
    "facilities-minor-slots": lambda s: {"minorFacilities": s.read(MINOR_FACILITY_SLOTS)},
}


def event_payload(store: CollectionStore, event: str, action: str) -> dict:
    return {"action": action, **_BUILDERS[event](store)}


async def publish(store: CollectionStore, events: Iterable[str], action: str = "update") -> None:
    for event in events:
        await hub.broadcast(event, event_payload(store, event, action))
