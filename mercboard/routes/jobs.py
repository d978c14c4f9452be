from fastapi import APIRouter, Depends

from ..auth.security import require_admin, require_client
from ..config import settings
from ..db import get_store
from ..errors import NotFoundError, ValidationError
from ..logging import structlog
from ..services import enrichment, validation
from ..services.events import publish
from ..services.ledger import new_id
from ..services.locks import locked
from ..storage.provider import CollectionStore, FACTIONS, JOBS, PILOTS


router = APIRouter(prefix="/api/jobs", tags=["jobs"])
logger = structlog.get_logger(__name__)


def _index_of(jobs, job_id: str) -> int:
    for i, job in enumerate(jobs):
        if job.get("id") == job_id:
            return i
    raise NotFoundError("Job not found")


def _enriched(store: CollectionStore, job: dict) -> dict:
    return enrichment.jobs_with_factions([job], store.read(FACTIONS))[0]


@router.get("")
def list_jobs(store: CollectionStore = Depends(get_store), _=Depends(require_client)):
    return enrichment.jobs_view(store)


@router.post("")
async def create_job(payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    async with locked(JOBS):
        fields = validation.validate_job(payload, store.read(FACTIONS), settings.emblem_dir)
        jobs = store.read(JOBS)
        job = {"id": new_id(), **fields}
        jobs.append(job)
        store.write(JOBS, jobs)
    logger.info("job_created", job_id=job["id"], state=job["state"])
    await publish(store, ["jobs", "factions"], action="create")
    return {"success": True, "job": _enriched(store, job)}


@router.put("/{job_id}")
async def update_job(job_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    async with locked(JOBS):
        jobs = store.read(JOBS)
        idx = _index_of(jobs, job_id)
        fields = validation.validate_job(payload, store.read(FACTIONS), settings.emblem_dir)
        jobs[idx] = {**jobs[idx], **fields, "id": job_id}
        store.write(JOBS, jobs)
    await publish(store, ["jobs", "factions"])
    return {"success": True, "job": _enriched(store, jobs[idx])}


@router.delete("/{job_id}")
async def delete_job(job_id: str, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    # Pilots' relatedJobs may keep the id; enrichment tolerates it
    async with locked(JOBS):
        jobs = store.read(JOBS)
        removed = jobs.pop(_index_of(jobs, job_id))
        store.write(JOBS, jobs)
    logger.info("job_deleted", job_id=job_id, name=removed.get("name"))
    await publish(store, ["jobs", "factions"], action="delete")
    return {"success": True}


@router.put("/{job_id}/state")
async def update_job_state(job_id: str, payload: dict, store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    if not payload.get("state"):
        raise ValidationError("State is required")
    state = validation.job_state(payload.get("state"))
    async with locked(JOBS):
        jobs = store.read(JOBS)
        idx = _index_of(jobs, job_id)
        jobs[idx]["state"] = state
        store.write(JOBS, jobs)
    await publish(store, ["jobs", "factions"])
    return {"success": True, "job": _enriched(store, jobs[idx])}


@router.post("/progress-all")
async def progress_all_jobs(store: CollectionStore = Depends(get_store), _=Depends(require_admin)):
    """Advance the board one operation: Active jobs lapse to Ignored, Pending jobs go Active.

    Jobs that just went Active are added to every active pilot's relatedJobs.
    """
    async with locked(JOBS, PILOTS):
        jobs = store.read(JOBS)
        newly_active = []
        progressed = 0
        for job in jobs:
            if job.get("state") == "Active":
                job["state"] = "Ignored"
                progressed += 1
            elif job.get("state") == "Pending":
                job["state"] = "Active"
                newly_active.append(job["id"])
                progressed += 1

        pilots = store.read(PILOTS)
        pilots_updated = 0
        if newly_active:
            for pilot in pilots:
                if not pilot.get("active"):
                    continue
                related = pilot.setdefault("relatedJobs", [])
                added = [jid for jid in newly_active if jid not in related]
                if added:
                    related.extend(added)
                    pilots_updated += 1

        store.write(JOBS, jobs)
        if pilots_updated:
            store.write(PILOTS, pilots)

    logger.info("jobs_progressed", jobs=progressed, newly_active=len(newly_active), pilots=pilots_updated)
    await publish(store, ["jobs", "factions", "pilots"], action="progress-all")
    return {
        "success": True,
        "jobsProgressed": progressed,
        "pilotsUpdated": pilots_updated,
        "newlyActiveJobs": len(newly_active),
    }
