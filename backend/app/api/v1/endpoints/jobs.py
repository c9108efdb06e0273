"""
Jobs API Endpoints

Only the parts of the job board that touch inventory: listing jobs with
their material links, status changes (which drive reconciliation) and
explicit reconcile / reverse calls for manual repair.
"""
from fastapi import APIRouter, Depends
from typing import List
import logging

from app.api.deps import get_current_user_id, get_reconciliation_service, get_store
from app.exceptions import JobNotFoundError
from app.schemas.inventory import JobStatusChangeResponse, ReconciliationResult
from app.schemas.job import JobResponse, JobStatusUpdate
from app.services.inventory_allocation import InventorySnapshot, is_active_for_allocation
from app.services.inventory_reconciliation import InventoryReconciliationService
from app.services.inventory_store import InventoryStore

router = APIRouter()
logger = logging.getLogger(__name__)


def _require_job(snapshot: InventorySnapshot, job_id: str):
    job = snapshot.get_job(job_id)
    if job is None:
        raise JobNotFoundError(job_id)
    return job


@router.get("/", response_model=List[JobResponse])
async def list_jobs(
    store: InventoryStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    """Jobs with material links; `allocates_inventory` tells whether they count"""
    return [
        JobResponse(
            id=job.id,
            job_code=job.job_code,
            name=job.name,
            po=job.po,
            status=job.status,
            allocates_inventory=is_active_for_allocation(job.status),
            material_links=job.material_links,
        )
        for job in store.list_jobs()
    ]


@router.post("/{job_id}/status", response_model=JobStatusChangeResponse)
async def update_job_status(
    job_id: str,
    request: JobStatusUpdate,
    service: InventoryReconciliationService = Depends(get_reconciliation_service),
    user_id: str = Depends(get_current_user_id),
):
    """
    Move a job to a new status

    Entering `delivered` consumes the job's materials. Reopening a delivered
    job into an active status restores them. Per-item outcomes are returned
    under `reconciliation`; failed items leave stock untouched.
    """
    snapshot = service.store.load_snapshot()
    job = _require_job(snapshot, job_id)
    result = service.apply_job_status_change(job, request.status, snapshot, user_id)

    if result.reconciliation is not None and result.reconciliation.failed_items:
        logger.warning(
            f"Status change for job {job_id} left {len(result.reconciliation.failed_items)} item(s) unreconciled",
            extra={"job_id": job_id},
        )
    return result


@router.post("/{job_id}/reconcile", response_model=ReconciliationResult)
async def reconcile_job(
    job_id: str,
    service: InventoryReconciliationService = Depends(get_reconciliation_service),
    user_id: str = Depends(get_current_user_id),
):
    """Consume the job's materials now; items already consumed are skipped"""
    snapshot = service.store.load_snapshot()
    job = _require_job(snapshot, job_id)
    return service.reconcile_job_delivered(job, snapshot, user_id)


@router.post("/{job_id}/reverse-reconciliation", response_model=ReconciliationResult)
async def reverse_job_reconciliation(
    job_id: str,
    service: InventoryReconciliationService = Depends(get_reconciliation_service),
    user_id: str = Depends(get_current_user_id),
):
    """Restore consumed materials; safe to call more than once"""
    snapshot = service.store.load_snapshot()
    job = _require_job(snapshot, job_id)
    return service.reverse_job_reconciliation(job, snapshot, user_id)
