"""
Inventory Allocation

Derives how much of each inventory item is committed to open jobs and how
much is left. Everything here is pure: callers pass in the current jobs and
items, nothing is read from or written to a store.

    allocated = sum of link quantities over jobs in an active-allocation status
    available = max(0, in_stock - allocated)

The stored `available` column is never used here except to report drift.
"""
from decimal import Decimal
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple, Union

from app.schemas.inventory import InventoryItem
from app.schemas.job import Job, JobStatus
from app.services.quantities import ZERO, clamp_non_negative, to_quantity


# Statuses whose material links count against inventory. Everything else
# (quoting stages, onHold, delivered and the billing stages after it) is
# excluded.
ACTIVE_ALLOCATION_STATUSES = frozenset({
    JobStatus.POD,
    JobStatus.RUSH,
    JobStatus.PENDING,
    JobStatus.IN_PROGRESS,
    JobStatus.QUALITY_CONTROL,
    JobStatus.FINISHED,
})


def is_active_for_allocation(status: Union[JobStatus, str]) -> bool:
    """True if a job in this status holds its materials against inventory"""
    try:
        return JobStatus(status) in ACTIVE_ALLOCATION_STATUSES
    except ValueError:
        return False


def job_material_totals(job: Job) -> Dict[str, Decimal]:
    """
    Sum a job's links per inventory item.

    A job can link the same item more than once (e.g. two allocations of the
    same fabric); reconciliation treats them as one quantity.
    """
    totals: Dict[str, Decimal] = {}
    for link in job.material_links:
        if not link.inventory_id:
            continue
        totals[link.inventory_id] = totals.get(link.inventory_id, ZERO) + to_quantity(link.quantity)
    return totals


def build_allocated_index(jobs: Iterable[Job]) -> Dict[str, Decimal]:
    """
    Single pass over all jobs and links.

    Returns:
        {inventory_id: allocated quantity}; items with no active demand are absent
    """
    allocated: Dict[str, Decimal] = {}
    for job in jobs:
        if not is_active_for_allocation(job.status):
            continue
        for link in job.material_links:
            if not link.inventory_id:
                continue
            allocated[link.inventory_id] = allocated.get(link.inventory_id, ZERO) + to_quantity(link.quantity)
    return allocated


def calculate_allocated(inventory_id: str, jobs: Iterable[Job]) -> Decimal:
    """Quantity of one item committed to active jobs (0 if none)"""
    return build_allocated_index(jobs).get(inventory_id, ZERO)


def calculate_available(item: InventoryItem, allocated: Decimal) -> Decimal:
    """
    in_stock - allocated, never negative.

    allocated > in_stock is a legitimate state (demand exceeds stock); it
    shows up as a shortage, not as negative availability.
    """
    return clamp_non_negative(to_quantity(item.in_stock) - to_quantity(allocated))


# ============================================================================
# Read-side views
# ============================================================================

class StockStatus(NamedTuple):
    allocated: Decimal
    available: Decimal
    shortage: Decimal
    needs_reorder: bool
    low_stock: bool


def compute_stock_status(item: InventoryItem, allocated: Decimal) -> StockStatus:
    """Fresh stock position of one item, including reorder flags"""
    allocated = to_quantity(allocated)
    available = calculate_available(item, allocated)
    shortage = clamp_non_negative(allocated - to_quantity(item.in_stock))
    reorder_point = to_quantity(item.reorder_point)

    return StockStatus(
        allocated=allocated,
        available=available,
        shortage=shortage,
        needs_reorder=reorder_point > ZERO and available < reorder_point,
        low_stock=reorder_point > ZERO and available <= reorder_point,
    )


def with_computed_stock(
    items: Iterable[InventoryItem],
    jobs: Iterable[Job],
) -> List[Tuple[InventoryItem, StockStatus]]:
    allocated_index = build_allocated_index(jobs)
    return [
        (item, compute_stock_status(item, allocated_index.get(item.id, ZERO)))
        for item in items
    ]


def find_items_needing_order(
    items: Iterable[InventoryItem],
    jobs: Iterable[Job],
) -> List[Tuple[InventoryItem, StockStatus]]:
    """
    Items with nothing on order that are at/below their reorder point or
    short for committed jobs.
    """
    result = []
    for item, status in with_computed_stock(items, jobs):
        if to_quantity(item.on_order) > ZERO:
            continue
        reorder_point = to_quantity(item.reorder_point)
        below_reorder = reorder_point > ZERO and status.available <= reorder_point
        short_for_jobs = status.allocated > ZERO and status.available < status.allocated
        if below_reorder or short_for_jobs:
            result.append((item, status))
    return result


def find_available_cache_drift(
    items: Iterable[InventoryItem],
    jobs: Iterable[Job],
) -> List[Tuple[InventoryItem, Decimal]]:
    """Items whose stored `available` column differs from the computed value"""
    drifted = []
    for item, status in with_computed_stock(items, jobs):
        if item.cached_available is None:
            continue
        if to_quantity(item.cached_available) != status.available:
            drifted.append((item, status.available))
    return drifted


# ============================================================================
# Snapshot
# ============================================================================

class InventorySnapshot:
    """
    The caller's current view of inventory and jobs.

    Passed explicitly into the reconciliation engine so there is no shared
    application-wide cache. Snapshots are not mutated by the engine; callers
    use with_item()/with_job() to patch their own copy from engine results,
    or reload from the store.
    """

    def __init__(self, items: Iterable[InventoryItem], jobs: Iterable[Job]):
        self.items: Dict[str, InventoryItem] = {item.id: item for item in items}
        self.jobs: List[Job] = list(jobs)

    def get_item(self, inventory_id: str) -> Optional[InventoryItem]:
        return self.items.get(inventory_id)

    def get_job(self, job_id: str) -> Optional[Job]:
        for job in self.jobs:
            if job.id == job_id:
                return job
        return None

    def allocated_index(self) -> Dict[str, Decimal]:
        return build_allocated_index(self.jobs)

    def allocated_excluding(self, inventory_id: str, job_id: str) -> Decimal:
        """Allocation of one item from every job except job_id"""
        others = [job for job in self.jobs if job.id != job_id]
        return calculate_allocated(inventory_id, others)

    def allocated_for(self, inventory_id: str) -> Decimal:
        return calculate_allocated(inventory_id, self.jobs)

    def available_for(self, inventory_id: str) -> Decimal:
        item = self.items[inventory_id]
        return calculate_available(item, self.allocated_for(inventory_id))

    def with_item(self, item: InventoryItem) -> "InventorySnapshot":
        items = dict(self.items)
        items[item.id] = item
        return InventorySnapshot(items.values(), self.jobs)

    def with_job(self, job: Job) -> "InventorySnapshot":
        jobs = [job if existing.id == job.id else existing for existing in self.jobs]
        if not any(existing.id == job.id for existing in self.jobs):
            jobs.append(job)
        return InventorySnapshot(self.items.values(), jobs)
