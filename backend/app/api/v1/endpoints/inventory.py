"""
Inventory API Endpoints

Read endpoints always return freshly computed allocated/available values.
Stock-changing endpoints load a snapshot, run the reconciliation service
and return the authoritative values it produced.
"""
from fastapi import APIRouter, Depends, Query
from typing import List
import logging

from app.api.deps import get_current_user_id, get_reconciliation_service, get_store
from app.core.settings import settings
from app.exceptions import InventoryItemNotFoundError
from app.schemas.inventory import (
    AllocateToJobRequest,
    AvailableDriftResponse,
    InventoryHistoryEntry,
    InventoryItem,
    InventoryItemResponse,
    MarkOrderedRequest,
    ReceiveOrderRequest,
    StockAdjustRequest,
    StockMutationResult,
)
from app.services.inventory_allocation import (
    StockStatus,
    compute_stock_status,
    find_available_cache_drift,
    find_items_needing_order,
    with_computed_stock,
)
from app.services.inventory_reconciliation import InventoryReconciliationService
from app.services.inventory_store import InventoryStore

router = APIRouter()
logger = logging.getLogger(__name__)


def _item_response(item: InventoryItem, stock: StockStatus) -> InventoryItemResponse:
    return InventoryItemResponse(
        id=item.id,
        name=item.name,
        description=item.description,
        category=item.category,
        unit=item.unit,
        price=item.price,
        vendor=item.vendor,
        barcode=item.barcode,
        bin_location=item.bin_location,
        in_stock=item.in_stock,
        on_order=item.on_order,
        reorder_point=item.reorder_point,
        allocated=stock.allocated,
        available=stock.available,
        shortage=stock.shortage,
        needs_reorder=stock.needs_reorder,
        low_stock=stock.low_stock,
    )


# ============================================================================
# Reads
# ============================================================================

@router.get("/", response_model=List[InventoryItemResponse])
async def list_inventory(
    store: InventoryStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    """All inventory items with allocated/available computed from live jobs"""
    snapshot = store.load_snapshot()
    return [
        _item_response(item, stock)
        for item, stock in with_computed_stock(snapshot.items.values(), snapshot.jobs)
    ]


@router.get("/needs-ordering", response_model=List[InventoryItemResponse])
async def list_needs_ordering(
    store: InventoryStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    """
    Reorder report

    Items with nothing on order that are at or below their reorder point, or
    that cannot cover what active jobs have committed.
    """
    snapshot = store.load_snapshot()
    return [
        _item_response(item, stock)
        for item, stock in find_items_needing_order(snapshot.items.values(), snapshot.jobs)
    ]


@router.get("/drift", response_model=List[AvailableDriftResponse])
async def list_available_drift(
    store: InventoryStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    """Items whose stored `available` column disagrees with the computed value"""
    snapshot = store.load_snapshot()
    drifted = find_available_cache_drift(snapshot.items.values(), snapshot.jobs)
    if drifted:
        logger.info(f"{len(drifted)} inventory item(s) have a stale available column")
    return [
        AvailableDriftResponse(
            inventory_id=item.id,
            name=item.name,
            cached_available=item.cached_available,
            computed_available=computed,
            difference=item.cached_available - computed,
        )
        for item, computed in drifted
    ]


@router.get("/history", response_model=List[InventoryHistoryEntry])
async def list_all_history(
    limit: int = Query(default=settings.ALL_HISTORY_LIMIT, ge=1, le=1000),
    store: InventoryStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    """Latest history rows across all items, newest first"""
    return store.list_history(limit=limit)


@router.get("/{inventory_id}", response_model=InventoryItemResponse)
async def get_inventory_item(
    inventory_id: str,
    store: InventoryStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    snapshot = store.load_snapshot()
    item = snapshot.get_item(inventory_id)
    if item is None:
        raise InventoryItemNotFoundError(inventory_id)
    return _item_response(item, compute_stock_status(item, snapshot.allocated_for(inventory_id)))


@router.get("/{inventory_id}/history", response_model=List[InventoryHistoryEntry])
async def get_inventory_history(
    inventory_id: str,
    limit: int = Query(default=settings.HISTORY_LIMIT, ge=1, le=1000),
    store: InventoryStore = Depends(get_store),
    user_id: str = Depends(get_current_user_id),
):
    """History of one item, newest first"""
    if store.get_item(inventory_id) is None:
        raise InventoryItemNotFoundError(inventory_id)
    return store.list_history(inventory_id=inventory_id, limit=limit)


# ============================================================================
# Stock operations
# ============================================================================

@router.post("/{inventory_id}/adjust", response_model=StockMutationResult)
async def adjust_stock(
    inventory_id: str,
    request: StockAdjustRequest,
    service: InventoryReconciliationService = Depends(get_reconciliation_service),
    user_id: str = Depends(get_current_user_id),
):
    """
    Set in_stock to a counted value

    Returns `changed: false` and records nothing when the value is unchanged.
    """
    snapshot = service.store.load_snapshot()
    return service.adjust_stock_manually(
        inventory_id, request.new_in_stock, request.reason, user_id, snapshot,
    )


@router.post("/{inventory_id}/order", response_model=StockMutationResult)
async def mark_ordered(
    inventory_id: str,
    request: MarkOrderedRequest,
    service: InventoryReconciliationService = Depends(get_reconciliation_service),
    user_id: str = Depends(get_current_user_id),
):
    snapshot = service.store.load_snapshot()
    return service.mark_ordered(
        inventory_id, request.quantity, user_id, snapshot, related_po=request.related_po,
    )


@router.post("/{inventory_id}/receive", response_model=StockMutationResult)
async def receive_order(
    inventory_id: str,
    request: ReceiveOrderRequest,
    service: InventoryReconciliationService = Depends(get_reconciliation_service),
    user_id: str = Depends(get_current_user_id),
):
    """Book a full or partial vendor delivery"""
    snapshot = service.store.load_snapshot()
    return service.receive_order(
        inventory_id, request.received_quantity, user_id, snapshot, related_po=request.related_po,
    )


@router.post("/{inventory_id}/allocate", response_model=StockMutationResult, status_code=201)
async def allocate_to_job(
    inventory_id: str,
    request: AllocateToJobRequest,
    service: InventoryReconciliationService = Depends(get_reconciliation_service),
    user_id: str = Depends(get_current_user_id),
):
    """Commit available stock to a job"""
    snapshot = service.store.load_snapshot()
    return service.allocate_to_job(
        request.job_id, inventory_id, request.quantity, user_id, snapshot, notes=request.notes,
    )
