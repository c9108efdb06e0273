"""
Inventory Pydantic Schemas

Domain entities shared by the allocation calculator, the reconciliation
engine and the stores, plus the request/response bodies of the inventory API.
"""
from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum

from app.schemas.job import JobStatus


# ============================================================================
# Enums
# ============================================================================

class InventoryCategory(str, Enum):
    """Inventory board columns"""
    MATERIAL = "material"
    FOAM = "foam"
    TRIM_CORD = "trimCord"
    PRINTING_3D = "printing3d"
    CHEMICALS = "chemicals"
    HARDWARE = "hardware"
    MISC_SUPPLIES = "miscSupplies"


class HistoryAction(str, Enum):
    """Kinds of stock-affecting events recorded in inventory_history"""
    MANUAL_ADJUST = "manual_adjust"
    ORDER_PLACED = "order_placed"
    ORDER_RECEIVED = "order_received"
    RECONCILE_JOB = "reconcile_job"
    RECONCILE_JOB_REVERSAL = "reconcile_job_reversal"
    ALLOCATED_TO_JOB = "allocated_to_job"

    # Written by older clients; read back but never emitted here
    RECONCILE_PO = "reconcile_po"
    STOCK_CORRECTION = "stock_correction"


class ItemOutcomeStatus(str, Enum):
    """Per-item result of a multi-item reconciliation"""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"


# ============================================================================
# Domain entities
# ============================================================================

class InventoryItem(BaseModel):
    """
    A stocked material or supply.

    `cached_available` mirrors the store's `available` column and is only
    reported, never trusted.
    """
    id: str
    name: str = ""
    description: Optional[str] = None
    category: InventoryCategory = InventoryCategory.MISC_SUPPLIES
    in_stock: Decimal = Decimal("0")
    on_order: Decimal = Decimal("0")
    reorder_point: Optional[Decimal] = None
    unit: str = "units"
    price: Optional[Decimal] = None
    vendor: Optional[str] = None
    barcode: Optional[str] = None
    bin_location: Optional[str] = None
    cached_available: Optional[Decimal] = None


class InventoryHistoryEntry(BaseModel):
    """Immutable audit record of one stock-affecting event"""
    id: Optional[str] = None
    inventory_id: str
    user_id: str
    action: HistoryAction
    reason: str = ""
    previous_in_stock: Decimal
    new_in_stock: Decimal
    previous_available: Optional[Decimal] = None
    new_available: Optional[Decimal] = None
    change_amount: Decimal
    related_job_id: Optional[str] = None
    related_po: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Engine results
# ============================================================================

class StockMutationResult(BaseModel):
    """Authoritative values after a single-item stock operation"""
    inventory_id: str
    in_stock: Decimal
    on_order: Decimal
    allocated: Decimal
    available: Decimal
    changed: bool = True
    history_entry: Optional[InventoryHistoryEntry] = None


class ItemOutcome(BaseModel):
    """What happened to one inventory item during a job reconciliation"""
    inventory_id: str
    status: ItemOutcomeStatus
    quantity: Decimal = Decimal("0")
    previous_in_stock: Optional[Decimal] = None
    new_in_stock: Optional[Decimal] = None
    previous_available: Optional[Decimal] = None
    new_available: Optional[Decimal] = None
    change_amount: Optional[Decimal] = None
    history_written: bool = False
    message: Optional[str] = None


class ReconciliationResult(BaseModel):
    """
    Aggregated outcome of reconciling (or reversing) one job.

    Items are processed independently; a failure on one item does not undo
    the items already written.
    """
    job_id: str
    action: HistoryAction
    succeeded_items: List[ItemOutcome] = Field(default_factory=list)
    failed_items: List[ItemOutcome] = Field(default_factory=list)
    skipped_items: List[ItemOutcome] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed_items

    def record(self, outcome: ItemOutcome) -> None:
        if outcome.status == ItemOutcomeStatus.SUCCEEDED:
            self.succeeded_items.append(outcome)
        elif outcome.status == ItemOutcomeStatus.FAILED:
            self.failed_items.append(outcome)
        else:
            self.skipped_items.append(outcome)


# ============================================================================
# API schemas
# ============================================================================

class StockAdjustRequest(BaseModel):
    """Set the physical quantity on hand after a count"""
    new_in_stock: Decimal = Field(..., ge=0)
    reason: Optional[str] = Field(None, max_length=500)


class MarkOrderedRequest(BaseModel):
    """Record quantity requested from a vendor"""
    quantity: Decimal = Field(..., gt=0)
    related_po: Optional[str] = Field(None, max_length=100)


class ReceiveOrderRequest(BaseModel):
    """Record a full or partial delivery from a vendor"""
    received_quantity: Decimal = Field(..., gt=0)
    related_po: Optional[str] = Field(None, max_length=100)


class AllocateToJobRequest(BaseModel):
    """Commit stock to a job"""
    job_id: str
    quantity: Decimal = Field(..., gt=0)
    notes: Optional[str] = Field(None, max_length=500)


class InventoryItemResponse(BaseModel):
    """Inventory item with freshly computed stock position"""
    id: str
    name: str
    description: Optional[str] = None
    category: InventoryCategory
    unit: str
    price: Optional[Decimal] = None
    vendor: Optional[str] = None
    barcode: Optional[str] = None
    bin_location: Optional[str] = None
    in_stock: Decimal
    on_order: Decimal
    reorder_point: Optional[Decimal] = None
    allocated: Decimal
    available: Decimal
    shortage: Decimal
    needs_reorder: bool
    low_stock: bool


class AvailableDriftResponse(BaseModel):
    """Item whose stored `available` column disagrees with the computed value"""
    inventory_id: str
    name: str
    cached_available: Optional[Decimal] = None
    computed_available: Decimal
    difference: Decimal


class JobStatusChangeResponse(BaseModel):
    """Result of moving a job between statuses"""
    job_id: str
    previous_status: JobStatus
    status: JobStatus
    reconciliation: Optional[ReconciliationResult] = None
