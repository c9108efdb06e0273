"""
ShopFloor exception hierarchy

Every error carries a machine-readable code and an HTTP status so the API
exception handler can render it without inspecting messages.

    ShopFloorException
    +-- ValidationError                 400
    +-- NotFoundError                   404
    |   +-- InventoryItemNotFoundError
    |   +-- JobNotFoundError
    +-- InsufficientAvailableError      409
    +-- StoreError                      502
        +-- StockConflictError          409
"""
from typing import Any, Dict, Optional


class ShopFloorException(Exception):
    """Base class for all application errors"""

    error_code = "SHOPFLOOR_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        error_code: Optional[str] = None,
        status_code: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        if status_code is not None:
            self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(ShopFloorException):
    """Raised when a quantity or identifier is unusable"""
    error_code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(ShopFloorException):
    error_code = "NOT_FOUND"
    status_code = 404


class InventoryItemNotFoundError(NotFoundError):
    """Raised when an inventory item is missing from the snapshot or store"""
    error_code = "INVENTORY_ITEM_NOT_FOUND"

    def __init__(self, inventory_id: str):
        super().__init__(
            f"Inventory item not found: {inventory_id}",
            details={"inventory_id": inventory_id},
        )
        self.inventory_id = inventory_id


class JobNotFoundError(NotFoundError):
    """Raised when a job is missing from the snapshot or store"""
    error_code = "JOB_NOT_FOUND"

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", details={"job_id": job_id})
        self.job_id = job_id


class InsufficientAvailableError(ShopFloorException):
    """Raised when committing more stock to a job than is available"""
    error_code = "INSUFFICIENT_AVAILABLE"
    status_code = 409


class StoreError(ShopFloorException):
    """Raised when the external store rejects or fails a read/write"""
    error_code = "STORE_ERROR"
    status_code = 502


class StockConflictError(StoreError):
    """Raised when a stock row changed between read and compare-and-swap write"""
    error_code = "STOCK_CONFLICT"
    status_code = 409

    def __init__(self, inventory_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Inventory item {inventory_id} changed since it was read; refresh and retry",
            details={"inventory_id": inventory_id},
        )
        self.inventory_id = inventory_id
