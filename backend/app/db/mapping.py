"""
Row <-> domain mapping

The one place where store rows (SQLAlchemy objects or JSON records from the
hosted backend's REST interface, both snake_case with the table's column
names) are turned into domain entities and back. Nothing outside this module
reads raw column names.
"""
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from app.exceptions import ValidationError
from app.schemas.inventory import HistoryAction, InventoryCategory, InventoryHistoryEntry, InventoryItem
from app.schemas.job import Job, JobMaterialLink, JobStatus
from app.services.quantities import to_quantity


def _field(row: Any, name: str, default: Any = None) -> Any:
    """Read a column from either a dict record or an ORM object"""
    if isinstance(row, dict):
        value = row.get(name, default)
    else:
        value = getattr(row, name, default)
    return default if value is None else value


def _optional_quantity(value: Any):
    return None if value is None else to_quantity(value)


def _category(value: Any) -> InventoryCategory:
    try:
        return InventoryCategory(value)
    except ValueError:
        # Unknown or legacy categories land in the catch-all column
        return InventoryCategory.MISC_SUPPLIES


# ============================================================================
# Inventory
# ============================================================================

def item_from_row(row: Any) -> InventoryItem:
    return InventoryItem(
        id=str(_field(row, "id")),
        name=_field(row, "name", ""),
        description=_field(row, "description"),
        category=_category(_field(row, "category", InventoryCategory.MISC_SUPPLIES.value)),
        in_stock=to_quantity(_field(row, "in_stock", 0)),
        on_order=to_quantity(_field(row, "on_order", 0)),
        reorder_point=_optional_quantity(_field(row, "reorder_point")),
        unit=_field(row, "unit", "units"),
        price=_optional_quantity(_field(row, "price")),
        vendor=_field(row, "vendor"),
        barcode=_field(row, "barcode"),
        bin_location=_field(row, "bin_location"),
        cached_available=_optional_quantity(_field(row, "available")),
    )


def stock_update_row(
    *,
    in_stock=None,
    on_order=None,
    updated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Columns written by the reconciliation engine.

    Only in_stock/on_order (plus the timestamp) are ever written; the cached
    `available` column is left alone.
    """
    row: Dict[str, Any] = {"updated_at": updated_at or datetime.utcnow()}
    if in_stock is not None:
        row["in_stock"] = to_quantity(in_stock)
    if on_order is not None:
        row["on_order"] = to_quantity(on_order)
    return row


# ============================================================================
# Jobs
# ============================================================================

def link_from_row(row: Any) -> JobMaterialLink:
    inventory_id = _field(row, "inventory_id")
    return JobMaterialLink(
        id=None if _field(row, "id") is None else str(_field(row, "id")),
        inventory_id="" if inventory_id is None else str(inventory_id),
        quantity=to_quantity(_field(row, "quantity", 0)),
        unit=_field(row, "unit", "units"),
    )


def job_from_row(row: Any, links: Optional[Iterable[Any]] = None) -> Job:
    """
    Build a Job from a jobs row.

    Links come from `links` when given, otherwise from the row itself:
    `materials` on ORM objects, embedded `job_inventory` on REST records.

    Raises:
        ValidationError: status is not a known job status
    """
    raw_status = _field(row, "status")
    try:
        status = JobStatus(raw_status)
    except ValueError:
        raise ValidationError(
            f"Unknown job status: {raw_status!r}",
            details={"job_id": str(_field(row, "id")), "status": raw_status},
        )

    if links is None:
        links = _field(row, "materials") or _field(row, "job_inventory") or []

    job_code = _field(row, "job_code")
    return Job(
        id=str(_field(row, "id")),
        job_code=None if job_code is None else int(job_code),
        name=_field(row, "name", ""),
        po=_field(row, "po"),
        status=status,
        material_links=[link_from_row(link) for link in links],
    )


# ============================================================================
# History
# ============================================================================

def history_from_row(row: Any) -> InventoryHistoryEntry:
    """
    Raises:
        ValidationError: action is not a known history action
    """
    raw_action = _field(row, "action")
    try:
        action = HistoryAction(raw_action)
    except ValueError:
        raise ValidationError(
            f"Unknown history action: {raw_action!r}",
            details={"history_id": str(_field(row, "id")), "action": raw_action},
        )

    related_job_id = _field(row, "related_job_id")
    created_at = _field(row, "created_at")
    return InventoryHistoryEntry(
        id=None if _field(row, "id") is None else str(_field(row, "id")),
        inventory_id=str(_field(row, "inventory_id")),
        user_id=str(_field(row, "user_id")),
        action=action,
        reason=_field(row, "reason", ""),
        previous_in_stock=to_quantity(_field(row, "previous_in_stock", 0)),
        new_in_stock=to_quantity(_field(row, "new_in_stock", 0)),
        previous_available=_optional_quantity(_field(row, "previous_available")),
        new_available=_optional_quantity(_field(row, "new_available")),
        change_amount=to_quantity(_field(row, "change_amount", 0)),
        related_job_id=None if related_job_id is None else str(related_job_id),
        related_po=_field(row, "related_po"),
        created_at=created_at,
    )


def history_to_row(entry: InventoryHistoryEntry) -> Dict[str, Any]:
    """
    inventory_history columns for an insert.

    id and created_at are left to the store.
    """
    return {
        "inventory_id": entry.inventory_id,
        "user_id": entry.user_id,
        "action": entry.action.value,
        "reason": entry.reason,
        "previous_in_stock": entry.previous_in_stock,
        "new_in_stock": entry.new_in_stock,
        "previous_available": entry.previous_available,
        "new_available": entry.new_available,
        "change_amount": entry.change_amount,
        "related_job_id": entry.related_job_id,
        "related_po": entry.related_po,
    }
