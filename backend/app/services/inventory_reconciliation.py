"""
Inventory Reconciliation Service

Applies stock-affecting events to inventory items and records one history row
per stock write:

- manual adjustment after a physical count
- placing and receiving vendor orders
- committing stock to a job
- consuming a job's materials when it is delivered, and restoring them when
  a delivered job is reopened

Callers pass in the InventorySnapshot they are working from; `available`
before/after values are always computed from it, never read from the stored
`available` column. Results carry the authoritative values so callers can
patch their own view or reload.

Known limitation: the stock write and the history append are two separate
store calls. If the second fails the stock change stands without its history
row; the failure is logged and reported, never silently dropped. Multi-item
reconciliations are best effort: items already written stay written when a
later item fails.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from app.exceptions import (
    InsufficientAvailableError,
    InventoryItemNotFoundError,
    JobNotFoundError,
    ShopFloorException,
    StoreError,
)
from app.logging_config import audit_log, get_logger
from app.schemas.inventory import (
    HistoryAction,
    InventoryHistoryEntry,
    InventoryItem,
    ItemOutcome,
    ItemOutcomeStatus,
    JobStatusChangeResponse,
    ReconciliationResult,
    StockMutationResult,
)
from app.schemas.job import Job, JobStatus
from app.services.inventory_allocation import (
    InventorySnapshot,
    calculate_available,
    is_active_for_allocation,
    job_material_totals,
)
from app.services.inventory_store import InventoryStore
from app.services.quantities import (
    ZERO,
    clamp_non_negative,
    format_quantity,
    require_non_negative,
    require_positive,
    to_quantity,
)

logger = get_logger(__name__)


def _available(in_stock: Decimal, allocated: Decimal) -> Decimal:
    return clamp_non_negative(in_stock - allocated)


def latest_reconciliation_by_item(
    history: List[InventoryHistoryEntry],
) -> Dict[str, InventoryHistoryEntry]:
    """
    Most recent reconcile_job / reconcile_job_reversal row per item.

    `history` is oldest first. For a given job and item the two actions
    alternate, so the latest one tells whether consumption is outstanding.
    """
    latest: Dict[str, InventoryHistoryEntry] = {}
    for entry in history:
        if entry.action in (HistoryAction.RECONCILE_JOB, HistoryAction.RECONCILE_JOB_REVERSAL):
            latest[entry.inventory_id] = entry
    return latest


class InventoryReconciliationService:
    """
    Stock operations over an InventoryStore.

    Single-item operations raise on failure. Job reconciliations never raise
    for per-item problems; they return a ReconciliationResult.
    """

    def __init__(self, store: InventoryStore, *, compare_and_swap: bool = True):
        self.store = store
        self.compare_and_swap = compare_and_swap

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_item(self, snapshot: InventorySnapshot, inventory_id: str) -> InventoryItem:
        item = snapshot.get_item(inventory_id)
        if item is None:
            raise InventoryItemNotFoundError(inventory_id)
        return item

    def _write_stock_and_history(
        self,
        item: InventoryItem,
        entry: InventoryHistoryEntry,
        *,
        new_in_stock: Optional[Decimal] = None,
        new_on_order: Optional[Decimal] = None,
    ) -> Tuple[InventoryItem, InventoryHistoryEntry]:
        """
        Write the stock columns, then append the history row.

        Nothing is appended if the stock write fails. If the append fails
        after a successful write, StoreError is raised with
        details["stock_written"] set.
        """
        expected_in_stock = None
        expected_on_order = None
        if self.compare_and_swap:
            if new_in_stock is not None:
                expected_in_stock = to_quantity(item.in_stock)
            if new_on_order is not None:
                expected_on_order = to_quantity(item.on_order)

        stored = self.store.update_stock(
            item.id,
            in_stock=new_in_stock,
            on_order=new_on_order,
            expected_in_stock=expected_in_stock,
            expected_on_order=expected_on_order,
        )

        try:
            recorded = self.store.append_history(entry)
        except StoreError as e:
            logger.error(
                f"Stock written for {item.id} but history append failed: {e.message}",
                extra={
                    "inventory_id": item.id,
                    "action": entry.action.value,
                    "new_in_stock": str(stored.in_stock),
                    "new_on_order": str(stored.on_order),
                },
            )
            raise StoreError(
                f"Stock for inventory item {item.id} was updated but its history row could not be recorded",
                details={
                    "inventory_id": item.id,
                    "stock_written": True,
                    "in_stock": str(stored.in_stock),
                    "on_order": str(stored.on_order),
                },
            )
        return stored, recorded

    def _mutation_result(
        self,
        stored: InventoryItem,
        allocated: Decimal,
        entry: Optional[InventoryHistoryEntry],
        changed: bool = True,
    ) -> StockMutationResult:
        return StockMutationResult(
            inventory_id=stored.id,
            in_stock=stored.in_stock,
            on_order=stored.on_order,
            allocated=allocated,
            available=calculate_available(stored, allocated),
            changed=changed,
            history_entry=entry,
        )

    # ------------------------------------------------------------------
    # Single-item operations
    # ------------------------------------------------------------------

    def adjust_stock_manually(
        self,
        inventory_id: str,
        new_in_stock,
        reason: Optional[str],
        acting_user: str,
        snapshot: InventorySnapshot,
    ) -> StockMutationResult:
        """
        Set in_stock to a counted value.

        Setting the current value is a no-op: nothing is written and no
        history row is added (changed=False in the result).
        """
        new_in_stock = require_non_negative(new_in_stock, "new_in_stock")
        item = self._require_item(snapshot, inventory_id)
        allocated = snapshot.allocated_for(inventory_id)
        previous_in_stock = to_quantity(item.in_stock)

        change = new_in_stock - previous_in_stock
        if change == ZERO:
            logger.info(
                f"Manual adjustment of {inventory_id} left stock unchanged; nothing recorded",
                extra={"inventory_id": inventory_id},
            )
            return self._mutation_result(item, allocated, None, changed=False)

        entry = InventoryHistoryEntry(
            inventory_id=inventory_id,
            user_id=acting_user,
            action=HistoryAction.MANUAL_ADJUST,
            reason=reason or "Stock adjusted manually",
            previous_in_stock=previous_in_stock,
            new_in_stock=new_in_stock,
            previous_available=_available(previous_in_stock, allocated),
            new_available=_available(new_in_stock, allocated),
            change_amount=change,
        )
        stored, recorded = self._write_stock_and_history(item, entry, new_in_stock=new_in_stock)

        audit_log(
            "STOCK_ADJUSTED",
            user_id=acting_user,
            resource_type="inventory",
            resource_id=inventory_id,
            details={
                "previous_in_stock": str(previous_in_stock),
                "new_in_stock": str(new_in_stock),
                "reason": entry.reason,
            },
        )
        return self._mutation_result(stored, allocated, recorded)

    def mark_ordered(
        self,
        inventory_id: str,
        quantity,
        acting_user: str,
        snapshot: InventorySnapshot,
        related_po: Optional[str] = None,
    ) -> StockMutationResult:
        """Add quantity to on_order. in_stock and available are untouched."""
        quantity = require_positive(quantity, "quantity")
        item = self._require_item(snapshot, inventory_id)
        allocated = snapshot.allocated_for(inventory_id)
        in_stock = to_quantity(item.in_stock)
        available = _available(in_stock, allocated)
        new_on_order = to_quantity(item.on_order) + quantity

        entry = InventoryHistoryEntry(
            inventory_id=inventory_id,
            user_id=acting_user,
            action=HistoryAction.ORDER_PLACED,
            reason=f"Ordered {format_quantity(quantity)} {item.unit}",
            previous_in_stock=in_stock,
            new_in_stock=in_stock,
            previous_available=available,
            new_available=available,
            change_amount=ZERO,
            related_po=related_po,
        )
        stored, recorded = self._write_stock_and_history(item, entry, new_on_order=new_on_order)

        audit_log(
            "STOCK_ORDERED",
            user_id=acting_user,
            resource_type="inventory",
            resource_id=inventory_id,
            details={"quantity": str(quantity), "on_order": str(new_on_order), "related_po": related_po},
        )
        return self._mutation_result(stored, allocated, recorded)

    def receive_order(
        self,
        inventory_id: str,
        received_quantity,
        acting_user: str,
        snapshot: InventorySnapshot,
        related_po: Optional[str] = None,
    ) -> StockMutationResult:
        """
        Book a full or partial delivery.

        in_stock grows by the received quantity; on_order shrinks by it but
        never below zero (receiving more than was ordered is allowed).
        """
        received_quantity = require_positive(received_quantity, "received_quantity")
        item = self._require_item(snapshot, inventory_id)
        allocated = snapshot.allocated_for(inventory_id)
        previous_in_stock = to_quantity(item.in_stock)
        new_in_stock = previous_in_stock + received_quantity
        new_on_order = clamp_non_negative(to_quantity(item.on_order) - received_quantity)

        entry = InventoryHistoryEntry(
            inventory_id=inventory_id,
            user_id=acting_user,
            action=HistoryAction.ORDER_RECEIVED,
            reason=f"Received {format_quantity(received_quantity)} {item.unit}",
            previous_in_stock=previous_in_stock,
            new_in_stock=new_in_stock,
            previous_available=_available(previous_in_stock, allocated),
            new_available=_available(new_in_stock, allocated),
            change_amount=received_quantity,
            related_po=related_po,
        )
        stored, recorded = self._write_stock_and_history(
            item, entry, new_in_stock=new_in_stock, new_on_order=new_on_order,
        )

        audit_log(
            "STOCK_RECEIVED",
            user_id=acting_user,
            resource_type="inventory",
            resource_id=inventory_id,
            details={
                "received_quantity": str(received_quantity),
                "in_stock": str(new_in_stock),
                "on_order": str(new_on_order),
                "related_po": related_po,
            },
        )
        return self._mutation_result(stored, allocated, recorded)

    def allocate_to_job(
        self,
        job_id: str,
        inventory_id: str,
        quantity,
        acting_user: str,
        snapshot: InventorySnapshot,
        notes: Optional[str] = None,
    ) -> StockMutationResult:
        """
        Commit stock to a job by adding a material link.

        in_stock is not written; the link itself is what reduces available.
        Non-blank notes become the history reason in place of the generated one.

        Raises:
            InsufficientAvailableError: quantity exceeds the fresh available
        """
        quantity = require_positive(quantity, "quantity")
        job = snapshot.get_job(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        item = self._require_item(snapshot, inventory_id)

        in_stock = to_quantity(item.in_stock)
        allocated = snapshot.allocated_for(inventory_id)
        available = _available(in_stock, allocated)
        if quantity > available:
            raise InsufficientAvailableError(
                f"Only {format_quantity(available)} {item.unit} of {item.name or inventory_id} available",
                details={
                    "inventory_id": inventory_id,
                    "requested": str(quantity),
                    "available": str(available),
                },
            )

        self.store.add_job_material(job_id, inventory_id, quantity, item.unit)

        new_allocated = allocated + quantity if is_active_for_allocation(job.status) else allocated
        reason = (notes or "").strip() or f"Allocated {format_quantity(quantity)} {item.unit} to {job.label}"

        entry = InventoryHistoryEntry(
            inventory_id=inventory_id,
            user_id=acting_user,
            action=HistoryAction.ALLOCATED_TO_JOB,
            reason=reason,
            previous_in_stock=in_stock,
            new_in_stock=in_stock,
            previous_available=available,
            new_available=_available(in_stock, new_allocated),
            change_amount=ZERO,
            related_job_id=job_id,
            related_po=job.po,
        )
        recorded = self.store.append_history(entry)

        audit_log(
            "STOCK_ALLOCATED",
            user_id=acting_user,
            resource_type="inventory",
            resource_id=inventory_id,
            details={"job_id": job_id, "quantity": str(quantity)},
        )
        return self._mutation_result(item, new_allocated, recorded)

    # ------------------------------------------------------------------
    # Job reconciliation
    # ------------------------------------------------------------------

    def _load_latest_reconciliations(
        self,
        job: Job,
        result: ReconciliationResult,
        inventory_ids: List[str],
    ) -> Optional[Dict[str, InventoryHistoryEntry]]:
        try:
            history = self.store.list_job_reconciliation_history(job.id)
        except StoreError as e:
            logger.warning(
                f"Could not read reconciliation history for job {job.id}: {e.message}",
                extra={"job_id": job.id},
            )
            for inventory_id in inventory_ids:
                result.record(ItemOutcome(
                    inventory_id=inventory_id,
                    status=ItemOutcomeStatus.FAILED,
                    message=e.message,
                ))
            return None
        return latest_reconciliation_by_item(history)

    def _record_failure(
        self,
        result: ReconciliationResult,
        job: Job,
        inventory_id: str,
        quantity: Decimal,
        error: ShopFloorException,
    ) -> None:
        logger.warning(
            f"{result.action.value} failed for item {inventory_id} of job {job.id}: {error.message}",
            extra={"job_id": job.id, "inventory_id": inventory_id, "error_code": error.error_code},
        )
        new_in_stock = error.details.get("in_stock") if error.details.get("stock_written") else None
        result.record(ItemOutcome(
            inventory_id=inventory_id,
            status=ItemOutcomeStatus.FAILED,
            quantity=quantity,
            new_in_stock=new_in_stock,
            message=error.message,
        ))

    def reconcile_job_delivered(
        self,
        job: Job,
        snapshot: InventorySnapshot,
        acting_user: str,
    ) -> ReconciliationResult:
        """
        Consume a delivered job's materials from stock.

        Per item (links to the same item summed): in_stock becomes
        max(0, in_stock - quantity). previous_available counts the job as
        still allocated; new_available excludes it.

        Items whose consumption for this job is already recorded and not
        reversed are skipped, so delivering twice consumes once. A history
        row is written even when the clamp makes the change zero; it marks
        the item as consumed for this job.
        """
        result = ReconciliationResult(job_id=job.id, action=HistoryAction.RECONCILE_JOB)
        totals = job_material_totals(job)
        if not totals:
            return result

        latest = self._load_latest_reconciliations(job, result, list(totals))
        if latest is None:
            return result

        for inventory_id, quantity in totals.items():
            if quantity <= ZERO:
                result.record(ItemOutcome(
                    inventory_id=inventory_id,
                    status=ItemOutcomeStatus.SKIPPED,
                    quantity=quantity,
                    message="No quantity to consume",
                ))
                continue

            last = latest.get(inventory_id)
            if last is not None and last.action == HistoryAction.RECONCILE_JOB:
                result.record(ItemOutcome(
                    inventory_id=inventory_id,
                    status=ItemOutcomeStatus.SKIPPED,
                    quantity=quantity,
                    message="Already consumed for this job",
                ))
                continue

            try:
                item = self._require_item(snapshot, inventory_id)
                others = snapshot.allocated_excluding(inventory_id, job.id)
                previous_in_stock = to_quantity(item.in_stock)
                new_in_stock = clamp_non_negative(previous_in_stock - quantity)

                entry = InventoryHistoryEntry(
                    inventory_id=inventory_id,
                    user_id=acting_user,
                    action=HistoryAction.RECONCILE_JOB,
                    reason=f"Materials used for {job.label} (Delivered)",
                    previous_in_stock=previous_in_stock,
                    new_in_stock=new_in_stock,
                    previous_available=_available(previous_in_stock, others + quantity),
                    new_available=_available(new_in_stock, others),
                    change_amount=new_in_stock - previous_in_stock,
                    related_job_id=job.id,
                    related_po=job.po,
                )
                stored, recorded = self._write_stock_and_history(item, entry, new_in_stock=new_in_stock)
            except ShopFloorException as e:
                self._record_failure(result, job, inventory_id, quantity, e)
                continue

            result.record(ItemOutcome(
                inventory_id=inventory_id,
                status=ItemOutcomeStatus.SUCCEEDED,
                quantity=quantity,
                previous_in_stock=previous_in_stock,
                new_in_stock=stored.in_stock,
                previous_available=entry.previous_available,
                new_available=entry.new_available,
                change_amount=entry.change_amount,
                history_written=True,
            ))

        self._log_result(result, job, acting_user, "JOB_RECONCILED")
        return result

    def reverse_job_reconciliation(
        self,
        job: Job,
        snapshot: InventorySnapshot,
        acting_user: str,
    ) -> ReconciliationResult:
        """
        Undo a delivered job's consumption.

        Restores exactly what the outstanding reconcile_job row removed,
        which is less than the link quantity when the delivery clamped at
        zero. Items with nothing outstanding are skipped, so calling this
        twice restores once.
        """
        result = ReconciliationResult(job_id=job.id, action=HistoryAction.RECONCILE_JOB_REVERSAL)
        totals = job_material_totals(job)

        latest = self._load_latest_reconciliations(job, result, list(totals))
        if latest is None:
            return result

        # A job that stays delivered holds nothing once its stock comes back.
        holds_links = is_active_for_allocation(job.status)

        inventory_ids = list(totals)
        # Consumption recorded for items no longer linked to the job still
        # has to come back.
        inventory_ids.extend(i for i in latest if i not in totals)

        for inventory_id in inventory_ids:
            job_quantity = totals.get(inventory_id, ZERO)
            last = latest.get(inventory_id)
            if last is None or last.action != HistoryAction.RECONCILE_JOB:
                result.record(ItemOutcome(
                    inventory_id=inventory_id,
                    status=ItemOutcomeStatus.SKIPPED,
                    quantity=job_quantity,
                    message="Nothing outstanding to restore",
                ))
                continue

            restore = clamp_non_negative(-to_quantity(last.change_amount))
            try:
                item = self._require_item(snapshot, inventory_id)
                others = snapshot.allocated_excluding(inventory_id, job.id)
                previous_in_stock = to_quantity(item.in_stock)
                new_in_stock = previous_in_stock + restore

                entry = InventoryHistoryEntry(
                    inventory_id=inventory_id,
                    user_id=acting_user,
                    action=HistoryAction.RECONCILE_JOB_REVERSAL,
                    reason=f"Delivered status reversed for {job.label}; stock restored",
                    previous_in_stock=previous_in_stock,
                    new_in_stock=new_in_stock,
                    previous_available=_available(previous_in_stock, others),
                    new_available=_available(
                        new_in_stock, others + job_quantity if holds_links else others
                    ),
                    change_amount=restore,
                    related_job_id=job.id,
                    related_po=job.po,
                )
                stored, recorded = self._write_stock_and_history(item, entry, new_in_stock=new_in_stock)
            except ShopFloorException as e:
                self._record_failure(result, job, inventory_id, restore, e)
                continue

            result.record(ItemOutcome(
                inventory_id=inventory_id,
                status=ItemOutcomeStatus.SUCCEEDED,
                quantity=restore,
                previous_in_stock=previous_in_stock,
                new_in_stock=stored.in_stock,
                previous_available=entry.previous_available,
                new_available=entry.new_available,
                change_amount=restore,
                history_written=True,
            ))

        self._log_result(result, job, acting_user, "JOB_RECONCILIATION_REVERSED")
        return result

    def _log_result(
        self,
        result: ReconciliationResult,
        job: Job,
        acting_user: str,
        event: str,
    ) -> None:
        summary = {
            "succeeded": [o.inventory_id for o in result.succeeded_items],
            "failed": [o.inventory_id for o in result.failed_items],
            "skipped": [o.inventory_id for o in result.skipped_items],
        }
        if result.succeeded_items:
            audit_log(
                event,
                user_id=acting_user,
                resource_type="job",
                resource_id=job.id,
                details=summary,
            )
        if result.failed_items:
            logger.warning(
                f"{result.action.value} for {job.label} finished with "
                f"{len(result.failed_items)} failed item(s)",
                extra={"job_id": job.id, **summary},
            )

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def apply_job_status_change(
        self,
        job: Job,
        new_status: JobStatus,
        snapshot: InventorySnapshot,
        acting_user: str,
    ) -> JobStatusChangeResponse:
        """
        Persist a job's new status and reconcile inventory for it.

        - entering delivered consumes the job's materials
        - entering an active-allocation status from delivered, or from any
          other non-active status (delivered -> onHold -> inProgress),
          restores consumption that is still outstanding

        The status is written first; if that fails nothing is reconciled.
        `job` is the job as it was before the change.
        """
        new_status = JobStatus(new_status)
        previous_status = JobStatus(job.status)

        updated = self.store.update_job_status(job.id, new_status)
        logger.info(
            f"{job.label} status {previous_status.value} -> {new_status.value}",
            extra={"job_id": job.id, "user_id": acting_user},
        )

        reconciliation = None
        if new_status != previous_status:
            if new_status == JobStatus.DELIVERED:
                reconciliation = self.reconcile_job_delivered(job, snapshot, acting_user)
            elif is_active_for_allocation(new_status) and not is_active_for_allocation(previous_status):
                reconciliation = self.reverse_job_reconciliation(
                    job.with_status(new_status), snapshot, acting_user,
                )

        return JobStatusChangeResponse(
            job_id=updated.id,
            previous_status=previous_status,
            status=updated.status,
            reconciliation=reconciliation,
        )
