"""
Unit tests for the reconciliation service

Runs against an in-memory InventoryStore so every write, conflict and
failure can be observed and injected.
"""
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List

from app.exceptions import (
    InsufficientAvailableError,
    InventoryItemNotFoundError,
    JobNotFoundError,
    StockConflictError,
    StoreError,
    ValidationError,
)
from app.schemas.inventory import HistoryAction, InventoryHistoryEntry, InventoryItem
from app.schemas.job import Job, JobMaterialLink, JobStatus
from app.services.inventory_reconciliation import InventoryReconciliationService
from app.services.inventory_store import RECONCILIATION_ACTIONS, InventoryStore

USER = "4f6d8a52-1c7e-4b0e-9a51-0d2f3c9e7b11"


class InMemoryStore(InventoryStore):
    """InventoryStore over dicts with switchable failures"""

    def __init__(self, items: List[InventoryItem], jobs: List[Job]):
        self.items: Dict[str, InventoryItem] = {item.id: item for item in items}
        self.jobs: Dict[str, Job] = {job.id: job for job in jobs}
        self.history: List[InventoryHistoryEntry] = []
        self.stock_writes = 0
        self.fail_stock_write_for = set()
        self.fail_history_for = set()
        self.fail_history_read = False
        self._clock = datetime(2026, 1, 1, 8, 0, 0)

    # Reads

    def list_items(self):
        return sorted(self.items.values(), key=lambda item: item.name)

    def get_item(self, inventory_id):
        return self.items.get(inventory_id)

    def list_jobs(self):
        return list(self.jobs.values())

    def get_job(self, job_id):
        return self.jobs.get(job_id)

    def list_history(self, inventory_id=None, limit=50):
        rows = [e for e in self.history if inventory_id is None or e.inventory_id == inventory_id]
        return list(reversed(rows))[:limit]

    def list_job_reconciliation_history(self, job_id):
        if self.fail_history_read:
            raise StoreError("history unavailable")
        return [
            e for e in self.history
            if e.related_job_id == job_id and e.action in RECONCILIATION_ACTIONS
        ]

    # Writes

    def update_stock(self, inventory_id, *, in_stock=None, on_order=None,
                     expected_in_stock=None, expected_on_order=None):
        if inventory_id in self.fail_stock_write_for:
            raise StoreError(f"write rejected for {inventory_id}")
        item = self.items.get(inventory_id)
        if item is None:
            raise InventoryItemNotFoundError(inventory_id)
        if expected_in_stock is not None and item.in_stock != expected_in_stock:
            raise StockConflictError(inventory_id)
        if expected_on_order is not None and item.on_order != expected_on_order:
            raise StockConflictError(inventory_id)

        update = {}
        if in_stock is not None:
            update["in_stock"] = in_stock
        if on_order is not None:
            update["on_order"] = on_order
        self.items[inventory_id] = item.model_copy(update=update)
        self.stock_writes += 1
        return self.items[inventory_id]

    def append_history(self, entry):
        if entry.inventory_id in self.fail_history_for:
            raise StoreError("history insert failed")
        self._clock += timedelta(seconds=1)
        stored = entry.model_copy(update={"id": f"h{len(self.history) + 1}", "created_at": self._clock})
        self.history.append(stored)
        return stored

    def update_job_status(self, job_id, status):
        job = self.jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        self.jobs[job_id] = job.with_status(status)
        return self.jobs[job_id]

    def add_job_material(self, job_id, inventory_id, quantity, unit):
        link = JobMaterialLink(id=f"l{inventory_id}", inventory_id=inventory_id, quantity=quantity, unit=unit)
        job = self.jobs[job_id]
        self.jobs[job_id] = job.model_copy(update={"material_links": job.material_links + [link]})
        return link


def item(item_id="fabric", in_stock=100, on_order=0, unit="yards"):
    return InventoryItem(
        id=item_id,
        name=item_id.title(),
        in_stock=Decimal(str(in_stock)),
        on_order=Decimal(str(on_order)),
        unit=unit,
    )


def job(job_id="job-1", status=JobStatus.IN_PROGRESS, links=(("fabric", 30),), job_code=1042):
    return Job(
        id=job_id,
        job_code=job_code,
        name="Boat cushions",
        po="PO-77",
        status=status,
        material_links=[
            JobMaterialLink(inventory_id=inventory_id, quantity=Decimal(str(quantity)))
            for inventory_id, quantity in links
        ],
    )


def make_service(items, jobs, compare_and_swap=True):
    store = InMemoryStore(items, jobs)
    return store, InventoryReconciliationService(store, compare_and_swap=compare_and_swap)


def history_for(store, inventory_id):
    return [e for e in store.history if e.inventory_id == inventory_id]


# ============================================================================
# Delivery
# ============================================================================

class TestDelivery:

    def test_delivery_consumes_stock_and_records_history(self):
        """100 in stock, job in progress needs 30, job delivered"""
        store, service = make_service([item(in_stock=100)], [job()])
        snapshot = store.load_snapshot()

        response = service.apply_job_status_change(
            snapshot.get_job("job-1"), JobStatus.DELIVERED, snapshot, USER,
        )

        assert response.previous_status == JobStatus.IN_PROGRESS
        assert response.status == JobStatus.DELIVERED
        result = response.reconciliation
        assert result.action == HistoryAction.RECONCILE_JOB
        assert [o.inventory_id for o in result.succeeded_items] == ["fabric"]
        assert result.ok

        assert store.items["fabric"].in_stock == Decimal("70")
        [entry] = store.history
        assert entry.action == HistoryAction.RECONCILE_JOB
        assert entry.change_amount == Decimal("-30")
        assert entry.previous_in_stock == Decimal("100")
        assert entry.new_in_stock == Decimal("70")
        assert entry.previous_available == Decimal("70")
        assert entry.new_available == Decimal("70")
        assert entry.related_job_id == "job-1"
        assert entry.related_po == "PO-77"
        assert entry.user_id == USER
        assert entry.reason == "Materials used for Job #1042 (Delivered)"

        after = store.load_snapshot()
        assert after.allocated_for("fabric") == Decimal("0")
        assert after.available_for("fabric") == Decimal("70")

    def test_previous_available_counts_other_jobs(self):
        store, service = make_service(
            [item(in_stock=100)],
            [job(), job("job-2", JobStatus.PENDING, (("fabric", 10),), job_code=1043)],
        )
        snapshot = store.load_snapshot()

        service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        [entry] = store.history
        assert entry.previous_available == Decimal("60")
        assert entry.new_available == Decimal("60")

    def test_delivery_clamps_at_zero(self):
        """20 in stock, job needs 50"""
        store, service = make_service([item(in_stock=20)], [job(links=(("fabric", 50),))])
        snapshot = store.load_snapshot()

        result = service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        assert result.succeeded_items[0].new_in_stock == Decimal("0")
        assert store.items["fabric"].in_stock == Decimal("0")
        assert store.history[0].change_amount == Decimal("-20")

    def test_duplicate_links_are_summed(self):
        store, service = make_service(
            [item(in_stock=100)], [job(links=(("fabric", 10), ("fabric", 5)))],
        )
        snapshot = store.load_snapshot()

        service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        assert store.items["fabric"].in_stock == Decimal("85")
        assert len(store.history) == 1

    def test_zero_quantity_links_are_skipped(self):
        store, service = make_service([item()], [job(links=(("fabric", 0),))])
        snapshot = store.load_snapshot()

        result = service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        assert [o.inventory_id for o in result.skipped_items] == ["fabric"]
        assert store.stock_writes == 0
        assert store.history == []

    def test_delivering_twice_consumes_once(self):
        store, service = make_service([item(in_stock=100)], [job()])
        snapshot = store.load_snapshot()
        service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        snapshot = store.load_snapshot()
        second = service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        assert second.succeeded_items == []
        assert [o.inventory_id for o in second.skipped_items] == ["fabric"]
        assert store.items["fabric"].in_stock == Decimal("70")
        assert len(store.history) == 1


# ============================================================================
# Reversal
# ============================================================================

class TestReversal:

    def deliver(self, store, service, job_id="job-1"):
        snapshot = store.load_snapshot()
        service.apply_job_status_change(snapshot.get_job(job_id), JobStatus.DELIVERED, snapshot, USER)

    def test_reopening_delivered_job_restores_stock(self):
        store, service = make_service([item(in_stock=100)], [job()])
        self.deliver(store, service)

        snapshot = store.load_snapshot()
        response = service.apply_job_status_change(
            snapshot.get_job("job-1"), JobStatus.IN_PROGRESS, snapshot, USER,
        )

        result = response.reconciliation
        assert result.action == HistoryAction.RECONCILE_JOB_REVERSAL
        assert store.items["fabric"].in_stock == Decimal("100")
        reversal = store.history[-1]
        assert reversal.action == HistoryAction.RECONCILE_JOB_REVERSAL
        assert reversal.change_amount == Decimal("30")
        assert reversal.previous_in_stock == Decimal("70")
        assert reversal.new_in_stock == Decimal("100")
        assert reversal.previous_available == Decimal("70")
        assert reversal.new_available == Decimal("70")
        assert reversal.reason == "Delivered status reversed for Job #1042; stock restored"

        after = store.load_snapshot()
        assert after.allocated_for("fabric") == Decimal("30")

    def test_reversal_restores_only_what_clamped_delivery_removed(self):
        """20 in stock, job needed 50: reversal gives back 20, not 50"""
        store, service = make_service([item(in_stock=20)], [job(links=(("fabric", 50),))])
        self.deliver(store, service)
        assert store.items["fabric"].in_stock == Decimal("0")

        snapshot = store.load_snapshot()
        result = service.reverse_job_reconciliation(snapshot.get_job("job-1"), snapshot, USER)

        assert result.succeeded_items[0].change_amount == Decimal("20")
        assert store.items["fabric"].in_stock == Decimal("20")

    def test_reversal_on_job_still_delivered_does_not_count_its_links(self):
        store, service = make_service(
            [item(in_stock=100)],
            [job(), job("job-2", JobStatus.PENDING, links=(("fabric", 10),), job_code=1043)],
        )
        self.deliver(store, service)

        snapshot = store.load_snapshot()
        delivered = snapshot.get_job("job-1")
        assert delivered.status == JobStatus.DELIVERED
        result = service.reverse_job_reconciliation(delivered, snapshot, USER)

        [outcome] = result.succeeded_items
        assert outcome.new_in_stock == Decimal("100")
        assert outcome.new_available == Decimal("90")
        assert store.history[-1].new_available == Decimal("90")
        assert store.load_snapshot().available_for("fabric") == Decimal("90")

    def test_reversal_is_idempotent(self):
        store, service = make_service([item(in_stock=100)], [job()])
        self.deliver(store, service)

        snapshot = store.load_snapshot()
        service.reverse_job_reconciliation(snapshot.get_job("job-1"), snapshot, USER)
        snapshot = store.load_snapshot()
        second = service.reverse_job_reconciliation(snapshot.get_job("job-1"), snapshot, USER)

        assert second.succeeded_items == []
        assert [o.inventory_id for o in second.skipped_items] == ["fabric"]
        assert store.items["fabric"].in_stock == Decimal("100")
        assert len(store.history) == 2

    def test_reversal_without_delivery_writes_nothing(self):
        store, service = make_service([item()], [job()])
        snapshot = store.load_snapshot()

        result = service.reverse_job_reconciliation(snapshot.get_job("job-1"), snapshot, USER)

        assert result.succeeded_items == []
        assert store.stock_writes == 0
        assert store.history == []

    def test_deliver_reverse_deliver_cycle(self):
        store, service = make_service([item(in_stock=100)], [job()])
        self.deliver(store, service)
        snapshot = store.load_snapshot()
        service.apply_job_status_change(snapshot.get_job("job-1"), JobStatus.PENDING, snapshot, USER)
        self.deliver(store, service)

        assert store.items["fabric"].in_stock == Decimal("70")
        assert [e.action for e in store.history] == [
            HistoryAction.RECONCILE_JOB,
            HistoryAction.RECONCILE_JOB_REVERSAL,
            HistoryAction.RECONCILE_JOB,
        ]

    def test_on_hold_detour_restores_on_reactivation(self):
        """delivered -> onHold does nothing; onHold -> inProgress restores"""
        store, service = make_service([item(in_stock=100)], [job()])
        self.deliver(store, service)

        snapshot = store.load_snapshot()
        hold = service.apply_job_status_change(snapshot.get_job("job-1"), JobStatus.ON_HOLD, snapshot, USER)
        assert hold.reconciliation is None
        assert store.items["fabric"].in_stock == Decimal("70")

        snapshot = store.load_snapshot()
        service.apply_job_status_change(snapshot.get_job("job-1"), JobStatus.IN_PROGRESS, snapshot, USER)
        assert store.items["fabric"].in_stock == Decimal("100")

    def test_moving_between_active_statuses_does_not_reconcile(self):
        store, service = make_service([item()], [job(status=JobStatus.PENDING)])
        snapshot = store.load_snapshot()

        response = service.apply_job_status_change(
            snapshot.get_job("job-1"), JobStatus.IN_PROGRESS, snapshot, USER,
        )

        assert response.reconciliation is None
        assert store.jobs["job-1"].status == JobStatus.IN_PROGRESS
        assert store.history == []

    def test_delivered_to_billing_status_keeps_consumption(self):
        store, service = make_service([item(in_stock=100)], [job()])
        self.deliver(store, service)

        snapshot = store.load_snapshot()
        response = service.apply_job_status_change(snapshot.get_job("job-1"), JobStatus.PAID, snapshot, USER)

        assert response.reconciliation is None
        assert store.items["fabric"].in_stock == Decimal("70")


# ============================================================================
# Partial failure
# ============================================================================

class TestPartialFailure:

    def three_item_job(self):
        return make_service(
            [item("fabric", 100), item("foam", 50), item("cord", 10)],
            [job(links=(("fabric", 10), ("foam", 5), ("cord", 1)))],
        )

    def test_failed_item_does_not_stop_the_rest(self):
        store, service = self.three_item_job()
        store.fail_stock_write_for.add("foam")
        snapshot = store.load_snapshot()

        result = service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        assert not result.ok
        assert [o.inventory_id for o in result.succeeded_items] == ["fabric", "cord"]
        assert [o.inventory_id for o in result.failed_items] == ["foam"]
        assert store.items["fabric"].in_stock == Decimal("90")
        assert store.items["foam"].in_stock == Decimal("50")
        assert store.items["cord"].in_stock == Decimal("9")
        assert history_for(store, "foam") == []

    def test_item_missing_from_snapshot_fails_alone(self):
        store, service = make_service([item("fabric", 100)], [job(links=(("fabric", 10), ("ghost", 3)))])
        snapshot = store.load_snapshot()

        result = service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        assert [o.inventory_id for o in result.failed_items] == ["ghost"]
        assert store.items["fabric"].in_stock == Decimal("90")

    def test_unreadable_history_fails_every_item(self):
        store, service = self.three_item_job()
        store.fail_history_read = True
        snapshot = store.load_snapshot()

        result = service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        assert len(result.failed_items) == 3
        assert store.stock_writes == 0

    def test_failed_history_append_is_reported(self):
        store, service = self.three_item_job()
        store.fail_history_for.add("cord")
        snapshot = store.load_snapshot()

        result = service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        [failed] = result.failed_items
        assert failed.inventory_id == "cord"
        assert failed.new_in_stock == Decimal("9")
        assert failed.history_written is False

    def test_stale_snapshot_conflict_fails_item(self):
        store, service = self.three_item_job()
        snapshot = store.load_snapshot()
        store.items["fabric"] = store.items["fabric"].model_copy(update={"in_stock": Decimal("95")})

        result = service.reconcile_job_delivered(snapshot.get_job("job-1"), snapshot, USER)

        assert [o.inventory_id for o in result.failed_items] == ["fabric"]
        assert store.items["fabric"].in_stock == Decimal("95")
        assert history_for(store, "fabric") == []


# ============================================================================
# Manual adjustment
# ============================================================================

class TestManualAdjustment:

    def test_adjust_records_change(self):
        store, service = make_service([item(in_stock=100)], [job(status=JobStatus.PENDING)])

        result = service.adjust_stock_manually("fabric", Decimal("90"), "Cycle count", USER, store.load_snapshot())

        assert result.changed is True
        assert result.in_stock == Decimal("90")
        assert result.allocated == Decimal("30")
        assert result.available == Decimal("60")
        entry = result.history_entry
        assert entry.action == HistoryAction.MANUAL_ADJUST
        assert entry.change_amount == Decimal("-10")
        assert entry.previous_available == Decimal("70")
        assert entry.new_available == Decimal("60")
        assert entry.reason == "Cycle count"

    def test_default_reason(self):
        store, service = make_service([item(in_stock=5)], [])

        service.adjust_stock_manually("fabric", 8, None, USER, store.load_snapshot())

        assert store.history[0].reason == "Stock adjusted manually"

    def test_unchanged_value_is_a_no_op(self):
        store, service = make_service([item(in_stock=100)], [])

        result = service.adjust_stock_manually("fabric", Decimal("100.000"), "no change", USER, store.load_snapshot())

        assert result.changed is False
        assert result.history_entry is None
        assert store.stock_writes == 0
        assert store.history == []

    def test_negative_value_rejected(self):
        store, service = make_service([item()], [])

        with pytest.raises(ValidationError):
            service.adjust_stock_manually("fabric", -1, None, USER, store.load_snapshot())
        assert store.stock_writes == 0

    def test_unknown_item(self):
        store, service = make_service([item()], [])

        with pytest.raises(InventoryItemNotFoundError):
            service.adjust_stock_manually("nope", 1, None, USER, store.load_snapshot())

    def test_write_failure_leaves_no_history(self):
        store, service = make_service([item()], [])
        store.fail_stock_write_for.add("fabric")

        with pytest.raises(StoreError):
            service.adjust_stock_manually("fabric", 1, None, USER, store.load_snapshot())
        assert store.history == []

    def test_conflict_when_row_changed_since_snapshot(self):
        store, service = make_service([item(in_stock=100)], [])
        snapshot = store.load_snapshot()
        store.items["fabric"] = store.items["fabric"].model_copy(update={"in_stock": Decimal("80")})

        with pytest.raises(StockConflictError):
            service.adjust_stock_manually("fabric", 50, None, USER, snapshot)
        assert store.items["fabric"].in_stock == Decimal("80")
        assert store.history == []

    def test_conflict_check_can_be_disabled(self):
        store, service = make_service([item(in_stock=100)], [], compare_and_swap=False)
        snapshot = store.load_snapshot()
        store.items["fabric"] = store.items["fabric"].model_copy(update={"in_stock": Decimal("80")})

        service.adjust_stock_manually("fabric", 50, None, USER, snapshot)

        assert store.items["fabric"].in_stock == Decimal("50")

    def test_history_failure_after_write_is_raised(self):
        store, service = make_service([item(in_stock=100)], [])
        store.fail_history_for.add("fabric")

        with pytest.raises(StoreError) as exc_info:
            service.adjust_stock_manually("fabric", 50, None, USER, store.load_snapshot())

        assert exc_info.value.details["stock_written"] is True
        assert store.items["fabric"].in_stock == Decimal("50")


# ============================================================================
# Orders
# ============================================================================

class TestOrders:

    def test_order_then_partial_receipt(self):
        store, service = make_service([item(in_stock=40)], [])

        ordered = service.mark_ordered("fabric", 25, USER, store.load_snapshot(), related_po="PO-9")
        assert ordered.on_order == Decimal("25")
        assert ordered.in_stock == Decimal("40")

        received = service.receive_order("fabric", 10, USER, store.load_snapshot(), related_po="PO-9")
        assert received.on_order == Decimal("15")
        assert received.in_stock == Decimal("50")

        placed, receipt = store.history
        assert placed.action == HistoryAction.ORDER_PLACED
        assert placed.change_amount == Decimal("0")
        assert placed.previous_in_stock == placed.new_in_stock == Decimal("40")
        assert placed.reason == "Ordered 25 yards"
        assert placed.related_po == "PO-9"
        assert receipt.action == HistoryAction.ORDER_RECEIVED
        assert receipt.change_amount == Decimal("10")
        assert receipt.new_in_stock == Decimal("50")
        assert receipt.reason == "Received 10 yards"

    def test_receiving_more_than_ordered_clamps_on_order(self):
        store, service = make_service([item(in_stock=0, on_order=5)], [])

        result = service.receive_order("fabric", 8, USER, store.load_snapshot())

        assert result.on_order == Decimal("0")
        assert result.in_stock == Decimal("8")

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_non_positive_order_rejected(self, quantity):
        store, service = make_service([item()], [])

        with pytest.raises(ValidationError):
            service.mark_ordered("fabric", quantity, USER, store.load_snapshot())
        with pytest.raises(ValidationError):
            service.receive_order("fabric", quantity, USER, store.load_snapshot())
        assert store.history == []

    def test_conflicting_on_order_rejected(self):
        store, service = make_service([item(on_order=0)], [])
        snapshot = store.load_snapshot()
        store.items["fabric"] = store.items["fabric"].model_copy(update={"on_order": Decimal("10")})

        with pytest.raises(StockConflictError):
            service.mark_ordered("fabric", 5, USER, snapshot)
        assert store.items["fabric"].on_order == Decimal("10")

    def test_receipt_rounded_to_stored_scale_keeps_item_adjustable(self):
        store, service = make_service([item(in_stock=4)], [])

        received = service.receive_order("fabric", "0.00005", USER, store.load_snapshot())
        assert received.in_stock == Decimal("4.0001")
        assert store.history[0].change_amount == Decimal("0.0001")

        adjusted = service.adjust_stock_manually("fabric", 7, "Cycle count", USER, store.load_snapshot())
        assert adjusted.in_stock == Decimal("7")

    def test_receipt_below_stored_scale_rejected(self):
        store, service = make_service([item(in_stock=4)], [])

        with pytest.raises(ValidationError):
            service.receive_order("fabric", "0.00001", USER, store.load_snapshot())
        assert store.items["fabric"].in_stock == Decimal("4")
        assert store.history == []


# ============================================================================
# Allocation
# ============================================================================

class TestAllocateToJob:

    def test_allocation_links_material_and_records_history(self):
        store, service = make_service([item(in_stock=100)], [job(status=JobStatus.PENDING, links=())])

        result = service.allocate_to_job("job-1", "fabric", 40, USER, store.load_snapshot(), notes="Hull 2")

        assert result.allocated == Decimal("40")
        assert result.available == Decimal("60")
        assert store.items["fabric"].in_stock == Decimal("100")
        assert store.stock_writes == 0
        [entry] = store.history
        assert entry.action == HistoryAction.ALLOCATED_TO_JOB
        assert entry.change_amount == Decimal("0")
        assert entry.previous_available == Decimal("100")
        assert entry.new_available == Decimal("60")
        assert entry.related_job_id == "job-1"
        assert entry.reason == "Hull 2"
        assert store.load_snapshot().allocated_for("fabric") == Decimal("40")

    @pytest.mark.parametrize("notes", [None, "", "   "])
    def test_blank_notes_use_generated_reason(self, notes):
        store, service = make_service([item(in_stock=100)], [job(status=JobStatus.PENDING, links=())])

        service.allocate_to_job("job-1", "fabric", 40, USER, store.load_snapshot(), notes=notes)

        assert store.history[0].reason == "Allocated 40 yards to Job #1042"

    def test_notes_are_trimmed(self):
        store, service = make_service([item(in_stock=100)], [job(status=JobStatus.PENDING, links=())])

        service.allocate_to_job("job-1", "fabric", 5, USER, store.load_snapshot(), notes="  Hull 2 port side \n")

        assert store.history[0].reason == "Hull 2 port side"

    def test_allocation_beyond_available_rejected(self):
        store, service = make_service(
            [item(in_stock=50)],
            [job(status=JobStatus.PENDING), job("job-2", JobStatus.PENDING, links=(), job_code=1043)],
        )

        with pytest.raises(InsufficientAvailableError):
            service.allocate_to_job("job-2", "fabric", 21, USER, store.load_snapshot())
        assert store.jobs["job-2"].material_links == []
        assert store.history == []

    def test_unknown_job(self):
        store, service = make_service([item()], [])

        with pytest.raises(JobNotFoundError):
            service.allocate_to_job("job-9", "fabric", 1, USER, store.load_snapshot())


# ============================================================================
# Non-negativity across a sequence
# ============================================================================

def test_stock_never_negative_across_operations():
    store, service = make_service(
        [item(in_stock=10)],
        [job(links=(("fabric", 25),)), job("job-2", JobStatus.PENDING, (("fabric", 40),), job_code=7)],
    )

    steps = [
        lambda s: service.mark_ordered("fabric", 5, USER, s),
        lambda s: service.receive_order("fabric", 12, USER, s),
        lambda s: service.apply_job_status_change(s.get_job("job-1"), JobStatus.DELIVERED, s, USER),
        lambda s: service.apply_job_status_change(s.get_job("job-2"), JobStatus.DELIVERED, s, USER),
        lambda s: service.adjust_stock_manually("fabric", 0, "Scrapped", USER, s),
        lambda s: service.apply_job_status_change(s.get_job("job-1"), JobStatus.RUSH, s, USER),
    ]
    for step in steps:
        step(store.load_snapshot())
        current = store.items["fabric"]
        assert current.in_stock >= 0
        assert current.on_order >= 0

    for entry in store.history:
        assert entry.new_in_stock >= 0
