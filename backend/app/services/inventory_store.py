"""
Inventory Store

The external collaborator behind the reconciliation engine: reads items and
jobs, writes stock columns, appends history. Two implementations exist:

- SqlAlchemyInventoryStore (this module): a SQLAlchemy session against our
  own database.
- SupabaseInventoryStore (app.services.supabase_store): the hosted backend's
  REST interface.

Every stock write accepts the previously observed values. When given, the
write only applies if the row still holds them (compare-and-swap); otherwise
StockConflictError is raised and nothing is written.

Stock writes and history appends are separate calls, each committed on its
own. There is no transaction spanning both.
"""
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from app.db import mapping
from app.exceptions import (
    InventoryItemNotFoundError,
    JobNotFoundError,
    StockConflictError,
    StoreError,
    ValidationError,
)
from app.models.inventory import Inventory, InventoryHistory
from app.models.job import Job as JobRow, JobInventory
from app.schemas.inventory import HistoryAction, InventoryHistoryEntry, InventoryItem
from app.schemas.job import Job, JobMaterialLink, JobStatus
from app.services.inventory_allocation import InventorySnapshot

logger = logging.getLogger(__name__)

RECONCILIATION_ACTIONS = (
    HistoryAction.RECONCILE_JOB,
    HistoryAction.RECONCILE_JOB_REVERSAL,
)


class InventoryStore(ABC):
    """Operations the inventory engine needs from wherever the data lives"""

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @abstractmethod
    def list_items(self) -> List[InventoryItem]:
        ...

    @abstractmethod
    def get_item(self, inventory_id: str) -> Optional[InventoryItem]:
        ...

    @abstractmethod
    def list_jobs(self) -> List[Job]:
        ...

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    def list_history(
        self,
        inventory_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[InventoryHistoryEntry]:
        """Newest first; all items when inventory_id is None"""

    @abstractmethod
    def list_job_reconciliation_history(self, job_id: str) -> List[InventoryHistoryEntry]:
        """reconcile_job / reconcile_job_reversal rows for a job, oldest first"""

    def load_snapshot(self) -> InventorySnapshot:
        return InventorySnapshot(self.list_items(), self.list_jobs())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    @abstractmethod
    def update_stock(
        self,
        inventory_id: str,
        *,
        in_stock: Optional[Decimal] = None,
        on_order: Optional[Decimal] = None,
        expected_in_stock: Optional[Decimal] = None,
        expected_on_order: Optional[Decimal] = None,
    ) -> InventoryItem:
        """
        Write in_stock and/or on_order.

        Returns:
            The item as stored after the write

        Raises:
            InventoryItemNotFoundError: no such row
            StockConflictError: expected values no longer match
            StoreError: the write failed
        """

    @abstractmethod
    def append_history(self, entry: InventoryHistoryEntry) -> InventoryHistoryEntry:
        """Insert one history row; returns it with id and created_at set"""

    @abstractmethod
    def update_job_status(self, job_id: str, status: JobStatus) -> Job:
        ...

    @abstractmethod
    def add_job_material(
        self,
        job_id: str,
        inventory_id: str,
        quantity: Decimal,
        unit: str,
    ) -> JobMaterialLink:
        ...


def _skip_unreadable_rows(rows, build, kind: str) -> list:
    """Map rows with `build`, dropping the ones it rejects with a warning"""
    built = []
    for row in rows:
        try:
            built.append(build(row))
        except ValidationError as e:
            logger.warning(
                f"Skipping {kind} with unreadable row: {e.message}",
                extra={"details": e.details},
            )
    return built


class SqlAlchemyInventoryStore(InventoryStore):
    """
    Inventory store over a SQLAlchemy session.

    Each write commits immediately. SQLAlchemy errors roll the session back
    and surface as StoreError.
    """

    def __init__(self, db: Session):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_items(self) -> List[InventoryItem]:
        rows = self.db.query(Inventory).order_by(Inventory.name).all()
        return [mapping.item_from_row(row) for row in rows]

    def get_item(self, inventory_id: str) -> Optional[InventoryItem]:
        row = self.db.query(Inventory).populate_existing().filter(
            Inventory.id == inventory_id
        ).first()
        return mapping.item_from_row(row) if row else None

    def list_jobs(self) -> List[Job]:
        rows = self.db.query(JobRow).options(
            selectinload(JobRow.materials)
        ).order_by(JobRow.job_code).all()
        return _skip_unreadable_rows(rows, mapping.job_from_row, "job")

    def get_job(self, job_id: str) -> Optional[Job]:
        row = self.db.query(JobRow).options(
            selectinload(JobRow.materials)
        ).filter(JobRow.id == job_id).first()
        return mapping.job_from_row(row) if row else None

    def list_history(
        self,
        inventory_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[InventoryHistoryEntry]:
        query = self.db.query(InventoryHistory)
        if inventory_id is not None:
            query = query.filter(InventoryHistory.inventory_id == inventory_id)
        rows = query.order_by(InventoryHistory.created_at.desc()).limit(limit).all()
        return _skip_unreadable_rows(rows, mapping.history_from_row, "history entry")

    def list_job_reconciliation_history(self, job_id: str) -> List[InventoryHistoryEntry]:
        try:
            rows = self.db.query(InventoryHistory).filter(
                InventoryHistory.related_job_id == job_id,
                InventoryHistory.action.in_([action.value for action in RECONCILIATION_ACTIONS]),
            ).order_by(InventoryHistory.created_at.asc()).all()
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to read reconciliation history for job {job_id}: {e}")
        return [mapping.history_from_row(row) for row in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def update_stock(
        self,
        inventory_id: str,
        *,
        in_stock: Optional[Decimal] = None,
        on_order: Optional[Decimal] = None,
        expected_in_stock: Optional[Decimal] = None,
        expected_on_order: Optional[Decimal] = None,
    ) -> InventoryItem:
        values = mapping.stock_update_row(in_stock=in_stock, on_order=on_order)

        query = self.db.query(Inventory).filter(Inventory.id == inventory_id)
        if expected_in_stock is not None:
            query = query.filter(Inventory.in_stock == expected_in_stock)
        if expected_on_order is not None:
            query = query.filter(Inventory.on_order == expected_on_order)

        try:
            updated = query.update(values, synchronize_session=False)
            if updated == 0:
                self.db.rollback()
                exists = self.db.query(Inventory.id).filter(Inventory.id == inventory_id).first()
                if not exists:
                    raise InventoryItemNotFoundError(inventory_id)
                raise StockConflictError(inventory_id)
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Stock write failed for {inventory_id}: {e}", exc_info=True)
            raise StoreError(f"Failed to update stock for inventory item {inventory_id}")

        item = self.get_item(inventory_id)
        if item is None:
            raise InventoryItemNotFoundError(inventory_id)
        return item

    def append_history(self, entry: InventoryHistoryEntry) -> InventoryHistoryEntry:
        row = InventoryHistory(**mapping.history_to_row(entry))
        if entry.created_at is not None:
            row.created_at = entry.created_at
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"History append failed for {entry.inventory_id}: {e}", exc_info=True)
            raise StoreError(f"Failed to record history for inventory item {entry.inventory_id}")
        return mapping.history_from_row(row)

    def update_job_status(self, job_id: str, status: JobStatus) -> Job:
        row = self.db.query(JobRow).filter(JobRow.id == job_id).first()
        if not row:
            raise JobNotFoundError(job_id)
        try:
            row.status = JobStatus(status).value
            row.updated_at = datetime.utcnow()
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Status write failed for job {job_id}: {e}", exc_info=True)
            raise StoreError(f"Failed to update status for job {job_id}")
        return self.get_job(job_id)

    def add_job_material(
        self,
        job_id: str,
        inventory_id: str,
        quantity: Decimal,
        unit: str,
    ) -> JobMaterialLink:
        row = JobInventory(
            job_id=job_id,
            inventory_id=inventory_id,
            quantity=quantity,
            unit=unit,
        )
        try:
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Job material link failed for job {job_id}: {e}", exc_info=True)
            raise StoreError(f"Failed to link inventory item {inventory_id} to job {job_id}")
        return mapping.link_from_row(row)
