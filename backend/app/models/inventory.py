"""
Inventory models

Stocked materials and supplies plus their append-only stock history.

The `available` column is a cache kept for older readers of the table. It is
never consulted for decisions: available stock is always recomputed from
`in_stock` and the live job allocations (see app.services.inventory_allocation).
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, String, Numeric, Boolean, DateTime, ForeignKey, Text, Index
from sqlalchemy.orm import relationship

from app.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Inventory(Base):
    """
    A stocked material or supply (fabric, foam, trim, filament, hardware...)
    """
    __tablename__ = "inventory"

    id = Column(String(36), primary_key=True, default=_uuid)

    # Basic info
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, default="miscSupplies", index=True)
    unit = Column(String(50), nullable=False, default="units")  # yards, sheets, each...
    price = Column(Numeric(18, 4), nullable=True)  # Price per unit

    # Stock levels
    in_stock = Column(Numeric(18, 4), nullable=False, default=0)  # Physical quantity on hand
    available = Column(Numeric(18, 4), nullable=False, default=0)  # Stale cache, see module docstring
    disposed = Column(Numeric(18, 4), nullable=False, default=0)
    on_order = Column(Numeric(18, 4), nullable=False, default=0)  # Requested from vendors, not received
    reorder_point = Column(Numeric(18, 4), nullable=True)

    # Location / sourcing
    barcode = Column(String(100), nullable=True, index=True)
    bin_location = Column(String(20), nullable=True)  # A4c = Rack A, Shelf 4, Section c
    vendor = Column(String(200), nullable=True)
    has_image = Column(Boolean, nullable=False, default=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    job_links = relationship("JobInventory", back_populates="inventory")
    history = relationship("InventoryHistory", back_populates="inventory", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Inventory {self.name}: {self.in_stock} {self.unit}>"


class InventoryHistory(Base):
    """
    Immutable record of one stock-affecting event.

    Rows are only ever inserted. Column names match the hosted backend's
    inventory_history table so existing history stays readable.
    """
    __tablename__ = "inventory_history"
    __table_args__ = (
        Index("idx_inventory_history_inventory", "inventory_id"),
        Index("idx_inventory_history_created", "created_at"),
        Index("idx_inventory_history_related_job", "related_job_id"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    inventory_id = Column(String(36), ForeignKey("inventory.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), nullable=False)

    # manual_adjust, order_placed, order_received, reconcile_job,
    # reconcile_job_reversal, allocated_to_job; older rows may also hold
    # reconcile_po or stock_correction
    action = Column(String(50), nullable=False)
    reason = Column(Text, nullable=False, default="")

    # Snapshots at event time
    previous_in_stock = Column(Numeric(18, 4), nullable=False)
    new_in_stock = Column(Numeric(18, 4), nullable=False)
    previous_available = Column(Numeric(18, 4), nullable=True)
    new_available = Column(Numeric(18, 4), nullable=True)
    change_amount = Column(Numeric(18, 4), nullable=False)

    # References
    related_job_id = Column(String(36), ForeignKey("jobs.id"), nullable=True)
    related_po = Column(String(100), nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    inventory = relationship("Inventory", back_populates="history")

    def __repr__(self):
        return f"<InventoryHistory {self.action}: {self.change_amount} on {self.inventory_id}>"
