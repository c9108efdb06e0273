"""
Job models

Only the columns the inventory engine reads are mapped here; the job board
(comments, attachments, checklists, scheduling) owns the rest of the row.
"""
import uuid
from datetime import datetime

from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from app.db.base import Base


def _uuid() -> str:
    return str(uuid.uuid4())


class Job(Base):
    """
    Shop job.

    Status drives allocation: materials linked to a job count against
    inventory while the status is in the active-allocation set.
    """
    __tablename__ = "jobs"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_code = Column(Integer, nullable=False, index=True)  # Shown as "Job #1234"
    name = Column(String(300), nullable=False, default="")
    po = Column(String(100), nullable=True)

    # pending, rush, inProgress, qualityControl, finished, delivered, onHold, ...
    status = Column(String(50), nullable=False, default="pending", index=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    # Relationships
    materials = relationship("JobInventory", back_populates="job", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Job #{self.job_code}: {self.status}>"


class JobInventory(Base):
    """Quantity of an inventory item needed (or used) by a job"""
    __tablename__ = "job_inventory"

    id = Column(String(36), primary_key=True, default=_uuid)
    job_id = Column(String(36), ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    inventory_id = Column(String(36), ForeignKey("inventory.id"), nullable=False, index=True)
    quantity = Column(Numeric(18, 4), nullable=False)
    unit = Column(String(50), nullable=False, default="units")

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    job = relationship("Job", back_populates="materials")
    inventory = relationship("Inventory", back_populates="job_links")

    def __repr__(self):
        return f"<JobInventory {self.quantity} {self.unit} of {self.inventory_id}>"
