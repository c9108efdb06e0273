"""
Job Pydantic Schemas

Store-agnostic view of the job board, limited to what inventory allocation
needs: status and material links.
"""
from pydantic import BaseModel, Field
from typing import Optional, List
from decimal import Decimal
from enum import Enum


# ============================================================================
# Enums
# ============================================================================

class JobStatus(str, Enum):
    """Job board status (wire values are the hosted backend's strings)"""
    TO_BE_QUOTED = "toBeQuoted"
    QUOTED = "quoted"
    RFQ_RECEIVED = "rfqReceived"
    RFQ_SENT = "rfqSent"
    POD = "pod"
    PENDING = "pending"
    RUSH = "rush"
    IN_PROGRESS = "inProgress"
    QUALITY_CONTROL = "qualityControl"
    FINISHED = "finished"
    DELIVERED = "delivered"
    ON_HOLD = "onHold"
    WAITING_FOR_PAYMENT = "waitingForPayment"
    PAID = "paid"
    PROJECT_COMPLETED = "projectCompleted"


# ============================================================================
# Domain entities
# ============================================================================

class JobMaterialLink(BaseModel):
    """Quantity of one inventory item committed to (or used by) a job"""
    id: Optional[str] = None
    inventory_id: str
    quantity: Decimal = Decimal("0")
    unit: str = "units"


class Job(BaseModel):
    """Job as seen by the inventory engine"""
    id: str
    job_code: Optional[int] = None
    name: str = ""
    po: Optional[str] = None
    status: JobStatus
    material_links: List[JobMaterialLink] = Field(default_factory=list)

    @property
    def label(self) -> str:
        """Human label used in history reasons"""
        if self.job_code is not None:
            return f"Job #{self.job_code}"
        return f"Job {self.id}"

    def with_status(self, status: JobStatus) -> "Job":
        return self.model_copy(update={"status": status})


# ============================================================================
# API schemas
# ============================================================================

class JobResponse(BaseModel):
    """Job with its material links"""
    id: str
    job_code: Optional[int] = None
    name: str
    po: Optional[str] = None
    status: JobStatus
    allocates_inventory: bool
    material_links: List[JobMaterialLink]


class JobStatusUpdate(BaseModel):
    """Move a job to a new status"""
    status: JobStatus
