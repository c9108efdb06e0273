"""
ORM models
"""
from app.models.inventory import Inventory, InventoryHistory
from app.models.job import Job, JobInventory

__all__ = ["Inventory", "InventoryHistory", "Job", "JobInventory"]
