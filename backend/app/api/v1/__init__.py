"""
API v1 Router - ShopFloor Inventory
"""
from fastapi import APIRouter
from app.api.v1.endpoints import inventory, jobs

router = APIRouter()

# Inventory (stock position, history, stock operations)
router.include_router(
    inventory.router,
    prefix="/inventory",
    tags=["inventory"]
)

# Jobs (status changes drive reconciliation)
router.include_router(
    jobs.router,
    prefix="/jobs",
    tags=["jobs"]
)
