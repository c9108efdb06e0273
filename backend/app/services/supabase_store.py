"""
Supabase Inventory Store

Inventory store backed by the hosted backend's REST (PostgREST) interface.
Only the filters the engine needs are used: eq, in and ordering. This is not
a general query builder.

Compare-and-swap writes are expressed as extra `eq` filters on the PATCH; an
empty representation in the response means no row matched.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

import requests

from app.core.settings import settings
from app.db import mapping
from app.exceptions import (
    InventoryItemNotFoundError,
    JobNotFoundError,
    StockConflictError,
    StoreError,
)
from app.schemas.inventory import InventoryHistoryEntry, InventoryItem
from app.schemas.job import Job, JobMaterialLink, JobStatus
from app.services.inventory_store import RECONCILIATION_ACTIONS, InventoryStore, _skip_unreadable_rows
from app.services.quantities import format_quantity

logger = logging.getLogger(__name__)

JOB_SELECT = "id,job_code,name,po,status,job_inventory(id,inventory_id,quantity,unit)"


def _wire_value(value: Any) -> Any:
    """JSON-safe form of a row value"""
    if isinstance(value, Decimal):
        if value == value.to_integral_value():
            return int(value)
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _wire_row(row: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _wire_value(value) for key, value in row.items()}


class SupabaseInventoryStore(InventoryStore):
    """
    Inventory store over the hosted backend's REST API.

    Uses the service key, so row-level security does not apply; the acting
    user is recorded explicitly on every history row.
    """

    def __init__(
        self,
        base_url: str,
        service_key: str,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        if not base_url or not service_key:
            raise StoreError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be configured")
        self.rest_url = f"{base_url.rstrip('/')}/rest/v1"
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        })

    @classmethod
    def from_settings(cls) -> "SupabaseInventoryStore":
        return cls(
            settings.SUPABASE_URL,
            settings.SUPABASE_SERVICE_KEY,
            timeout=settings.SUPABASE_TIMEOUT_SECONDS,
        )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _request(
        self,
        method: str,
        table: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[Dict[str, Any]] = None,
        return_rows: bool = False,
    ) -> List[Dict[str, Any]]:
        headers = {}
        if return_rows:
            headers["Prefer"] = "return=representation"

        try:
            response = self.session.request(
                method,
                f"{self.rest_url}/{table}",
                params=params,
                json=json,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"{method} {table} failed: {e}")
            raise StoreError(f"Could not reach the inventory store ({table})")

        if response.status_code >= 400:
            logger.error(
                f"{method} {table} returned {response.status_code}",
                extra={"status_code": response.status_code, "body": response.text[:500]},
            )
            raise StoreError(
                f"Inventory store rejected {method} {table}",
                details={"status_code": response.status_code},
            )

        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_items(self) -> List[InventoryItem]:
        rows = self._request("GET", "inventory", params={"select": "*", "order": "name.asc"})
        return [mapping.item_from_row(row) for row in rows]

    def get_item(self, inventory_id: str) -> Optional[InventoryItem]:
        rows = self._request("GET", "inventory", params={"select": "*", "id": f"eq.{inventory_id}"})
        return mapping.item_from_row(rows[0]) if rows else None

    def list_jobs(self) -> List[Job]:
        rows = self._request("GET", "jobs", params={"select": JOB_SELECT, "order": "job_code.asc"})
        return _skip_unreadable_rows(rows, mapping.job_from_row, "job")

    def get_job(self, job_id: str) -> Optional[Job]:
        rows = self._request("GET", "jobs", params={"select": JOB_SELECT, "id": f"eq.{job_id}"})
        return mapping.job_from_row(rows[0]) if rows else None

    def list_history(
        self,
        inventory_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[InventoryHistoryEntry]:
        params = {"select": "*", "order": "created_at.desc", "limit": str(limit)}
        if inventory_id is not None:
            params["inventory_id"] = f"eq.{inventory_id}"
        rows = self._request("GET", "inventory_history", params=params)
        return _skip_unreadable_rows(rows, mapping.history_from_row, "history entry")

    def list_job_reconciliation_history(self, job_id: str) -> List[InventoryHistoryEntry]:
        actions = ",".join(action.value for action in RECONCILIATION_ACTIONS)
        rows = self._request("GET", "inventory_history", params={
            "select": "*",
            "related_job_id": f"eq.{job_id}",
            "action": f"in.({actions})",
            "order": "created_at.asc",
        })
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
        params = {"id": f"eq.{inventory_id}", "select": "*"}
        if expected_in_stock is not None:
            params["in_stock"] = f"eq.{format_quantity(expected_in_stock)}"
        if expected_on_order is not None:
            params["on_order"] = f"eq.{format_quantity(expected_on_order)}"

        body = _wire_row(mapping.stock_update_row(in_stock=in_stock, on_order=on_order))
        rows = self._request("PATCH", "inventory", params=params, json=body, return_rows=True)
        if rows:
            return mapping.item_from_row(rows[0])

        if self.get_item(inventory_id) is None:
            raise InventoryItemNotFoundError(inventory_id)
        raise StockConflictError(inventory_id)

    def append_history(self, entry: InventoryHistoryEntry) -> InventoryHistoryEntry:
        body = _wire_row(mapping.history_to_row(entry))
        rows = self._request("POST", "inventory_history", params={"select": "*"}, json=body, return_rows=True)
        if not rows:
            raise StoreError(f"History insert for {entry.inventory_id} returned no row")
        return mapping.history_from_row(rows[0])

    def update_job_status(self, job_id: str, status: JobStatus) -> Job:
        body = _wire_row({"status": JobStatus(status).value, "updated_at": datetime.utcnow()})
        rows = self._request(
            "PATCH", "jobs",
            params={"id": f"eq.{job_id}", "select": JOB_SELECT},
            json=body,
            return_rows=True,
        )
        if not rows:
            raise JobNotFoundError(job_id)
        return mapping.job_from_row(rows[0])

    def add_job_material(
        self,
        job_id: str,
        inventory_id: str,
        quantity: Decimal,
        unit: str,
    ) -> JobMaterialLink:
        body = _wire_row({
            "job_id": job_id,
            "inventory_id": inventory_id,
            "quantity": quantity,
            "unit": unit,
        })
        rows = self._request("POST", "job_inventory", params={"select": "*"}, json=body, return_rows=True)
        if not rows:
            raise StoreError(f"Job material insert for job {job_id} returned no row")
        return mapping.link_from_row(rows[0])
