"""
database/repositories/backoffice_gateway.py

Access to the remote back-office API (source of truth for orders, inventory
and client transactions).

Public API
----------
- BackofficeGateway: the async interface the engine depends on
- HttpBackofficeGateway: requests-based implementation

Raw records are translated to canonical records (field_maps) here, once.
The client statement comes back as the report's raw rows ({"entries", "totals"}):
the ledger normalizer owns their alias tables.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import requests

from ..records import InventoryBatch, Order, OrderLine
from ...config import ApiSettings
from ...constants import FLOW_DELIVERY, FLOW_RECEIVING, ORDER_KIND_BY_FLOW
from ...utils.errors import IntegrationError
from ...utils.helpers import fmt_qty, norm_id
from .field_maps import batch_from_raw, line_from_raw, order_from_raw

_log = logging.getLogger(__name__)

__all__ = ["BackofficeGateway", "HttpBackofficeGateway"]


class BackofficeGateway(Protocol):
    async def fetch_pending_orders(self, flow: str) -> List[Order]: ...

    async def fetch_order_lines_for_order(self, order_id, flow: str) -> List[OrderLine]: ...

    async def fetch_inventory_batches(
        self, warehouse_id, variant_id=None, packaging_type_id=None
    ) -> List[InventoryBatch]: ...

    async def fetch_client_transactions(
        self, client_id, date_from: Optional[str] = None, date_to: Optional[str] = None
    ) -> Dict[str, Any]: ...

    async def fetch_warehouses(self) -> List[dict]: ...

    async def submit_fulfillment(self, payload: dict, flow: str) -> str: ...


# Endpoints per flow
_PENDING_ENDPOINTS = {
    FLOW_RECEIVING: "purchase_orders/get_pending_for_receive.php",
    FLOW_DELIVERY: "sales_deliveries/get_pending_orders.php",
}
_SUBMIT_ENDPOINTS = {
    FLOW_RECEIVING: "goods_receipts/add.php",
    FLOW_DELIVERY: "sales_deliveries/add.php",
}
# Named lists the API has used to wrap collections, in lookup order.
_LIST_KEYS = (
    "data",
    "inventory_items",
    "pending_sales_orders",
    "purchase_orders",
    "sales_orders",
    "sales_returns",
    "returns",
    "client_payments",
    "client_refunds",
    "warehouses",
    "entries",
    "items",
)


def _unwrap_list(data: Any) -> List[dict]:
    """
    Dig the record list out of the envelope's `data`, which may be a flat
    list, {"data": [...]}, or a dict keyed by a collection name.
    """
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]
    if isinstance(data, dict):
        for key in _LIST_KEYS:
            inner = data.get(key)
            if isinstance(inner, list):
                return [r for r in inner if isinstance(r, dict)]
            if isinstance(inner, dict) and key == "data":
                nested = _unwrap_list(inner)
                if nested:
                    return nested
    return []


class HttpBackofficeGateway:
    """
    requests-based gateway. Each call blocks inside a worker thread
    (asyncio.to_thread) so the UI loop stays responsive.
    """

    def __init__(self, settings: ApiSettings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()

    # ---------- transport ----------

    def _common_fields(self) -> dict:
        return {"users_uuid": self.settings.user_uuid} if self.settings.user_uuid else {}

    def _request(self, method: str, endpoint: str, *, params=None, data=None) -> dict:
        url = self.settings.url_for(endpoint)
        try:
            resp = self.session.request(
                method, url, params=params, data=data, timeout=self.settings.timeout
            )
            resp.raise_for_status()
            body = resp.json()
        except requests.exceptions.Timeout as e:
            _log.error("Timeout calling %s", endpoint)
            raise IntegrationError(f"The server did not answer in time ({endpoint}).", endpoint=endpoint) from e
        except requests.exceptions.RequestException as e:
            _log.error("HTTP failure calling %s: %s", endpoint, e)
            raise IntegrationError(f"Could not reach the server ({endpoint}): {e}", endpoint=endpoint) from e
        except ValueError as e:
            _log.error("Invalid JSON from %s", endpoint)
            raise IntegrationError(f"Invalid response from the server ({endpoint}).", endpoint=endpoint) from e

        if not isinstance(body, dict) or body.get("status") != "success":
            message = body.get("message") if isinstance(body, dict) else None
            _log.error("API %s answered with failure: %s", endpoint, message)
            raise IntegrationError(message or f"Request failed ({endpoint}).", endpoint=endpoint)
        return body

    def _get(self, endpoint: str, **params) -> dict:
        query = {**self._common_fields(), **{k: v for k, v in params.items() if v is not None}}
        return self._request("GET", endpoint, params=query)

    def _post(self, endpoint: str, **fields) -> dict:
        form = {**self._common_fields(), **{k: v for k, v in fields.items() if v is not None}}
        return self._request("POST", endpoint, data=form)

    # ---------- orders ----------

    def _pending_orders_sync(self, flow: str) -> List[Order]:
        kind = ORDER_KIND_BY_FLOW[flow]
        body = self._get(_PENDING_ENDPOINTS[flow])
        orders = []
        for raw in _unwrap_list(body.get("data")):
            order = order_from_raw(raw, kind)
            if order is not None:
                orders.append(order)
        return orders

    async def fetch_pending_orders(self, flow: str) -> List[Order]:
        return await asyncio.to_thread(self._pending_orders_sync, flow)

    def _order_lines_sync(self, order_id, flow: str) -> List[OrderLine]:
        kind = ORDER_KIND_BY_FLOW[flow]
        if flow == FLOW_DELIVERY:
            # sales orders carry their items inline in the pending list
            for order in self._pending_orders_sync(flow):
                if order.order_id == norm_id(order_id):
                    return list(order.lines)
            _log.warning("Sales order %s is no longer pending", order_id)
            return []
        body = self._post("purchase_orders/get_detail.php", purchase_orders_id=order_id)
        data = body.get("data")
        if isinstance(data, dict) and isinstance(data.get("items"), list):
            raw_items = data["items"]
        else:
            raw_items = _unwrap_list(data)
        lines = []
        for raw in raw_items:
            ln = line_from_raw(raw, kind, order_id=order_id)
            if ln is not None:
                lines.append(ln)
        return lines

    async def fetch_order_lines_for_order(self, order_id, flow: str) -> List[OrderLine]:
        return await asyncio.to_thread(self._order_lines_sync, order_id, flow)

    # ---------- inventory ----------

    def _batches_sync(self, warehouse_id, variant_id=None, packaging_type_id=None) -> List[InventoryBatch]:
        body = self._post(
            "inventory/get_all.php",
            warehouse_id=warehouse_id,
            variant_id=variant_id,
            packaging_type_id=packaging_type_id,
        )
        batches = []
        for raw in _unwrap_list(body.get("data")):
            b = batch_from_raw(raw)
            if b is not None:
                batches.append(b)
        return batches

    async def fetch_inventory_batches(self, warehouse_id, variant_id=None, packaging_type_id=None) -> List[InventoryBatch]:
        return await asyncio.to_thread(self._batches_sync, warehouse_id, variant_id, packaging_type_id)

    def _warehouses_sync(self) -> List[dict]:
        return _unwrap_list(self._get("warehouse/get_all.php").get("data"))

    async def fetch_warehouses(self) -> List[dict]:
        return await asyncio.to_thread(self._warehouses_sync)

    # ---------- client transactions ----------

    def _client_transactions_sync(self, client_id, date_from=None, date_to=None) -> Dict[str, Any]:
        body = self._post(
            "reports/client_account_statement.php",
            client_id=client_id,
            date_from=date_from,
            date_to=date_to,
        )
        data = body.get("data")
        report = data if isinstance(data, dict) else {}
        return {"entries": _unwrap_list(data), "totals": report.get("totals") or {}}

    async def fetch_client_transactions(self, client_id, date_from=None, date_to=None) -> Dict[str, Any]:
        return await asyncio.to_thread(self._client_transactions_sync, client_id, date_from, date_to)

    # ---------- submission ----------

    @staticmethod
    def wire_fields(payload: dict, flow: str) -> dict:
        """Translate the canonical submission payload into the endpoint's form fields."""
        if flow == FLOW_RECEIVING:
            items = [
                {
                    "po_item_id": it["line_id"],
                    "quantity": fmt_qty(it["quantity"]),
                    "production_date": it.get("production_date"),
                }
                for it in payload["items"]
            ]
            return {
                "warehouse_id": payload["warehouse_id"],
                "notes": payload.get("notes") or "",
                "items": json.dumps(items),
            }
        items = [
            {
                "sales_order_items_id": it["line_id"],
                "quantity": fmt_qty(it["quantity"]),
                "inventory_id": it.get("batch_reference"),
                "batch_date": it.get("production_date"),
            }
            for it in payload["items"]
        ]
        return {
            "sales_order_id": payload["order_id"],
            "warehouse_id": payload["warehouse_id"],
            "delivery_notes": payload.get("notes") or "",
            "items": json.dumps(items),
        }

    def _submit_sync(self, payload: dict, flow: str) -> str:
        body = self._post(_SUBMIT_ENDPOINTS[flow], **self.wire_fields(payload, flow))
        return str(body.get("message") or "Saved.")

    async def submit_fulfillment(self, payload: dict, flow: str) -> str:
        return await asyncio.to_thread(self._submit_sync, payload, flow)
