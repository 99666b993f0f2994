# database/repositories/field_maps.py
"""
Alias tables for raw API records.

The back-office API has shipped several field names for the same value over
time (and different names per endpoint). Each table below lists, per
canonical field, the raw keys in priority order; the first present key wins.
These are the only place raw names are known.
"""
from __future__ import annotations

import logging
from typing import Any, Mapping, Optional

from ..records import InventoryBatch, Order, OrderLine
from ...utils.helpers import first_present, norm_id, parse_date, parse_datetime, to_decimal

_log = logging.getLogger(__name__)

FieldMap = Mapping[str, tuple[str, ...]]

# ---------- Order lines ----------

PURCHASE_LINE_FIELDS: FieldMap = {
    "line_id": ("purchase_order_items_id", "po_item_id", "line_id", "id"),
    "order_id": ("purchase_order_items_purchase_order_id", "purchase_orders_id", "order_id"),
    "variant_id": ("purchase_order_items_variant_id", "variant_id"),
    "packaging_type_id": ("purchase_order_items_packaging_type_id", "packaging_type_id"),
    "quantity_ordered": (
        "purchase_order_items_quantity_ordered",
        "purchase_order_items_quantity",
        "quantity_ordered",
    ),
    "quantity_fulfilled": (
        "purchase_order_items_quantity_received",
        "quantity_received",
        "received_quantity",
    ),
    "quantity_returned": (
        "purchase_order_items_quantity_returned",
        "quantity_returned",
        "returned_quantity",
    ),
    # Server-side remaining; used to derive `ordered` when only it is sent.
    "quantity_pending": ("quantity_pending", "purchase_order_items_quantity_pending"),
    "name": ("variant_name", "products_name", "product_name"),
}

SALES_LINE_FIELDS: FieldMap = {
    "line_id": ("sales_order_items_id", "line_id", "id"),
    "order_id": ("sales_order_items_sales_order_id", "sales_orders_id", "order_id"),
    "variant_id": ("sales_order_items_variant_id", "variant_id"),
    "packaging_type_id": ("sales_order_items_packaging_type_id", "packaging_type_id"),
    "quantity_ordered": ("sales_order_items_quantity", "quantity_ordered"),
    "quantity_fulfilled": (
        "delivered_quantity",
        "sales_order_items_quantity_delivered",
        "quantity_delivered",
    ),
    "quantity_returned": (
        "returned_quantity",
        "sales_order_items_quantity_returned",
        "quantity_returned",
    ),
    "quantity_pending": ("quantity_pending",),
    "name": ("variant_name", "products_name", "product_name"),
}

LINE_FIELDS_BY_KIND: dict[str, FieldMap] = {
    "purchase": PURCHASE_LINE_FIELDS,
    "sales": SALES_LINE_FIELDS,
}

# ---------- Order headers ----------

PURCHASE_ORDER_FIELDS: FieldMap = {
    "order_id": ("purchase_orders_id", "order_id", "id"),
    "warehouse_id": ("purchase_orders_warehouse_id", "warehouse_id"),
    "order_date": ("purchase_orders_order_date", "order_date", "created_at"),
    "party_id": ("purchase_orders_supplier_id", "supplier_id"),
    "status": ("purchase_orders_status", "status"),
}

SALES_ORDER_FIELDS: FieldMap = {
    "order_id": ("sales_orders_id", "order_id", "id"),
    "warehouse_id": ("sales_orders_warehouse_id", "warehouse_id"),
    "order_date": ("sales_orders_order_date", "sales_orders_date", "order_date", "created_at"),
    "party_id": ("clients_id", "sales_orders_client_id", "client_id"),
    "status": ("sales_orders_status", "status"),
}

ORDER_FIELDS_BY_KIND: dict[str, FieldMap] = {
    "purchase": PURCHASE_ORDER_FIELDS,
    "sales": SALES_ORDER_FIELDS,
}

# ---------- Inventory batches ----------

BATCH_FIELDS: FieldMap = {
    "batch_id": ("inventory_id", "batch_id", "id"),
    "variant_id": ("variant_id", "inventory_variant_id"),
    "packaging_type_id": ("packaging_type_id", "inventory_packaging_type_id"),
    "warehouse_id": ("warehouse_id", "inventory_warehouse_id"),
    "production_date": ("inventory_production_date", "production_date", "batch_date"),
    "quantity_available": ("inventory_quantity", "quantity_available", "quantity"),
}


def pick(row: Mapping[str, Any], fields: FieldMap, name: str) -> Any:
    """Value of canonical field `name` from raw `row` using the alias table."""
    _key, val = first_present(row, fields[name])
    return val


# ---------- Converters ----------

def line_from_raw(row: Mapping[str, Any], kind: str, order_id=None) -> Optional[OrderLine]:
    """
    Map one raw order item to an OrderLine. Returns None (and logs) when the
    row carries no usable line id. `order_id` fills in for items nested under
    an order header that do not repeat it.
    """
    fields = LINE_FIELDS_BY_KIND[kind]
    line_id = norm_id(pick(row, fields, "line_id"))
    if line_id is None:
        _log.warning("Skipping %s order item without an id: %r", kind, dict(row))
        return None

    fulfilled = to_decimal(pick(row, fields, "quantity_fulfilled"))
    returned = to_decimal(pick(row, fields, "quantity_returned"))
    ordered = to_decimal(pick(row, fields, "quantity_ordered"), default=None)
    if ordered is None:
        pending = to_decimal(pick(row, fields, "quantity_pending"), default=None)
        if pending is not None:
            ordered = pending + fulfilled + returned
        else:
            ordered = to_decimal(row.get("quantity"))

    raw_order = norm_id(pick(row, fields, "order_id"))
    name = pick(row, fields, "name")
    return OrderLine(
        line_id=line_id,
        order_id=raw_order if raw_order is not None else norm_id(order_id),
        variant_id=norm_id(pick(row, fields, "variant_id")),
        packaging_type_id=norm_id(pick(row, fields, "packaging_type_id")),
        quantity_ordered=ordered,
        quantity_fulfilled=fulfilled,
        quantity_returned=returned,
        name=str(name) if name is not None else None,
    )


def order_from_raw(row: Mapping[str, Any], kind: str) -> Optional[Order]:
    fields = ORDER_FIELDS_BY_KIND[kind]
    order_id = norm_id(pick(row, fields, "order_id"))
    if order_id is None:
        _log.warning("Skipping %s order without an id.", kind)
        return None
    lines = []
    for item in row.get("items") or []:
        ln = line_from_raw(item, kind, order_id=order_id)
        if ln is not None:
            lines.append(ln)
    status = pick(row, fields, "status")
    return Order(
        order_id=order_id,
        kind=kind,
        warehouse_id=norm_id(pick(row, fields, "warehouse_id")),
        order_date=parse_datetime(pick(row, fields, "order_date")),
        party_id=norm_id(pick(row, fields, "party_id")),
        status=str(status) if status is not None else None,
        lines=tuple(lines),
    )


def batch_from_raw(row: Mapping[str, Any]) -> Optional[InventoryBatch]:
    batch_id = norm_id(pick(row, BATCH_FIELDS, "batch_id"))
    if batch_id is None:
        _log.warning("Skipping inventory row without an id: %r", dict(row))
        return None
    return InventoryBatch(
        batch_id=batch_id,
        variant_id=norm_id(pick(row, BATCH_FIELDS, "variant_id")),
        packaging_type_id=norm_id(pick(row, BATCH_FIELDS, "packaging_type_id")),
        warehouse_id=norm_id(pick(row, BATCH_FIELDS, "warehouse_id")),
        production_date=parse_date(pick(row, BATCH_FIELDS, "production_date")),
        quantity_available=to_decimal(pick(row, BATCH_FIELDS, "quantity_available")),
    )
