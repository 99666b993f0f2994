# database/records.py
"""
Canonical records produced at the API boundary.

Everything downstream of the gateway works with these shapes only; the
historical field-name aliases live in repositories/field_maps.py.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Optional


@dataclass(frozen=True)
class OrderLine:
    line_id: int | str
    order_id: int | str
    variant_id: int | str | None
    packaging_type_id: int | str | None
    quantity_ordered: Decimal
    quantity_fulfilled: Decimal  # received for purchases, delivered for sales
    quantity_returned: Decimal
    name: str | None = None

    @property
    def raw_remaining(self) -> Decimal:
        """ordered - fulfilled - returned, unclamped."""
        return self.quantity_ordered - self.quantity_fulfilled - self.quantity_returned


@dataclass(frozen=True)
class Order:
    order_id: int | str
    kind: str  # "purchase" | "sales"
    warehouse_id: int | str | None
    order_date: Optional[datetime]
    party_id: int | str | None = None
    status: str | None = None
    lines: tuple[OrderLine, ...] = field(default_factory=tuple)

    def line(self, line_id) -> Optional[OrderLine]:
        for ln in self.lines:
            if str(ln.line_id) == str(line_id):
                return ln
        return None


@dataclass(frozen=True)
class InventoryBatch:
    batch_id: int | str
    variant_id: int | str | None
    packaging_type_id: int | str | None
    warehouse_id: int | str | None
    production_date: Optional[date]
    quantity_available: Decimal
