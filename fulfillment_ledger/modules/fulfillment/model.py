from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from ...database.records import InventoryBatch
from ...utils.errors import DataIntegrityWarning


@dataclass(frozen=True)
class Reconciliation:
    remaining: Decimal
    is_fulfillable: bool
    warning: Optional[DataIntegrityWarning] = None


@dataclass(frozen=True)
class Allocation:
    """Batch candidates for one line plus the proposed batch (None when out of stock)."""

    needed_quantity: Decimal
    candidates: tuple[InventoryBatch, ...] = ()
    chosen: Optional[InventoryBatch] = None

    @property
    def is_sufficient(self) -> bool:
        return self.chosen is not None and self.chosen.quantity_available >= self.needed_quantity


@dataclass
class FulfillmentSelection:
    """
    Operator's working state for one selected line. Mutable: the session
    controller edits it in place while the order is active.
    """

    order_id: int | str
    line_id: int | str
    remaining: Decimal
    requested_quantity: Decimal
    chosen_batch_id: int | str | None = None
    fulfillment_date: Optional[date] = None
    candidates: tuple[InventoryBatch, ...] = field(default_factory=tuple)
    under_supplied: bool = False
    loading: bool = False

    def candidate(self, batch_id) -> Optional[InventoryBatch]:
        for b in self.candidates:
            if str(b.batch_id) == str(batch_id):
                return b
        return None

    def chosen_batch(self) -> Optional[InventoryBatch]:
        if self.chosen_batch_id is None:
            return None
        return self.candidate(self.chosen_batch_id)
