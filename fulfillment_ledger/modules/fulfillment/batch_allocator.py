"""
modules/fulfillment/batch_allocator.py

Proposes the inventory batch (lot) a delivery line should be picked from.

Candidates are the warehouse's batches of the line's variant and packaging
with stock on hand, newest production date first (undated batches last, ties
by batch id). The proposal is the first candidate that covers the needed
quantity, else the first candidate; callers check Allocation.is_sufficient.

Read-only: nothing is reserved or decremented here.
"""
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from ...constants import ZERO
from ...database.records import InventoryBatch
from ...database.repositories.backoffice_gateway import BackofficeGateway
from ...database.repositories.reference_cache_repo import ReferenceCacheRepo
from ...utils.errors import ValidationError
from ...utils.helpers import fmt_qty, norm_id, to_decimal
from .model import Allocation

_log = logging.getLogger(__name__)


def _sort_key(b: InventoryBatch):
    # newest first; dated before undated; batch id ascending
    ordinal = b.production_date.toordinal() if isinstance(b.production_date, date) else 0
    bid = norm_id(b.batch_id)
    id_key = (0, bid, "") if isinstance(bid, int) else (1, 0, str(bid))
    return (b.production_date is None, -ordinal, id_key)


def sort_candidates(batches: Iterable[InventoryBatch]) -> List[InventoryBatch]:
    return sorted(batches, key=_sort_key)


def select_batch(candidates: List[InventoryBatch], needed: Decimal) -> Optional[InventoryBatch]:
    """First candidate with enough stock, else the first candidate, else None."""
    if not candidates:
        return None
    for b in candidates:
        if b.quantity_available >= needed:
            return b
    return candidates[0]


def _matches(b: InventoryBatch, variant_id, packaging_type_id, warehouse_id) -> bool:
    if norm_id(b.variant_id) != norm_id(variant_id):
        return False
    if norm_id(b.packaging_type_id) != norm_id(packaging_type_id):
        return False
    # rows fetched per warehouse may omit the warehouse column
    if b.warehouse_id is not None and norm_id(b.warehouse_id) != norm_id(warehouse_id):
        return False
    return b.quantity_available > ZERO


class BatchAllocator:
    def __init__(self, gateway: BackofficeGateway, reference_cache: Optional[ReferenceCacheRepo] = None):
        self.gateway = gateway
        self.reference_cache = reference_cache

    def _warehouse_usable(self, warehouse_id) -> bool:
        if norm_id(warehouse_id) is None:
            return False
        if self.reference_cache is None:
            return True
        known = self.reference_cache.knows_warehouse(warehouse_id)
        if known is False:
            _log.warning("Warehouse %s is not in the reference cache; skipping batch lookup", warehouse_id)
            return False
        return True

    async def allocate(self, variant_id, packaging_type_id, warehouse_id, needed_quantity) -> Allocation:
        needed = to_decimal(needed_quantity, default=None)
        if needed is None or needed <= ZERO:
            raise ValidationError(
                f"Needed quantity must be greater than 0 (got {needed_quantity!r})."
            )

        if not self._warehouse_usable(warehouse_id):
            return Allocation(needed_quantity=needed)

        # IntegrationError propagates; the session controller turns it into an alert
        batches = await self.gateway.fetch_inventory_batches(
            warehouse_id, variant_id=variant_id, packaging_type_id=packaging_type_id
        )
        candidates = sort_candidates(
            b for b in batches if _matches(b, variant_id, packaging_type_id, warehouse_id)
        )
        chosen = select_batch(candidates, needed)
        allocation = Allocation(needed_quantity=needed, candidates=tuple(candidates), chosen=chosen)
        if chosen is not None and not allocation.is_sufficient:
            _log.info(
                "Variant %s: best batch %s holds %s of %s needed",
                variant_id, chosen.batch_id, fmt_qty(chosen.quantity_available), fmt_qty(needed),
            )
        return allocation
