"""
modules/fulfillment/controller.py

Purpose
-------
Per-order selection session behind the "Receive products" (purchase orders)
and "Deliver products" (sales orders) screens.

The operator picks lines of ONE pending order at a time, adjusts quantities,
dates and (for deliveries) the inventory batch, then submits. The controller
owns that working state and reports everything through Qt signals.

Rules
-----
- Only one order may hold selections. Touching another order is rejected
  with a warning until the active one is submitted, cleared or cancelled.
- Quantities are never clamped: out-of-range values block submission.
- Each batch lookup is tagged with a per-line generation; a response that
  arrives after the line was deselected, re-toggled, or the session was
  cleared/closed is dropped.

States: idle -> selecting -> submitting -> idle (success) | selecting (failure)

Public API
----------
- load_orders(), toggle_line(), select_all(), submit()        (coroutines)
- clear_order(), cancel(), set_requested_quantity(), choose_batch(),
  set_fulfillment_date(), set_notes(), build_payload(), close()
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from datetime import date, datetime
from typing import Dict, List, Optional

from PySide6.QtCore import QObject, Signal

from ...constants import (
    FLOW_DELIVERY,
    FLOW_KINDS,
    FLOW_RECEIVING,
    STATE_IDLE,
    STATE_SELECTING,
    STATE_SUBMITTING,
)
from ...database.records import Order, OrderLine
from ...database.repositories.backoffice_gateway import BackofficeGateway
from ...database.repositories.reference_cache_repo import ReferenceCacheRepo
from ...utils.errors import IntegrationError, StateConflict, ValidationError
from ...utils.helpers import fmt_qty, norm_id, parse_date
from ...utils.validators import try_parse_decimal, within_remaining
from ..base_module import BaseModule
from .batch_allocator import BatchAllocator
from .model import FulfillmentSelection
from .reconciler import reconcile

_log = logging.getLogger(__name__)


def _order_sort_key(o: Order):
    # newest first, then higher id first
    ts = (o.order_date - datetime.min).total_seconds() if o.order_date is not None else float("-inf")
    oid = norm_id(o.order_id)
    id_key = oid if isinstance(oid, int) else -1
    return (-ts, -id_key, str(oid))


class FulfillmentSessionController(BaseModule):
    state_changed = Signal(str)
    selection_changed = Signal(object)      # list[FulfillmentSelection] of the active order
    batches_loaded = Signal(object, object)  # (order_id, line_id), Allocation
    submitted = Signal(object)              # payload that was accepted
    orders_loaded = Signal(object)          # list[Order]

    def __init__(
        self,
        gateway: BackofficeGateway,
        flow: str,
        *,
        allocator: Optional[BatchAllocator] = None,
        reference_cache: Optional[ReferenceCacheRepo] = None,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        if flow not in FLOW_KINDS:
            raise ValueError(f"Unknown fulfillment flow: {flow!r}")
        self.gateway = gateway
        self.flow = flow
        self.allocator = allocator or BatchAllocator(gateway, reference_cache)
        self.TITLE = "Receive Products" if flow == FLOW_RECEIVING else "Deliver Products"

        self._orders: Dict[object, Order] = {}
        self._active_order_id = None
        self._selections: Dict[tuple, FulfillmentSelection] = {}
        self._notes: str = ""
        self._state = STATE_IDLE
        self._closed = False

        # stale-response protection
        self._line_generation: Dict[tuple, int] = {}
        self._session_generation = 0
        self._orders_generation = 0

    # -------- Read-only views --------

    @property
    def state(self) -> str:
        return self._state

    @property
    def active_order_id(self):
        return self._active_order_id

    @property
    def notes(self) -> str:
        return self._notes

    def orders(self) -> List[Order]:
        return sorted(self._orders.values(), key=_order_sort_key)

    def order(self, order_id) -> Optional[Order]:
        return self._orders.get(norm_id(order_id))

    def selections(self) -> List[FulfillmentSelection]:
        return list(self._selections.values())

    def selection(self, order_id, line_id) -> Optional[FulfillmentSelection]:
        return self._selections.get((norm_id(order_id), norm_id(line_id)))

    def is_selected(self, order_id, line_id) -> bool:
        return self.selection(order_id, line_id) is not None

    # -------- Internal helpers --------

    def _set_state(self, state: str) -> None:
        if state == self._state:
            return
        _log.info("%s session: %s -> %s", self.flow, self._state, state)
        self._state = state
        self.state_changed.emit(state)

    def _emit_selection(self) -> None:
        self.selection_changed.emit(self.selections())

    def _bump(self, key: tuple) -> int:
        gen = self._line_generation.get(key, 0) + 1
        self._line_generation[key] = gen
        return gen

    def _ensure_same_order(self, order_id) -> None:
        if self._active_order_id is not None and self._active_order_id != order_id:
            raise StateConflict(self._active_order_id, order_id)

    def _reset_selections(self) -> None:
        for key in list(self._selections):
            self._bump(key)
        self._selections.clear()
        self._active_order_id = None
        self._notes = ""

    def _busy(self) -> bool:
        if self._closed:
            return True
        if self._state == STATE_SUBMITTING:
            self.warning.emit("A submission is in progress; please wait.")
            return True
        return False

    async def _resolve_order(self, order_id) -> Optional[Order]:
        """Loaded order with its lines; fetches the lines on first use."""
        oid = norm_id(order_id)
        order = self._orders.get(oid)
        if order is None:
            self.warning.emit(f"Order {order_id} is not in the pending list.")
            return None
        if order.lines:
            return order
        session = self._session_generation
        try:
            lines = await self.gateway.fetch_order_lines_for_order(order.order_id, self.flow)
        except Exception as e:
            if not isinstance(e, IntegrationError):
                _log.exception("Loading lines of order %s failed", oid)
            if session == self._session_generation and not self._closed:
                self.error.emit(f"Could not load the lines of order {order_id}: {e}")
            return None
        if session != self._session_generation or oid not in self._orders:
            _log.debug("Discarding lines of order %s: session changed", oid)
            return None
        order = dataclasses.replace(self._orders[oid], lines=tuple(lines))
        self._orders[oid] = order
        return order

    def _select(self, order: Order, line: OrderLine) -> Optional[FulfillmentSelection]:
        """Create the selection for one line (no I/O). Returns None if rejected."""
        rec = reconcile(line)
        if rec.warning is not None:
            self.warning.emit(str(rec.warning))
        if not rec.is_fulfillable:
            self.warning.emit(f"Line {line.line_id} of order {order.order_id} has nothing left to fulfil.")
            return None
        sel = FulfillmentSelection(
            order_id=order.order_id,
            line_id=line.line_id,
            remaining=rec.remaining,
            requested_quantity=rec.remaining,
            fulfillment_date=date.today() if self.flow == FLOW_RECEIVING else None,
            loading=self.flow == FLOW_DELIVERY,
        )
        key = (norm_id(order.order_id), norm_id(line.line_id))
        self._bump(key)
        self._selections[key] = sel
        self._active_order_id = norm_id(order.order_id)
        self._set_state(STATE_SELECTING)
        return sel

    def _deselect(self, key: tuple) -> None:
        self._bump(key)
        self._selections.pop(key, None)
        if not self._selections:
            self._active_order_id = None
            self._notes = ""
            self._set_state(STATE_IDLE)

    async def _load_batches(self, order: Order, line: OrderLine, sel: FulfillmentSelection) -> None:
        key = (norm_id(order.order_id), norm_id(line.line_id))
        gen = self._line_generation.get(key, 0)
        session = self._session_generation

        def still_current() -> bool:
            return (
                not self._closed
                and session == self._session_generation
                and self._line_generation.get(key) == gen
                and self._selections.get(key) is sel
            )

        try:
            allocation = await self.allocator.allocate(
                line.variant_id, line.packaging_type_id, order.warehouse_id, sel.remaining
            )
        except Exception as e:
            if not isinstance(e, (IntegrationError, ValidationError)):
                _log.exception("Batch lookup for line %s failed", line.line_id)
            if still_current():
                sel.loading = False
                sel.candidates = ()
                self.error.emit(f"Could not load batches for line {line.line_id}: {e}")
                self._emit_selection()
            return

        if not still_current():
            _log.debug("Discarding stale batch response for %s", key)
            return

        sel.loading = False
        sel.candidates = allocation.candidates
        sel.chosen_batch_id = allocation.chosen.batch_id if allocation.chosen is not None else None
        sel.fulfillment_date = allocation.chosen.production_date if allocation.chosen is not None else None
        sel.under_supplied = allocation.chosen is not None and not allocation.is_sufficient
        if not allocation.candidates:
            self.warning.emit(f"No stock available for line {line.line_id} in this warehouse.")
        elif sel.under_supplied:
            self.warning.emit(
                f"Line {line.line_id}: batch {allocation.chosen.batch_id} holds only "
                f"{fmt_qty(allocation.chosen.quantity_available)} of {fmt_qty(sel.remaining)} needed."
            )
        self.batches_loaded.emit(key, allocation)
        self._emit_selection()

    def _editable(self, order_id, line_id) -> Optional[FulfillmentSelection]:
        if self._busy():
            return None
        oid = norm_id(order_id)
        if self._active_order_id != oid:
            self.warning.emit(f"Order {order_id} is not the order being edited.")
            return None
        sel = self._selections.get((oid, norm_id(line_id)))
        if sel is None:
            self.warning.emit(f"Line {line_id} is not selected.")
        return sel

    def _refresh_under_supply(self, sel: FulfillmentSelection) -> None:
        batch = sel.chosen_batch()
        sel.under_supplied = batch is not None and batch.quantity_available < sel.requested_quantity

    # -------- Orders --------

    async def load_orders(self) -> List[Order]:
        self._orders_generation += 1
        gen = self._orders_generation
        try:
            orders = await self.gateway.fetch_pending_orders(self.flow)
        except Exception as e:
            if gen == self._orders_generation and not self._closed:
                _log.error("Loading pending %s orders failed: %s", self.flow, e, exc_info=not isinstance(e, IntegrationError))
                self.error.emit(str(e))
                self._orders = {}
                self.orders_loaded.emit([])
            return []
        if gen != self._orders_generation or self._closed:
            _log.debug("Discarding stale pending-orders response")
            return []

        self._orders = {norm_id(o.order_id): o for o in orders}
        if self._active_order_id is not None and self._active_order_id not in self._orders:
            self.info.emit(f"Order {self._active_order_id} is no longer pending; selections cleared.")
            self.cancel()
        result = self.orders()
        self.orders_loaded.emit(result)
        return result

    # -------- Selection --------

    async def toggle_line(self, order_id, line_id) -> bool:
        """Select or deselect a line. Returns True when the line ends up selected."""
        if self._busy():
            return False
        key = (norm_id(order_id), norm_id(line_id))
        if key in self._selections:
            self._deselect(key)
            self._emit_selection()
            return False

        try:
            self._ensure_same_order(key[0])
        except StateConflict as e:
            self.warning.emit(str(e))
            return False

        order = await self._resolve_order(order_id)
        if order is None:
            return False
        # re-check: another order may have been activated while lines loaded
        try:
            self._ensure_same_order(key[0])
        except StateConflict as e:
            self.warning.emit(str(e))
            return False
        if key in self._selections:
            return True
        line = order.line(line_id)
        if line is None:
            self.warning.emit(f"Order {order_id} has no line {line_id}.")
            return False

        sel = self._select(order, line)
        if sel is None:
            return False
        self._emit_selection()
        if self.flow == FLOW_DELIVERY:
            await self._load_batches(order, line, sel)
        return True

    async def select_all(self, order_id) -> int:
        """Select every line of the order with something remaining. Returns how many were added."""
        if self._busy():
            return 0
        oid = norm_id(order_id)
        try:
            self._ensure_same_order(oid)
        except StateConflict as e:
            self.warning.emit(str(e))
            return 0
        order = await self._resolve_order(order_id)
        if order is None:
            return 0
        try:
            self._ensure_same_order(oid)
        except StateConflict as e:
            self.warning.emit(str(e))
            return 0

        added = []
        skipped = 0
        for line in order.lines:
            key = (oid, norm_id(line.line_id))
            if key in self._selections:
                continue
            rec = reconcile(line)
            if not rec.is_fulfillable:
                skipped += 1
                continue
            sel = self._select(order, line)
            if sel is not None:
                added.append((line, sel))
        if skipped:
            self.info.emit(f"{skipped} line(s) with nothing remaining were skipped.")
        self._emit_selection()

        if self.flow == FLOW_DELIVERY and added:
            await asyncio.gather(*(self._load_batches(order, line, sel) for line, sel in added))
        return len(added)

    def clear_order(self, order_id) -> None:
        if self._busy():
            return
        if self._active_order_id is None or self._active_order_id != norm_id(order_id):
            return
        self._reset_selections()
        self._set_state(STATE_IDLE)
        self._emit_selection()

    def cancel(self) -> None:
        if self._active_order_id is not None:
            self.clear_order(self._active_order_id)

    # -------- Edits --------

    def set_requested_quantity(self, order_id, line_id, quantity) -> bool:
        sel = self._editable(order_id, line_id)
        if sel is None:
            return False
        ok, qty = try_parse_decimal(quantity)
        if not ok:
            self.warning.emit(f"Line {line_id}: '{quantity}' is not a valid quantity.")
            return False
        sel.requested_quantity = qty
        if not within_remaining(qty, sel.remaining):
            self.warning.emit(
                f"Line {line_id}: quantity must be greater than 0 and at most {fmt_qty(sel.remaining)}."
            )
        self._refresh_under_supply(sel)
        self._emit_selection()
        return True

    def choose_batch(self, order_id, line_id, batch_id) -> bool:
        sel = self._editable(order_id, line_id)
        if sel is None:
            return False
        batch = sel.candidate(batch_id)
        if batch is None:
            self.warning.emit(f"Batch {batch_id} is not available for line {line_id}.")
            return False
        sel.chosen_batch_id = batch.batch_id
        sel.fulfillment_date = batch.production_date
        self._refresh_under_supply(sel)
        self._emit_selection()
        return True

    def set_fulfillment_date(self, order_id, line_id, value) -> bool:
        """Production date of received goods (receiving flow)."""
        sel = self._editable(order_id, line_id)
        if sel is None:
            return False
        if self.flow == FLOW_DELIVERY:
            self.warning.emit("The delivery date follows the chosen batch.")
            return False
        d = parse_date(value)
        if d is None:
            self.warning.emit(f"Line {line_id}: '{value}' is not a valid date.")
            return False
        sel.fulfillment_date = d
        self._emit_selection()
        return True

    def set_notes(self, order_id, notes: str) -> bool:
        if self._busy():
            return False
        if self._active_order_id is None or self._active_order_id != norm_id(order_id):
            self.warning.emit(f"Order {order_id} is not the order being edited.")
            return False
        self._notes = (notes or "").strip()
        return True

    # -------- Submission --------

    def build_payload(self, order_id) -> dict:
        """
        Validate every selected line of the order and assemble the submission.
        Raises ValidationError naming all offending lines; never returns a
        partial payload.
        """
        oid = norm_id(order_id)
        if self._active_order_id != oid or not self._selections:
            raise ValidationError(f"No lines of order {order_id} are selected.")
        order = self._orders.get(oid)
        if order is None:
            raise ValidationError(f"Order {order_id} is not in the pending list.")

        problems = {}
        items = []
        for sel in self._selections.values():
            reasons = []
            if not within_remaining(sel.requested_quantity, sel.remaining):
                reasons.append(
                    f"quantity {fmt_qty(sel.requested_quantity)} must be greater than 0 "
                    f"and at most {fmt_qty(sel.remaining)}"
                )
            if self.flow == FLOW_DELIVERY:
                if sel.loading:
                    reasons.append("batches are still loading")
                elif sel.chosen_batch_id is None or sel.chosen_batch() is None:
                    reasons.append("no batch chosen")
            elif sel.fulfillment_date is None:
                reasons.append("production date missing")
            if reasons:
                problems[sel.line_id] = ", ".join(reasons)
                continue
            items.append(
                {
                    "line_id": sel.line_id,
                    "quantity": sel.requested_quantity,
                    "batch_reference": sel.chosen_batch_id if self.flow == FLOW_DELIVERY else None,
                    "production_date": sel.fulfillment_date.isoformat() if sel.fulfillment_date else None,
                }
            )
        if problems:
            raise ValidationError.for_lines(problems)
        if order.warehouse_id is None:
            raise ValidationError(f"Order {order_id} has no warehouse.")
        return {
            "order_id": order.order_id,
            "warehouse_id": order.warehouse_id,
            "items": items,
            "notes": self._notes or None,
        }

    async def submit(self, order_id) -> bool:
        if self._busy():
            return False
        try:
            payload = self.build_payload(order_id)
        except ValidationError as e:
            self.error.emit(str(e))
            return False

        session = self._session_generation
        self._set_state(STATE_SUBMITTING)
        _log.info("Submitting %s for order %s (%d lines)", self.flow, payload["order_id"], len(payload["items"]))
        try:
            message = await self.gateway.submit_fulfillment(payload, self.flow)
        except IntegrationError as e:
            failure = str(e)
        except Exception as e:
            _log.exception("Submitting %s for order %s failed", self.flow, payload["order_id"])
            failure = f"Submission failed: {e}"
        else:
            failure = None

        if failure is not None:
            if session == self._session_generation and not self._closed:
                self._set_state(STATE_SELECTING)
                self.error.emit(failure)
            return False

        if self._closed:
            return True
        self._session_generation += 1
        self._reset_selections()
        self._set_state(STATE_IDLE)
        self._emit_selection()
        self.info.emit(message or "Saved.")
        self.submitted.emit(payload)
        await self.load_orders()
        return True

    # -------- Lifecycle --------

    def close(self) -> None:
        """Drop all state; in-flight responses are ignored from here on."""
        self._session_generation += 1
        self._orders_generation += 1
        self._reset_selections()
        self._orders = {}
        self._state = STATE_IDLE
        self._closed = True

    def teardown(self) -> None:
        self.close()
