"""
Remaining-quantity arithmetic for purchase and sales order lines.

    remaining = max(0, ordered - fulfilled - returned)

A negative raw value means upstream data is inconsistent (more received or
delivered plus returned than was ordered). It is clamped to zero and reported
as a DataIntegrityWarning returned alongside the result; nothing here raises.
"""
from __future__ import annotations

import logging
from typing import Dict, List

from ...constants import ZERO
from ...database.records import Order, OrderLine
from ...utils.errors import DataIntegrityWarning
from ...utils.helpers import fmt_qty
from .model import Reconciliation

_log = logging.getLogger(__name__)


def reconcile(line: OrderLine) -> Reconciliation:
    raw = line.raw_remaining
    remaining = max(ZERO, raw)
    warning = None
    if raw < ZERO:
        msg = (
            f"Order {line.order_id}, line {line.line_id}: fulfilled ({fmt_qty(line.quantity_fulfilled)}) "
            f"plus returned ({fmt_qty(line.quantity_returned)}) exceeds ordered "
            f"({fmt_qty(line.quantity_ordered)}); remaining treated as 0."
        )
        warning = DataIntegrityWarning(
            msg, order_id=line.order_id, line_id=line.line_id, raw_remaining=raw
        )
        _log.warning(msg)
    return Reconciliation(remaining=remaining, is_fulfillable=remaining > ZERO, warning=warning)


def reconcile_order(order: Order) -> Dict[object, Reconciliation]:
    return {ln.line_id: reconcile(ln) for ln in order.lines}


def fulfillable_lines(order: Order) -> List[OrderLine]:
    """Lines of `order` that still have something to receive/deliver, in order."""
    return [ln for ln in order.lines if reconcile(ln).is_fulfillable]
