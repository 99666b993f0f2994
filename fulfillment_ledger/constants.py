# constants.py
from __future__ import annotations

from decimal import Decimal

CACHE_DB_FILE_NAME = "reference_cache.db"
DATA_DIR = "data"

# ---- Ledger ----
ENTRY_ORDER = "order"
ENTRY_RETURN = "return"
ENTRY_PAYMENT = "payment"
ENTRY_REFUND = "refund"
ENTRY_TYPES: tuple[str, ...] = (ENTRY_ORDER, ENTRY_RETURN, ENTRY_PAYMENT, ENTRY_REFUND)

# Entry types that increase what the client owes; everything else is a credit.
DEBIT_ENTRY_TYPES = frozenset({ENTRY_ORDER})

# ---- Fulfillment flows ----
FLOW_RECEIVING = "receiving"  # purchase orders, goods received into a warehouse
FLOW_DELIVERY = "delivery"    # sales orders, goods delivered out of a warehouse
FLOW_KINDS: tuple[str, ...] = (FLOW_RECEIVING, FLOW_DELIVERY)

ORDER_KIND_BY_FLOW = {
    FLOW_RECEIVING: "purchase",
    FLOW_DELIVERY: "sales",
}

# ---- Session states ----
STATE_IDLE = "idle"
STATE_SELECTING = "selecting"
STATE_SUBMITTING = "submitting"

# ---- Reference cache kinds ----
REF_WAREHOUSES = "warehouses"
REFERENCE_KINDS: tuple[str, ...] = (REF_WAREHOUSES,)

ZERO = Decimal("0")
