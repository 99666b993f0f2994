"""
modules/ledger/normalizer.py

Turns raw client transaction records (sales orders, sales returns, client
payments, client refunds) into canonical LedgerEntry objects.

Debit / credit convention (the only one used anywhere in the package):
    order                      -> debit  (increases what the client owes)
    return, payment, refund    -> credit (decreases it)
The absolute value of the raw amount is used, so a negative `amount_signed`
still lands on the side its type dictates.

Field-priority tables
---------------------
Each entry type declares, per canonical field, the raw keys to try in order.
The first key holding a non-empty value wins.

order:   id      orders_id, sales_orders_id, id
         amount  orders_total_amount, sales_orders_total_amount, sales_orders_total,
                 total_amount, amount_signed, debit, amount
         date    orders_date, sales_orders_date, sales_orders_order_date,
                 sales_orders_created_at, date, created_at
return:  id      returns_id, sales_returns_id, id
         amount  returns_total_amount, returns_total, sales_returns_total_amount,
                 total_amount, amount_signed, credit, amount
         date    returns_date, sales_returns_date, date, created_at
payment: id      client_payments_id, id
         amount  client_payments_amount, amount_signed, credit, amount
         date    client_payments_date, client_payments_created_at, date, created_at
refund:  id      client_refunds_id, id
         amount  client_refunds_amount, amount_signed, credit, amount
         date    client_refunds_date, client_refunds_created_at, date, created_at

Missing or unparsable dates yield occurred_at=None and date_flagged=True.
"""
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Mapping, Optional

from ...constants import (
    DEBIT_ENTRY_TYPES,
    ENTRY_ORDER,
    ENTRY_PAYMENT,
    ENTRY_REFUND,
    ENTRY_RETURN,
    ZERO,
)
from ...utils.helpers import first_present, norm_id, parse_datetime, to_decimal
from .model import LedgerEntry

_log = logging.getLogger(__name__)

FIELD_TABLES: Dict[str, Dict[str, tuple]] = {
    ENTRY_ORDER: {
        "id": ("orders_id", "sales_orders_id", "id"),
        "amount": (
            "orders_total_amount",
            "sales_orders_total_amount",
            "sales_orders_total",
            "total_amount",
            "amount_signed",
            "debit",
            "amount",
        ),
        "date": (
            "orders_date",
            "sales_orders_date",
            "sales_orders_order_date",
            "sales_orders_created_at",
            "date",
            "created_at",
        ),
        "status": ("orders_status", "sales_orders_status", "status"),
        "notes": ("orders_notes", "sales_orders_notes", "notes"),
    },
    ENTRY_RETURN: {
        "id": ("returns_id", "sales_returns_id", "id"),
        "amount": (
            "returns_total_amount",
            "returns_total",
            "sales_returns_total_amount",
            "total_amount",
            "amount_signed",
            "credit",
            "amount",
        ),
        "date": ("returns_date", "sales_returns_date", "date", "created_at"),
        "status": ("returns_status", "sales_returns_status", "status"),
        "notes": ("returns_reason", "sales_returns_reason", "returns_notes", "notes"),
    },
    ENTRY_PAYMENT: {
        "id": ("client_payments_id", "id"),
        "amount": ("client_payments_amount", "amount_signed", "credit", "amount"),
        "date": ("client_payments_date", "client_payments_created_at", "date", "created_at"),
        "status": ("client_payments_status", "status"),
        "notes": ("client_payments_notes", "notes"),
    },
    ENTRY_REFUND: {
        "id": ("client_refunds_id", "id"),
        "amount": ("client_refunds_amount", "amount_signed", "credit", "amount"),
        "date": ("client_refunds_date", "client_refunds_created_at", "date", "created_at"),
        "status": ("client_refunds_status", "status"),
        "notes": ("client_refunds_notes", "client_refunds_reason", "notes"),
    },
}

# bucket name in a transactions payload -> entry type
BUCKETS = {
    "orders": ENTRY_ORDER,
    "returns": ENTRY_RETURN,
    "payments": ENTRY_PAYMENT,
    "refunds": ENTRY_REFUND,
}

# `type` values seen in the unified statement report
_STATEMENT_TYPES = {
    "order": ENTRY_ORDER,
    "orders": ENTRY_ORDER,
    "sales_order": ENTRY_ORDER,
    "invoice": ENTRY_ORDER,
    "return": ENTRY_RETURN,
    "returns": ENTRY_RETURN,
    "sales_return": ENTRY_RETURN,
    "payment": ENTRY_PAYMENT,
    "payments": ENTRY_PAYMENT,
    "client_payment": ENTRY_PAYMENT,
    "refund": ENTRY_REFUND,
    "refunds": ENTRY_REFUND,
    "client_refund": ENTRY_REFUND,
}


def _text(v) -> Optional[str]:
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def normalize(raw: Mapping, entry_type: str) -> LedgerEntry:
    """Canonical entry for one raw record. Never raises on odd data."""
    if entry_type not in FIELD_TABLES:
        raise ValueError(f"Unknown ledger entry type: {entry_type!r}")
    table = FIELD_TABLES[entry_type]
    row = raw if isinstance(raw, Mapping) else {}

    _, raw_id = first_present(row, table["id"])
    reference_id = norm_id(raw_id)

    amount_key, raw_amount = first_present(row, table["amount"])
    amount = to_decimal(raw_amount, default=None)
    if amount is None:
        _log.warning(
            "%s %s: amount %r (from %s) is missing or not a number; using 0",
            entry_type, reference_id, raw_amount, amount_key,
        )
        amount = ZERO
    amount = abs(amount)

    _, raw_date = first_present(row, table["date"])
    occurred_at = parse_datetime(raw_date)
    flagged = occurred_at is None
    if flagged:
        _log.warning("%s %s: date %r is missing or unparsable", entry_type, reference_id, raw_date)

    is_debit = entry_type in DEBIT_ENTRY_TYPES
    return LedgerEntry(
        entry_type=entry_type,
        reference_id=reference_id,
        occurred_at=occurred_at,
        status=_text(first_present(row, table["status"])[1]),
        debit_amount=amount if is_debit else ZERO,
        credit_amount=ZERO if is_debit else amount,
        notes=_text(first_present(row, table["notes"])[1]),
        date_flagged=flagged,
    )


def normalize_transactions(transactions: Mapping[str, Iterable[Mapping]]) -> List[LedgerEntry]:
    """
    Normalize a transactions payload in one pass. Accepts the unified report
    ({"entries": [...]}, each row typed by its `type`) and/or the four raw
    arrays {orders, returns, payments, refunds}. Missing buckets count as
    empty; unknown buckets are ignored.
    """
    out: List[LedgerEntry] = []
    for raw in transactions.get("entries") or ():
        if not isinstance(raw, Mapping):
            continue
        entry = normalize_statement_entry(raw)
        if entry is not None:
            out.append(entry)
    for bucket, entry_type in BUCKETS.items():
        for raw in transactions.get(bucket) or ():
            out.append(normalize(raw, entry_type))
    return out


def normalize_statement_entry(raw: Mapping) -> Optional[LedgerEntry]:
    """
    Row of the backend's unified statement report
    ({type, id, date, status, debit, credit, amount_signed}).
    Rows with an unrecognised type are skipped (None).
    """
    entry_type = _STATEMENT_TYPES.get(str(raw.get("type") or "").strip().lower())
    if entry_type is None:
        _log.warning("Statement row with unknown type %r skipped", raw.get("type"))
        return None
    return normalize(raw, entry_type)
