"""
modules/ledger/controller.py

Client account statement: fetches a client's orders, returns, payments and
refunds, normalizes them and publishes the ledger. Filter changes recompute
from the last fetched entries without going back to the server.

A failed load yields an empty ledger plus an error alert.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import List, Optional

from PySide6.QtCore import QObject, Signal

from ...database.repositories.backoffice_gateway import BackofficeGateway
from ...utils.errors import IntegrationError
from ...utils.helpers import norm_id
from ..base_module import BaseModule
from .builder import build
from .model import ClientLedger, LedgerEntry, LedgerFilter
from .normalizer import normalize_transactions

_log = logging.getLogger(__name__)


def _iso(d) -> Optional[str]:
    if d is None:
        return None
    return d.isoformat() if isinstance(d, date) else str(d)


class StatementController(BaseModule):
    TITLE = "Client Account Statement"

    ledger_changed = Signal(object)  # ClientLedger
    loading_changed = Signal(bool)

    def __init__(self, gateway: BackofficeGateway, parent: Optional[QObject] = None) -> None:
        super().__init__(parent)
        self.gateway = gateway
        self._client_id = None
        self._entries: List[LedgerEntry] = []
        self._filters = LedgerFilter()
        self._ledger = ClientLedger()
        self._load_generation = 0
        self._closed = False

    @property
    def client_id(self):
        return self._client_id

    @property
    def ledger(self) -> ClientLedger:
        return self._ledger

    @property
    def filters(self) -> LedgerFilter:
        return self._filters

    def _publish(self) -> ClientLedger:
        self._ledger = build(self._entries, filters=self._filters)
        for w in self._ledger.warnings:
            self.warning.emit(w)
        self.ledger_changed.emit(self._ledger)
        return self._ledger

    async def load(self, client_id, date_from=None, date_to=None) -> ClientLedger:
        """
        Fetch and publish the statement of `client_id`. date_from/date_to
        narrow the server query; they are independent of the view filters.
        A newer load started meanwhile wins; this one's result is dropped.
        """
        self._load_generation += 1
        gen = self._load_generation
        self._client_id = norm_id(client_id)
        self.loading_changed.emit(True)
        try:
            raw = await self.gateway.fetch_client_transactions(
                self._client_id, date_from=_iso(date_from), date_to=_iso(date_to)
            )
            failure = None
        except IntegrationError as e:
            raw, failure = {}, e

        if gen != self._load_generation or self._closed:
            _log.debug("Discarding stale statement load for client %s", client_id)
            return self._ledger

        self.loading_changed.emit(False)
        if failure is not None:
            _log.error("Statement load for client %s failed: %s", client_id, failure)
            self.error.emit(f"Could not load the account statement: {failure}")
        self._entries = normalize_transactions(raw)
        _log.info("Statement for client %s: %d entries", client_id, len(self._entries))
        return self._publish()

    def set_filters(self, filters: Optional[LedgerFilter]) -> ClientLedger:
        self._filters = filters or LedgerFilter()
        return self._publish()

    def clear_filters(self) -> ClientLedger:
        return self.set_filters(None)

    def close(self) -> None:
        self._load_generation += 1
        self._closed = True
        self._entries = []
        self._ledger = ClientLedger()

    def teardown(self) -> None:
        self.close()
