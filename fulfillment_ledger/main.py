"""
Composition root: builds the gateway, reference cache and controllers the
back-office shell embeds, all from ApiSettings.

Run as `fulfillment-ledger` for a headless check of the API configuration:
it refreshes the warehouse cache and reports pending orders per flow.
"""
from __future__ import annotations

import asyncio
import sqlite3
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .config import ApiSettings
from .constants import FLOW_DELIVERY, FLOW_RECEIVING, REF_WAREHOUSES
from .database import get_connection
from .database.repositories.backoffice_gateway import BackofficeGateway, HttpBackofficeGateway
from .database.repositories.reference_cache_repo import ReferenceCacheRepo
from .modules.fulfillment.controller import FulfillmentSessionController
from .modules.ledger.controller import StatementController
from .utils.errors import IntegrationError
from .utils.loggers import get_logger


@dataclass
class Engine:
    gateway: BackofficeGateway
    conn: sqlite3.Connection
    reference_cache: ReferenceCacheRepo
    receiving: FulfillmentSessionController
    delivery: FulfillmentSessionController
    statement: StatementController

    async def refresh_warehouses(self) -> list:
        return await self.reference_cache.get_or_refresh(REF_WAREHOUSES, self.gateway.fetch_warehouses)

    def close(self) -> None:
        for module in (self.receiving, self.delivery, self.statement):
            module.teardown()
        self.conn.close()


def build_engine(
    settings: Optional[ApiSettings] = None,
    *,
    gateway: Optional[BackofficeGateway] = None,
    db_path: Path | str | None = None,
) -> Engine:
    settings = settings or ApiSettings.from_env()
    gateway = gateway or HttpBackofficeGateway(settings)
    conn = get_connection(db_path)
    cache = ReferenceCacheRepo(conn, ttl_seconds=settings.cache_ttl)
    return Engine(
        gateway=gateway,
        conn=conn,
        reference_cache=cache,
        receiving=FulfillmentSessionController(gateway, FLOW_RECEIVING, reference_cache=cache),
        delivery=FulfillmentSessionController(gateway, FLOW_DELIVERY, reference_cache=cache),
        statement=StatementController(gateway),
    )


async def _check(engine: Engine, log) -> int:
    try:
        warehouses = await engine.refresh_warehouses()
    except IntegrationError as e:
        log.error("Warehouse refresh failed: %s", e)
        return 1
    log.info("Warehouses cached: %d", len(warehouses))
    for ctrl in (engine.receiving, engine.delivery):
        orders = await ctrl.load_orders()
        log.info("%s: %d pending orders", ctrl.get_title(), len(orders))
    return 0


def main() -> int:
    log = get_logger()
    try:
        settings = ApiSettings.from_env()
    except ValueError as e:
        log.error("Configuration error: %s", e)
        return 2
    engine = build_engine(settings)
    try:
        return asyncio.run(_check(engine, log))
    finally:
        engine.close()


if __name__ == "__main__":
    sys.exit(main())
