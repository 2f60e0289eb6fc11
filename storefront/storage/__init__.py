"""Order and product storage."""

from __future__ import annotations

from storefront.config import Settings
from storefront.storage.base import OrderStore, ProductCatalog
from storefront.storage.memory import MemoryOrderStore, MemoryProductCatalog
from storefront.storage.sheets import (
    SheetClient,
    SheetsOrderRepository,
    SheetsProductCatalog,
    build_sheets_service,
)

__all__ = [
    "MemoryOrderStore",
    "MemoryProductCatalog",
    "OrderStore",
    "ProductCatalog",
    "SheetsOrderRepository",
    "SheetsProductCatalog",
    "stores_from_settings",
]


def stores_from_settings(cfg: Settings) -> tuple[OrderStore, ProductCatalog]:
    """Sheets-backed stores when a sheet is configured, otherwise in-memory."""
    if cfg.google_sheet_id and cfg.google_credentials_b64:
        client = SheetClient(build_sheets_service(cfg.google_credentials_b64), cfg.google_sheet_id)
        return SheetsOrderRepository(client), SheetsProductCatalog(client)
    return MemoryOrderStore(), MemoryProductCatalog()
