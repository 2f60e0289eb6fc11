"""Service container attached to the FastAPI app (``app.state.services``)."""

from __future__ import annotations

from dataclasses import dataclass

import httpx
from fastapi import Request

from storefront.checkout.bank_transfer import BankTransferService
from storefront.config import Settings
from storefront.notifications.dispatcher import NotificationDispatcher
from storefront.notifications.events import OrderEventHub
from storefront.receipts.mailer import OrderMailer
from storefront.storage import stores_from_settings
from storefront.storage.base import OrderStore, ProductCatalog


@dataclass
class Services:
    """Everything the route handlers need, built once per app."""

    settings: Settings
    orders: OrderStore
    catalog: ProductCatalog
    dispatcher: NotificationDispatcher
    mailer: OrderMailer
    bank_transfers: BankTransferService
    hub: OrderEventHub
    # Shared client for outbound order webhooks; None opens one per call
    http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, cfg: Settings) -> Services:
        orders, catalog = stores_from_settings(cfg)
        dispatcher = NotificationDispatcher.from_settings()
        return cls(
            settings=cfg,
            orders=orders,
            catalog=catalog,
            dispatcher=dispatcher,
            mailer=OrderMailer(),
            bank_transfers=BankTransferService(redis_url=cfg.redis_url),
            hub=dispatcher.hub,
        )


def get_services(request: Request) -> Services:
    return request.app.state.services
