"""Order notification dispatcher — realtime, webhook, local.

send_order_notification() runs three channels in a fixed order:
1. realtime: one-shot push to the realtime server when a URL is configured
   (producer side), otherwise a broadcast to the in-process event hub
2. webhook: retried POST to the notification webhook, skipped when no URL
   is configured
3. local: synchronous listeners on the LocalEventBus

Channel failures are isolated: each one becomes a ChannelOutcome and the
remaining channels still run. Nothing here raises for delivery errors.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from typing import Any

import httpx

from storefront.config import settings
from storefront.models import EventKind, NotificationEvent, Order, utcnow_iso
from storefront.notifications.events import LocalEventBus, OrderEventHub
from storefront.notifications.events import bus as default_bus
from storefront.notifications.events import hub as default_hub
from storefront.notifications.realtime import (
    TransportClosed,
    TransportFactory,
    encode_frame,
    open_websocket,
)
from storefront.webhooks.sender import Sleep, send_webhook
from storefront.webhooks.signing import serialize_payload, sign

logger = logging.getLogger(__name__)


@dataclass
class ChannelOutcome:
    """Result of one notification channel."""

    success: bool
    error: str = ""
    skipped: bool = False
    attempts: int = 0
    status: int | None = None
    delivered: int = 0


@dataclass
class NotificationResult:
    """Per-channel results of send_order_notification()."""

    realtime: ChannelOutcome
    webhook: ChannelOutcome
    local: ChannelOutcome

    @property
    def delivered_anywhere(self) -> bool:
        return self.realtime.success or self.webhook.success

    def as_dict(self) -> dict[str, Any]:
        return {
            "realtime": asdict(self.realtime),
            "webhook": asdict(self.webhook),
            "local": asdict(self.local),
        }


def format_order_notification(order: Order | dict[str, Any]) -> dict[str, Any]:
    """Short summary of an order for notification consumers."""
    data = order.to_dict() if isinstance(order, Order) else order
    shipping = data.get("shippingDetails") or {}
    return {
        "orderId": data.get("orderId"),
        "customerName": shipping.get("fullName", ""),
        "customerEmail": shipping.get("email", ""),
        "total": data.get("total", 0),
        "status": data.get("status", "pending"),
        "timestamp": utcnow_iso(),
    }


class NotificationDispatcher:
    """Fans an order event out to every configured channel."""

    def __init__(
        self,
        *,
        realtime_url: str | None = None,
        webhook_url: str | None = None,
        webhook_retries: int = 3,
        webhook_timeout: float = 10.0,
        webhook_secret: str | None = None,
        connect_timeout: float = 10.0,
        local_bus: LocalEventBus | None = None,
        event_hub: OrderEventHub | None = None,
        transport_factory: TransportFactory = open_websocket,
        http_client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.realtime_url = realtime_url or ""
        self.webhook_url = webhook_url or ""
        self._webhook_retries = webhook_retries
        self._webhook_timeout = webhook_timeout
        self._webhook_secret = webhook_secret
        self._connect_timeout = connect_timeout
        self.bus = local_bus if local_bus is not None else default_bus
        self.hub = event_hub if event_hub is not None else default_hub
        self._transport_factory = transport_factory
        self._http = http_client
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls, *, push_to_realtime_server: bool = False, **kwargs: Any
    ) -> NotificationDispatcher:
        """Dispatcher wired from settings.

        The API process *is* the realtime server, so it broadcasts to the local
        hub; standalone producers set ``push_to_realtime_server``.
        """
        return cls(
            realtime_url=settings.websocket_url if push_to_realtime_server else "",
            webhook_url=settings.notification_webhook_url,
            webhook_retries=settings.notification_webhook_retries,
            webhook_timeout=settings.webhook_timeout_seconds,
            webhook_secret=settings.webhook_secret or None,
            connect_timeout=settings.realtime_connect_timeout_seconds,
            **kwargs,
        )

    # -- public api ----------------------------------------------------------

    async def send_order_notification(
        self,
        order: Order | dict[str, Any],
        kind: EventKind = EventKind.NEW_ORDER,
    ) -> NotificationResult:
        data = order.to_dict() if isinstance(order, Order) else dict(order)
        event = NotificationEvent(kind, data)

        realtime = await self._send_realtime(event)
        webhook = await self._send_webhook(event)
        local = self._emit_local(event)

        logger.info(
            "Notification %s for %s: realtime=%s webhook=%s local=%d listener(s)",
            kind.value,
            data.get("orderId", "?"),
            "ok" if realtime.success else realtime.error,
            "skipped" if webhook.skipped else ("ok" if webhook.success else webhook.error),
            local.delivered,
        )
        return NotificationResult(realtime=realtime, webhook=webhook, local=local)

    async def send_status_update_notification(self, update: dict[str, Any]) -> NotificationResult:
        """Notify all channels that an order's status changed."""
        return await self.send_order_notification(update, EventKind.ORDER_STATUS_UPDATE)

    # -- channels ------------------------------------------------------------

    async def _send_realtime(self, event: NotificationEvent) -> ChannelOutcome:
        payload = event.to_payload()
        if not self.realtime_url:
            delivered = self.hub.broadcast(payload, user_id=event.payload.get("userId"))
            return ChannelOutcome(success=True, delivered=delivered)

        try:
            transport = await asyncio.wait_for(
                self._transport_factory(self.realtime_url, self._connect_timeout),
                self._connect_timeout,
            )
        except (TransportClosed, OSError, asyncio.TimeoutError) as exc:
            error = str(exc) or "Connection timed out"
            logger.warning("Realtime push to %s failed: %s", self.realtime_url, error)
            return ChannelOutcome(success=False, error=error, attempts=1)

        try:
            await transport.send(self._producer_frame(event))
        except (TransportClosed, OSError) as exc:
            logger.warning("Realtime push to %s failed: %s", self.realtime_url, exc)
            return ChannelOutcome(success=False, error=str(exc), attempts=1)
        finally:
            try:
                await transport.close()
            except (TransportClosed, OSError):
                logger.debug("Realtime transport already closed")
        return ChannelOutcome(success=True, attempts=1, delivered=1)

    def _producer_frame(self, event: NotificationEvent) -> str:
        """Realtime servers only fan out producer frames signed with the webhook secret."""
        payload = event.to_payload()
        signature = None
        if self._webhook_secret:
            signature = sign(serialize_payload(payload), self._webhook_secret)
        return encode_frame(event.kind.value, payload, signature)

    async def _send_webhook(self, event: NotificationEvent) -> ChannelOutcome:
        if not self.webhook_url:
            return ChannelOutcome(
                success=False, error="Notification webhook URL not configured", skipped=True
            )
        result = await send_webhook(
            self.webhook_url,
            event.to_payload(),
            retries=self._webhook_retries,
            timeout=self._webhook_timeout,
            secret=self._webhook_secret,
            client=self._http,
            sleep=self._sleep,
        )
        return ChannelOutcome(
            success=result.success,
            error=result.error,
            attempts=result.attempts,
            status=result.status,
            delivered=1 if result.success else 0,
        )

    def _emit_local(self, event: NotificationEvent) -> ChannelOutcome:
        listeners = self.bus.listener_count(event.kind)
        failures = self.bus.emit(event.kind, event.to_payload())
        return ChannelOutcome(success=True, delivered=listeners - failures)
