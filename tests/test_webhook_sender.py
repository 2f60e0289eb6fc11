"""Tests for outbound webhook delivery.

Tests:
- send_order_webhook: envelope, signature over the sent bytes, headers,
  single attempt, failures returned not raised
- send_webhook: retries + 1 attempts, 2^attempt backoff, early success
"""

from __future__ import annotations

import json

import httpx
import pytest

from storefront.retry import RetryPolicy
from storefront.webhooks.sender import (
    ORDER_WEBHOOK_USER_AGENT,
    WebhookResult,
    send_order_webhook,
    send_webhook,
)
from storefront.webhooks.signing import SIGNATURE_HEADER, verify_signature

TEST_SECRET = "test-webhook-secret"
URL = "http://inventory.test/api/orders/receive-webhook"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


# ── Order webhook ──────────────────────────────────────────────────────────


class TestSendOrderWebhook:
    """Single signed POST of a new_order event."""

    @pytest.mark.asyncio
    async def test_signed_envelope(self, order):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"received": True})

        async with _client(handler) as client:
            result = await send_order_webhook(order, url=URL, secret=TEST_SECRET, client=client)

        assert result.success is True
        assert result.data == {"received": True}
        assert result.attempts == 1

        request = seen[0]
        body = json.loads(request.content)
        assert body["event"] == "new_order"
        assert body["data"]["orderId"] == order.order_id
        assert "timestamp" in body
        assert request.headers["content-type"] == "application/json"
        assert request.headers["user-agent"] == ORDER_WEBHOOK_USER_AGENT
        assert verify_signature(request.content, request.headers[SIGNATURE_HEADER], TEST_SECRET)

    @pytest.mark.asyncio
    async def test_non_2xx_is_failure(self, order):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        async with _client(handler) as client:
            result = await send_order_webhook(order, url=URL, secret=TEST_SECRET, client=client)

        assert result.success is False
        assert "500" in result.error
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_connection_error_returned(self, order_dict):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as client:
            result = await send_order_webhook(
                order_dict, url=URL, secret=TEST_SECRET, client=client
            )

        assert isinstance(result, WebhookResult)
        assert result.success is False
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_timeout_reported(self, order):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        async with _client(handler) as client:
            result = await send_order_webhook(
                order, url=URL, secret=TEST_SECRET, timeout=10.0, client=client
            )

        assert result.success is False
        assert result.error == "Timed out after 10s"

    @pytest.mark.asyncio
    async def test_empty_body_gives_no_data(self, order):
        async with _client(lambda request: httpx.Response(204)) as client:
            result = await send_order_webhook(order, url=URL, secret=TEST_SECRET, client=client)
        assert result.success is True
        assert result.data is None


# ── Retry ──────────────────────────────────────────────────────────────────


class TestSendWebhookRetry:
    """Bounded retries with exponential backoff."""

    @pytest.mark.asyncio
    async def test_exhausts_retries_with_backoff(self, fake_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        async with _client(handler) as client:
            result = await send_webhook(
                URL, {"event": "new_order"}, retries=3, client=client, sleep=fake_sleep
            )

        assert result.success is False
        assert result.attempts == 4
        assert len(calls) == 4
        assert fake_sleep.delays == [1, 2, 4]

    @pytest.mark.asyncio
    async def test_zero_retries_single_attempt(self, fake_sleep):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500)

        async with _client(handler) as client:
            result = await send_webhook(URL, {}, retries=0, client=client, sleep=fake_sleep)

        assert result.attempts == 1
        assert len(calls) == 1
        assert fake_sleep.delays == []

    @pytest.mark.asyncio
    async def test_success_after_failures(self, fake_sleep):
        statuses = iter([500, 502, 200])

        def handler(request):
            return httpx.Response(next(statuses), json={"ok": True})

        async with _client(handler) as client:
            result = await send_webhook(URL, {}, retries=3, client=client, sleep=fake_sleep)

        assert result.success is True
        assert result.attempts == 3
        assert result.status == 200
        assert fake_sleep.delays == [1, 2]

    @pytest.mark.asyncio
    async def test_timeouts_count_as_attempts(self, fake_sleep):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        async with _client(handler) as client:
            result = await send_webhook(URL, {}, retries=2, client=client, sleep=fake_sleep)

        assert result.attempts == 3
        assert fake_sleep.delays == [1, 2]

    @pytest.mark.asyncio
    async def test_signed_when_secret_given(self, fake_sleep):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200)

        async with _client(handler) as client:
            await send_webhook(URL, {"a": 1}, secret=TEST_SECRET, client=client, sleep=fake_sleep)

        assert verify_signature(seen[0].content, seen[0].headers[SIGNATURE_HEADER], TEST_SECRET)

    @pytest.mark.asyncio
    async def test_custom_policy(self, fake_sleep):
        async with _client(lambda request: httpx.Response(500)) as client:
            result = await send_webhook(
                URL,
                {},
                client=client,
                sleep=fake_sleep,
                policy=RetryPolicy.linear(max_retries=2, base_delay=0.5),
            )
        assert result.attempts == 3
        assert fake_sleep.delays == [0.5, 1.0]
