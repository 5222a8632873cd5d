"""Tests for WebhookNotifier using httpx.MockTransport (no real network)."""

from __future__ import annotations

import httpx
import pytest

from agentic_marketplace.infrastructure.webhook import (
    DELIVERY_HEADER,
    EVENT_HEADER,
    WebhookNotifier,
)

URL = "https://agent.example.com/webhook"
PAYLOAD = {"event": "order.created", "data": {"order_id": "ord-1"}}


def _notifier(handler) -> WebhookNotifier:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return WebhookNotifier(max_attempts=3, retry_delays=[0, 0, 0], http_client=client)


class TestWebhookDelivery:
    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200)

        result = await _notifier(handler).deliver(URL, PAYLOAD, "ord-1")

        assert result.success is True
        assert result.attempts == 1
        assert result.delivery_ids == ["ord-1-1"]
        assert seen[0].headers[EVENT_HEADER] == "order.created"
        assert seen[0].headers[DELIVERY_HEADER] == "ord-1-1"

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self) -> None:
        responses = iter([httpx.Response(503), httpx.Response(500), httpx.Response(202)])

        result = await _notifier(lambda request: next(responses)).deliver(URL, PAYLOAD, "ord-1")

        assert result.success is True
        assert result.attempts == 3
        assert result.delivery_ids == ["ord-1-1", "ord-1-2", "ord-1-3"]

    @pytest.mark.asyncio
    async def test_client_error_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(410)

        result = await _notifier(handler).deliver(URL, PAYLOAD, "ord-1")

        assert result.success is False
        assert result.status_code == 410
        assert calls == 1

    @pytest.mark.asyncio
    async def test_redirect_is_a_final_failure(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(302, headers={"Location": "https://elsewhere.example.com/"})

        result = await _notifier(handler).deliver(URL, PAYLOAD, "ord-1")

        assert result.success is False
        assert result.attempts == 1
        assert result.status_code == 302
        assert calls == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_three_attempts(self) -> None:
        result = await _notifier(lambda request: httpx.Response(502)).deliver(
            URL, PAYLOAD, "ord-1"
        )

        assert result.success is False
        assert result.attempts == 3
        assert result.status_code == 502

    @pytest.mark.asyncio
    async def test_connection_errors_reported_not_raised(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await _notifier(handler).deliver(URL, PAYLOAD, "ord-1")

        assert result.success is False
        assert result.attempts == 3
        assert result.status_code is None
        assert "connection refused" in result.error
