"""Tests for confirmation webhook delivery."""

import json

import httpx
import pytest

from sentinel.errors import WebhookDeliveryError
from sentinel.notifications.push import ApprovalNotification, PushGateway
from sentinel.notifications.webhook import WebhookClient
from sentinel.schemas.reservation import PendingActionType
from tests.conftest import utc

URL = "https://agent.example/hooks/confirm"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestWebhookClient:
    @pytest.mark.asyncio
    async def test_posts_json_with_source_header(self, webhook_config):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(204)

        async with _client(handler) as http:
            await WebhookClient(webhook_config, http).post_confirmation(
                URL, {"appointmentId": "a1", "status": "confirmed"}, headers={"x-trace": "t1"}
            )

        request = seen[0]
        assert request.method == "POST"
        assert str(request.url) == URL
        assert request.headers["content-type"] == "application/json"
        assert request.headers["x-sentinel-source"] == "nstyle-sentinel"
        assert request.headers["x-trace"] == "t1"
        assert json.loads(request.content) == {"appointmentId": "a1", "status": "confirmed"}

    @pytest.mark.asyncio
    async def test_non_2xx_raises_with_truncated_body(self, webhook_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway " * 50)

        async with _client(handler) as http:
            with pytest.raises(WebhookDeliveryError) as excinfo:
                await WebhookClient(webhook_config, http).post_confirmation(URL, {})

        assert excinfo.value.status_code == 502
        message = str(excinfo.value)
        assert message.startswith("Webhook failed (502): bad gateway")
        assert len(message) <= len("Webhook failed (502): ") + 200

    @pytest.mark.asyncio
    async def test_transport_error_raises(self, webhook_config):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        async with _client(handler) as http:
            with pytest.raises(WebhookDeliveryError, match="transport error"):
                await WebhookClient(webhook_config, http).post_confirmation(URL, {})

    @pytest.mark.asyncio
    async def test_malformed_url_raises_delivery_error(self, webhook_config):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(204)

        async with _client(handler) as http:
            with pytest.raises(WebhookDeliveryError, match="transport error"):
                await WebhookClient(webhook_config, http).post_confirmation("http://[::1/hook", {})


class TestPushGateway:
    @pytest.mark.asyncio
    async def test_send_only_logs(self, caplog):
        notification = ApprovalNotification(
            appointment_id="a1",
            action=PendingActionType.BOOK,
            start_time=utc(2026, 3, 2, 10, 0),
            end_time=utc(2026, 3, 2, 11, 0),
            version=1,
        )
        with caplog.at_level("INFO", logger="sentinel.notifications.push"):
            await PushGateway().send_pending_approval(notification)
        assert "book a1" in caplog.text
