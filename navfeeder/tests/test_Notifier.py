"""Unit tests for the operations webhook."""

import json

import httpx

from navfeeder.src.Notifier import WebhookNotifier


class TestWebhookNotifier:
    """Test best-effort delivery."""

    async def test_disabled(self) -> None:
        """Without a URL nothing is sent."""
        notifier = WebhookNotifier(None)
        assert notifier.enabled is False
        assert await notifier.send({"updated": 1}) is False

    async def test_posts_json(self) -> None:
        """The payload is posted as JSON."""
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(204)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = WebhookNotifier("https://hooks.example.com/ops", client=client)
            assert await notifier.send({"updated": 1, "e2e": {"status": "OK"}}) is True

        assert received == [{"updated": 1, "e2e": {"status": "OK"}}]

    async def test_error_status_not_raised(self) -> None:
        """Non-2xx responses are logged, never raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = WebhookNotifier("https://hooks.example.com/ops", client=client)
            assert await notifier.send({}) is False

    async def test_transport_error_not_raised(self) -> None:
        """Network failures are logged, never raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            notifier = WebhookNotifier("https://hooks.example.com/ops", client=client)
            assert await notifier.send({}) is False
