"""
Tests for notification dispatch and the webhook publisher.
"""

import json
import uuid

import httpx
import pytest

from src.models.enums import TradeEventType
from src.services.notification_dispatcher import (
    LoggingNotificationPublisher,
    NotificationDispatcher,
    NotificationPublisher,
    WebhookNotificationPublisher,
    build_dispatcher,
)


class FailingPublisher:
    def __init__(self):
        self.calls = 0

    async def publish(self, event_type, trade_id, recipient_ids, payload=None):
        self.calls += 1
        raise httpx.ConnectError("connection refused")


class TestNotificationDispatcher:

    @pytest.mark.asyncio
    async def test_dispatch_delivers_in_background(self, dispatcher, publisher):
        trade_id = uuid.uuid4()
        recipient = uuid.uuid4()

        task = dispatcher.dispatch(TradeEventType.ACCEPTED, trade_id, [recipient, recipient])
        assert await task is True

        assert publisher.events == [(TradeEventType.ACCEPTED, trade_id, [recipient])]

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self):
        failing = FailingPublisher()
        dispatcher = NotificationDispatcher(failing)

        task = dispatcher.dispatch(TradeEventType.SHIPPED, uuid.uuid4(), [uuid.uuid4()])

        assert await task is False
        assert failing.calls == 1

    @pytest.mark.asyncio
    async def test_drain_waits_for_pending(self, dispatcher, publisher):
        for _ in range(3):
            dispatcher.dispatch(TradeEventType.PROPOSED, uuid.uuid4(), [uuid.uuid4()])
        assert dispatcher.pending == 3

        await dispatcher.drain()

        assert dispatcher.pending == 0
        assert len(publisher.events) == 3

    def test_default_publisher_logs(self):
        dispatcher = NotificationDispatcher()
        assert isinstance(dispatcher.publisher, LoggingNotificationPublisher)
        assert isinstance(dispatcher.publisher, NotificationPublisher)


class TestWebhookPublisher:

    @pytest.mark.asyncio
    async def test_posts_event_body(self):
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(json.loads(request.content))
            return httpx.Response(202)

        publisher = WebhookNotificationPublisher("http://notify.local/events")
        publisher._client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        trade_id = uuid.uuid4()
        recipient = uuid.uuid4()

        await publisher.publish(
            TradeEventType.COMPLETED, trade_id, [recipient], {"trade_number": "TRD-1-ABCD"}
        )
        await publisher.close()

        assert len(received) == 1
        body = received[0]
        assert body["event_type"] == "trade_completed"
        assert body["trade_id"] == str(trade_id)
        assert body["recipient_ids"] == [str(recipient)]
        assert body["payload"] == {"trade_number": "TRD-1-ABCD"}

    @pytest.mark.asyncio
    async def test_client_error_raises(self):
        publisher = WebhookNotificationPublisher("http://notify.local/events")
        publisher._client = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda request: httpx.Response(400))
        )

        with pytest.raises(httpx.HTTPStatusError):
            await publisher.publish(TradeEventType.REJECTED, uuid.uuid4(), [uuid.uuid4()])
        await publisher.close()


class TestBuildDispatcher:

    def test_without_webhook(self, settings):
        dispatcher = build_dispatcher(settings.model_copy(update={"notification_webhook_url": None}))
        assert isinstance(dispatcher.publisher, LoggingNotificationPublisher)

    def test_with_webhook(self, settings):
        configured = settings.model_copy(update={"notification_webhook_url": "http://notify.local/events"})
        dispatcher = build_dispatcher(configured)
        assert isinstance(dispatcher.publisher, WebhookNotificationPublisher)
        assert dispatcher.publisher.webhook_url == "http://notify.local/events"
