"""
Notification Dispatcher - fire-and-forget trade events.

Events are handed over only after the transaction that produced them has
committed. Delivery runs on background tasks; a failing publisher is
logged and never reaches the caller of the trade operation.
"""

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Iterable, Protocol, runtime_checkable

import httpx

from src.config import Settings, get_settings
from src.core.retry import retry_async, CircuitBreaker
from src.models.enums import TradeEventType


logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationPublisher(Protocol):
    """
    Interface to the Notification service.
    """

    async def publish(
        self,
        event_type: TradeEventType,
        trade_id: uuid.UUID,
        recipient_ids: list[uuid.UUID],
        payload: dict[str, Any] | None = None
    ) -> None:
        ...


class LoggingNotificationPublisher:
    """Publisher used when no notification webhook is configured."""

    async def publish(
        self,
        event_type: TradeEventType,
        trade_id: uuid.UUID,
        recipient_ids: list[uuid.UUID],
        payload: dict[str, Any] | None = None
    ) -> None:
        logger.info(
            f"Notification {event_type.value} for trade {trade_id} "
            f"-> {[str(r) for r in recipient_ids]}"
        )


class WebhookNotificationPublisher:
    """
    POSTs events as JSON to the notification service.
    Transient failures are retried; a circuit breaker stops retries while
    the service keeps failing.
    """

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        circuit_breaker: CircuitBreaker | None = None,
        max_retries: int = 2,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.circuit_breaker = circuit_breaker or CircuitBreaker(failure_threshold=3, recovery_timeout=120)
        self.max_retries = max_retries
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def publish(
        self,
        event_type: TradeEventType,
        trade_id: uuid.UUID,
        recipient_ids: list[uuid.UUID],
        payload: dict[str, Any] | None = None
    ) -> None:
        body = {
            "event_type": event_type.value,
            "trade_id": str(trade_id),
            "recipient_ids": [str(r) for r in recipient_ids],
            "payload": payload or {},
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        client = await self._get_client()
        response = await retry_async(
            client.post,
            self.webhook_url,
            json=body,
            max_retries=self.max_retries,
            base_delay=1.0,
            circuit_breaker=self.circuit_breaker
        )
        response.raise_for_status()


class NotificationDispatcher:
    """
    Schedules publisher calls on background tasks and keeps track of them
    so shutdown can wait for in-flight deliveries.
    """

    def __init__(self, publisher: NotificationPublisher | None = None):
        self.publisher = publisher or LoggingNotificationPublisher()
        self._tasks: set[asyncio.Task] = set()

    def dispatch(
        self,
        event_type: TradeEventType,
        trade_id: uuid.UUID,
        recipient_ids: Iterable[uuid.UUID],
        payload: dict[str, Any] | None = None
    ) -> asyncio.Task:
        """
        Hands an event to the publisher without waiting for it.
        Must be called after the producing transaction committed.
        """
        recipients = list(dict.fromkeys(recipient_ids))
        task = asyncio.create_task(self._deliver(event_type, trade_id, recipients, payload))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _deliver(
        self,
        event_type: TradeEventType,
        trade_id: uuid.UUID,
        recipient_ids: list[uuid.UUID],
        payload: dict[str, Any] | None
    ) -> bool:
        try:
            await self.publisher.publish(event_type, trade_id, recipient_ids, payload)
            return True
        except Exception as e:
            logger.warning(
                f"Notification {event_type.value} for trade {trade_id} failed: "
                f"{type(e).__name__}: {e}"
            )
            return False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every in-flight delivery to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        await self.drain()
        close = getattr(self.publisher, "close", None)
        if close is not None:
            await close()


def build_dispatcher(settings: Settings | None = None) -> NotificationDispatcher:
    """Dispatcher wired to the webhook publisher when one is configured."""
    settings = settings or get_settings()
    if settings.notification_webhook_url:
        publisher = WebhookNotificationPublisher(
            settings.notification_webhook_url,
            timeout=settings.notification_timeout_seconds,
        )
        logger.info("Notification webhook publisher configured")
    else:
        publisher = LoggingNotificationPublisher()
    return NotificationDispatcher(publisher)
