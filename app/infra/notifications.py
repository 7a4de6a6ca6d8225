"""
Notification Dispatcher

Delivers booking status-change events. Every event is logged; when a
webhook URL is configured the event is also POSTed there as JSON.
Delivery failures are logged and never fail the booking operation.
"""

import logging
from typing import Optional

import httpx

from app.config import get_settings
from app.core.booking.lifecycle import StatusChangeEvent

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Sends status-change events to customers' notification pipeline."""

    def __init__(self, webhook_url: Optional[str] = None, timeout: Optional[float] = None):
        """Initialize dispatcher.

        Args:
            webhook_url: Endpoint receiving events (defaults to settings)
            timeout: Request timeout in seconds
        """
        settings = get_settings()
        self.webhook_url = webhook_url if webhook_url is not None else settings.notification_webhook_url
        self.timeout = timeout if timeout is not None else settings.notification_timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def dispatch(self, event: StatusChangeEvent) -> bool:
        """Deliver one event.

        Args:
            event: Status change to announce

        Returns:
            True if delivered (or logged only), False if the webhook failed
        """
        previous = event.previous_status.value if event.previous_status else "new"
        logger.info(
            f"Booking {event.booking_id} ({event.business_id}): "
            f"{previous} -> {event.new_status.value} by {event.actor.value}"
        )

        if not self.webhook_url:
            return True

        try:
            client = await self._get_client()
            response = await client.post(self.webhook_url, json=event.to_dict())
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.error(f"Failed to deliver notification for booking {event.booking_id}: {e}")
            return False

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None


# Singleton instance
_dispatcher: Optional[NotificationDispatcher] = None


def get_notification_dispatcher() -> NotificationDispatcher:
    """Get singleton notification dispatcher."""
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = NotificationDispatcher()
    return _dispatcher
