"""Notification dispatcher client with exponential backoff retry logic"""

import asyncio
import logging
import httpx
from typing import Any, Dict, Iterable, Optional
from zimcrowd_gateway.config import settings
from zimcrowd_gateway.domain.models import NotificationChannel, NotificationEvent
from zimcrowd_gateway.infrastructure.observability.metrics import (
    notification_failure_counter,
    notification_latency_histogram,
)

logger = logging.getLogger(__name__)

DEFAULT_CHANNELS = (NotificationChannel.IN_APP, NotificationChannel.EMAIL)


class NotificationClient:
    """Fire-and-forget client for the external notification dispatcher"""

    def __init__(self, webhook_url: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.webhook_url = webhook_url or settings.notification_webhook_url
        self.max_retries = settings.webhook_max_retries
        self.backoff_base = settings.webhook_backoff_base
        self.timeout = settings.http_timeout_seconds
        self.transport = transport

    async def notify(
        self,
        user_id: str,
        event_type: NotificationEvent,
        payload: Dict[str, Any],
        channels: Iterable[NotificationChannel] = DEFAULT_CHANNELS,
    ) -> bool:
        """
        Deliver one event to the dispatcher.

        Retry strategy:
        - Exponential backoff: base, 2x base, 4x base ... (base * 2^(attempt-1))
        - Retries on 5xx/4xx responses and network failures
        - Never raises: the state change this reports on is already committed,
          so a delivery failure is logged and counted only

        Returns:
            True if the dispatcher accepted the event
        """
        body = {
            "user_id": user_id,
            "event_type": event_type.value,
            "channels": [channel.value for channel in channels],
            "payload": payload,
        }

        attempt = 0
        async with httpx.AsyncClient(transport=self.transport) as client:
            while attempt < self.max_retries:
                try:
                    with notification_latency_histogram.time():
                        response = await client.post(self.webhook_url, json=body, timeout=self.timeout)
                        response.raise_for_status()
                        return True

                except (httpx.HTTPStatusError, httpx.RequestError) as e:
                    attempt += 1
                    notification_failure_counter.inc()

                    if attempt >= self.max_retries:
                        logger.warning(
                            f"Notification delivery failed: {e}",
                            extra={"user_id": user_id, "event_type": event_type.value, "attempts": attempt},
                        )
                        return False

                    backoff = self.backoff_base * (2 ** (attempt - 1))
                    await asyncio.sleep(backoff)
        return False
