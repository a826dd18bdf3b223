"""Tests for the notification dispatcher client"""

import asyncio
import json
import httpx
from zimcrowd_gateway.domain.models import NotificationChannel, NotificationEvent
from zimcrowd_gateway.infrastructure.clients.notifications import NotificationClient


def _client(handler) -> NotificationClient:
    client = NotificationClient(webhook_url="http://dispatcher.test/notifications", transport=httpx.MockTransport(handler))
    client.backoff_base = 0
    return client


def test_notify_posts_event_body():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(202)

    delivered = asyncio.run(
        _client(handler).notify("user_1", NotificationEvent.LOAN_APPROVED, {"loan_id": "abc", "amount_cents": 10_000})
    )

    assert delivered is True
    assert len(requests) == 1
    body = json.loads(requests[0].content)
    assert body == {
        "user_id": "user_1",
        "event_type": NotificationEvent.LOAN_APPROVED.value,
        "channels": [NotificationChannel.IN_APP.value, NotificationChannel.EMAIL.value],
        "payload": {"loan_id": "abc", "amount_cents": 10_000},
    }


def test_notify_retries_then_succeeds():
    responses = iter([httpx.Response(503), httpx.Response(500), httpx.Response(200)])

    def handler(request: httpx.Request) -> httpx.Response:
        return next(responses)

    assert asyncio.run(_client(handler).notify("user_1", NotificationEvent.INVESTMENT_MATURED, {})) is True


def test_notify_gives_up_without_raising():
    """Test webhook failure after max retries"""
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ConnectError("dispatcher down", request=request)

    client = _client(handler)
    delivered = asyncio.run(client.notify("user_1", NotificationEvent.LOAN_APPROVED, {}))

    assert delivered is False
    assert len(attempts) == client.max_retries
