from __future__ import annotations

import json

import httpx
import pytest

from portal_tracker.config import TelegramSettings
from portal_tracker.notifications.telegram import TelegramNotifier, build_alert_message, send_telegram_message
from portal_tracker.state import AlertLevel
from portal_tracker.tracking.alerts import AlertEvaluation


def _evaluation(level: AlertLevel, previous: AlertLevel = AlertLevel.NORMAL, queues=()) -> AlertEvaluation:
    return AlertEvaluation(level=level, previous_level=previous, triggering_queues=tuple(queues))


def test_alert_messages() -> None:
    assert build_alert_message(_evaluation(AlertLevel.RED, queues=("G", "FRD"))) == "🔴 Queue alert: need to clear G, FRD"
    assert "control the portal" in build_alert_message(_evaluation(AlertLevel.YELLOW))
    assert "returned to normal" in build_alert_message(_evaluation(AlertLevel.NORMAL, AlertLevel.RED))


def test_notifier_disabled_without_credentials() -> None:
    assert TelegramNotifier(TelegramSettings()).enabled is False
    assert TelegramNotifier(TelegramSettings(bot_token="t", chat_id="1")).enabled is True


@pytest.mark.asyncio
async def test_notifier_posts_on_transition_only() -> None:
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append((str(request.url), json.loads(request.content)))
        return httpx.Response(200, json={"ok": True})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    notifier = TelegramNotifier(TelegramSettings(bot_token="123:abc", chat_id="42"), client=client)

    assert await notifier.notify_alert(_evaluation(AlertLevel.RED, queues=("M",))) is True
    assert await notifier.notify_alert(_evaluation(AlertLevel.RED, AlertLevel.RED, queues=("M",))) is False

    assert len(sent) == 1
    url, payload = sent[0]
    assert url == "https://api.telegram.org/bot123:abc/sendMessage"
    assert payload == {"chat_id": "42", "text": "🔴 Queue alert: need to clear M"}
    await client.aclose()


@pytest.mark.asyncio
async def test_send_failure_redacts_token() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError(f"cannot reach {request.url}")

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    settings = TelegramSettings(bot_token="123:secret", chat_id="42")

    ok, data = await send_telegram_message(client, settings, "hello")

    assert ok is False
    assert "123:secret" not in data["error"]
    assert "<redacted>" in data["error"]
    await client.aclose()
