from __future__ import annotations

import httpx
import structlog

from ..config import TelegramSettings
from ..state import AlertLevel
from ..tracking.alerts import AlertEvaluation


logger = structlog.get_logger(__name__)


async def send_telegram_message(
    client: httpx.AsyncClient, settings: TelegramSettings, text: str
) -> tuple[bool, dict]:
    url = f"https://api.telegram.org/bot{settings.bot_token}/sendMessage"
    payload = {"chat_id": settings.chat_id, "text": text}
    try:
        resp = await client.post(url, json=payload, timeout=15.0)
        data = resp.json()
        return bool(data.get("ok")), data
    except Exception as e:
        msg = f"{type(e).__name__}: {e}"
        if settings.bot_token:
            msg = msg.replace(settings.bot_token, "<redacted>")
        return False, {"ok": False, "error": msg}


def build_alert_message(evaluation: AlertEvaluation) -> str:
    if evaluation.level is AlertLevel.RED:
        return f"🔴 Queue alert: need to clear {', '.join(evaluation.triggering_queues)}"
    if evaluation.level is AlertLevel.YELLOW:
        return "🟡 Queue warning: need to control the portal"
    return "🟢 Queues returned to normal"


class TelegramNotifier:
    """Mirrors queue alert transitions to a Telegram chat."""

    def __init__(self, settings: TelegramSettings, client: httpx.AsyncClient | None = None):
        self.settings = settings
        self._client = client
        self._owns_client = client is None

    @property
    def enabled(self) -> bool:
        return self.settings.enabled

    async def notify_alert(self, evaluation: AlertEvaluation) -> bool:
        if not self.enabled or not evaluation.changed:
            return False
        if self._client is None:
            self._client = httpx.AsyncClient()
        ok, data = await send_telegram_message(self._client, self.settings, build_alert_message(evaluation))
        if ok:
            logger.info("Sent Telegram alert", level=evaluation.level.value)
        else:
            logger.warning("Telegram alert failed", error=data.get("error") or data.get("description"))
        return ok

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
