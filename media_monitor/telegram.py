"""Optional Telegram mirror for alert lines."""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

import httpx

from media_monitor.errors import describe_error


TELEGRAM_API_URL = "https://api.telegram.org"


@dataclass(frozen=True)
class TelegramConfig:
    bot_token: str
    chat_id: str

    @property
    def send_url(self) -> str:
        return f"{TELEGRAM_API_URL}/bot{self.bot_token}/sendMessage"


def telegram_config_from_env() -> TelegramConfig | None:
    bot_token = (os.getenv("TELEGRAM_BOT_TOKEN") or "").strip()
    chat_id = (os.getenv("TELEGRAM_CHAT_ID") or "").strip()
    if not bot_token or not chat_id:
        return None
    return TelegramConfig(bot_token=bot_token, chat_id=chat_id)


async def send_telegram_alert(
    client: httpx.AsyncClient, config: TelegramConfig, text: str, *, timeout: float = 15.0
) -> tuple[bool, dict[str, Any]]:
    """Post one alert line to the configured chat.

    The returned details are safe to log: they never contain the bot token.
    """
    try:
        resp = await client.post(config.send_url, json={"chat_id": config.chat_id, "text": text}, timeout=timeout)
        data = resp.json()
    except (httpx.HTTPError, ValueError) as e:
        return False, {"error": describe_error(e, config.bot_token)}

    details: dict[str, Any] = {"status_code": resp.status_code}
    ok = isinstance(data, dict) and bool(data.get("ok"))
    if ok and isinstance(data.get("result"), dict):
        details["message_id"] = data["result"].get("message_id")
    elif not ok and isinstance(data, dict) and data.get("description"):
        details["description"] = str(data["description"]).replace(config.bot_token, "<redacted>")
    return ok, details
