"""Edge-triggered alert emission and webhook delivery."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Callable

import httpx
import structlog

from media_monitor.errors import describe_error
from media_monitor.telegram import TelegramConfig, send_telegram_alert


logger = structlog.get_logger(__name__)


class AlertEvent(str, Enum):
    STARTUP_CONNECT_FAILURE = "STARTUP_CONNECT_FAILURE"
    STARTUP_CONNECT_SUCCESS = "STARTUP_CONNECT_SUCCESS"
    MEDIA_SERVER_OFFLINE = "MEDIA_SERVER_OFFLINE"
    MEDIA_SERVER_ONLINE = "MEDIA_SERVER_ONLINE"
    WS_CONN_UNHEALTHY = "WS_CONN_UNHEALTHY"
    WS_CONN_HEALTHY = "WS_CONN_HEALTHY"


class Edge(str, Enum):
    """Direction of a dedup flag transition."""

    RAISE = "raise"  # false -> true: failure-class alert
    CLEAR = "clear"  # true -> false: recovery-class alert


@dataclass
class AlertFlag:
    """Mutable dedup flag, shared by reference between the owner and the gate."""

    raised: bool = False

    def __bool__(self) -> bool:
        return self.raised


def format_alert_text(local_identifier: str, event: AlertEvent, host_type: str, *targets: str) -> str:
    where = " ".join(str(t) for t in targets if t)
    text = f"{local_identifier} triggered {AlertEvent(event).value} for {host_type}"
    return f"{text} {where}" if where else text


class NotificationGate:
    """Emits an alert only when a dedup flag actually changes state.

    The gate holds no state of its own; the flag passed to :meth:`notify` is the
    only thing it mutates.
    """

    def __init__(self, send: Callable[[str], None], local_identifier: str):
        self._send = send
        self.local_identifier = local_identifier

    def describe(self, event: AlertEvent, host_type: str, *targets: str) -> str:
        return format_alert_text(self.local_identifier, event, host_type, *targets)

    def notify(self, flag: AlertFlag, edge: Edge, text: str) -> bool:
        """Flip ``flag`` along ``edge`` and emit ``text`` if that was a transition.

        Returns:
            True if the alert was emitted
        """
        if edge is Edge.RAISE:
            if flag.raised:
                return False
            flag.raised = True
        else:
            if not flag.raised:
                return False
            flag.raised = False

        logger.info("Notifying hook", text=text)
        try:
            self._send(text)
        except Exception as e:
            logger.error("Error on hook notify", text=text, error=str(e))
        return True


async def post_alert(
    client: httpx.AsyncClient, endpoint: str, text: str, *, timeout: float = 10.0
) -> tuple[bool, dict]:
    try:
        resp = await client.post(endpoint, json={"text": text}, timeout=timeout)
        return resp.is_success, {"status_code": resp.status_code}
    except Exception as e:
        return False, {"error": describe_error(e, endpoint)}


class WebhookAlertSender:
    """Fire-and-forget delivery of alert text to the webhook (and Telegram, if set).

    Delivery is never retried and never reported back to the caller; failures are
    only logged.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        endpoint: str | None,
        *,
        timeout: float = 10.0,
        telegram: TelegramConfig | None = None,
    ):
        self._client = client
        self.endpoint = endpoint
        self.timeout = timeout
        self.telegram = telegram
        self._pending: set[asyncio.Task] = set()

        if not endpoint and telegram is None:
            logger.warning("No alert endpoint configured, alerts will only be logged")

    def __call__(self, text: str) -> None:
        self.send(text)

    def send(self, text: str) -> None:
        if not self.endpoint and self.telegram is None:
            logger.warning("Alert dropped, no delivery channel configured", text=text)
            return
        task = asyncio.get_running_loop().create_task(self._deliver(text))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def _deliver(self, text: str) -> None:
        if self.endpoint:
            ok, details = await post_alert(self._client, self.endpoint, text, timeout=self.timeout)
            if ok:
                logger.info("Hook notified", text=text, **details)
            else:
                logger.error("Hook notification failed", text=text, **details)

        if self.telegram is not None:
            ok, details = await send_telegram_alert(self._client, self.telegram, text, timeout=self.timeout)
            log = logger.info if ok else logger.error
            log("Telegram alert attempt", sent_ok=ok, **details)

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait (bounded) for in-flight deliveries; called at shutdown."""
        if not self._pending:
            return
        done, pending = await asyncio.wait(set(self._pending), timeout=timeout)
        for task in pending:
            task.cancel()
        if pending:
            logger.warning("Abandoned undelivered alerts at shutdown", count=len(pending))
