"""WebSocket JSON-RPC client for a media server, exposing the monitored-client capability.

The client keeps the session alive with periodic pings. When a ping fails or the
socket drops it re-opens the socket up to ``fail_after`` times: success fires
``reconnect(same_session)``, exhaustion fires ``disconnect`` and the handle is dead.
"""

from __future__ import annotations

import asyncio
import itertools
from typing import Any

import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from media_monitor.clients.base import ClientEvents
from media_monitor.errors import ConnectError
from media_monitor.jsonrpc import build_ping, parse_pong


logger = structlog.get_logger(__name__)

TRANSPORT_ERRORS = (OSError, asyncio.TimeoutError, WebSocketException)


class KurentoClient(ClientEvents):
    def __init__(
        self,
        url: str,
        *,
        fail_after: int = 5,
        ping_interval: float = 5.0,
        open_timeout: float = 15.0,
    ):
        super().__init__()
        self.url = url
        self.fail_after = max(1, int(fail_after))
        self.ping_interval = ping_interval
        self.open_timeout = open_timeout
        self.session_id: str | None = None
        self._ws: ClientConnection | None = None
        self._keepalive: asyncio.Task | None = None
        self._ids = itertools.count(1)
        self._closing = False

    @classmethod
    async def open(
        cls,
        url: str,
        *,
        fail_after: int = 5,
        ping_interval: float = 5.0,
        open_timeout: float = 15.0,
    ) -> "KurentoClient":
        client = cls(url, fail_after=fail_after, ping_interval=ping_interval, open_timeout=open_timeout)
        try:
            result = await client._connect_and_ping()
        except TRANSPORT_ERRORS as e:
            await client._close_socket()
            raise ConnectError(f"{type(e).__name__}: {e}") from e
        client.session_id = result.get("sessionId")
        client._keepalive = asyncio.get_running_loop().create_task(client._keepalive_loop())
        logger.debug("Media server client connected", url=url, session_id=client.session_id)
        return client

    async def _connect_and_ping(self, session_id: str | None = None) -> dict[str, Any]:
        self._ws = await connect(self.url, open_timeout=self.open_timeout)
        return await self._ping(session_id)

    async def _ping(self, session_id: str | None = None) -> dict[str, Any]:
        ws = self._ws
        if ws is None:
            raise ConnectionError("socket is not open")
        request_id = next(self._ids)
        await ws.send(build_ping(request_id, int(self.ping_interval * 1000), session_id))

        async def _pong() -> dict[str, Any]:
            while True:
                result = parse_pong(await ws.recv(), request_id)
                if result is not None:
                    return result

        return await asyncio.wait_for(_pong(), timeout=self.ping_interval * 2)

    async def _keepalive_loop(self) -> None:
        while not self._closing:
            await asyncio.sleep(self.ping_interval)
            try:
                await self._ping(self.session_id)
                continue
            except (ConnectionClosed, *TRANSPORT_ERRORS) as e:
                logger.warning("Media server keepalive failed", url=self.url, error=str(e))

            if not await self._reopen():
                logger.error("Media server unreachable, giving up", url=self.url, attempts=self.fail_after)
                await self._close_socket()
                self._emit_disconnect()
                return

    async def _reopen(self) -> bool:
        previous = self.session_id
        await self._close_socket()
        for attempt in range(1, self.fail_after + 1):
            if self._closing:
                return False
            try:
                result = await self._connect_and_ping(previous)
            except (ConnectionClosed, *TRANSPORT_ERRORS) as e:
                logger.info("Media server reconnect attempt failed", url=self.url, attempt=attempt, error=str(e))
                await self._close_socket()
                await asyncio.sleep(self.ping_interval)
                continue

            current = result.get("sessionId")
            same_session = previous is not None and current == previous
            self.session_id = current or previous
            logger.info("Media server socket re-established", url=self.url, same_session=same_session)
            self._emit_reconnect(same_session)
            return True
        return False

    async def _close_socket(self) -> None:
        ws, self._ws = self._ws, None
        if ws is None:
            return
        try:
            await ws.close()
        except TRANSPORT_ERRORS as e:
            logger.debug("Error closing media server socket", url=self.url, error=str(e))

    async def close(self) -> None:
        self._closing = True
        self._drop_listeners()
        task, self._keepalive = self._keepalive, None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        await self._close_socket()
