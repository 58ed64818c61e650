"""Periodic side-channel liveness probing.

The primary client's own disconnect detection misses partial or asymmetric network
degradation, so each probed host gets an independent short-lived WebSocket every
interval. Probe alerts are independent of the connection state machine and may fire
while the registry still lists the host as connected.
"""

from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from typing import Awaitable, Callable

import structlog
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from media_monitor.alerts import AlertEvent, AlertFlag, Edge, NotificationGate
from media_monitor.errors import FailoverTimeoutError, MonitorError, ProbeError
from media_monitor.failover import race_with_failover
from media_monitor.jsonrpc import build_ping, parse_pong


logger = structlog.get_logger(__name__)

ProbeFn = Callable[[str], Awaitable[None]]

_request_ids = itertools.count(1)


async def _open_side_channel(url: str, timeout_seconds: float) -> ClientConnection:
    try:
        return await connect(url, open_timeout=timeout_seconds)
    except (OSError, asyncio.TimeoutError, WebSocketException) as e:
        logger.error("Connection healthcheck: WS conn error", url=url, error=str(e))
        raise ProbeError(f"{type(e).__name__}: {e}") from e


async def _await_pong(ws: ClientConnection, request_id: int, interval_ms: int) -> None:
    try:
        await ws.send(build_ping(request_id, interval_ms))
        while True:
            if parse_pong(await ws.recv(), request_id) is not None:
                return
    except ConnectionClosed as e:
        logger.error("Connection healthcheck: WS closed prematurely", code=e.rcvd.code if e.rcvd else None)
        raise ProbeError(f"closed before pong: {e}") from e


async def _round_trip(url: str, timeout_seconds: float, interval_ms: int) -> None:
    ws = await _open_side_channel(url, timeout_seconds)
    try:
        await _await_pong(ws, next(_request_ids), interval_ms)
    finally:
        await ws.close()


async def probe_media_server(url: str, *, timeout_seconds: float, interval_ms: int) -> None:
    """One ping/pong round trip over a fresh WebSocket.

    Opening the socket and waiting for the pong share one ``timeout_seconds`` budget.

    Raises:
        ProbeError: open failed, no matching pong within ``timeout_seconds`` of starting, or the
            socket closed before the pong arrived
    """
    round_trip = asyncio.ensure_future(_round_trip(url, timeout_seconds, interval_ms))
    try:
        await race_with_failover(lambda: round_trip, timeout_seconds)
    except FailoverTimeoutError as e:
        logger.error("Connection healthcheck: no pong in time", url=url, timeout_s=timeout_seconds)
        raise ProbeError(f"no pong within {timeout_seconds}s") from e
    finally:
        if not round_trip.done():
            round_trip.cancel()
            await asyncio.gather(round_trip, return_exceptions=True)


async def probe_websocket_open(url: str, *, timeout_seconds: float) -> None:
    """Open-only probe: the handshake completing is the liveness signal."""
    ws = await _open_side_channel(url, timeout_seconds)
    await ws.close()


@dataclass
class ProbeTarget:
    key: str
    url: str
    flag: AlertFlag
    host_type: str
    address: str = ""


class HealthProbe:
    def __init__(self, gate: NotificationGate, probe: ProbeFn, interval_seconds: float):
        self.gate = gate
        self.probe = probe
        self.interval_seconds = interval_seconds
        self._timers: dict[str, asyncio.Task] = {}

    def start(self, target: ProbeTarget) -> bool:
        """Start probing ``target``; a no-op if a probe already runs for its key."""
        if target.key in self._timers:
            return False
        logger.info("Starting connection healthchecker", url=target.url, address=target.address)
        self._timers[target.key] = asyncio.get_running_loop().create_task(self._run(target))
        return True

    def running(self, key: str) -> bool:
        return key in self._timers

    async def _run(self, target: ProbeTarget) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.check(target)
            except Exception:
                logger.exception("Healthcheck crashed", url=target.url, address=target.address)

    async def check(self, target: ProbeTarget) -> bool:
        try:
            await self.probe(target.url)
        except MonitorError as e:
            logger.error("Healthcheck FAILED", url=target.url, address=target.address, error=str(e))
            text = self.gate.describe(AlertEvent.WS_CONN_UNHEALTHY, target.host_type, target.url, target.address)
            self.gate.notify(target.flag, Edge.RAISE, text)
            return False

        text = self.gate.describe(AlertEvent.WS_CONN_HEALTHY, target.host_type, target.url, target.address)
        self.gate.notify(target.flag, Edge.CLEAR, text)
        return True

    def stop(self, key: str) -> None:
        task = self._timers.pop(key, None)
        if task is not None:
            task.cancel()

    async def stop_all(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
