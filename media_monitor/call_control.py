"""Supervision of the single call-control (FreeSWITCH) host.

Same edge-triggered alerting as the media hosts, but simpler: a failed startup
connect (including a rejected auth handshake) goes straight into the reconnection
loop instead of bounded startup retries, and disconnects come from server-pushed
disconnect notices rather than a client-side keepalive.
"""

from __future__ import annotations

import asyncio
import functools
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import structlog

from media_monitor.alerts import AlertEvent, AlertFlag, Edge, NotificationGate
from media_monitor.clients.base import MonitoredClient
from media_monitor.config import CallControlConfig
from media_monitor.errors import AuthError, MonitorError
from media_monitor.failover import race_with_failover
from media_monitor.probe import HealthProbe, ProbeTarget
from media_monitor.reconnect import ReconnectionLoop


logger = structlog.get_logger(__name__)

CALL_CONTROL_HOST_TYPE = "FreeSWITCH"
CALL_CONTROL_KEY = "call-control"

CallControlConnector = Callable[[str, int, str], Awaitable[MonitoredClient]]


@dataclass(eq=False)
class CallControlHost:
    host: str
    port: int
    probe_url: str | None = None
    client: MonitoredClient | None = None
    connected: bool = False
    startup_failure_notified: AlertFlag = field(default_factory=AlertFlag)
    failure_notified: AlertFlag = field(default_factory=AlertFlag)
    healthcheck_failure_notified: AlertFlag = field(default_factory=AlertFlag)

    @property
    def endpoint(self) -> str:
        return f"{self.host}:{self.port}"


class CallControlMonitor:
    def __init__(
        self,
        config: CallControlConfig,
        *,
        connector: CallControlConnector,
        gate: NotificationGate,
        failover_timeout_seconds: float,
        reconnection: ReconnectionLoop | None = None,
        probe: HealthProbe | None = None,
    ):
        self.config = config
        self.connector = connector
        self.gate = gate
        self.failover_timeout_seconds = failover_timeout_seconds
        if reconnection is None:
            reconnection = ReconnectionLoop(config.reconnect_delay_seconds, name=CALL_CONTROL_KEY)
        self.reconnection = reconnection
        self.probe = probe
        self.state = CallControlHost(host=config.host, port=config.port, probe_url=config.probe_url)
        self._closers: set[asyncio.Task] = set()

    def _text(self, event: AlertEvent) -> str:
        return self.gate.describe(event, CALL_CONTROL_HOST_TYPE, self.state.endpoint)

    async def _connect(self) -> MonitoredClient:
        return await race_with_failover(
            functools.partial(self.connector, self.config.host, self.config.port, self.config.credential),
            self.failover_timeout_seconds,
            on_late_result=self._discard_client,
        )

    def _discard_client(self, client: MonitoredClient | None) -> None:
        if client is None:
            return

        async def _close() -> None:
            try:
                await client.close()
            except Exception as e:
                logger.debug("Error closing call-control client", error=str(e))

        task = asyncio.get_running_loop().create_task(_close())
        self._closers.add(task)
        task.add_done_callback(self._closers.discard)

    async def start(self) -> None:
        try:
            client = await self._connect()
        except AuthError as e:
            logger.error("Call-control authentication rejected", endpoint=self.state.endpoint, error=str(e))
            self._on_disconnection(startup=True)
        except MonitorError as e:
            logger.error("Error when starting call-control connection", endpoint=self.state.endpoint, error=str(e))
            self._on_disconnection(startup=True)
        else:
            self._on_connected(client)

        self._start_probe()

    def _start_probe(self) -> None:
        if self.probe is None or not self.state.probe_url:
            return
        self.probe.start(
            ProbeTarget(
                key=CALL_CONTROL_KEY,
                url=self.state.probe_url,
                flag=self.state.healthcheck_failure_notified,
                host_type=CALL_CONTROL_HOST_TYPE,
            )
        )

    def _on_connected(self, client: MonitoredClient) -> None:
        self.state.client = client
        self.state.connected = True
        logger.info("Connected to FreeSWITCH ESL", endpoint=self.state.endpoint)
        self.gate.notify(self.state.startup_failure_notified, Edge.CLEAR, self._text(AlertEvent.STARTUP_CONNECT_SUCCESS))
        self.gate.notify(self.state.failure_notified, Edge.CLEAR, self._text(AlertEvent.MEDIA_SERVER_ONLINE))
        # Last: fires right away if the socket already died after the handshake.
        client.on_disconnect(lambda: self._on_disconnection(client))

    def _on_disconnection(self, client: MonitoredClient | None = None, *, startup: bool = False) -> None:
        if client is not None and self.state.client is not client:
            return
        if self.reconnection.active(CALL_CONTROL_KEY):
            return

        logger.error("FreeSWITCH ESL connection dropped unexpectedly", endpoint=self.state.endpoint)
        old, self.state.client = self.state.client, None
        self.state.connected = False
        self._discard_client(old)
        if startup:
            self.gate.notify(
                self.state.startup_failure_notified, Edge.RAISE, self._text(AlertEvent.STARTUP_CONNECT_FAILURE)
            )
        else:
            self.gate.notify(self.state.failure_notified, Edge.RAISE, self._text(AlertEvent.MEDIA_SERVER_OFFLINE))
        self.reconnection.ensure(
            CALL_CONTROL_KEY, self._attempt_reconnect, self._on_connected, discard=self._discard_client
        )

    async def _attempt_reconnect(self) -> MonitoredClient | None:
        try:
            return await self._connect()
        except MonitorError as e:
            logger.warning(
                "Failed to reconnect to ESL",
                endpoint=self.state.endpoint,
                retry_in_s=self.reconnection.delay_seconds,
                error=str(e),
            )
            return None

    def snapshot(self) -> dict:
        return {
            "endpoint": self.state.endpoint,
            "connected": self.state.connected,
            "reconnecting": self.reconnection.active(CALL_CONTROL_KEY),
        }

    async def stop(self) -> None:
        await self.reconnection.cancel_all()
        if self.probe is not None:
            self.probe.stop(CALL_CONTROL_KEY)
        client, self.state.client = self.state.client, None
        self.state.connected = False
        if client is not None:
            try:
                await client.close()
            except Exception as e:
                logger.debug("Error closing call-control client", error=str(e))
        if self._closers:
            await asyncio.gather(*list(self._closers), return_exceptions=True)
