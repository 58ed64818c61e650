"""Lifecycle supervision for the configured media server hosts.

Startup: one bounded-retry connect task per descriptor, all concurrent. Steady state:
each connected host is CONNECTED until its client reports a disconnect (or a
reconnect into a different session), then DISCONNECTED with exactly one reconnection
loop running until a fresh client is obtained.
"""

from __future__ import annotations

import asyncio
import functools
import math
from typing import Any, Awaitable, Coroutine

import structlog

from media_monitor.alerts import AlertEvent, Edge, NotificationGate
from media_monitor.clients.base import Connector, MonitoredClient
from media_monitor.config import MonitorConfig
from media_monitor.errors import MonitorError
from media_monitor.failover import race_with_failover
from media_monitor.hosts import MEDIA_HOST_TYPE, Host, HostRegistry
from media_monitor.probe import HealthProbe, ProbeTarget
from media_monitor.reconnect import ReconnectionLoop


logger = structlog.get_logger(__name__)


class MediaServerSupervisor:
    def __init__(
        self,
        config: MonitorConfig,
        *,
        connector: Connector,
        gate: NotificationGate,
        registry: HostRegistry | None = None,
        reconnection: ReconnectionLoop | None = None,
        probe: HealthProbe | None = None,
    ):
        self.config = config
        self.connector = connector
        self.gate = gate
        self.registry = registry if registry is not None else HostRegistry()
        self.reconnection = reconnection if reconnection is not None else ReconnectionLoop(config.reconnect_delay_seconds)
        self.probe = probe if config.probe_enabled else None
        self.hosts: list[Host] = []
        self._startup_tasks: set[asyncio.Task] = set()
        self._closers: set[asyncio.Task] = set()

    @property
    def max_startup_retries(self) -> float:
        retries = self.config.max_startup_retries
        return math.inf if retries is None else retries

    @staticmethod
    def _spawn(coro: Coroutine[Any, Any, Any], tracked: set[asyncio.Task]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        tracked.add(task)
        task.add_done_callback(tracked.discard)
        return task

    def _text(self, event: AlertEvent, host: Host) -> str:
        return self.gate.describe(event, MEDIA_HOST_TYPE, host.url, host.address)

    def _connect(self, url: str) -> Awaitable[MonitoredClient]:
        return race_with_failover(
            functools.partial(self.connector, url),
            self.config.failover_timeout_seconds,
            on_late_result=self._discard_client,
        )

    def _discard_client(self, client: MonitoredClient | None) -> None:
        if client is None:
            return
        self._spawn(self._close_quietly(client), self._closers)

    @staticmethod
    async def _close_quietly(client: MonitoredClient) -> None:
        try:
            await client.close()
        except Exception as e:
            logger.debug("Error closing discarded client", error=str(e))

    async def start(self) -> list[asyncio.Task]:
        """Kick off one independent startup connect per configured host."""
        tasks = []
        for descriptor in self.config.descriptors():
            host = Host.from_descriptor(descriptor)
            self.hosts.append(host)
            tasks.append(self._spawn(self.connect_with_bound(host, self.max_startup_retries), self._startup_tasks))
        logger.info("Startup connections scheduled", hosts=len(tasks), max_retries=self.config.max_startup_retries)
        return tasks

    async def connect_with_bound(self, host: Host, max_retries: float) -> Host | None:
        """Connect ``host`` at startup, retrying until ``max_retries`` failures.

        Exhausting the bound is logged only; it raises no alert of its own.
        """
        while True:
            if host.retries >= max_retries:
                logger.error("Maximum number of retries expired for host", url=host.url, address=host.address)
                return None
            if self.registry.is_started(host.url, host.address):
                logger.debug("Host already started", url=host.url, address=host.address)
                return None

            try:
                client = await self._connect(host.url)
            except MonitorError as e:
                host.retries += 1
                logger.error(
                    "Failed to connect to candidate host",
                    url=host.url,
                    address=host.address,
                    retries=host.retries,
                    error=str(e),
                )
                self.gate.notify(
                    host.startup_failure_notified, Edge.RAISE, self._text(AlertEvent.STARTUP_CONNECT_FAILURE, host)
                )
                if host.retries >= max_retries:
                    logger.error("Maximum number of retries expired for host", url=host.url, address=host.address)
                    return None
                await asyncio.sleep(self.config.reconnect_delay_seconds)
                continue

            self._adopt(host, client)
            self.gate.notify(
                host.startup_failure_notified, Edge.CLEAR, self._text(AlertEvent.STARTUP_CONNECT_SUCCESS, host)
            )
            self._monitor_connection_state(host, client)
            return host

    def _adopt(self, host: Host, client: MonitoredClient) -> None:
        host.client = client
        self.registry.add(host)
        if self.probe is not None:
            self.probe.start(
                ProbeTarget(
                    key=host.id,
                    url=host.url,
                    flag=host.healthcheck_failure_notified,
                    host_type=MEDIA_HOST_TYPE,
                    address=host.address,
                )
            )

    def _monitor_connection_state(self, host: Host, client: MonitoredClient) -> None:
        # Subscribe last: a handle that died before this point reports straight away.
        logger.debug("Monitoring connection state for host", host_id=host.id, url=host.url)
        client.on_disconnect(lambda: self._on_disconnection(host, client))
        client.on_reconnect(lambda same_session: self._on_reconnection(host, client, same_session))

    def _on_disconnection(self, host: Host, client: MonitoredClient | None = None) -> None:
        if client is not None and host.client is not client:
            logger.debug("Ignoring event from a released client", host_id=host.id)
            return
        try:
            logger.error("Host was disconnected", host_id=host.id, url=host.url, address=host.address)
            self.registry.remove(host.id)
            old, host.client = host.client, None
            self._discard_client(old)
            host.reset_counters()
            self.gate.notify(host.failure_notified, Edge.RAISE, self._text(AlertEvent.MEDIA_SERVER_OFFLINE, host))
            self.reconnection.ensure(
                host.id,
                functools.partial(self._attempt_reconnect, host),
                functools.partial(self._on_reconnected, host),
                discard=self._discard_client,
            )
        except Exception:
            logger.exception("Error trying to handle host disconnection", host_id=host.id)

    def _on_reconnection(self, host: Host, client: MonitoredClient, same_session: bool) -> None:
        if host.client is not client:
            logger.debug("Ignoring event from a released client", host_id=host.id)
            return
        if not same_session:
            logger.warning("Media server reconnected, but it is not the same session", host_id=host.id)
            self._on_disconnection(host, client)
            return
        self.gate.notify(host.failure_notified, Edge.CLEAR, self._text(AlertEvent.MEDIA_SERVER_ONLINE, host))

    async def _attempt_reconnect(self, host: Host) -> MonitoredClient | None:
        try:
            return await self._connect(host.url)
        except MonitorError as e:
            logger.info("Failed to reconnect to host", host_id=host.id, url=host.url, error=str(e))
            return None

    def _on_reconnected(self, host: Host, client: MonitoredClient) -> None:
        self._adopt(host, client)
        logger.warning("Reconnection to media server succeeded", host_id=host.id, url=host.url)
        self.gate.notify(host.failure_notified, Edge.CLEAR, self._text(AlertEvent.MEDIA_SERVER_ONLINE, host))
        self._monitor_connection_state(host, client)

    async def stop(self) -> None:
        await self.reconnection.cancel_all()
        if self.probe is not None:
            await self.probe.stop_all()

        startup = [t for t in self._startup_tasks if not t.done()]
        for task in startup:
            task.cancel()
        await asyncio.gather(*startup, return_exceptions=True)

        for host in self.hosts:
            client, host.client = host.client, None
            if client is not None:
                await self._close_quietly(client)
            self.registry.remove(host.id)
        if self._closers:
            await asyncio.gather(*list(self._closers), return_exceptions=True)
        logger.info("Media server supervisor stopped")
