from __future__ import annotations

import argparse
import asyncio
import functools
import os
import signal

import httpx
import structlog

from media_monitor.alerts import NotificationGate, WebhookAlertSender
from media_monitor.call_control import CallControlMonitor
from media_monitor.clients.esl import EslClient
from media_monitor.clients.kurento import KurentoClient
from media_monitor.config import MonitorConfig, load_config
from media_monitor.hosts import HostRegistry
from media_monitor.log import configure_logging
from media_monitor.probe import HealthProbe, probe_media_server, probe_websocket_open
from media_monitor.reconnect import ReconnectionLoop
from media_monitor.status_api import build_server, create_app
from media_monitor.supervisor import MediaServerSupervisor
from media_monitor.telegram import telegram_config_from_env


logger = structlog.get_logger(__name__)


def build_supervisor(config: MonitorConfig, gate: NotificationGate) -> MediaServerSupervisor:
    connector = functools.partial(
        KurentoClient.open,
        fail_after=config.keepalive_fail_after,
        ping_interval=config.keepalive_interval_seconds,
        open_timeout=config.failover_timeout_seconds,
    )
    probe = HealthProbe(
        gate,
        functools.partial(
            probe_media_server,
            timeout_seconds=config.failover_timeout_seconds,
            interval_ms=config.probe_interval_hint_ms,
        ),
        config.probe_interval_seconds,
    )
    return MediaServerSupervisor(
        config,
        connector=connector,
        gate=gate,
        registry=HostRegistry(),
        reconnection=ReconnectionLoop(config.reconnect_delay_seconds),
        probe=probe,
    )


def build_call_control(config: MonitorConfig, gate: NotificationGate) -> CallControlMonitor | None:
    cc = config.call_control
    if not cc.enabled:
        return None
    probe = None
    if cc.probe_url:
        probe = HealthProbe(
            gate,
            functools.partial(probe_websocket_open, timeout_seconds=config.failover_timeout_seconds),
            config.probe_interval_seconds,
        )
    return CallControlMonitor(
        cc,
        connector=EslClient.open,
        gate=gate,
        failover_timeout_seconds=config.failover_timeout_seconds,
        probe=probe,
    )


async def run(config: MonitorConfig) -> int:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except (NotImplementedError, RuntimeError):
            logger.debug("Signal handlers unavailable", signal=sig.name)

    async with httpx.AsyncClient() as http_client:
        sender = WebhookAlertSender(
            http_client,
            config.alert_endpoint,
            timeout=config.alert_timeout_seconds,
            telegram=telegram_config_from_env(),
        )
        gate = NotificationGate(sender.send, config.local_identifier)

        supervisor = build_supervisor(config, gate)
        call_control = build_call_control(config, gate)

        await supervisor.start()
        if call_control is not None:
            await call_control.start()

        server_task: asyncio.Task | None = None
        server = None
        if config.status_api.enabled:
            server = build_server(create_app(supervisor, call_control), config.status_api)
            server_task = loop.create_task(server.serve())
            server_task.add_done_callback(lambda _: stop.set())

        logger.info("Media server monitor running", identifier=config.local_identifier, hosts=len(config.hosts))
        await stop.wait()
        logger.info("Shutting down")

        if server is not None and server_task is not None:
            server.should_exit = True
            await asyncio.gather(server_task, return_exceptions=True)
        if call_control is not None:
            await call_control.stop()
        await supervisor.stop()
        await sender.drain()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Media Server Connectivity Monitor")
    parser.add_argument(
        "--config",
        default=os.getenv("MEDIA_MONITOR_CONFIG", "config/monitor.yaml"),
        help="Path to YAML config",
    )
    parser.add_argument("--log-level", default=None, help="Logging level (INFO, WARNING, ...)")
    parser.add_argument("--check-config", action="store_true", help="Validate the config, print hosts and exit")
    args = parser.parse_args()

    config = load_config(args.config)
    configure_logging(args.log_level or config.log_level)

    if args.check_config:
        for descriptor in config.descriptors():
            print(f"{descriptor.url} {descriptor.address}".rstrip())
        if config.call_control.enabled:
            print(f"call-control {config.call_control.host}:{config.call_control.port}")
        return 0

    return asyncio.run(run(config))


if __name__ == "__main__":
    raise SystemExit(main())
