from __future__ import annotations

import asyncio

import pytest

from conftest import KMS_ADDRESS, KMS_URL, FakeClient
from media_monitor.supervisor import MediaServerSupervisor


OFFLINE = f"mon-1 triggered MEDIA_SERVER_OFFLINE for Kurento {KMS_URL} {KMS_ADDRESS}"
ONLINE = f"mon-1 triggered MEDIA_SERVER_ONLINE for Kurento {KMS_URL} {KMS_ADDRESS}"


async def _started(config, connector, gate):
    supervisor = MediaServerSupervisor(config, connector=connector, gate=gate)
    (host,) = await asyncio.gather(*await supervisor.start())
    assert host is not None
    return supervisor, host


@pytest.mark.asyncio
async def test_session_change_goes_offline_then_online(make_config, make_connector, gate, alerts, wait_until) -> None:
    connector = make_connector()
    supervisor, host = await _started(make_config(), connector, gate)
    original = host.client
    host_id = host.id

    original.reconnected(False)

    assert alerts == [OFFLINE]
    assert host_id not in supervisor.registry
    assert supervisor.reconnection.active(host_id)

    await wait_until(lambda: len(alerts) == 2)
    assert alerts == [OFFLINE, ONLINE]
    assert len(supervisor.registry) == 1
    assert supervisor.registry.get(host_id) is host
    assert host.client is connector.clients[1]
    assert not supervisor.reconnection.active(host_id)
    await wait_until(lambda: original.closed)
    await supervisor.stop()


@pytest.mark.asyncio
async def test_same_session_without_prior_offline_is_silent(make_config, make_connector, gate, alerts) -> None:
    connector = make_connector()
    supervisor, host = await _started(make_config(), connector, gate)

    host.client.reconnected(True)
    await asyncio.sleep(0.05)

    assert alerts == []
    assert len(supervisor.reconnection) == 0
    assert len(connector.calls) == 1
    await supervisor.stop()


@pytest.mark.asyncio
async def test_same_session_clears_a_raised_offline_flag(make_config, make_connector, gate, alerts) -> None:
    connector = make_connector()
    supervisor, host = await _started(make_config(), connector, gate)
    host.failure_notified.raised = True

    host.client.reconnected(True)

    assert alerts == [ONLINE]
    assert host.failure_notified.raised is False
    await supervisor.stop()


@pytest.mark.asyncio
async def test_repeated_drops_alternate_offline_and_online(make_config, make_connector, gate, alerts, wait_until) -> None:
    connector = make_connector()
    supervisor, host = await _started(make_config(), connector, gate)

    for round_ in range(1, 4):
        host.client.drop()
        await wait_until(lambda: len(alerts) == 2 * round_)

    assert alerts == [OFFLINE, ONLINE] * 3
    assert len(supervisor.registry) == 1
    assert len(connector.calls) == 4
    await supervisor.stop()


@pytest.mark.asyncio
async def test_failed_reconnects_are_silent_and_use_one_loop(
    make_config, make_connector, gate, alerts, wait_until
) -> None:
    connector = make_connector([True], default=False)
    supervisor, host = await _started(make_config(), connector, gate)
    client = host.client

    client.drop()
    # a second notification for the same drop must not start another loop
    supervisor._on_disconnection(host)

    await wait_until(lambda: len(connector.calls) >= 4)
    assert alerts == [OFFLINE]
    assert len(supervisor.reconnection) == 1
    assert len(supervisor.registry) == 0

    await supervisor.stop()
    assert len(supervisor.reconnection) == 0


@pytest.mark.asyncio
async def test_events_from_released_client_are_ignored(make_config, make_connector, gate, alerts, wait_until) -> None:
    connector = make_connector()
    supervisor, host = await _started(make_config(), connector, gate)
    stale = host.client
    stale.drop()
    await wait_until(lambda: len(alerts) == 2)

    # the stale handle lost its listeners on close, but a late event must still be harmless
    supervisor._on_reconnection(host, stale, False)
    supervisor._on_disconnection(host, stale)

    assert alerts == [OFFLINE, ONLINE]
    assert len(supervisor.registry) == 1
    assert len(supervisor.reconnection) == 0
    await supervisor.stop()


@pytest.mark.asyncio
async def test_disconnect_resets_session_counters(make_config, make_connector, gate, alerts) -> None:
    connector = make_connector([True], default=False)
    supervisor, host = await _started(make_config(), connector, gate)
    host.audio, host.video = 3, 2

    host.client.drop()

    assert (host.audio, host.video) == (0, 0)
    await supervisor.stop()


def test_listener_attached_after_drop_fires_immediately() -> None:
    client = FakeClient(KMS_URL)
    client.drop()
    fired: list[int] = []

    client.on_disconnect(lambda: fired.append(1))
    client.drop()

    assert fired == [1]


@pytest.mark.asyncio
async def test_client_dead_on_arrival_goes_offline_then_recovers(
    make_config, make_connector, gate, alerts, wait_until
) -> None:
    connector = make_connector()
    dead = FakeClient(KMS_URL)
    dead.drop()

    async def connect(url: str):
        if dead.target is not None:
            dead.target = None
            return dead
        return await connector(url)

    supervisor = MediaServerSupervisor(make_config(), connector=connect, gate=gate)
    (host,) = await asyncio.gather(*await supervisor.start())

    assert host is not None
    assert alerts == [OFFLINE]
    assert supervisor.reconnection.active(host.id)

    await wait_until(lambda: len(alerts) == 2)
    assert alerts == [OFFLINE, ONLINE]
    assert host.client is connector.clients[0]
    assert len(supervisor.registry) == 1
    await wait_until(lambda: dead.closed)
    await supervisor.stop()


class SlowCloseClient(FakeClient):
    async def close(self) -> None:
        await asyncio.sleep(0.05)
        await super().close()


@pytest.mark.asyncio
async def test_stop_finishes_closing_released_clients(make_config, gate) -> None:
    clients: list[SlowCloseClient] = []

    async def connect(url: str) -> SlowCloseClient:
        if clients:
            raise ConnectionRefusedError(url)
        clients.append(SlowCloseClient(url))
        return clients[0]

    supervisor = MediaServerSupervisor(make_config(), connector=connect, gate=gate)
    await asyncio.gather(*await supervisor.start())

    clients[0].drop()
    await supervisor.stop()

    assert clients[0].closed is True
