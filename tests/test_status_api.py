from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import KMS_ADDRESS, KMS_URL
from media_monitor.call_control import CallControlMonitor
from media_monitor.config import CallControlConfig
from media_monitor.hosts import Host
from media_monitor.status_api import create_app
from media_monitor.supervisor import MediaServerSupervisor


def _client(make_config, gate, *, call_control=None) -> tuple[TestClient, MediaServerSupervisor]:
    supervisor = MediaServerSupervisor(make_config(), connector=None, gate=gate)
    return TestClient(create_app(supervisor, call_control)), supervisor


def test_root_reports_healthy(make_config, gate) -> None:
    client, _ = _client(make_config, gate)
    r = client.get("/")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy", "service": "media-monitor"}


def test_hosts_lists_registered_hosts(make_config, gate) -> None:
    client, supervisor = _client(make_config, gate)
    assert client.get("/hosts").json() == {"count": 0, "hosts": []}

    host = Host(url=KMS_URL, address=KMS_ADDRESS)
    supervisor.registry.add(host)

    body = client.get("/hosts").json()
    assert body == {"count": 1, "hosts": [{"id": host.id, "url": KMS_URL, "address": KMS_ADDRESS}]}


def test_reconnecting_includes_call_control_snapshot(make_config, gate) -> None:
    call_control = CallControlMonitor(
        CallControlConfig(enabled=True), connector=None, gate=gate, failover_timeout_seconds=1.0
    )
    client, _ = _client(make_config, gate, call_control=call_control)

    body = client.get("/reconnecting").json()

    assert body == {
        "hosts": [],
        "call_control": {"endpoint": "127.0.0.1:8021", "connected": False, "reconnecting": False},
    }


def test_reconnecting_without_call_control(make_config, gate) -> None:
    client, _ = _client(make_config, gate)
    assert client.get("/reconnecting").json() == {"hosts": []}
