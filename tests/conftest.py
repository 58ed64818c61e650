from __future__ import annotations

import asyncio
from typing import Any, Callable

import pytest

from media_monitor.alerts import NotificationGate
from media_monitor.clients.base import ClientEvents
from media_monitor.config import MonitorConfig


LOCAL_ID = "mon-1"
KMS_URL = "ws://kms-1:8888/kurento"
KMS_ADDRESS = "10.0.0.1"


class FakeClient(ClientEvents):
    def __init__(self, target: Any):
        super().__init__()
        self.target = target
        self.closed = False

    async def close(self) -> None:
        self.closed = True
        self._drop_listeners()

    def drop(self) -> None:
        self._emit_disconnect()

    def reconnected(self, same_session: bool) -> None:
        self._emit_reconnect(same_session)


class FakeConnector:
    """
    Scripted connect operation. Each call consumes one outcome:
      True -> connected client, False -> ConnectionRefusedError,
      an exception instance -> raised, a float -> connected client after that many seconds.
    When the script is exhausted, ``default`` is used.
    """

    def __init__(self, outcomes: list[Any] | None = None, default: Any = True):
        self._outcomes = list(outcomes or [])
        self.default = default
        self.calls: list[Any] = []
        self.clients: list[FakeClient] = []

    async def __call__(self, target: Any, *args: Any) -> FakeClient:
        self.calls.append(target)
        outcome = self._outcomes.pop(0) if self._outcomes else self.default
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome is False:
            raise ConnectionRefusedError(f"connection refused: {target}")
        if isinstance(outcome, float):
            await asyncio.sleep(outcome)
        client = FakeClient(target)
        self.clients.append(client)
        return client


@pytest.fixture
def alerts() -> list[str]:
    return []


@pytest.fixture
def gate(alerts: list[str]) -> NotificationGate:
    return NotificationGate(alerts.append, LOCAL_ID)


@pytest.fixture
def make_connector() -> Callable[..., FakeConnector]:
    return FakeConnector


@pytest.fixture
def make_config() -> Callable[..., MonitorConfig]:
    def _make(**overrides: Any) -> MonitorConfig:
        data: dict[str, Any] = {
            "hosts": [{"url": KMS_URL, "address": KMS_ADDRESS}],
            "failover_timeout_ms": 50,
            "reconnect_delay_ms": 10,
            "probe_interval_ms": 10,
            "local_identifier": LOCAL_ID,
        }
        data.update(overrides)
        return MonitorConfig(**data)

    return _make


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() >= deadline:
                raise AssertionError("condition not reached in time")
            await asyncio.sleep(0.005)

    return _wait
