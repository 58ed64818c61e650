"""Supervised media hosts and the registry of the ones currently connected."""

from __future__ import annotations

import secrets
from dataclasses import dataclass, field
from typing import Any, Iterator

import structlog

from media_monitor.alerts import AlertFlag
from media_monitor.clients.base import MonitoredClient


logger = structlog.get_logger(__name__)

MEDIA_HOST_TYPE = "Kurento"

_TOKEN_ALPHABET = "0123456789abcdefghijklmnopqrstuv"  # base32


def generate_host_id(size: int = 12) -> str:
    """Random opaque token; never derived from the url or address."""
    return "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(size))


@dataclass(frozen=True)
class HostDescriptor:
    url: str
    address: str


@dataclass(eq=False)
class Host:
    url: str
    address: str
    id: str = field(default_factory=generate_host_id)
    client: MonitoredClient | None = None
    retries: int = 0
    startup_failure_notified: AlertFlag = field(default_factory=AlertFlag)
    failure_notified: AlertFlag = field(default_factory=AlertFlag)
    healthcheck_failure_notified: AlertFlag = field(default_factory=AlertFlag)
    # Media session tracking, reset whenever the host drops.
    audio: int = 0
    video: int = 0

    @classmethod
    def from_descriptor(cls, descriptor: HostDescriptor) -> "Host":
        return cls(url=descriptor.url, address=descriptor.address)

    @property
    def descriptor(self) -> HostDescriptor:
        return HostDescriptor(url=self.url, address=self.address)

    def reset_counters(self) -> None:
        self.audio = 0
        self.video = 0

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "url": self.url, "address": self.address}


class HostRegistry:
    """Authoritative in-memory set of connected hosts, keyed by host id.

    Holds at most one entry per ``(url, address)`` pair.
    """

    def __init__(self):
        self._hosts: dict[str, Host] = {}

    def add(self, host: Host | None) -> None:
        if host is None:
            logger.warning("Undefined media server host, should not happen")
            return

        self.remove(host.id)
        stale = [h.id for h in self._hosts.values() if h.descriptor == host.descriptor]
        for host_id in stale:
            logger.warning("Replacing stale registration", host_id=host_id, url=host.url, address=host.address)
            self._hosts.pop(host_id, None)

        self._hosts[host.id] = host
        logger.info("Available hosts", hosts=self.available())

    def remove(self, host_id: str) -> Host | None:
        return self._hosts.pop(host_id, None)

    def get(self, host_id: str) -> Host | None:
        return self._hosts.get(host_id)

    def is_started(self, url: str, address: str) -> bool:
        return any(h.url == url and h.address == address for h in self._hosts.values())

    def available(self) -> list[dict[str, str]]:
        return [{"url": h.url, "address": h.address} for h in self._hosts.values()]

    def __contains__(self, host_id: object) -> bool:
        return host_id in self._hosts

    def __iter__(self) -> Iterator[Host]:
        return iter(list(self._hosts.values()))

    def __len__(self) -> int:
        return len(self._hosts)
