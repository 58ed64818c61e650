"""Capability interface the supervisors need from a connected client."""

from __future__ import annotations

from typing import Awaitable, Callable, Protocol, runtime_checkable

import structlog


logger = structlog.get_logger(__name__)

DisconnectCallback = Callable[[], None]
ReconnectCallback = Callable[[bool], None]


@runtime_checkable
class MonitoredClient(Protocol):
    def on_disconnect(self, callback: DisconnectCallback) -> None: ...

    def on_reconnect(self, callback: ReconnectCallback) -> None: ...

    async def close(self) -> None: ...


Connector = Callable[[str], Awaitable[MonitoredClient]]


class ClientEvents:
    """Listener bookkeeping shared by the client adapters.

    ``disconnect`` fires at most once per client; a disconnected handle is dead.
    A listener attached after the handle died is called immediately, so a drop that
    lands between connect and subscribe is still observed.
    """

    def __init__(self):
        self._disconnect_listeners: list[DisconnectCallback] = []
        self._reconnect_listeners: list[ReconnectCallback] = []
        self.disconnected = False

    def on_disconnect(self, callback: DisconnectCallback) -> None:
        if self.disconnected:
            self._call(callback)
            return
        self._disconnect_listeners.append(callback)

    def on_reconnect(self, callback: ReconnectCallback) -> None:
        self._reconnect_listeners.append(callback)

    def _emit_disconnect(self) -> None:
        if self.disconnected:
            return
        self.disconnected = True
        for callback in list(self._disconnect_listeners):
            self._call(callback)

    @staticmethod
    def _call(callback: DisconnectCallback) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Disconnect listener failed")

    def _emit_reconnect(self, same_session: bool) -> None:
        if self.disconnected:
            return
        for callback in list(self._reconnect_listeners):
            try:
                callback(same_session)
            except Exception:
                logger.exception("Reconnect listener failed")

    def _drop_listeners(self) -> None:
        self._disconnect_listeners.clear()
        self._reconnect_listeners.clear()
