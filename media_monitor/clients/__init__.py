"""Client adapters exposing the monitored-client capability."""

from .base import ClientEvents, Connector, MonitoredClient
from .esl import EslClient
from .kurento import KurentoClient

__all__ = ["ClientEvents", "Connector", "MonitoredClient", "EslClient", "KurentoClient"]
