"""Connectivity supervision and alerting for media servers and the call-control host."""

from .alerts import AlertEvent, AlertFlag, Edge, NotificationGate, WebhookAlertSender
from .call_control import CallControlMonitor
from .hosts import Host, HostDescriptor, HostRegistry
from .probe import HealthProbe
from .reconnect import ReconnectionLoop
from .supervisor import MediaServerSupervisor

__all__ = [
    "AlertEvent",
    "AlertFlag",
    "CallControlMonitor",
    "Edge",
    "HealthProbe",
    "Host",
    "HostDescriptor",
    "HostRegistry",
    "MediaServerSupervisor",
    "NotificationGate",
    "ReconnectionLoop",
    "WebhookAlertSender",
]
