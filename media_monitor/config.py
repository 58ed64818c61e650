"""Configuration management for the media server monitor."""

import os
import socket
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator

from media_monitor.hosts import HostDescriptor


DEFAULT_CONFIG_PATH = "config/monitor.yaml"


class MediaHostConfig(BaseModel):
    """One supervised media server."""
    url: str = Field(description="Media server WebSocket JSON-RPC URL")
    address: str = Field(
        default="",
        validation_alias=AliasChoices("address", "ip"),
        description="Network address reported in alerts",
    )

    @field_validator("url")
    @classmethod
    def _url_not_empty(cls, value: str) -> str:
        value = (value or "").strip()
        if not value:
            raise ValueError("host url must not be empty")
        return value


class CallControlConfig(BaseModel):
    """Call-control (FreeSWITCH ESL) connection settings."""
    enabled: bool = Field(default=False, description="Supervise the call-control host")
    host: str = Field(default="127.0.0.1", description="ESL host")
    port: int = Field(default=8021, description="ESL port")
    credential: str = Field(default="ClueCon", description="ESL password")
    probe_url: Optional[str] = Field(default=None, description="Secondary WebSocket URL for liveness probing")
    reconnect_delay_ms: int = Field(default=5000, gt=0, description="Delay between reconnection attempts")

    @property
    def reconnect_delay_seconds(self) -> float:
        return self.reconnect_delay_ms / 1000.0


class StatusApiConfig(BaseModel):
    """Read-only HTTP status endpoint."""
    enabled: bool = Field(default=False, description="Serve the status endpoint")
    host: str = Field(default="127.0.0.1", description="Bind address")
    port: int = Field(default=8095, description="Bind port")


class MonitorConfig(BaseModel):
    """Main configuration for the media server monitor."""

    hosts: List[MediaHostConfig] = Field(default_factory=list, description="Media servers to supervise")

    # Startup and reconnection
    max_startup_retries: Optional[int] = Field(default=None, ge=1, description="Startup attempts per host (None = unbounded)")
    failover_timeout_ms: int = Field(default=15000, gt=0, description="Connect/probe round-trip budget")
    reconnect_delay_ms: int = Field(default=3000, gt=0, description="Delay between connection attempts")
    keepalive_interval_ms: int = Field(default=5000, gt=0, description="Media client keepalive ping interval")
    keepalive_fail_after: int = Field(default=5, ge=1, description="Missed keepalives before a disconnect")

    # Liveness probe
    probe_enabled: bool = Field(default=False, description="Enable the side-channel liveness probe")
    probe_interval_ms: int = Field(default=30000, gt=0, description="Liveness probe interval")

    # Alerting
    alert_endpoint: Optional[str] = Field(default=None, description="Webhook URL receiving {\"text\": ...}")
    alert_timeout_seconds: float = Field(default=10.0, gt=0, description="Webhook request timeout")
    local_identifier: str = Field(default_factory=socket.gethostname, description="Name of this monitor in alerts")

    log_level: str = Field(default="INFO", description="Logging level")

    call_control: CallControlConfig = Field(default_factory=CallControlConfig)
    status_api: StatusApiConfig = Field(default_factory=StatusApiConfig)

    @model_validator(mode="after")
    def _unique_descriptors(self) -> "MonitorConfig":
        seen = set()
        for host in self.hosts:
            key = (host.url, host.address)
            if key in seen:
                raise ValueError(f"duplicate host entry url={host.url} address={host.address}")
            seen.add(key)
        return self

    @property
    def failover_timeout_seconds(self) -> float:
        return self.failover_timeout_ms / 1000.0

    @property
    def reconnect_delay_seconds(self) -> float:
        return self.reconnect_delay_ms / 1000.0

    @property
    def probe_interval_seconds(self) -> float:
        return self.probe_interval_ms / 1000.0

    @property
    def keepalive_interval_seconds(self) -> float:
        return self.keepalive_interval_ms / 1000.0

    @property
    def probe_interval_hint_ms(self) -> int:
        return self.keepalive_fail_after * 1000

    def descriptors(self) -> list[HostDescriptor]:
        return [HostDescriptor(url=h.url, address=h.address) for h in self.hosts]


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def load_config(config_path: Optional[str] = None) -> MonitorConfig:
    """Load configuration from file, then apply environment overrides."""
    if config_path is None:
        config_path = os.getenv("MEDIA_MONITOR_CONFIG", DEFAULT_CONFIG_PATH)

    config_data: Dict[str, Any] = {}

    path = Path(config_path)
    if path.exists():
        with open(path, "r", encoding="utf-8") as f:
            config_data = yaml.safe_load(f) or {}
        if not isinstance(config_data, dict):
            raise ValueError("Config YAML must be a mapping")

    env_overrides = {
        "log_level": os.getenv("LOG_LEVEL"),
        "alert_endpoint": os.getenv("ALERT_ENDPOINT"),
        "local_identifier": os.getenv("LOCAL_IDENTIFIER"),
        "probe_enabled": os.getenv("PROBE_ENABLED"),
        "probe_interval_ms": os.getenv("PROBE_INTERVAL_MS"),
        "max_startup_retries": os.getenv("MAX_STARTUP_RETRIES"),
    }

    for key, value in env_overrides.items():
        if value is not None:
            if key in ["probe_interval_ms", "max_startup_retries"]:
                value = int(value)
            elif key in ["probe_enabled"]:
                value = _env_bool(value)
            config_data[key] = value

    return MonitorConfig(**config_data)
