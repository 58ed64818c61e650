"""Read-only HTTP view of the supervisor state."""

from __future__ import annotations

from typing import Any

import structlog
import uvicorn
from fastapi import FastAPI

from media_monitor.call_control import CallControlMonitor
from media_monitor.config import StatusApiConfig
from media_monitor.supervisor import MediaServerSupervisor


logger = structlog.get_logger(__name__)


def create_app(supervisor: MediaServerSupervisor, call_control: CallControlMonitor | None = None) -> FastAPI:
    app = FastAPI(title="Media Server Monitor", version="0.1.0")

    @app.get("/")
    async def root() -> dict[str, Any]:
        return {"status": "healthy", "service": "media-monitor"}

    @app.get("/hosts")
    async def hosts() -> dict[str, Any]:
        registered = [h.to_dict() for h in supervisor.registry]
        return {"count": len(registered), "hosts": registered}

    @app.get("/reconnecting")
    async def reconnecting() -> dict[str, Any]:
        payload: dict[str, Any] = {"hosts": supervisor.reconnection.keys()}
        if call_control is not None:
            payload["call_control"] = call_control.snapshot()
        return payload

    return app


def build_server(app: FastAPI, config: StatusApiConfig) -> uvicorn.Server:
    """Server meant to run inside the supervisor's event loop via ``await server.serve()``."""
    uv_config = uvicorn.Config(app, host=config.host, port=config.port, log_level="warning")
    server = uvicorn.Server(uv_config)
    logger.info("Status endpoint configured", host=config.host, port=config.port)
    return server
