from __future__ import annotations

import json
from typing import Any


JSONRPC_VERSION = "2.0"


def build_ping(request_id: int, interval_ms: int, session_id: str | None = None) -> str:
    """
    Media server keepalive request:
    {"id": 1, "method": "ping", "params": {"interval": 5000}, "jsonrpc": "2.0"}
    """
    params: dict[str, Any] = {"interval": int(interval_ms)}
    if session_id:
        params["sessionId"] = session_id
    return json.dumps({"id": request_id, "method": "ping", "params": params, "jsonrpc": JSONRPC_VERSION})


def parse_pong(raw: str | bytes, request_id: int) -> dict[str, Any] | None:
    """Return the ``result`` object if ``raw`` is the pong for ``request_id``, else None."""
    try:
        msg = json.loads(raw)
    except (TypeError, ValueError):
        return None
    if not isinstance(msg, dict) or msg.get("id") != request_id:
        return None
    result = msg.get("result")
    if not isinstance(result, dict) or result.get("value") != "pong":
        return None
    return result
