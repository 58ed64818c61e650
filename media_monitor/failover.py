"""First-settlement-wins race between a connect operation and a failover timeout."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, TypeVar

import structlog

from media_monitor.errors import ConnectError, FailoverTimeoutError, MonitorError, describe_error


logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def race_with_failover(
    connect: Callable[[], Awaitable[T]],
    timeout_seconds: float,
    *,
    on_late_result: Callable[[T], None] | None = None,
) -> T:
    """Run ``connect()`` against a ``timeout_seconds`` timer; whichever settles first wins.

    The outcome future is the one-shot guard: once it is resolved, the losing side has
    no further effect. A connect that succeeds after the timer already won is handed to
    ``on_late_result`` (so the orphan handle can be closed) and is otherwise ignored.

    Raises:
        FailoverTimeoutError: the timer settled first
        ConnectError: ``connect()`` failed first (non-monitor errors are wrapped)
    """
    loop = asyncio.get_running_loop()
    outcome: asyncio.Future = loop.create_future()

    def _on_connect_settled(task: asyncio.Task) -> None:
        if task.cancelled():
            if not outcome.done():
                outcome.set_exception(ConnectError("connect attempt cancelled"))
            return

        exc = task.exception()
        if outcome.done():
            if exc is None and on_late_result is not None:
                try:
                    on_late_result(task.result())
                except Exception:
                    logger.exception("Failed to discard late connect result")
            return

        if exc is None:
            outcome.set_result(task.result())
        elif isinstance(exc, MonitorError):
            outcome.set_exception(exc)
        else:
            wrapped = ConnectError(describe_error(exc))
            wrapped.__cause__ = exc
            outcome.set_exception(wrapped)

    def _on_timeout() -> None:
        if not outcome.done():
            outcome.set_exception(FailoverTimeoutError(f"connection timeout after {timeout_seconds}s"))

    task = asyncio.ensure_future(connect())
    task.add_done_callback(_on_connect_settled)
    timer = loop.call_later(timeout_seconds, _on_timeout)
    try:
        return await outcome
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        timer.cancel()
