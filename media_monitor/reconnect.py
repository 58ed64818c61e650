"""Guarded periodic reconnection attempts, at most one loop per key."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import structlog


logger = structlog.get_logger(__name__)

ReconnectAttempt = Callable[[], Awaitable[Any]]
RecoveredCallback = Callable[[Any], None]
DiscardCallback = Callable[[Any], None]


class ReconnectionLoop:
    """Owns the per-host reconnection timers.

    ``ensure`` is the presence-checked creation point: the check and the insert run
    in the same scheduler turn, so a key can never have two active loops. Each loop
    sleeps ``delay_seconds`` and awaits one attempt, repeating until an attempt returns
    something other than None. It then deletes its own timer *before* handing the
    result to ``on_recovered``, so recovery side effects may start a fresh loop.
    If ``on_recovered`` raises, the result is handed to ``discard`` since nobody owns
    it. Failed attempts emit nothing.
    """

    def __init__(self, delay_seconds: float, *, name: str = "media"):
        self.delay_seconds = delay_seconds
        self.name = name
        self._timers: dict[str, asyncio.Task] = {}

    def ensure(
        self,
        key: str,
        attempt: ReconnectAttempt,
        on_recovered: RecoveredCallback | None = None,
        *,
        discard: DiscardCallback | None = None,
    ) -> bool:
        """Start a loop for ``key`` unless one is already active.

        Returns:
            True if a new loop was created
        """
        if key in self._timers:
            logger.debug("Reconnection loop already active", loop=self.name, key=key)
            return False

        task = asyncio.get_running_loop().create_task(self._run(key, attempt, on_recovered, discard))
        self._timers[key] = task
        logger.info("Reconnecting to host", loop=self.name, key=key, delay_s=self.delay_seconds)
        return True

    def active(self, key: str) -> bool:
        return key in self._timers

    def keys(self) -> list[str]:
        return list(self._timers)

    def __len__(self) -> int:
        return len(self._timers)

    async def _run(
        self,
        key: str,
        attempt: ReconnectAttempt,
        on_recovered: RecoveredCallback | None,
        discard: DiscardCallback | None,
    ) -> None:
        current = asyncio.current_task()
        attempts = 0
        try:
            while True:
                await asyncio.sleep(self.delay_seconds)
                attempts += 1
                try:
                    result = await attempt()
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Reconnection attempt crashed", loop=self.name, key=key)
                    result = None

                if result is None:
                    logger.info("Failed to reconnect to host", loop=self.name, key=key, attempts=attempts)
                    continue

                self._release(key, current)
                logger.info("Reconnection succeeded", loop=self.name, key=key, attempts=attempts)
                if on_recovered is not None:
                    try:
                        on_recovered(result)
                    except Exception:
                        logger.exception("Recovery handler failed", loop=self.name, key=key)
                        if discard is not None:
                            discard(result)
                return
        finally:
            self._release(key, current)

    def _release(self, key: str, task: asyncio.Task | None) -> None:
        if self._timers.get(key) is task:
            del self._timers[key]

    def cancel(self, key: str) -> None:
        task = self._timers.pop(key, None)
        if task is not None:
            task.cancel()

    async def cancel_all(self) -> None:
        tasks = list(self._timers.values())
        self._timers.clear()
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
