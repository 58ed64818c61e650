from __future__ import annotations

import asyncio

import pytest

from media_monitor.reconnect import ReconnectionLoop


@pytest.mark.asyncio
async def test_ensure_creates_at_most_one_loop_per_key() -> None:
    loop = ReconnectionLoop(0.01)
    attempts: list[int] = []

    async def attempt():
        attempts.append(1)
        return None

    assert loop.ensure("h1", attempt) is True
    assert loop.ensure("h1", attempt) is False
    assert loop.ensure("h2", attempt) is True
    assert sorted(loop.keys()) == ["h1", "h2"]

    await asyncio.sleep(0.05)
    assert attempts
    await loop.cancel_all()
    assert len(loop) == 0


@pytest.mark.asyncio
async def test_timer_is_released_before_recovery_callback() -> None:
    loop = ReconnectionLoop(0.01)
    seen: list[tuple[str, bool]] = []
    recovered = asyncio.Event()

    async def attempt():
        return "client"

    def on_recovered(result: str) -> None:
        seen.append((result, loop.active("h1")))
        # recovery may legitimately start a new loop for the same key
        assert loop.ensure("h1", attempt, lambda _: recovered.set()) is True

    loop.ensure("h1", attempt, on_recovered)
    await asyncio.wait_for(recovered.wait(), 1.0)

    assert seen == [("client", False)]
    await loop.cancel_all()


@pytest.mark.asyncio
async def test_attempts_repeat_until_one_succeeds() -> None:
    loop = ReconnectionLoop(0.005)
    outcomes = [None, None, "client"]
    results: list[str] = []
    done = asyncio.Event()

    async def attempt():
        return outcomes.pop(0)

    def on_recovered(result: str) -> None:
        results.append(result)
        done.set()

    loop.ensure("h1", attempt, on_recovered)
    await asyncio.wait_for(done.wait(), 1.0)

    assert results == ["client"]
    assert outcomes == []
    assert not loop.active("h1")


@pytest.mark.asyncio
async def test_crashing_attempt_is_treated_as_failure() -> None:
    loop = ReconnectionLoop(0.005)
    calls: list[int] = []
    done = asyncio.Event()

    async def attempt():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return "client"

    loop.ensure("h1", attempt, lambda _: done.set())
    await asyncio.wait_for(done.wait(), 1.0)
    assert len(calls) == 2


@pytest.mark.asyncio
async def test_cancel_stops_a_single_key() -> None:
    loop = ReconnectionLoop(0.01)

    async def attempt():
        return None

    loop.ensure("h1", attempt)
    loop.ensure("h2", attempt)
    loop.cancel("h1")

    assert loop.keys() == ["h2"]
    await loop.cancel_all()


@pytest.mark.asyncio
async def test_result_is_discarded_when_recovery_handler_fails() -> None:
    loop = ReconnectionLoop(0.005)
    discarded: list[str] = []
    done = asyncio.Event()

    async def attempt():
        return "client"

    def on_recovered(result: str) -> None:
        raise RuntimeError("registry exploded")

    def discard(result: str) -> None:
        discarded.append(result)
        done.set()

    loop.ensure("h1", attempt, on_recovered, discard=discard)
    await asyncio.wait_for(done.wait(), 1.0)

    assert discarded == ["client"]
    assert not loop.active("h1")


@pytest.mark.asyncio
async def test_result_is_kept_when_recovery_succeeds() -> None:
    loop = ReconnectionLoop(0.005)
    discarded: list[str] = []
    done = asyncio.Event()

    async def attempt():
        return "client"

    loop.ensure("h1", attempt, lambda _: done.set(), discard=discarded.append)
    await asyncio.wait_for(done.wait(), 1.0)
    await asyncio.sleep(0.01)

    assert discarded == []
