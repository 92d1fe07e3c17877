"""Tests for listener error aggregation in send_and_wait."""

import asyncio
import logging

from core.event_bus import EventBus


def _raise(message: str):
    def listener(channel, data):
        raise RuntimeError(message)
    return listener


def _reject(message: str, delay: float = 0.0):
    async def listener(channel, data):
        if delay:
            await asyncio.sleep(delay)
        raise RuntimeError(message)
    return listener


async def test_no_errors_returns_empty_list():
    bus = EventBus()
    bus.on("hello", lambda channel, data: None)
    assert await bus.send_and_wait("hello") == []


async def test_no_listeners_returns_empty_list():
    assert await EventBus().send_and_wait("nobody") == []


async def test_sync_errors_collected():
    bus = EventBus()
    bus.on("hello", lambda channel, data: None)
    bus.on("hello", _raise("oopsBlockingSync"))
    bus.on("hello", _raise("oopsBlockingSync"))

    errors = await bus.send_and_wait("hello")

    assert len(errors) == 2
    assert isinstance(errors[0], RuntimeError)
    assert str(errors[0]) == "oopsBlockingSync"


async def test_async_errors_collected():
    bus = EventBus()

    async def fine(channel, data):
        return None

    bus.on("hello", fine)
    bus.on("hello", _reject("oopsBlockingAsync"))
    bus.on("hello", _reject("oopsBlockingAsync", delay=0.01))

    errors = await bus.send_and_wait("hello")

    assert [str(e) for e in errors] == ["oopsBlockingAsync", "oopsBlockingAsync"]


async def test_error_in_the_middle_of_several_listeners():
    bus = EventBus()
    success: list[str] = []

    async def first(channel, data):
        success.append("success1")

    async def fifth(channel, data):
        success.append("success3")

    bus.on("hello", first)
    bus.on("hello", lambda channel, data: success.append("success2"))
    bus.on("hello", _raise("oops1"))
    bus.on("hello", _reject("oops2"))
    bus.on("hello", fifth)
    bus.on("hello", lambda channel, data: success.append("success4"))

    errors = await bus.send_and_wait("hello")

    assert [str(e) for e in errors] == ["oops1", "oops2"]
    assert success == ["success1", "success2", "success3", "success4"]


async def test_errors_follow_invocation_order_not_completion_order():
    bus = EventBus()
    bus.on("hello", _reject("slow", delay=0.02))
    bus.on("hello", _raise("fast"))

    errors = await bus.send_and_wait("hello")

    assert [str(e) for e in errors] == ["slow", "fast"]


async def test_errors_accumulate_across_expansion_chain():
    bus = EventBus()
    logs: list[str] = []
    bus.on("changed:1", _raise("exact"))
    bus.on("changed", _reject("base", delay=0.01))
    bus.on("*", _raise("star"))
    bus.on("*", lambda channel, data: logs.append("still ran"))

    errors = await bus.send_and_wait("changed:1")

    assert [str(e) for e in errors] == ["exact", "base", "star"]
    assert logs == ["still ran"]


async def test_bus_keeps_working_after_failures():
    bus = EventBus()
    logs: list[str] = []
    unsub = bus.on("x", _raise("boom"))
    bus.on("x", lambda channel, data: logs.append("ok"))

    assert len(await bus.send_and_wait("x")) == 1
    unsub()
    assert await bus.send_and_wait("x") == []
    assert logs == ["ok", "ok"]


async def test_collected_errors_are_logged(caplog):
    bus = EventBus()
    bus.on("x", _raise("boom"))
    with caplog.at_level(logging.WARNING, logger="core.event_bus"):
        await bus.send_and_wait("x")

    warnings = [r for r in caplog.records if r.getMessage() == "Listener failed"]
    assert len(warnings) == 1
    assert warnings[0].channel == "x"


async def test_nonblocking_errors_not_reported():
    bus = EventBus()
    bus.on("x", _raise("hidden"), mode="nonblocking")
    bus.on("x", _reject("hidden too"), mode="nonblocking")

    assert await bus.send_and_wait("x") == []
    await asyncio.sleep(0.01)


async def test_unawaited_send_collects_errors_in_future():
    bus = EventBus()
    bus.on("x", _reject("later", delay=0.01))

    fut = bus.send_and_wait("x")
    await asyncio.sleep(0.03)

    assert fut.done()
    assert [str(e) for e in fut.result()] == ["later"]
