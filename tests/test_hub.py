import asyncio

import pytest

from conftest import Recorder
from livechat_relay.data_models import ChatEvent
from livechat_relay.hub import SubscriberHub


@pytest.mark.parametrize("n", [1, 3, 25])
@pytest.mark.asyncio
async def test_broadcast_reaches_every_registered_subscriber(n):
    hub = SubscriberHub()
    recorders = [Recorder() for _ in range(n)]
    for recorder in recorders:
        hub.register(recorder.send)

    delivered = await hub.broadcast(ChatEvent.notice("hello"))

    assert delivered == n
    assert all(r.received == [{"event": "notice", "data": "hello"}] for r in recorders)


@pytest.mark.asyncio
async def test_unregistered_subscribers_get_nothing():
    hub = SubscriberHub()
    stay, leave = Recorder(), Recorder()
    hub.register(stay.send)
    leaving_id = hub.register(leave.send)
    hub.unregister(leaving_id)

    assert await hub.broadcast(ChatEvent.notice("x")) == 1
    assert leave.received == []
    assert len(stay.received) == 1


#one failing subscriber neither blocks the others nor fails the broadcast
@pytest.mark.asyncio
async def test_failing_subscriber_is_isolated_and_counted():
    hub = SubscriberHub()
    good = Recorder()

    async def broken(payload):
        raise ConnectionError("socket closed")

    hub.register(good.send)
    broken_id = hub.register(broken)

    assert await hub.broadcast(ChatEvent.notice("a")) == 1
    assert await hub.broadcast(ChatEvent.notice("b")) == 1
    assert [p["data"] for p in good.received] == ["a", "b"]
    assert hub.failures[broken_id] == 2


@pytest.mark.asyncio
async def test_slow_subscriber_times_out():
    hub = SubscriberHub(send_timeout=0.05)
    good = Recorder()

    async def stuck(payload):
        await asyncio.sleep(10)

    hub.register(good.send)
    stuck_id = hub.register(stuck)

    assert await hub.broadcast(ChatEvent.notice("a")) == 1
    assert hub.failures[stuck_id] == 1


@pytest.mark.asyncio
async def test_broadcast_without_subscribers():
    assert await SubscriberHub().broadcast(ChatEvent.notice("nobody")) == 0


def test_on_empty_fires_only_when_count_reaches_zero():
    calls = []
    hub = SubscriberHub(on_empty=lambda: calls.append(hub.current_count()))
    ids = [hub.register(Recorder().send) for _ in range(3)]

    hub.unregister(ids[0])
    hub.unregister(ids[1])
    assert calls == []
    assert hub.current_count() == 1

    hub.unregister(ids[2])
    assert calls == [0]

    # Unknown or repeated ids are ignored.
    hub.unregister(ids[2])
    hub.unregister("missing")
    assert calls == [0]
