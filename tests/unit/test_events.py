import pytest

from agentboard.events import ALL_EVENTS, WORKFLOW_STARTED, EventBus


@pytest.mark.asyncio
async def test_subscribers_receive_matching_events():
    bus = EventBus()
    seen = []
    everything = []

    async def on_start(event):
        seen.append(event)

    bus.subscribe(WORKFLOW_STARTED, on_start)
    bus.subscribe(ALL_EVENTS, everything.append)

    await bus.publish(WORKFLOW_STARTED, "t1", {"workflow_id": "wf"})
    await bus.publish("other", "t1")

    assert [e.data["workflow_id"] for e in seen] == ["wf"]
    assert [e.event_type for e in everything] == [WORKFLOW_STARTED, "other"]
    assert everything[1].data == {}


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_delivery():
    bus = EventBus()
    delivered = []

    def broken(event):
        raise RuntimeError("handler bug")

    bus.subscribe(WORKFLOW_STARTED, broken)
    bus.subscribe(WORKFLOW_STARTED, delivered.append)

    event = await bus.publish(WORKFLOW_STARTED, "t1")
    assert delivered == [event]


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    delivered = []
    bus.subscribe(WORKFLOW_STARTED, delivered.append)
    bus.unsubscribe(WORKFLOW_STARTED, delivered.append)
    bus.unsubscribe("never-subscribed", delivered.append)

    await bus.publish(WORKFLOW_STARTED, "t1")
    assert delivered == []
