"""Unit tests for the in-process event bus"""
import pytest

from habitquest.events import CHALLENGE_REQUEST, LEVEL_UP, Event, EventBus, Subscription


@pytest.mark.asyncio
async def test_publish_in_registration_order():
    bus = EventBus()
    calls = []

    bus.subscribe(lambda e: calls.append(("first", e.type)))

    async def second(event):
        calls.append(("second", event.type))

    bus.subscribe(second)
    await bus.publish(Event(type=LEVEL_UP, user_ids=["alice"]))

    assert calls == [("first", LEVEL_UP), ("second", LEVEL_UP)]


@pytest.mark.asyncio
async def test_event_type_filter():
    bus = EventBus()
    received = []
    bus.subscribe(received.append, event_types=[CHALLENGE_REQUEST])

    await bus.publish(Event(type=LEVEL_UP, user_ids=["alice"]))
    await bus.publish(Event(type=CHALLENGE_REQUEST, user_ids=["bob"]))

    assert [e.type for e in received] == [CHALLENGE_REQUEST]


@pytest.mark.asyncio
async def test_cancel_stops_delivery():
    bus = EventBus()
    received = []
    subscription = bus.subscribe(received.append)

    subscription.cancel()
    subscription.cancel()
    await bus.publish(Event(type=LEVEL_UP, user_ids=["alice"]))

    assert received == []
    assert bus.subscriber_count == 0


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_others():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("handler bug")

    bus.subscribe(broken)
    bus.subscribe(received.append)
    await bus.publish(Event(type=LEVEL_UP, user_ids=["alice"]))

    assert len(received) == 1


def test_subscription_context_manager():
    cancelled = []

    with Subscription(on_cancel=cancelled.append) as subscription:
        assert subscription.active

    assert subscription.active is False
    assert cancelled == [subscription]
