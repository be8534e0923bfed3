"""Unit tests for the notification read model"""
from datetime import timedelta

import pytest

from habitquest.events import (
    CHALLENGE_COMPLETED,
    CHALLENGE_REQUEST,
    HABIT_COMPLETED,
    LEVEL_UP,
    Event,
)
from habitquest.exceptions import AuthorizationError, RecordNotFoundError
from habitquest.services.notification_service import build_message


def _completed(status, winner_id):
    return Event(
        type=CHALLENGE_COMPLETED,
        user_ids=["alice", "bob"],
        payload={"status": status, "winner_id": winner_id, "habit_name": "Yoga", "stake_xp": 100},
    )


class TestMessages:

    def test_challenge_request(self):
        event = Event(
            type=CHALLENGE_REQUEST,
            user_ids=["bob"],
            payload={"from_name": "Alice", "duration_days": 7, "habit_name": "Yoga", "stake_xp": 100},
        )
        assert build_message(event, "bob") == "Alice challenged you to 7 days of Yoga for 100 XP!"

    def test_outcome_depends_on_recipient(self):
        event = _completed("defeated", "bob")
        assert build_message(event, "bob").startswith("Victory!")
        assert "200 XP" in build_message(event, "bob")
        assert build_message(event, "alice").startswith("You lost")

    def test_tie(self):
        assert "tie" in build_message(_completed("tied", None), "alice")

    def test_level_up(self):
        event = Event(type=LEVEL_UP, user_ids=["alice"], payload={"old_level": 1, "new_level": 2})
        assert build_message(event, "alice") == "Level up! You reached level 2."


@pytest.mark.asyncio
async def test_one_notification_per_recipient(notification_service, events):
    await events.publish(_completed("victory", "alice"))

    alice = await notification_service.list_notifications("alice")
    bob = await notification_service.list_notifications("bob")

    assert len(alice) == 1
    assert len(bob) == 1
    assert alice[0]["type"] == CHALLENGE_COMPLETED
    assert alice[0]["read"] is False
    assert alice[0]["message"].startswith("Victory!")
    assert bob[0]["message"].startswith("You lost")


@pytest.mark.asyncio
async def test_unlisted_events_are_ignored(notification_service, events):
    await events.publish(Event(type=HABIT_COMPLETED, user_ids=["alice"], payload={"habit_id": "h1"}))

    assert await notification_service.list_notifications("alice") == []


@pytest.mark.asyncio
async def test_detach_stops_writes(notification_service, events):
    notification_service.detach()

    await events.publish(_completed("victory", "alice"))

    assert await notification_service.list_notifications("alice") == []


@pytest.mark.asyncio
async def test_newest_first_and_unread_filter(notification_service, events, t0):
    for i in range(3):
        await events.publish(Event(
            type=LEVEL_UP,
            user_ids=["alice"],
            payload={"old_level": i + 1, "new_level": i + 2},
            occurred_at=t0 + timedelta(minutes=i),
        ))

    listed = await notification_service.list_notifications("alice")
    assert [n["data"]["new_level"] for n in listed] == [4, 3, 2]

    await notification_service.mark_read(listed[0]["id"], "alice")
    unread = await notification_service.list_notifications("alice", unread_only=True)
    assert [n["data"]["new_level"] for n in unread] == [3, 2]

    assert len(await notification_service.list_notifications("alice", limit=1)) == 1


@pytest.mark.asyncio
async def test_mark_read_checks_owner(notification_service, events):
    await events.publish(_completed("victory", "alice"))
    notification = (await notification_service.list_notifications("alice"))[0]

    with pytest.raises(AuthorizationError):
        await notification_service.mark_read(notification["id"], "bob")
    with pytest.raises(RecordNotFoundError):
        await notification_service.mark_read("missing", "alice")

    updated = await notification_service.mark_read(notification["id"], "alice")
    assert updated["read"] is True
    assert "read_at" in updated


@pytest.mark.asyncio
async def test_write_failure_does_not_raise(notification_service, store, monkeypatch):
    async def broken_create(*args, **kwargs):
        raise RuntimeError("store unavailable")

    monkeypatch.setattr(store, "create", broken_create)

    await notification_service.handle_event(_completed("victory", "alice"))


@pytest.mark.asyncio
async def test_subscribe_to_notifications(notification_service, events):
    received = []

    handle = await notification_service.subscribe_to_notifications("alice", received.append)
    await events.publish(_completed("victory", "alice"))

    assert received[0] == []
    assert len(received[-1]) == 1
    assert received[-1][0]["user_id"] == "alice"

    handle.cancel()
    count = len(received)
    await events.publish(_completed("tied", None))
    assert len(received) == count
