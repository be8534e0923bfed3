"""
NotificationService - Notification Read Model

Listens on the event bus and writes one `notifications` document per
recipient. Writing a notification is never allowed to fail the operation that
published the event: errors are logged and the event is dropped.
"""

import logging
from typing import Any, Callable, Dict, List, Optional
from datetime import datetime, timezone

from habitquest.db.store import DocumentStore, Filter
from habitquest.events import (
    AI_SAGE_CHALLENGE,
    CHALLENGE_ACCEPTED,
    CHALLENGE_COMPLETED,
    CHALLENGE_REJECTED,
    CHALLENGE_REQUEST,
    LEVEL_UP,
    Event,
    EventBus,
    Subscription,
    invoke_callback,
)
from habitquest.exceptions import AuthorizationError, RecordNotFoundError

logger = logging.getLogger(__name__)

NOTIFICATIONS = "notifications"

NOTIFIED_EVENTS = [
    CHALLENGE_REQUEST,
    AI_SAGE_CHALLENGE,
    CHALLENGE_ACCEPTED,
    CHALLENGE_REJECTED,
    CHALLENGE_COMPLETED,
    LEVEL_UP,
]


def _challenge_outcome_message(payload: Dict[str, Any], user_id: str) -> str:
    habit = payload.get("habit_name", "your habit")
    stake = payload.get("stake_xp", 0)
    if payload.get("status") == "tied":
        return f"Your {habit} challenge ended in a tie. Your {stake} XP stake was returned."
    if payload.get("winner_id") == user_id:
        return f"Victory! You won the {habit} challenge and earned {2 * stake} XP."
    return f"You lost the {habit} challenge and forfeited {stake} XP. Try again!"


def build_message(event: Event, user_id: str) -> str:
    """User-facing text for an event"""
    p = event.payload
    if event.type == CHALLENGE_REQUEST:
        return (
            f"{p.get('from_name', 'A friend')} challenged you to {p.get('duration_days')} days "
            f"of {p.get('habit_name')} for {p.get('stake_xp')} XP!"
        )
    if event.type == AI_SAGE_CHALLENGE:
        return (
            f"{p.get('opponent_name', 'The AI Sage')} accepted your {p.get('duration_days')}-day "
            f"{p.get('habit_name')} challenge. {p.get('stake_xp')} XP is on the line."
        )
    if event.type == CHALLENGE_ACCEPTED:
        return f"{p.get('by_name', 'Your friend')} accepted your {p.get('habit_name')} challenge. Game on!"
    if event.type == CHALLENGE_REJECTED:
        return f"{p.get('by_name', 'Your friend')} declined your {p.get('habit_name')} challenge."
    if event.type == CHALLENGE_COMPLETED:
        return _challenge_outcome_message(p, user_id)
    if event.type == LEVEL_UP:
        return f"Level up! You reached level {p.get('new_level')}."
    return event.type


class NotificationService:
    """
    Service for user notifications.

    Responsibilities:
    - Turning challenge and level-up events into notification documents
    - Listing and marking notifications read
    - Live notification subscriptions
    """

    def __init__(self, store: DocumentStore):
        self.store = store
        self._subscription: Optional[Subscription] = None

    def attach(self, events: EventBus) -> Subscription:
        """Start writing notifications for events published on `events`"""
        self.detach()
        self._subscription = events.subscribe(self.handle_event, event_types=NOTIFIED_EVENTS)
        return self._subscription

    def detach(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None

    async def handle_event(self, event: Event) -> None:
        for user_id in event.user_ids:
            try:
                await self.store.create(NOTIFICATIONS, {
                    "user_id": user_id,
                    "type": event.type,
                    "message": build_message(event, user_id),
                    "data": event.payload,
                    "read": False,
                    "created_at": event.occurred_at.isoformat(),
                })
            except Exception as e:
                logger.error(f"Failed to write {event.type} notification for {user_id}: {e}", exc_info=True)

    async def list_notifications(
        self,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        filters = [Filter("user_id", "==", user_id)]
        if unread_only:
            filters.append(Filter("read", "==", False))
        docs = await self.store.query(
            NOTIFICATIONS, filters=filters, order_by="created_at", descending=True, limit=limit
        )
        return [{"id": doc.id, **doc.data} for doc in docs]

    async def mark_read(self, notification_id: str, user_id: str) -> Dict[str, Any]:
        doc = await self.store.get(NOTIFICATIONS, notification_id)
        if doc is None:
            raise RecordNotFoundError(
                f"Notification {notification_id} not found",
                record_type="Notification",
                record_id=notification_id,
            )
        if doc.data.get("user_id") != user_id:
            raise AuthorizationError(
                f"Notification {notification_id} does not belong to {user_id}",
                resource="this notification",
                user_id=user_id,
            )
        doc = await self.store.update(NOTIFICATIONS, notification_id, {
            "read": True,
            "read_at": datetime.now(timezone.utc).isoformat(),
        })
        return {"id": doc.id, **doc.data}

    async def subscribe_to_notifications(self, user_id: str, callback: Callable, limit: int = 50) -> Subscription:
        """Live list of the user's newest notifications (as dicts)"""
        async def deliver(docs: list) -> None:
            await invoke_callback(callback, [{"id": doc.id, **doc.data} for doc in docs])

        return await self.store.subscribe_query(
            NOTIFICATIONS,
            deliver,
            filters=[Filter("user_id", "==", user_id)],
            order_by="created_at",
            descending=True,
            limit=limit,
        )
