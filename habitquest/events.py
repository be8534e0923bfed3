"""
In-process event bus

Challenge transitions, progress updates and level-ups are published here so
read models (notifications, live views) can react without the lifecycle code
knowing about them. Registration returns a Subscription whose cancel() stops
delivery immediately.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import uuid4

logger = logging.getLogger(__name__)

# Event types
CHALLENGE_REQUEST = "challenge_request"
AI_SAGE_CHALLENGE = "ai_sage_challenge"
CHALLENGE_ACCEPTED = "challenge_accepted"
CHALLENGE_REJECTED = "challenge_rejected"
CHALLENGE_PROGRESS = "challenge_progress"
CHALLENGE_COMPLETED = "challenge_completed"
LEVEL_UP = "level_up"
HABIT_COMPLETED = "habit_completed"


@dataclass
class Event:
    """Something that happened to one or more users"""
    type: str
    user_ids: List[str]
    payload: Dict[str, Any] = field(default_factory=dict)
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Callback = Callable[..., Union[None, Awaitable[None]]]


class Subscription:
    """Cancellation handle returned by every registration function"""

    def __init__(self, on_cancel: Optional[Callable[["Subscription"], None]] = None):
        self.id = uuid4().hex
        self.active = True
        self._on_cancel = on_cancel

    def cancel(self) -> None:
        """Stop delivery. Safe to call more than once."""
        if not self.active:
            return
        self.active = False
        if self._on_cancel:
            self._on_cancel(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cancel()


async def invoke_callback(callback: Callback, *args: Any) -> None:
    """Run a sync or async callback, logging (not raising) its failures"""
    try:
        result = callback(*args)
        if inspect.isawaitable(result):
            await result
    except asyncio.CancelledError:
        raise
    except Exception as e:
        logger.error(f"Subscriber callback {getattr(callback, '__name__', callback)} failed: {e}", exc_info=True)


class EventBus:
    """Fan-out of Events to registered callbacks, in registration order"""

    def __init__(self):
        self._handlers: Dict[str, tuple[Subscription, Callback, Optional[frozenset]]] = {}

    def subscribe(self, callback: Callback, event_types: Optional[List[str]] = None) -> Subscription:
        """
        Register a callback for events

        Args:
            callback: Called with the Event (may be async)
            event_types: Only deliver these event types (all when None)

        Returns:
            Subscription handle; call cancel() to unregister
        """
        subscription = Subscription(on_cancel=lambda s: self._handlers.pop(s.id, None))
        types = frozenset(event_types) if event_types else None
        self._handlers[subscription.id] = (subscription, callback, types)
        return subscription

    async def publish(self, event: Event) -> None:
        """Deliver an event to every matching subscriber"""
        logger.debug(f"Publishing {event.type} for users {event.user_ids}")
        for subscription, callback, types in list(self._handlers.values()):
            if not subscription.active:
                continue
            if types is not None and event.type not in types:
                continue
            await invoke_callback(callback, event)

    @property
    def subscriber_count(self) -> int:
        return len(self._handlers)
