"""Global test fixtures and utilities for habitquest tests"""
import random
from datetime import datetime, timezone

import pytest

from habitquest.db.memory_store import InMemoryDocumentStore
from habitquest.events import EventBus
from habitquest.models.habit import Habit
from habitquest.models.user import UserAccount
from habitquest.resilience.circuit_breaker import INSIGHT_BREAKER
from habitquest.services.challenge_service import ChallengeService
from habitquest.services.habit_service import HabitService
from habitquest.services.notification_service import NotificationService
from habitquest.services.user_service import UserService

# Monday
T0 = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


class FixedRandom(random.Random):
    """random() always returns the same value (0.5 means no AI jitter)"""

    def __init__(self, value: float = 0.5):
        super().__init__(0)
        self.value = value

    def random(self) -> float:
        return self.value


# ============================================================================
# Store & Event Fixtures
# ============================================================================

@pytest.fixture
def store():
    """Fresh in-memory document store"""
    return InMemoryDocumentStore()


@pytest.fixture
def events():
    return EventBus()


@pytest.fixture
def published(events):
    """Every event published on the bus, in order"""
    received = []
    events.subscribe(received.append)
    return received


@pytest.fixture(autouse=True)
def reset_insight_breaker():
    """Reset the shared circuit breaker before each test"""
    INSIGHT_BREAKER.close()
    yield
    INSIGHT_BREAKER.close()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def user_service(store, events):
    return UserService(store, events)


@pytest.fixture
def challenge_service(store, events):
    return ChallengeService(store, events, rng=FixedRandom())


@pytest.fixture
def habit_service(store, events, user_service, challenge_service):
    return HabitService(store, events, user_service, challenge_service)


@pytest.fixture
def notification_service(store, events):
    service = NotificationService(store)
    service.attach(events)
    yield service
    service.detach()


# ============================================================================
# Data Factories
# ============================================================================

@pytest.fixture
def make_user(store):
    """Create a user document with a given balance"""
    async def _make_user(user_id: str, total_xp: int = 0, display_name: str = None) -> UserAccount:
        account = UserAccount(
            id=user_id,
            display_name=display_name or user_id.capitalize(),
            total_xp=total_xp,
            created_at=T0,
            updated_at=T0,
        )
        await store.create("users", account.to_document(), doc_id=user_id)
        return account
    return _make_user


@pytest.fixture
def make_habit(store):
    """Create a habit document owned by a user"""
    async def _make_habit(
        habit_id: str,
        user_id: str,
        name: str = "Morning run",
        category: str = "fitness",
        xp_reward: int = 10,
        **extra,
    ) -> Habit:
        habit = Habit(
            id=habit_id,
            user_id=user_id,
            name=name,
            category=category,
            xp_reward=xp_reward,
            created_at=T0,
            updated_at=T0,
            **extra,
        )
        await store.create("habits", habit.to_document(), doc_id=habit_id)
        return habit
    return _make_habit


@pytest.fixture
def t0():
    return T0


@pytest.fixture
def get_balance(store):
    """Current total_xp of a user"""
    async def _get_balance(user_id: str) -> int:
        doc = await store.get("users", user_id)
        return doc.data["total_xp"]
    return _get_balance
