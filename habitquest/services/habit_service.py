"""
HabitService - Habit Business Logic

Habit CRUD plus the daily completion flow: one completion record per calendar
date, the habit's fixed XP reward, the user streak and challenge progress.
"""

import logging
from typing import Optional, Dict, Any, List
from datetime import date, datetime, timezone
from uuid import uuid4

import pydantic

from habitquest.db.store import DocumentStore, Filter
from habitquest.events import Event, EventBus, HABIT_COMPLETED
from habitquest.exceptions import (
    AuthorizationError,
    ConflictError,
    RecordNotFoundError,
    ValidationError,
)
from habitquest.gamification.streak_system import calculate_habit_streak
from habitquest.gamification.xp_system import award_xp, ledger_key
from habitquest.models.habit import CompletionRecord, Habit, HabitDifficulty, HabitFrequency

logger = logging.getLogger(__name__)

HABITS = "habits"

# Fixed reward per completion, chosen at creation
DIFFICULTY_XP = {
    HabitDifficulty.EASY: 5,
    HabitDifficulty.MEDIUM: 10,
    HabitDifficulty.HARD: 20,
}

MAX_HABIT_NAME_LENGTH = 100
MAX_COMPLETION_RETRIES = 5

# xp_reward, completions and revision are never client-editable
EDITABLE_FIELDS = frozenset({"name", "category", "frequency", "difficulty", "reminder_time"})


class HabitService:
    """
    Service for habits and their completions.

    Responsibilities:
    - Habit CRUD (owner-only)
    - Idempotent per-day completion with XP award
    - Missed-day records
    - Fan-out of completions to streaks and challenges
    """

    def __init__(
        self,
        store: DocumentStore,
        events: Optional[EventBus] = None,
        user_service=None,
        challenge_service=None,
    ):
        """
        Initialize HabitService.

        Args:
            store: Document store
            events: Event bus for HABIT_COMPLETED / LEVEL_UP
            user_service: UserService (streaks); skipped when None
            challenge_service: ChallengeService (progress); skipped when None
        """
        self.store = store
        self.events = events
        self.user_service = user_service
        self.challenge_service = challenge_service

    async def create_habit(
        self,
        user_id: str,
        name: str,
        category: str = "general",
        frequency: HabitFrequency = HabitFrequency.DAILY,
        difficulty: HabitDifficulty = HabitDifficulty.EASY,
        xp_reward: Optional[int] = None,
        reminder_time: Optional[str] = None,
    ) -> Habit:
        """
        Create a habit.

        The reward is 5 / 10 / 20 XP by difficulty unless a positive custom
        reward is given, and it never changes afterwards.
        """
        if self.user_service is not None:
            await self.user_service.get_user(user_id)

        difficulty = HabitDifficulty(difficulty)
        if xp_reward is None:
            xp_reward = DIFFICULTY_XP[difficulty]
        elif xp_reward <= 0:
            raise ValidationError("XP reward must be positive", field="xp_reward", value=xp_reward, user_id=user_id)

        now = datetime.now(timezone.utc)
        habit = _build_habit(
            id=uuid4().hex,
            user_id=user_id,
            name=_clean_name(name),
            category=(category or "general").strip() or "general",
            frequency=frequency,
            difficulty=difficulty,
            xp_reward=xp_reward,
            reminder_time=reminder_time,
            created_at=now,
            updated_at=now,
        )
        await self.store.create(HABITS, habit.to_document(), doc_id=habit.id)
        logger.info(f"Created habit {habit.id} '{habit.name}' for {user_id} ({habit.xp_reward} XP)")
        return habit

    async def get_habit(self, habit_id: str, user_id: str) -> Habit:
        doc = await self.store.get(HABITS, habit_id)
        if doc is None:
            raise RecordNotFoundError(
                f"Habit {habit_id} not found", record_type="Habit", record_id=habit_id
            )
        habit = Habit.from_document(doc)
        if habit.user_id != user_id:
            raise AuthorizationError(
                f"Habit {habit_id} does not belong to {user_id}",
                resource="this habit",
                user_id=user_id,
            )
        return habit

    async def list_habits(self, user_id: str) -> List[Habit]:
        docs = await self.store.query(HABITS, filters=[Filter("user_id", "==", user_id)], order_by="created_at")
        return [Habit.from_document(doc) for doc in docs]

    async def update_habit(self, habit_id: str, user_id: str, updates: Dict[str, Any]) -> Habit:
        """Update descriptive fields; the XP reward stays as created"""
        habit = await self.get_habit(habit_id, user_id)

        fields = {k: v for k, v in updates.items() if k in EDITABLE_FIELDS}
        ignored = set(updates) - set(fields)
        if ignored:
            logger.warning(f"Ignoring non-editable habit fields for {habit_id}: {sorted(ignored)}")
        if "name" in fields:
            fields["name"] = _clean_name(fields["name"])

        candidate = _build_habit(**{**habit.model_dump(), **fields, "updated_at": datetime.now(timezone.utc)})
        doc = await self.store.update(
            HABITS,
            habit_id,
            candidate.model_dump(mode="json", include=set(fields) | {"updated_at"}),
        )
        logger.info(f"Updated habit {habit_id}: {sorted(fields)}")
        return Habit.from_document(doc)

    async def delete_habit(self, habit_id: str, user_id: str) -> bool:
        await self.get_habit(habit_id, user_id)
        deleted = await self.store.delete(HABITS, habit_id)
        logger.info(f"Deleted habit {habit_id} for {user_id}")
        return deleted

    async def complete_habit(
        self,
        habit_id: str,
        user_id: str,
        completion_date: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Mark a habit complete for a calendar date.

        A second completion of the same date is a no-op: no new record and no
        XP. The record write is a compare-and-set on the habit's revision; the
        reward is keyed on (habit, date) in the XP ledger, so completing again
        after a failed award pays the reward instead of reporting a duplicate.

        Returns:
            {
                'completed': bool,
                'already_completed': bool,
                'xp_awarded': int,
                'new_total_xp': int | None,
                'leveled_up': bool,
                'new_level': int | None,
                'current_streak': int | None,
                'habit_streak': int,
                'challenges_updated': int
            }
        """
        now = now or datetime.now(timezone.utc)
        day = completion_date or now.date()
        if day > now.date():
            raise ValidationError("Cannot complete a habit in the future", field="date", value=day.isoformat())

        for _ in range(MAX_COMPLETION_RETRIES):
            habit = await self.get_habit(habit_id, user_id)
            existing = habit.record_for(day)
            if existing is not None and existing.completed:
                break

            record = CompletionRecord(date=day, completed=True, completed_at=now)
            completions = [r for r in habit.completions if r.date != day] + [record]
            completions.sort(key=lambda r: r.date)
            try:
                await self._write_completions(habit, completions, now)
            except ConflictError:
                logger.debug(f"Completion write on habit {habit_id} raced; retrying")
                continue
            habit = habit.model_copy(update={"completions": completions, "revision": habit.revision + 1})
            break
        else:
            raise ConflictError(
                f"Could not record completion for habit {habit_id}",
                record_type="Habit",
                record_id=habit_id,
            )

        xp_result = await award_xp(
            self.store,
            user_id,
            habit.xp_reward,
            source_type="habit",
            source_id=habit_id,
            reason=f"Completed {habit.name}",
            events=self.events,
            ledger_id=ledger_key(habit_id, day.isoformat(), "habit"),
        )
        if not xp_result["applied"]:
            logger.info(f"Habit {habit_id} already completed on {day}")
            return {
                "completed": True,
                "already_completed": True,
                "xp_awarded": 0,
                "new_total_xp": None,
                "leveled_up": False,
                "new_level": None,
                "current_streak": None,
                "habit_streak": calculate_habit_streak(habit.completions),
                "challenges_updated": 0,
            }

        current_streak = None
        if self.user_service is not None:
            streak = await self.user_service.record_activity(user_id, day)
            current_streak = streak["current_streak"]

        challenge_views = []
        if self.challenge_service is not None:
            challenge_views = await self.challenge_service.record_habit_completion(user_id, habit, day, now)

        if self.events:
            await self.events.publish(Event(
                type=HABIT_COMPLETED,
                user_ids=[user_id],
                payload={
                    "habit_id": habit_id,
                    "habit_name": habit.name,
                    "date": day.isoformat(),
                    "xp_awarded": habit.xp_reward,
                },
            ))

        return {
            "completed": True,
            "already_completed": False,
            "xp_awarded": xp_result["xp_delta"],
            "new_total_xp": xp_result["new_total_xp"],
            "leveled_up": xp_result["leveled_up"],
            "new_level": xp_result["new_level"],
            "current_streak": current_streak,
            "habit_streak": calculate_habit_streak(habit.completions),
            "challenges_updated": len(challenge_views),
        }

    async def mark_missed(self, habit_id: str, user_id: str, missed_date: date) -> Habit:
        """Record a missed day; dates that already have a record are left alone"""
        for _ in range(MAX_COMPLETION_RETRIES):
            habit = await self.get_habit(habit_id, user_id)
            if habit.record_for(missed_date) is not None:
                return habit

            completions = sorted(
                habit.completions + [CompletionRecord(date=missed_date, completed=False)],
                key=lambda r: r.date,
            )
            now = datetime.now(timezone.utc)
            try:
                await self._write_completions(habit, completions, now)
            except ConflictError:
                logger.debug(f"Missed-day write on habit {habit_id} raced; retrying")
                continue
            logger.info(f"Habit {habit_id} marked missed on {missed_date}")
            return habit.model_copy(update={
                "completions": completions,
                "revision": habit.revision + 1,
                "updated_at": now,
            })

        raise ConflictError(
            f"Could not record missed day for habit {habit_id}",
            record_type="Habit",
            record_id=habit_id,
        )

    async def _write_completions(self, habit: Habit, completions: List[CompletionRecord], now: datetime) -> None:
        await self.store.update(
            HABITS,
            habit.id,
            {
                "completions": [r.model_dump(mode="json") for r in completions],
                "revision": habit.revision + 1,
                "updated_at": now.isoformat(),
            },
            expected={"revision": habit.revision},
        )


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Habit name is required", field="name", value=name)
    name = name.strip()
    if len(name) > MAX_HABIT_NAME_LENGTH:
        raise ValidationError(
            f"Habit name must be at most {MAX_HABIT_NAME_LENGTH} characters",
            field="name",
            value=name,
        )
    return name


def _build_habit(**data: Any) -> Habit:
    try:
        return Habit(**data)
    except pydantic.ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or None
        raise ValidationError(first["msg"], field=field, value=first.get("input"))
