"""
UserService - User Management Business Logic

Handles account creation, profile updates, the daily activity streak and the
XP/stake views derived from a user's balance.
"""

import logging
from typing import Optional, Dict, Any, List
from datetime import date, datetime, timezone

from habitquest.db.store import DocumentStore
from habitquest.events import EventBus
from habitquest.exceptions import ConflictError, RecordNotFoundError, ValidationError
from habitquest.gamification.stakes import stake_options
from habitquest.gamification.streak_system import advance_streak
from habitquest.gamification.xp_system import (
    USERS,
    get_leaderboard,
    get_user_xp,
    get_xp_history,
)
from habitquest.models.user import Persona, UserAccount

logger = logging.getLogger(__name__)

# Fields a profile update may never touch
PROTECTED_FIELDS = frozenset({
    "id",
    "email",
    "total_xp",
    "current_streak",
    "longest_streak",
    "last_active_date",
    "created_at",
    "updated_at",
})

MAX_DISPLAY_NAME_LENGTH = 50
MAX_STREAK_RETRIES = 3


class UserService:
    """
    Service for user accounts.

    Responsibilities:
    - Account lifecycle (create on first sign-in, read)
    - Profile and persona updates
    - Daily activity streak
    - XP, stake and leaderboard views
    """

    def __init__(self, store: DocumentStore, events: Optional[EventBus] = None):
        self.store = store
        self.events = events

    async def create_user(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        email: Optional[str] = None,
        persona: Optional[Persona] = None,
    ) -> Dict[str, Any]:
        """
        Create an account with 0 XP, or return the existing one.

        Returns:
            dict: {
                'user': UserAccount,
                'existing': bool
            }
        """
        existing = await self.store.get(USERS, user_id)
        if existing is not None:
            logger.info(f"User {user_id} already exists")
            return {"user": UserAccount.from_document(existing), "existing": True}

        now = datetime.now(timezone.utc)
        account = UserAccount(
            id=user_id,
            display_name=_clean_display_name(display_name) if display_name else "Adventurer",
            email=email,
            persona=persona,
            created_at=now,
            updated_at=now,
        )
        await self.store.create(USERS, account.to_document(), doc_id=user_id)
        logger.info(f"Created new user: {user_id}")
        return {"user": account, "existing": False}

    async def get_user(self, user_id: str) -> UserAccount:
        doc = await self.store.get(USERS, user_id)
        if doc is None:
            raise RecordNotFoundError(
                f"User {user_id} not found", record_type="User", record_id=user_id
            )
        return UserAccount.from_document(doc)

    async def update_profile(self, user_id: str, updates: Dict[str, Any]) -> UserAccount:
        """
        Update editable profile fields.

        Balance, streak and identity fields are silently dropped so that no
        client can write its own XP.
        """
        await self.get_user(user_id)

        fields = {k: v for k, v in updates.items() if k not in PROTECTED_FIELDS}
        dropped = set(updates) - set(fields)
        if dropped:
            logger.warning(f"Ignoring protected profile fields for {user_id}: {sorted(dropped)}")

        if "display_name" in fields:
            fields["display_name"] = _clean_display_name(fields["display_name"])
        if "persona" in fields and fields["persona"] is not None:
            persona = fields["persona"]
            if not isinstance(persona, Persona):
                persona = Persona.model_validate(persona)
            fields["persona"] = persona.model_dump(mode="json")

        unknown = set(fields) - set(UserAccount.model_fields)
        if unknown:
            raise ValidationError(
                f"Unknown profile fields: {', '.join(sorted(unknown))}",
                field="profile",
                user_id=user_id,
            )

        fields["updated_at"] = datetime.now(timezone.utc).isoformat()
        doc = await self.store.update(USERS, user_id, fields)
        logger.info(f"Updated profile for {user_id}: {sorted(fields)}")
        return UserAccount.from_document(doc)

    async def record_activity(self, user_id: str, activity_date: date) -> Dict[str, Any]:
        """
        Advance the daily streak for a completion on activity_date.

        The write is conditional on the last_active_date that was read, so two
        completions racing on the same day advance the streak once.
        """
        for _ in range(MAX_STREAK_RETRIES):
            user = await self.get_user(user_id)
            result = advance_streak(
                user.current_streak,
                user.longest_streak,
                user.last_active_date,
                activity_date,
            )
            if not result["changed"]:
                return result

            previous = user.last_active_date.isoformat() if user.last_active_date else None
            try:
                await self.store.update(
                    USERS,
                    user_id,
                    {
                        "current_streak": result["current_streak"],
                        "longest_streak": result["longest_streak"],
                        "last_active_date": activity_date.isoformat(),
                        "updated_at": datetime.now(timezone.utc).isoformat(),
                    },
                    expected={"last_active_date": previous},
                )
            except ConflictError:
                logger.debug(f"Streak write for {user_id} raced; retrying")
                continue
            logger.info(f"Streak for {user_id}: {result['current_streak']} day(s)")
            return result

        raise ConflictError(
            f"Could not update streak for {user_id}", record_type="User", record_id=user_id
        )

    async def get_xp(self, user_id: str) -> Dict[str, Any]:
        return await get_user_xp(self.store, user_id)

    async def get_xp_history(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        await self.get_user(user_id)
        return await get_xp_history(self.store, user_id, limit=limit)

    async def get_stake_options(self, user_id: str) -> Dict[str, Any]:
        user = await self.get_user(user_id)
        return stake_options(user.total_xp)

    async def get_leaderboard(self, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
        return await get_leaderboard(self.store, limit=limit, offset=offset)


def _clean_display_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Display name is required", field="display_name", value=name)
    name = name.strip()
    if len(name) > MAX_DISPLAY_NAME_LENGTH:
        raise ValidationError(
            f"Display name must be at most {MAX_DISPLAY_NAME_LENGTH} characters",
            field="display_name",
            value=name,
        )
    return name
