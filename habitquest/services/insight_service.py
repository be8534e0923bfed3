"""
InsightService - AI Sage Coaching

Gathers the user's habits and challenges into a UserContext and asks the
text-generation endpoint for one insight and one suggested habit.
"""

import logging
from typing import Optional

from habitquest.db.store import DocumentStore, Filter
from habitquest.exceptions import RecordNotFoundError
from habitquest.gamification.xp_system import USERS
from habitquest.insights.sage import SageClient, SageInsight, UserContext, build_user_context, generate_insight
from habitquest.models.habit import Habit
from habitquest.models.user import UserAccount

logger = logging.getLogger(__name__)

HABITS = "habits"


class InsightService:
    """
    Service for AI Sage insights.

    The client is created on first use so that a missing API key only
    affects insight requests.
    """

    def __init__(self, store: DocumentStore, challenge_service, client: Optional[SageClient] = None):
        self.store = store
        self.challenge_service = challenge_service
        self._client = client

    @property
    def client(self) -> SageClient:
        if self._client is None:
            self._client = SageClient()
        return self._client

    async def build_context(self, user_id: str) -> UserContext:
        doc = await self.store.get(USERS, user_id)
        if doc is None:
            raise RecordNotFoundError(
                f"User {user_id} not found", record_type="User", record_id=user_id
            )
        user = UserAccount.from_document(doc)
        habit_docs = await self.store.query(
            HABITS, filters=[Filter("user_id", "==", user_id)], order_by="created_at"
        )
        habits = [Habit.from_document(d) for d in habit_docs]
        challenges = await self.challenge_service.list_challenges(user_id)
        return build_user_context(user, habits, challenges)

    async def get_insight(self, user_id: str) -> SageInsight:
        context = await self.build_context(user_id)
        return await generate_insight(context, self.client, user_id=user_id)
