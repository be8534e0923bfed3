"""Challenge models

One authoritative document per challenge, written from the initiator's
perspective. ChallengeView is the read projection for either participant.
"""
import datetime as dt
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field

from habitquest.db.store import Document

AI_OPPONENT_ID = "ai-sage"


class ChallengeStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    VICTORY = "victory"    # initiator won (stored perspective)
    DEFEATED = "defeated"  # initiator lost
    TIED = "tied"
    REJECTED = "rejected"


TERMINAL_STATUSES = frozenset({
    ChallengeStatus.VICTORY,
    ChallengeStatus.DEFEATED,
    ChallengeStatus.TIED,
    ChallengeStatus.REJECTED,
})

RESOLVED_STATUSES = frozenset({
    ChallengeStatus.VICTORY,
    ChallengeStatus.DEFEATED,
    ChallengeStatus.TIED,
})


class ChallengeType(str, Enum):
    PVP = "pvp"
    AI_SAGE = "ai-sage"


class AIDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"
    LEGENDARY = "legendary"


class Challenge(BaseModel):
    """Challenge as stored in the `challenges` collection"""
    id: str
    challenge_type: ChallengeType = ChallengeType.PVP
    status: ChallengeStatus = ChallengeStatus.PENDING

    initiator_id: str
    initiator_name: str = ""
    opponent_id: str
    opponent_name: str = ""
    ai_difficulty: Optional[AIDifficulty] = None

    habit_id: str
    habit_name: str = ""
    habit_category: str = ""
    opponent_habit_id: Optional[str] = None

    duration_days: int
    stake_xp: int
    initiator_progress: int = 0
    opponent_progress: int = 0

    start_date: Optional[dt.datetime] = None
    end_date: Optional[dt.datetime] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None
    resolved_at: Optional[dt.datetime] = None
    winner_id: Optional[str] = None

    # Balance movements already applied (for the reconciliation sweep)
    escrowed_user_ids: List[str] = Field(default_factory=list)
    settled_user_ids: List[str] = Field(default_factory=list)
    # Bumped each time collected stakes are handed back
    escrow_round: int = 0

    @property
    def is_ai(self) -> bool:
        return self.challenge_type == ChallengeType.AI_SAGE

    def participants(self) -> List[str]:
        return [self.initiator_id, self.opponent_id]

    def progress_of(self, user_id: str) -> int:
        if user_id == self.initiator_id:
            return self.initiator_progress
        if user_id == self.opponent_id:
            return self.opponent_progress
        raise KeyError(user_id)

    @classmethod
    def from_document(cls, doc: Document) -> "Challenge":
        data = {k: v for k, v in doc.data.items() if v is not None and k != "id"}
        return cls(id=doc.id, **data)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude={"id"})


class ChallengeView(BaseModel):
    """A challenge as seen by one participant"""
    challenge_id: str
    user_id: str
    is_initiator: bool
    challenge_type: ChallengeType
    status: ChallengeStatus
    opponent_id: str
    opponent_name: str
    ai_difficulty: Optional[AIDifficulty] = None
    habit_id: Optional[str] = None
    habit_name: str
    habit_category: str
    duration_days: int
    stake_xp: int
    my_progress: int
    opponent_progress: int
    start_date: Optional[dt.datetime] = None
    end_date: Optional[dt.datetime] = None
    created_at: Optional[dt.datetime] = None
    resolved_at: Optional[dt.datetime] = None
