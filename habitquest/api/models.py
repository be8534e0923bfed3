"""Pydantic models for API request/response validation"""
import datetime as dt
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

from habitquest.models.challenge import AIDifficulty, ChallengeView
from habitquest.models.habit import HabitDifficulty, HabitFrequency
from habitquest.models.user import Persona, UserAccount


# ============================================
# Users
# ============================================

class CreateUserRequest(BaseModel):
    """Request to create the caller's own account"""
    display_name: Optional[str] = Field(default=None, description="Shown to friends and on the leaderboard")
    persona: Optional[Persona] = Field(default=None, description="Onboarding persona (AI Sage context)")


class UpdateProfileRequest(BaseModel):
    """Editable profile fields; omitted fields are left unchanged"""
    display_name: Optional[str] = None
    persona: Optional[Persona] = None


class UserResponse(BaseModel):
    """User account with its derived level"""
    id: str
    display_name: str
    email: Optional[str] = None
    total_xp: int
    level: int
    current_streak: int
    longest_streak: int
    last_active_date: Optional[dt.date] = None
    persona: Optional[Persona] = None
    created: bool = False

    @classmethod
    def from_account(cls, account: UserAccount, created: bool = False) -> "UserResponse":
        return cls(
            **account.model_dump(exclude={"created_at", "updated_at"}),
            level=account.level,
            created=created,
        )


class XPResponse(BaseModel):
    """XP and level information"""
    user_id: str
    total_xp: int
    current_level: int
    level_title: str
    xp_in_current_level: int
    xp_needed_for_next_level: int
    xp_to_next_level: int
    progress_percent: float
    level_perks: List[str] = Field(default_factory=list)


class StakeOptionsResponse(BaseModel):
    """Wager bounds and recommendations for the caller's balance"""
    level: int
    total_xp: int
    minimum_stake: int
    maximum_stake: int
    recommended_stakes: List[int]
    can_stake: bool


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: str
    display_name: str
    total_xp: int
    level: int
    level_title: str


class LeaderboardResponse(BaseModel):
    entries: List[LeaderboardEntry]


# ============================================
# Habits
# ============================================

class HabitCreateRequest(BaseModel):
    """Request to create a habit"""
    name: str = Field(..., description="Habit name")
    category: str = Field(default="general", description="Category (fitness, mindfulness, ...)")
    frequency: HabitFrequency = HabitFrequency.DAILY
    difficulty: HabitDifficulty = HabitDifficulty.EASY
    xp_reward: Optional[int] = Field(default=None, description="Custom reward; defaults by difficulty")
    reminder_time: Optional[str] = Field(default=None, description="HH:MM")


class HabitUpdateRequest(BaseModel):
    """Editable habit fields; the XP reward is fixed at creation"""
    name: Optional[str] = None
    category: Optional[str] = None
    frequency: Optional[HabitFrequency] = None
    difficulty: Optional[HabitDifficulty] = None
    reminder_time: Optional[str] = None


class CompleteHabitRequest(BaseModel):
    date: Optional[dt.date] = Field(default=None, description="Completion date (defaults to today, UTC)")


class MissedHabitRequest(BaseModel):
    date: dt.date


class CompletionResponse(BaseModel):
    """Result of completing a habit"""
    completed: bool
    already_completed: bool
    xp_awarded: int
    new_total_xp: Optional[int] = None
    leveled_up: bool
    new_level: Optional[int] = None
    current_streak: Optional[int] = None
    habit_streak: int
    challenges_updated: int


# ============================================
# Challenges
# ============================================

class ChallengeCreateRequest(BaseModel):
    """Challenge a friend"""
    opponent_id: str
    habit_id: str
    duration_days: int = Field(..., description="7, 14, 21 or 30")
    stake_xp: int = Field(..., description="XP each participant stakes")


class AIChallengeCreateRequest(BaseModel):
    """Challenge the AI Sage; omitted terms follow the offer for the caller's level"""
    habit_id: str
    difficulty: Optional[AIDifficulty] = None
    duration_days: Optional[int] = None
    stake_xp: Optional[int] = None


class AcceptChallengeRequest(BaseModel):
    habit_id: Optional[str] = Field(default=None, description="Opponent's own habit to track")


class ChallengeStatsResponse(BaseModel):
    active_count: int
    victories_count: int
    defeats_count: int
    ties_count: int
    unique_opponents: int
    total_challenges: int


class ChallengeListResponse(BaseModel):
    challenges: List[ChallengeView]
    stats: ChallengeStatsResponse


class AIChallengeOffer(BaseModel):
    habit_id: str
    habit_name: str
    habit_category: str
    difficulty: AIDifficulty
    opponent_name: str
    duration_days: int
    stake_xp: int
    affordable: bool
    message: str


class AIChallengeOffersResponse(BaseModel):
    offers: List[AIChallengeOffer]


# ============================================
# Insights & notifications
# ============================================

class InsightResponse(BaseModel):
    insight: str
    suggested_habit: str
    warnings: List[str] = Field(default_factory=list)


class NotificationResponse(BaseModel):
    id: str
    type: str
    message: str
    data: Dict[str, Any] = Field(default_factory=dict)
    read: bool = False
    created_at: Optional[dt.datetime] = None


class NotificationListResponse(BaseModel):
    notifications: List[NotificationResponse]


# ============================================
# System
# ============================================

class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="healthy or degraded")
    store: str = Field(..., description="connected or disconnected")
    timestamp: dt.datetime


class ErrorResponse(BaseModel):
    """Error body returned by the exception handlers"""
    error: str
    message: str
    user_message: str
    request_id: str
    timestamp: dt.datetime
