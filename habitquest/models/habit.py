"""Habit models"""
import datetime as dt
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, field_validator

from habitquest.db.store import Document


class HabitFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class HabitDifficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class CompletionRecord(BaseModel):
    """One entry per calendar date; completed=False marks a missed day"""
    date: dt.date
    completed: bool = True
    completed_at: Optional[dt.datetime] = None


class Habit(BaseModel):
    """Habit as stored in the `habits` collection"""
    id: str
    user_id: str
    name: str
    category: str = "general"
    frequency: HabitFrequency = HabitFrequency.DAILY
    difficulty: HabitDifficulty = HabitDifficulty.EASY
    xp_reward: int  # fixed at creation
    reminder_time: Optional[str] = None  # "HH:MM"
    completions: List[CompletionRecord] = Field(default_factory=list)
    revision: int = 0  # bumped on every completion write (compare-and-set guard)
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @field_validator('reminder_time')
    @classmethod
    def validate_reminder_time(cls, v: Optional[str]) -> Optional[str]:
        """Ensure HH:MM format and valid time"""
        if v is None:
            return v
        try:
            dt.time.fromisoformat(v)
        except ValueError:
            raise ValueError(
                f"Invalid time format: '{v}'. Must be HH:MM (e.g., '07:30')"
            )
        return v

    def record_for(self, day: dt.date) -> Optional[CompletionRecord]:
        for record in self.completions:
            if record.date == day:
                return record
        return None

    @classmethod
    def from_document(cls, doc: Document) -> "Habit":
        data = {k: v for k, v in doc.data.items() if v is not None and k != "id"}
        return cls(id=doc.id, **data)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude={"id"})
