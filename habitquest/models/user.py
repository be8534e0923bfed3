"""User account models"""
import datetime as dt
from typing import List, Optional
from pydantic import BaseModel, Field

from habitquest.db.store import Document
from habitquest.gamification.xp_system import level_for_total_xp


class Persona(BaseModel):
    """Descriptive traits used only as AI Sage prompt context"""
    persona_name: Optional[str] = None
    archetype: Optional[str] = None
    traits: List[str] = Field(default_factory=list)
    coaching_style: Optional[str] = None
    motivation_type: Optional[str] = None  # achievement, social, growth
    recommended_habits: List[str] = Field(default_factory=list)


class UserAccount(BaseModel):
    """User account as stored in the `users` collection"""
    id: str
    display_name: str = "Adventurer"
    email: Optional[str] = None
    total_xp: int = 0
    current_streak: int = 0
    longest_streak: int = 0
    last_active_date: Optional[dt.date] = None
    persona: Optional[Persona] = None
    created_at: Optional[dt.datetime] = None
    updated_at: Optional[dt.datetime] = None

    @property
    def level(self) -> int:
        """Always derived from total_xp, never stored"""
        return level_for_total_xp(self.total_xp)

    @classmethod
    def from_document(cls, doc: Document) -> "UserAccount":
        # Explicit nulls fall back to the field defaults
        data = {k: v for k, v in doc.data.items() if v is not None and k != "id"}
        return cls(id=doc.id, **data)

    def to_document(self) -> dict:
        return self.model_dump(mode="json", exclude={"id"})
