"""
Gamification system for habitquest

This module implements the rules engines:
- XP and leveling (level derived from total XP)
- Challenge stakes (bounds and recommendations)
- User and habit streaks
- Challenge lifecycle transitions and AI Sage opponents
"""

from habitquest.gamification.xp_system import (
    award_xp,
    ledger_key,
    adjust_xp,
    get_user_xp,
    calculate_level_from_xp,
    level_for_total_xp,
    xp_required_for_level,
)
from habitquest.gamification.stakes import recommended_stakes, can_afford_stake
from habitquest.gamification.streak_system import advance_streak

__all__ = [
    "award_xp",
    "ledger_key",
    "adjust_xp",
    "get_user_xp",
    "calculate_level_from_xp",
    "level_for_total_xp",
    "xp_required_for_level",
    "recommended_stakes",
    "can_afford_stake",
    "advance_streak",
]
