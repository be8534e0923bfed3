"""
AI Sage opponent

The AI opponent is not adaptive: its progress follows a fixed completion-rate
curve per difficulty tier with +/-10% jitter on every tick.
"""

import math
import random
from typing import Any, Dict, List, Optional, Sequence

from habitquest.gamification.stakes import can_afford_stake, minimum_stake
from habitquest.models.challenge import AIDifficulty
from habitquest.models.habit import Habit

AI_DIFFICULTY_SETTINGS: Dict[AIDifficulty, Dict[str, Any]] = {
    AIDifficulty.EASY: {
        "completion_rate": 0.60,
        "name": "Sage Apprentice",
        "avatar": "🤖",
        "stake_multiplier": 1.0,
        "duration_days": 7,
    },
    AIDifficulty.MEDIUM: {
        "completion_rate": 0.75,
        "name": "Sage Mentor",
        "avatar": "🧙",
        "stake_multiplier": 1.5,
        "duration_days": 14,
    },
    AIDifficulty.HARD: {
        "completion_rate": 0.85,
        "name": "Sage Master",
        "avatar": "🔮",
        "stake_multiplier": 2.0,
        "duration_days": 21,
    },
    AIDifficulty.LEGENDARY: {
        "completion_rate": 0.95,
        "name": "Sage Legend",
        "avatar": "✨",
        "stake_multiplier": 3.0,
        "duration_days": 30,
    },
}

PROGRESS_JITTER = 0.10
MAX_OFFERS = 3


def simulate_ai_progress(
    difficulty: AIDifficulty,
    days_elapsed: int,
    duration_days: int,
    rng: Optional[random.Random] = None,
) -> int:
    """
    AI progress after days_elapsed days

    floor(days_elapsed * rate) scaled by a random factor in [0.9, 1.1],
    bounded to [0, duration_days].
    """
    rng = rng or random
    rate = AI_DIFFICULTY_SETTINGS[difficulty]["completion_rate"]
    target = math.floor(max(days_elapsed, 0) * rate)
    factor = 1 - PROGRESS_JITTER + rng.random() * 2 * PROGRESS_JITTER
    return max(0, min(math.floor(target * factor), duration_days))


def difficulty_for_level(level: int) -> AIDifficulty:
    if level < 3:
        return AIDifficulty.EASY
    if level < 6:
        return AIDifficulty.MEDIUM
    if level < 8:
        return AIDifficulty.HARD
    return AIDifficulty.LEGENDARY


def _offer_message(display_name: str, motivation_type: Optional[str], habit_name: str,
                   difficulty: AIDifficulty) -> str:
    if motivation_type == "social":
        prefix = f"{display_name}, join this journey! "
    elif motivation_type in (None, "achievement"):
        prefix = f"{display_name}, prove your mastery! "
    else:
        prefix = f"{display_name}, let's grow together! "

    body = {
        AIDifficulty.EASY: f"Begin your {habit_name} practice with a 7-day journey.",
        AIDifficulty.MEDIUM: f"Ready for a 14-day {habit_name} challenge?",
        AIDifficulty.HARD: f"Master {habit_name} for 21 days!",
        AIDifficulty.LEGENDARY: f"Conquer the 30-day {habit_name} challenge!",
    }[difficulty]
    return prefix + body


def suggest_ai_challenges(
    level: int,
    total_xp: int,
    habits: Sequence[Habit],
    display_name: str = "Adventurer",
    motivation_type: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """
    AI Sage challenge offers for the user's first three habits

    Difficulty follows the level; the stake is the level's minimum stake
    scaled by the difficulty multiplier.
    """
    difficulty = difficulty_for_level(level)
    settings = AI_DIFFICULTY_SETTINGS[difficulty]
    stake = math.floor(minimum_stake(level) * settings["stake_multiplier"])

    offers = []
    for habit in list(habits)[:MAX_OFFERS]:
        offers.append({
            "habit_id": habit.id,
            "habit_name": habit.name,
            "habit_category": habit.category,
            "difficulty": difficulty.value,
            "opponent_name": settings["name"],
            "duration_days": settings["duration_days"],
            "stake_xp": stake,
            "affordable": can_afford_stake(total_xp, stake),
            "message": _offer_message(display_name, motivation_type, habit.name, difficulty),
        })
    return offers
