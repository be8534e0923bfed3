"""
Streak Tracking

Two kinds of streak:
- User streak: consecutive calendar days with at least one habit completion
  (stored on the user as current_streak / longest_streak / last_active_date)
- Habit streak: consecutive completed records counting back from the most
  recent record of a single habit (derived, used as AI Sage context)
"""

from datetime import date, timedelta
from typing import Any, Dict, Iterable, Optional

STREAK_MILESTONES = (3, 7, 14, 30, 60, 90)


def advance_streak(
    current_streak: int,
    longest_streak: int,
    last_active_date: Optional[date],
    activity_date: date,
) -> Dict[str, Any]:
    """
    Compute the user streak after activity on activity_date

    Logic:
    - Same day as the last activity (or earlier): unchanged
    - The day after the last activity: +1
    - First activity or a gap of more than one day: restart at 1

    Returns:
        {
            'current_streak': int,
            'longest_streak': int,
            'last_active_date': date,
            'changed': bool,
            'milestone_reached': bool
        }
    """
    if last_active_date is not None and activity_date <= last_active_date:
        return {
            "current_streak": current_streak,
            "longest_streak": longest_streak,
            "last_active_date": last_active_date,
            "changed": False,
            "milestone_reached": False,
        }

    if last_active_date is not None and activity_date - last_active_date == timedelta(days=1):
        new_streak = current_streak + 1
    else:
        new_streak = 1

    return {
        "current_streak": new_streak,
        "longest_streak": max(longest_streak, new_streak),
        "last_active_date": activity_date,
        "changed": True,
        "milestone_reached": new_streak in STREAK_MILESTONES,
    }


def calculate_habit_streak(completions: Iterable[Any]) -> int:
    """Count completed records back from the newest until the first miss"""
    streak = 0
    for record in sorted(completions, key=lambda r: r.date, reverse=True):
        if not record.completed:
            break
        streak += 1
    return streak
