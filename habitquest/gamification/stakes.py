"""
Challenge stake rules

Bounds on how much XP a user may wager:
- Minimum: max(50, level * 25)
- Maximum: min(floor(total_xp * 0.25), 500)

When the maximum is below the minimum the user cannot stake at all and
recommended_stakes() is empty.
"""

import math
from typing import Any, Dict, List

from habitquest.gamification.xp_system import level_for_total_xp

MIN_STAKE_FLOOR = 50
MIN_STAKE_PER_LEVEL = 25
MAX_STAKE_FRACTION = 0.25
MAX_STAKE_CAP = 500


def minimum_stake(level: int) -> int:
    return max(MIN_STAKE_FLOOR, level * MIN_STAKE_PER_LEVEL)


def maximum_stake(total_xp: int) -> int:
    return min(math.floor(total_xp * MAX_STAKE_FRACTION), MAX_STAKE_CAP)


def recommended_stakes(level: int, total_xp: int) -> List[int]:
    """
    Up to four ascending, distinct stake options

    [min, min + step, min + 2*step, max] with step = floor((max - min) / 3);
    duplicates collapse when the range is narrow.
    """
    low = minimum_stake(level)
    high = maximum_stake(total_xp)
    if high < low:
        return []

    step = (high - low) // 3
    return sorted({low, low + step, low + 2 * step, high})


def can_afford_stake(total_xp: int, stake: int) -> bool:
    return total_xp >= stake and stake > 0


def stake_options(total_xp: int) -> Dict[str, Any]:
    """Everything a wager form needs for a balance"""
    level = level_for_total_xp(total_xp)
    options = recommended_stakes(level, total_xp)
    return {
        "level": level,
        "total_xp": total_xp,
        "minimum_stake": minimum_stake(level),
        "maximum_stake": maximum_stake(total_xp),
        "recommended_stakes": options,
        "can_stake": bool(options),
    }
