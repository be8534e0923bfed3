"""
XP and Leveling System

Manages XP movements and level calculations.

Leveling Curve:
- Advancing from level L-1 into level L costs floor(100 * L^1.5) XP
- Level 1 is free (0 cumulative XP); the cumulative sum starts at level 2
- Level 2 at 282 XP, level 3 at 801 XP, level 4 at 1601 XP, level 5 at 2719 XP...

The level is never stored: it is always derived from total_xp, so it cannot
desync from the balance.

XP Award Rules:
- Habit completion: the habit's fixed reward (5 / 10 / 20 by difficulty, or custom)
- Challenge stakes: debited at acceptance, paid out at resolution
"""

import math
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from uuid import uuid4
import logging

from habitquest.db.store import DocumentStore, Filter
from habitquest.events import Event, EventBus, LEVEL_UP
from habitquest.exceptions import (
    ConflictError,
    HabitQuestError,
    InsufficientXPError,
    RecordNotFoundError,
    ValidationError,
)
from habitquest.observability.metrics import xp_awarded_total

logger = logging.getLogger(__name__)

BASE_LEVEL_XP = 100
LEVEL_EXPONENT = 1.5

USERS = "users"
XP_TRANSACTIONS = "xp_transactions"

LEVEL_TITLES = [
    (5, "Beginner"),
    (10, "Novice"),
    (15, "Apprentice"),
    (20, "Adept"),
    (30, "Expert"),
    (40, "Master"),
    (50, "Grand Master"),
]

LEVEL_PERKS = [
    (5, "Unlock Medium Difficulty Habits"),
    (10, "Unlock Hard Difficulty Habits"),
    (10, "Challenge Friends"),
    (15, "Create Custom Challenges"),
    (20, "Join Squads"),
    (25, "Create Squad Challenges"),
    (30, "Unlock Legendary Achievements"),
]


def xp_required_for_level(level: int) -> int:
    """XP needed to advance from level-1 into level: floor(100 * level^1.5)"""
    return math.floor(BASE_LEVEL_XP * level ** LEVEL_EXPONENT)


def cumulative_xp_for_level(level: int) -> int:
    """Total XP at which `level` is reached (level 1 is 0)"""
    return sum(xp_required_for_level(lvl) for lvl in range(2, level + 1))


def level_for_total_xp(total_xp: int) -> int:
    """
    Largest level whose cumulative requirement does not exceed total_xp

    Accumulates level by level with the same floor as xp_required_for_level;
    there is no closed-form inverse that is free of rounding drift.
    Negative balances are treated as 0.
    """
    total_xp = max(total_xp, 0)
    level = 1
    cumulative = 0
    while cumulative + xp_required_for_level(level + 1) <= total_xp:
        cumulative += xp_required_for_level(level + 1)
        level += 1
    return level


def calculate_level_from_xp(total_xp: int) -> Dict[str, Any]:
    """
    Calculate level and progress from total XP

    Returns:
        {
            'current_level': int,
            'total_xp': int,
            'xp_in_current_level': int,
            'xp_needed_for_next_level': int,
            'xp_to_next_level': int,
            'progress_percent': float (clamped to [0, 100]),
            'level_title': str
        }
    """
    total_xp = max(total_xp, 0)
    level = level_for_total_xp(total_xp)
    xp_in_current_level = total_xp - cumulative_xp_for_level(level)
    xp_needed = xp_required_for_level(level + 1)
    progress = 100 * xp_in_current_level / xp_needed

    return {
        "current_level": level,
        "total_xp": total_xp,
        "xp_in_current_level": xp_in_current_level,
        "xp_needed_for_next_level": xp_needed,
        "xp_to_next_level": xp_needed - xp_in_current_level,
        "progress_percent": min(max(progress, 0.0), 100.0),
        "level_title": get_level_title(level),
    }


def get_level_title(level: int) -> str:
    """Title shown next to the champion for a level"""
    for ceiling, title in LEVEL_TITLES:
        if level < ceiling:
            return title
    return "Legend"


def get_level_perks(level: int) -> List[str]:
    """Features unlocked at or below `level`"""
    return [perk for required, perk in LEVEL_PERKS if level >= required]


def ledger_key(*parts: Any) -> str:
    """Stable id for one XP movement, e.g. ledger_key(challenge_id, user_id, "challenge_payout")"""
    return ":".join(str(part) for part in parts)


def _xp_result(amount: int, old_total_xp: int, new_total_xp: int, applied: bool) -> Dict[str, Any]:
    old_level = level_for_total_xp(old_total_xp)
    level_info = calculate_level_from_xp(new_total_xp)
    return {
        "applied": applied,
        "xp_delta": amount,
        "new_total_xp": new_total_xp,
        "old_total_xp": old_total_xp,
        "leveled_up": level_info["current_level"] > old_level,
        "new_level": level_info["current_level"],
        "old_level": old_level,
        "xp_to_next_level": level_info["xp_to_next_level"],
    }


async def adjust_xp(
    store: DocumentStore,
    user_id: str,
    amount: int,
    source_type: str,
    source_id: Optional[str] = None,
    reason: str = "",
    events: Optional[EventBus] = None,
    ledger_id: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Apply a signed XP change at most once and log it

    The ledger entry is written first under ledger_id and the balance is then
    moved with the store's atomic increment. A second call with the same
    ledger_id finds the entry and changes nothing. Debits are conditional on
    the balance covering them.

    Args:
        store: Document store
        user_id: User whose balance changes
        amount: Signed XP delta (debits are negative)
        source_type: habit, challenge_stake, challenge_payout, challenge_refund,
            challenge_stake_release
        source_id: ID of the source habit/challenge (optional)
        reason: Human-readable description
        events: Receives LEVEL_UP when the new balance crosses a level
        ledger_id: Idempotency key for this movement (random when omitted)

    Returns:
        {
            'applied': bool (False when ledger_id was already used),
            'xp_delta': int,
            'new_total_xp': int,
            'old_total_xp': int,
            'leveled_up': bool,
            'new_level': int,
            'old_level': int,
            'xp_to_next_level': int
        }

    Raises:
        InsufficientXPError: Debit larger than the current balance
    """
    if amount == 0:
        raise ValidationError("XP change must be non-zero", field="amount", value=amount)

    user_doc = await store.get(USERS, user_id)
    if user_doc is None:
        raise RecordNotFoundError(
            f"User {user_id} not found", record_type="User", record_id=user_id
        )

    ledger_id = ledger_id or uuid4().hex
    try:
        await store.create(XP_TRANSACTIONS, {
            "user_id": user_id,
            "amount": amount,
            "source_type": source_type,
            "source_id": source_id,
            "reason": reason,
            "created_at": datetime.now(timezone.utc).isoformat(),
        }, doc_id=ledger_id)
    except ConflictError:
        logger.info(f"XP movement {ledger_id} already applied for user {user_id}")
        total_xp = int(user_doc.data.get("total_xp") or 0)
        return _xp_result(0, total_xp, total_xp, applied=False)

    try:
        doc = await store.increment(USERS, user_id, "total_xp", amount, minimum=0 if amount < 0 else None)
    except ConflictError:
        await store.delete(XP_TRANSACTIONS, ledger_id)
        current = await store.get(USERS, user_id)
        raise InsufficientXPError(
            required=-amount,
            available=int(current.data.get("total_xp") or 0) if current else 0,
            user_id=user_id,
            operation=source_type,
        )
    except HabitQuestError:
        await store.delete(XP_TRANSACTIONS, ledger_id)
        raise

    new_total_xp = int(doc.data.get("total_xp", 0))
    result = _xp_result(amount, new_total_xp - amount, new_total_xp, applied=True)

    if amount > 0:
        xp_awarded_total.labels(source_type=source_type).inc(amount)

    logger.info(
        f"XP {amount:+d} for user {user_id} ({source_type}). "
        f"Total: {new_total_xp} XP, Level: {result['new_level']}"
    )

    if result["leveled_up"]:
        logger.info(f"User {user_id} leveled up from {result['old_level']} to {result['new_level']}!")
        if events:
            await events.publish(Event(
                type=LEVEL_UP,
                user_ids=[user_id],
                payload={"old_level": result["old_level"], "new_level": result["new_level"]},
            ))

    return result


async def award_xp(
    store: DocumentStore,
    user_id: str,
    amount: int,
    source_type: str,
    source_id: Optional[str] = None,
    reason: str = "Habit completed",
    events: Optional[EventBus] = None,
    ledger_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Award a positive amount of XP (see adjust_xp)"""
    if amount <= 0:
        raise ValidationError("XP award must be positive", field="amount", value=amount)
    return await adjust_xp(store, user_id, amount, source_type, source_id, reason, events, ledger_id)


async def get_user_xp(store: DocumentStore, user_id: str) -> Dict[str, Any]:
    """
    Get user's current XP and level information

    Returns:
        calculate_level_from_xp() fields plus 'user_id' and 'level_perks'
    """
    doc = await store.get(USERS, user_id)
    if doc is None:
        raise RecordNotFoundError(
            f"User {user_id} not found", record_type="User", record_id=user_id
        )

    info = calculate_level_from_xp(int(doc.data.get("total_xp") or 0))
    info["user_id"] = user_id
    info["level_perks"] = get_level_perks(info["current_level"])
    return info


async def get_xp_history(store: DocumentStore, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """
    Get recent XP transaction history

    Returns:
        List of XP transactions sorted by date (newest first)
    """
    docs = await store.query(
        XP_TRANSACTIONS,
        filters=[Filter("user_id", "==", user_id)],
        order_by="created_at",
        descending=True,
        limit=limit,
    )
    return [{"id": doc.id, **doc.data} for doc in docs]


async def get_leaderboard(store: DocumentStore, limit: int = 10, offset: int = 0) -> List[Dict[str, Any]]:
    """Users ranked by total XP (highest first)"""
    docs = await store.query(USERS, order_by="total_xp", descending=True, limit=limit, offset=offset)

    leaderboard = []
    for rank, doc in enumerate(docs, start=offset + 1):
        total_xp = int(doc.data.get("total_xp") or 0)
        level = level_for_total_xp(total_xp)
        leaderboard.append({
            "rank": rank,
            "user_id": doc.id,
            "display_name": doc.data.get("display_name") or "Adventurer",
            "total_xp": total_xp,
            "level": level,
            "level_title": get_level_title(level),
        })
    return leaderboard
