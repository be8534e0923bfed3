"""
Challenge rules

Pure transitions over Challenge snapshots. Nothing here touches the store:
ChallengeService reads a snapshot, applies one of these functions, and writes
the result back with a compare-and-set on the status it read.

State machine:
    pending -> active -> victory | defeated | tied
    pending -> rejected

AI Sage challenges start in active. Stakes are escrowed when a challenge
becomes active; at resolution the winner receives 2x stake and a tie refunds
each escrowed participant their own stake.
"""

import math
import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional

from habitquest.exceptions import (
    AuthorizationError,
    InsufficientXPError,
    InvalidTransitionError,
    ValidationError,
)
from habitquest.gamification.stakes import can_afford_stake
from habitquest.models.challenge import (
    AI_OPPONENT_ID,
    AIDifficulty,
    Challenge,
    ChallengeStatus,
    ChallengeType,
    ChallengeView,
    RESOLVED_STATUSES,
)
from habitquest.models.habit import Habit

logger = logging.getLogger(__name__)

VALID_DURATIONS = (7, 14, 21, 30)


# ============================================
# Creation
# ============================================

def validate_challenge_terms(
    duration_days: int,
    stake_xp: int,
    available_xp: int,
    user_id: Optional[str] = None,
) -> None:
    """Reject bad terms before anything is written"""
    if duration_days not in VALID_DURATIONS:
        raise ValidationError(
            f"Duration must be one of {', '.join(map(str, VALID_DURATIONS))} days",
            field="duration_days",
            value=duration_days,
            user_id=user_id,
        )
    if stake_xp <= 0:
        raise ValidationError("Stake must be positive", field="stake_xp", value=stake_xp, user_id=user_id)
    if not can_afford_stake(available_xp, stake_xp):
        raise InsufficientXPError(required=stake_xp, available=available_xp, user_id=user_id)


def new_pvp_challenge(
    challenge_id: str,
    initiator_id: str,
    initiator_name: str,
    opponent_id: str,
    opponent_name: str,
    habit: Habit,
    duration_days: int,
    stake_xp: int,
    now: datetime,
) -> Challenge:
    """Pending player-vs-player challenge; nothing is escrowed yet"""
    if opponent_id == initiator_id:
        raise ValidationError("You can't challenge yourself", field="opponent_id", value=opponent_id)
    if opponent_id == AI_OPPONENT_ID:
        raise ValidationError("Use an AI Sage challenge to face the Sage", field="opponent_id", value=opponent_id)

    return Challenge(
        id=challenge_id,
        challenge_type=ChallengeType.PVP,
        status=ChallengeStatus.PENDING,
        initiator_id=initiator_id,
        initiator_name=initiator_name,
        opponent_id=opponent_id,
        opponent_name=opponent_name,
        habit_id=habit.id,
        habit_name=habit.name,
        habit_category=habit.category,
        duration_days=duration_days,
        stake_xp=stake_xp,
        start_date=now,
        end_date=now + timedelta(days=duration_days),
        created_at=now,
        updated_at=now,
    )


def new_ai_challenge(
    challenge_id: str,
    initiator_id: str,
    initiator_name: str,
    opponent_name: str,
    habit: Habit,
    duration_days: int,
    stake_xp: int,
    difficulty: AIDifficulty,
    now: datetime,
) -> Challenge:
    """AI Sage challenge: starts active, only the human is escrowed"""
    return Challenge(
        id=challenge_id,
        challenge_type=ChallengeType.AI_SAGE,
        status=ChallengeStatus.ACTIVE,
        initiator_id=initiator_id,
        initiator_name=initiator_name,
        opponent_id=AI_OPPONENT_ID,
        opponent_name=opponent_name,
        ai_difficulty=difficulty,
        habit_id=habit.id,
        habit_name=habit.name,
        habit_category=habit.category,
        duration_days=duration_days,
        stake_xp=stake_xp,
        start_date=now,
        end_date=now + timedelta(days=duration_days),
        created_at=now,
        updated_at=now,
    )


# ============================================
# Transitions
# ============================================

def _require_status(challenge: Challenge, expected: ChallengeStatus, action: str) -> None:
    if challenge.status != expected:
        raise InvalidTransitionError(
            f"Cannot {action} challenge {challenge.id} in status '{challenge.status.value}'",
            challenge_id=challenge.id,
            current_status=challenge.status.value,
            action=action,
        )


def _require_opponent(challenge: Challenge, actor_id: str, action: str) -> None:
    if challenge.challenge_type != ChallengeType.PVP:
        raise InvalidTransitionError(
            f"AI Sage challenge {challenge.id} cannot be {action}ed",
            challenge_id=challenge.id,
            current_status=challenge.status.value,
            action=action,
        )
    if actor_id != challenge.opponent_id:
        raise AuthorizationError(
            f"User {actor_id} is not the challenged opponent",
            resource="this challenge",
            user_id=actor_id,
        )


def accept_challenge(
    challenge: Challenge,
    actor_id: str,
    now: datetime,
    habit_id: Optional[str] = None,
) -> Challenge:
    """pending -> active; the window restarts at acceptance"""
    _require_opponent(challenge, actor_id, "accept")
    _require_status(challenge, ChallengeStatus.PENDING, "accept")
    return challenge.model_copy(update={
        "status": ChallengeStatus.ACTIVE,
        "opponent_habit_id": habit_id,
        "start_date": now,
        "end_date": now + timedelta(days=challenge.duration_days),
        "updated_at": now,
    })


def reject_challenge(challenge: Challenge, actor_id: str, now: datetime) -> Challenge:
    """pending -> rejected; no XP was escrowed so none moves"""
    _require_opponent(challenge, actor_id, "reject")
    _require_status(challenge, ChallengeStatus.PENDING, "reject")
    return challenge.model_copy(update={
        "status": ChallengeStatus.REJECTED,
        "updated_at": now,
    })


def release_escrow(challenge: Challenge, now: datetime) -> Challenge:
    """
    Undo an activation whose stakes could not all be collected

    A friend challenge goes back to pending; an AI challenge that never got
    its stake is rejected. escrow_round moves on so a later accept writes
    fresh stake ledger entries.
    """
    _require_status(challenge, ChallengeStatus.ACTIVE, "release the stakes of")
    return challenge.model_copy(update={
        "status": ChallengeStatus.REJECTED if challenge.is_ai else ChallengeStatus.PENDING,
        "escrowed_user_ids": [],
        "escrow_round": challenge.escrow_round + 1,
        "updated_at": now,
    })


# ============================================
# Progress
# ============================================

def is_within_window(challenge: Challenge, day: date) -> bool:
    """Completion dates count from the start date to the end date inclusive"""
    if challenge.start_date is None or challenge.end_date is None:
        return False
    return challenge.start_date.date() <= day <= challenge.end_date.date()


def apply_progress(
    challenge: Challenge,
    participant_id: str,
    now: datetime,
    day: Optional[date] = None,
) -> Challenge:
    """
    One more completion for a human participant, bounded at duration

    Args:
        day: Date the habit was completed for (defaults to now's date)
    """
    _require_status(challenge, ChallengeStatus.ACTIVE, "record progress on")
    if participant_id == AI_OPPONENT_ID or participant_id not in challenge.participants():
        raise AuthorizationError(
            f"User {participant_id} is not a participant",
            resource="this challenge",
            user_id=participant_id,
        )
    day = day or now.date()
    if not is_within_window(challenge, day):
        raise InvalidTransitionError(
            f"Challenge {challenge.id}: {day} is outside its active window",
            challenge_id=challenge.id,
            current_status=challenge.status.value,
            action="record progress on",
        )

    field = "initiator_progress" if participant_id == challenge.initiator_id else "opponent_progress"
    current = getattr(challenge, field)
    return challenge.model_copy(update={
        field: min(current + 1, challenge.duration_days),
        "updated_at": now,
    })


def apply_ai_progress(challenge: Challenge, progress: int, now: datetime) -> Challenge:
    """Set the AI side's progress (never moves backwards)"""
    _require_status(challenge, ChallengeStatus.ACTIVE, "record progress on")
    bounded = max(challenge.opponent_progress, min(progress, challenge.duration_days))
    return challenge.model_copy(update={"opponent_progress": bounded, "updated_at": now})


def days_elapsed(challenge: Challenge, now: datetime) -> int:
    if challenge.start_date is None:
        return 0
    return max(0, (now - challenge.start_date).days)


def is_due(challenge: Challenge, now: datetime) -> bool:
    """Resolution trigger: the window has ended or a side finished"""
    if challenge.status != ChallengeStatus.ACTIVE:
        return False
    if challenge.end_date is not None and now >= challenge.end_date:
        return True
    return max(challenge.initiator_progress, challenge.opponent_progress) >= challenge.duration_days


def decide_outcome(challenge: Challenge) -> ChallengeStatus:
    """Outcome from the initiator's perspective"""
    if challenge.initiator_progress > challenge.opponent_progress:
        return ChallengeStatus.VICTORY
    if challenge.initiator_progress < challenge.opponent_progress:
        return ChallengeStatus.DEFEATED
    return ChallengeStatus.TIED


def resolve_challenge(challenge: Challenge, now: datetime) -> Challenge:
    """active -> victory | defeated | tied"""
    _require_status(challenge, ChallengeStatus.ACTIVE, "resolve")
    outcome = decide_outcome(challenge)
    winner_id = {
        ChallengeStatus.VICTORY: challenge.initiator_id,
        ChallengeStatus.DEFEATED: challenge.opponent_id,
    }.get(outcome)
    return challenge.model_copy(update={
        "status": outcome,
        "winner_id": winner_id,
        "resolved_at": now,
        "updated_at": now,
    })


# ============================================
# Balance movements
# ============================================

def escrow_plan(challenge: Challenge) -> List[str]:
    """Users whose stake is debited when the challenge becomes active"""
    return [uid for uid in challenge.participants() if uid != AI_OPPONENT_ID]


def settlement_plan(challenge: Challenge) -> Dict[str, int]:
    """
    XP credited per user at resolution

    - Winner: 2x stake (own stake back plus the loser's)
    - Loser: nothing (stake stays forfeited)
    - Tie: each escrowed participant gets their own stake back
    The AI side never holds a balance.
    """
    if challenge.status not in RESOLVED_STATUSES:
        return {}

    if challenge.status == ChallengeStatus.TIED:
        return {uid: challenge.stake_xp for uid in escrow_plan(challenge)}

    winner = challenge.winner_id
    if winner is None or winner == AI_OPPONENT_ID:
        return {}
    return {winner: 2 * challenge.stake_xp}


# ============================================
# Read projections
# ============================================

_FLIPPED = {
    ChallengeStatus.VICTORY: ChallengeStatus.DEFEATED,
    ChallengeStatus.DEFEATED: ChallengeStatus.VICTORY,
}


def project(challenge: Challenge, user_id: str) -> ChallengeView:
    """The challenge as seen by one participant"""
    if user_id == challenge.initiator_id:
        return ChallengeView(
            challenge_id=challenge.id,
            user_id=user_id,
            is_initiator=True,
            challenge_type=challenge.challenge_type,
            status=challenge.status,
            opponent_id=challenge.opponent_id,
            opponent_name=challenge.opponent_name,
            ai_difficulty=challenge.ai_difficulty,
            habit_id=challenge.habit_id,
            habit_name=challenge.habit_name,
            habit_category=challenge.habit_category,
            duration_days=challenge.duration_days,
            stake_xp=challenge.stake_xp,
            my_progress=challenge.initiator_progress,
            opponent_progress=challenge.opponent_progress,
            start_date=challenge.start_date,
            end_date=challenge.end_date,
            created_at=challenge.created_at,
            resolved_at=challenge.resolved_at,
        )

    if user_id == challenge.opponent_id:
        return ChallengeView(
            challenge_id=challenge.id,
            user_id=user_id,
            is_initiator=False,
            challenge_type=challenge.challenge_type,
            status=_FLIPPED.get(challenge.status, challenge.status),
            opponent_id=challenge.initiator_id,
            opponent_name=challenge.initiator_name,
            ai_difficulty=challenge.ai_difficulty,
            habit_id=challenge.opponent_habit_id,
            habit_name=challenge.habit_name,
            habit_category=challenge.habit_category,
            duration_days=challenge.duration_days,
            stake_xp=challenge.stake_xp,
            my_progress=challenge.opponent_progress,
            opponent_progress=challenge.initiator_progress,
            start_date=challenge.start_date,
            end_date=challenge.end_date,
            created_at=challenge.created_at,
            resolved_at=challenge.resolved_at,
        )

    raise AuthorizationError(
        f"User {user_id} is not a participant of challenge {challenge.id}",
        resource="this challenge",
        user_id=user_id,
    )


def calculate_days_left(end_date: Optional[datetime], now: datetime) -> int:
    """Whole days remaining, rounded up, never negative"""
    if end_date is None:
        return 0
    seconds = (end_date - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def calculate_lead(my_progress: int, opponent_progress: int) -> int:
    return my_progress - opponent_progress


def calculate_challenge_stats(views: Iterable[ChallengeView]) -> Dict[str, Any]:
    views = list(views)
    return {
        "active_count": sum(1 for v in views if v.status == ChallengeStatus.ACTIVE),
        "victories_count": sum(1 for v in views if v.status == ChallengeStatus.VICTORY),
        "defeats_count": sum(1 for v in views if v.status == ChallengeStatus.DEFEATED),
        "ties_count": sum(1 for v in views if v.status == ChallengeStatus.TIED),
        "unique_opponents": len({v.opponent_id for v in views}),
        "total_challenges": len(views),
    }
