"""API routes for habitquest"""
import logging
from datetime import datetime, timezone
from typing import List, Optional
from fastapi import APIRouter, Depends, Query, Request, Response, status

from habitquest import config
from habitquest.api.auth import AuthenticatedUser, get_current_user, require_same_user
from habitquest.api.middleware import limiter
from habitquest.api.models import (
    CreateUserRequest, UpdateProfileRequest, UserResponse,
    XPResponse, StakeOptionsResponse, LeaderboardResponse,
    HabitCreateRequest, HabitUpdateRequest,
    CompleteHabitRequest, MissedHabitRequest, CompletionResponse,
    ChallengeCreateRequest, AIChallengeCreateRequest, AcceptChallengeRequest,
    ChallengeListResponse, AIChallengeOffersResponse,
    InsightResponse, NotificationResponse, NotificationListResponse,
    HealthCheckResponse,
)
from habitquest.gamification.challenges import project
from habitquest.models.challenge import ChallengeStatus, ChallengeView
from habitquest.models.habit import Habit
from habitquest.services import ServiceContainer, get_container

logger = logging.getLogger(__name__)

router = APIRouter()


def get_services() -> ServiceContainer:
    """Service container dependency"""
    return get_container()


# ============================================
# Users
# ============================================

@router.post("/api/v1/users", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.RATE_LIMIT)
async def create_user_endpoint(
    request: Request,
    response: Response,
    payload: CreateUserRequest,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Create the caller's account (0 XP); an existing account is returned as is"""
    result = await services.user_service.create_user(
        current.uid,
        display_name=payload.display_name,
        email=current.email,
        persona=payload.persona,
    )
    if result["existing"]:
        response.status_code = status.HTTP_200_OK
    return UserResponse.from_account(result["user"], created=not result["existing"])


@router.get("/api/v1/users/{user_id}", response_model=UserResponse)
@limiter.limit(config.RATE_LIMIT)
async def get_user_endpoint(
    request: Request,
    user_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    require_same_user(current, user_id)
    return UserResponse.from_account(await services.user_service.get_user(user_id))


@router.put("/api/v1/users/{user_id}", response_model=UserResponse)
@limiter.limit(config.RATE_LIMIT)
async def update_user_endpoint(
    request: Request,
    user_id: str,
    payload: UpdateProfileRequest,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Update display name or persona; XP and streaks are never client-writable"""
    require_same_user(current, user_id)
    account = await services.user_service.update_profile(user_id, payload.model_dump(exclude_unset=True))
    return UserResponse.from_account(account)


@router.get("/api/v1/users/{user_id}/xp", response_model=XPResponse)
@limiter.limit(config.RATE_LIMIT)
async def get_user_xp_endpoint(
    request: Request,
    user_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Level, progress and perks derived from the user's total XP"""
    require_same_user(current, user_id)
    return await services.user_service.get_xp(user_id)


@router.get("/api/v1/users/{user_id}/xp/history")
@limiter.limit(config.RATE_LIMIT)
async def get_user_xp_history_endpoint(
    request: Request,
    user_id: str,
    limit: int = Query(default=50, ge=1, le=200),
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """XP ledger entries, newest first"""
    require_same_user(current, user_id)
    return {"transactions": await services.user_service.get_xp_history(user_id, limit=limit)}


@router.get("/api/v1/users/{user_id}/stakes", response_model=StakeOptionsResponse)
@limiter.limit(config.RATE_LIMIT)
async def get_stake_options_endpoint(
    request: Request,
    user_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    require_same_user(current, user_id)
    return await services.user_service.get_stake_options(user_id)


@router.get("/api/v1/leaderboard", response_model=LeaderboardResponse)
@limiter.limit(config.RATE_LIMIT)
async def get_leaderboard_endpoint(
    request: Request,
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Users ranked by total XP"""
    entries = await services.user_service.get_leaderboard(limit=limit, offset=offset)
    return {"entries": entries}


# ============================================
# Habits
# ============================================

@router.get("/api/v1/habits/{user_id}", response_model=List[Habit])
@limiter.limit(config.RATE_LIMIT)
async def list_habits_endpoint(
    request: Request,
    user_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    require_same_user(current, user_id, resource="these habits")
    return await services.habit_service.list_habits(user_id)


@router.post("/api/v1/habits", response_model=Habit, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.RATE_LIMIT)
async def create_habit_endpoint(
    request: Request,
    payload: HabitCreateRequest,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Create a habit for the caller; its XP reward is fixed from here on"""
    return await services.habit_service.create_habit(
        current.uid,
        payload.name,
        category=payload.category,
        frequency=payload.frequency,
        difficulty=payload.difficulty,
        xp_reward=payload.xp_reward,
        reminder_time=payload.reminder_time,
    )


@router.put("/api/v1/habits/{habit_id}", response_model=Habit)
@limiter.limit(config.RATE_LIMIT)
async def update_habit_endpoint(
    request: Request,
    habit_id: str,
    payload: HabitUpdateRequest,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.habit_service.update_habit(
        habit_id, current.uid, payload.model_dump(exclude_unset=True)
    )


@router.delete("/api/v1/habits/{habit_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit(config.RATE_LIMIT)
async def delete_habit_endpoint(
    request: Request,
    habit_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    await services.habit_service.delete_habit(habit_id, current.uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/api/v1/habits/{habit_id}/complete", response_model=CompletionResponse)
@limiter.limit(config.RATE_LIMIT)
async def complete_habit_endpoint(
    request: Request,
    habit_id: str,
    payload: Optional[CompleteHabitRequest] = None,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """
    Complete a habit for a date (default today)

    Completing the same date twice awards nothing the second time.
    """
    completion_date = payload.date if payload else None
    return await services.habit_service.complete_habit(habit_id, current.uid, completion_date)


@router.post("/api/v1/habits/{habit_id}/missed", response_model=Habit)
@limiter.limit(config.RATE_LIMIT)
async def mark_missed_endpoint(
    request: Request,
    habit_id: str,
    payload: MissedHabitRequest,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.habit_service.mark_missed(habit_id, current.uid, payload.date)


# ============================================
# Challenges
# ============================================

@router.get("/api/v1/challenges", response_model=ChallengeListResponse)
@limiter.limit(config.RATE_LIMIT)
async def list_challenges_endpoint(
    request: Request,
    challenge_status: Optional[ChallengeStatus] = Query(default=None, alias="status"),
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """The caller's challenges (from the caller's perspective) and their stats"""
    challenges = await services.challenge_service.list_challenges(current.uid, challenge_status)
    stats = await services.challenge_service.get_challenge_stats(current.uid)
    return {"challenges": challenges, "stats": stats}


@router.post("/api/v1/challenges", response_model=ChallengeView, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.RATE_LIMIT)
async def create_challenge_endpoint(
    request: Request,
    payload: ChallengeCreateRequest,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Challenge a friend; stakes are debited when the friend accepts"""
    challenge = await services.challenge_service.create_challenge(
        current.uid,
        payload.opponent_id,
        payload.habit_id,
        payload.duration_days,
        payload.stake_xp,
    )
    return project(challenge, current.uid)


@router.post("/api/v1/challenges/ai", response_model=ChallengeView, status_code=status.HTTP_201_CREATED)
@limiter.limit(config.RATE_LIMIT)
async def create_ai_challenge_endpoint(
    request: Request,
    payload: AIChallengeCreateRequest,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Challenge the AI Sage; the caller's stake is debited immediately"""
    challenge = await services.challenge_service.create_ai_challenge(
        current.uid,
        payload.habit_id,
        difficulty=payload.difficulty,
        duration_days=payload.duration_days,
        stake_xp=payload.stake_xp,
    )
    return project(challenge, current.uid)


@router.get("/api/v1/challenges/ai/offers", response_model=AIChallengeOffersResponse)
@limiter.limit(config.RATE_LIMIT)
async def get_ai_offers_endpoint(
    request: Request,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return {"offers": await services.challenge_service.get_ai_offers(current.uid)}


@router.get("/api/v1/challenges/{challenge_id}", response_model=ChallengeView)
@limiter.limit(config.RATE_LIMIT)
async def get_challenge_endpoint(
    request: Request,
    challenge_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.challenge_service.get_challenge_view(challenge_id, current.uid)


@router.post("/api/v1/challenges/{challenge_id}/accept", response_model=ChallengeView)
@limiter.limit(config.RATE_LIMIT)
async def accept_challenge_endpoint(
    request: Request,
    challenge_id: str,
    payload: Optional[AcceptChallengeRequest] = None,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Accept a pending challenge; both stakes are debited"""
    return await services.challenge_service.accept_challenge(
        challenge_id, current.uid, habit_id=payload.habit_id if payload else None
    )


@router.post("/api/v1/challenges/{challenge_id}/reject", response_model=ChallengeView)
@limiter.limit(config.RATE_LIMIT)
async def reject_challenge_endpoint(
    request: Request,
    challenge_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.challenge_service.reject_challenge(challenge_id, current.uid)


@router.post("/api/v1/challenges/{challenge_id}/resolve", response_model=ChallengeView)
@limiter.limit(config.RATE_LIMIT)
async def resolve_challenge_endpoint(
    request: Request,
    challenge_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """Resolve a challenge whose window has ended and settle the stakes"""
    # Participants only
    await services.challenge_service.get_challenge_view(challenge_id, current.uid)
    challenge = await services.challenge_service.resolve_challenge(challenge_id)
    return project(challenge, current.uid)


# ============================================
# Insights & notifications
# ============================================

@router.post("/api/v1/insights", response_model=InsightResponse)
@limiter.limit(config.INSIGHT_RATE_LIMIT)
async def get_insight_endpoint(
    request: Request,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    """
    One AI Sage insight and suggested habit

    Rate limited more strictly than other routes (each call is a model request).
    """
    insight = await services.insight_service.get_insight(current.uid)
    return insight.model_dump()


@router.get("/api/v1/notifications", response_model=NotificationListResponse)
@limiter.limit(config.RATE_LIMIT)
async def list_notifications_endpoint(
    request: Request,
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=200),
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    notifications = await services.notification_service.list_notifications(
        current.uid, unread_only=unread_only, limit=limit
    )
    return {"notifications": notifications}


@router.post("/api/v1/notifications/{notification_id}/read", response_model=NotificationResponse)
@limiter.limit(config.RATE_LIMIT)
async def mark_notification_read_endpoint(
    request: Request,
    notification_id: str,
    current: AuthenticatedUser = Depends(get_current_user),
    services: ServiceContainer = Depends(get_services),
):
    return await services.notification_service.mark_read(notification_id, current.uid)


# ============================================
# System
# ============================================

@router.get("/health", response_model=HealthCheckResponse)
async def health_check(services: ServiceContainer = Depends(get_services)):
    """Health check endpoint (unauthenticated, not rate limited)"""
    try:
        await services.store.get("users", "__health__")
        store_status = "connected"
    except Exception as e:
        logger.error(f"Store health check failed: {e}")
        store_status = "disconnected"

    return HealthCheckResponse(
        status="healthy" if store_status == "connected" else "degraded",
        store=store_status,
        timestamp=datetime.now(timezone.utc),
    )
