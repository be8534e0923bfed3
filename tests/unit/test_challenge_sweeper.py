"""Unit tests for the background challenge sweeper"""
import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from habitquest.models.challenge import AIDifficulty, ChallengeStatus
from habitquest.services.challenge_sweeper import ChallengeSweeper


@pytest.mark.asyncio
async def test_run_once_resolves_due_challenges(challenge_service, make_user, make_habit, get_balance, t0):
    await make_user("alice", total_xp=400)
    await make_user("bob", total_xp=400)
    habit = await make_habit("h1", "alice")
    pvp = await challenge_service.create_challenge("alice", "bob", "h1", 7, 100, now=t0)
    await challenge_service.accept_challenge(pvp.id, "bob", now=t0)
    await challenge_service.record_habit_completion("alice", habit, now=t0 + timedelta(hours=1))
    ai = await challenge_service.create_ai_challenge(
        "alice", "h1", difficulty=AIDifficulty.EASY, duration_days=14, stake_xp=50, now=t0
    )

    sweeper = ChallengeSweeper(challenge_service, sweep_interval=60)
    result = await sweeper.run_once(now=t0 + timedelta(days=8))

    assert result == {"ai_updated": 1, "resolved": 1, "reconciled": 0}
    assert (await challenge_service.get_challenge(pvp.id)).status == ChallengeStatus.VICTORY
    assert (await challenge_service.get_challenge(ai.id)).status == ChallengeStatus.ACTIVE
    # 400 - 100 stake - 50 AI stake + 200 payout
    assert await get_balance("alice") == 450


@pytest.mark.asyncio
async def test_run_once_with_nothing_to_do(challenge_service):
    sweeper = ChallengeSweeper(challenge_service)

    assert await sweeper.run_once() == {"ai_updated": 0, "resolved": 0, "reconciled": 0}


@pytest.mark.asyncio
async def test_start_and_stop():
    service = AsyncMock()
    service.tick_ai_challenges.return_value = 0
    service.resolve_due_challenges.return_value = []
    service.reconcile_challenges.return_value = 0
    sweeper = ChallengeSweeper(service, sweep_interval=3600)

    await sweeper.start()
    await sweeper.start()
    await asyncio.sleep(0)
    await sweeper.stop()

    service.tick_ai_challenges.assert_awaited_once()
    assert sweeper._task is None


@pytest.mark.asyncio
async def test_loop_survives_errors():
    service = AsyncMock()
    service.tick_ai_challenges.side_effect = RuntimeError("store down")
    sweeper = ChallengeSweeper(service, sweep_interval=3600)

    await sweeper.start()
    await asyncio.sleep(0)
    await sweeper.stop()

    service.tick_ai_challenges.assert_awaited_once()
