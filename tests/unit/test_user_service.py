"""Unit tests for UserService"""
from datetime import date

import pytest

from habitquest.exceptions import RecordNotFoundError, ValidationError
from habitquest.models.user import Persona


@pytest.mark.asyncio
async def test_create_user_success(user_service, get_balance):
    """New accounts start at 0 XP, level 1"""
    result = await user_service.create_user("alice", display_name="Alice", email="alice@example.com")

    assert result["existing"] is False
    user = result["user"]
    assert user.display_name == "Alice"
    assert user.total_xp == 0
    assert user.level == 1
    assert await get_balance("alice") == 0


@pytest.mark.asyncio
async def test_create_user_already_exists(user_service, make_user):
    await make_user("alice", total_xp=500)

    result = await user_service.create_user("alice", display_name="Someone else")

    assert result["existing"] is True
    assert result["user"].total_xp == 500
    assert result["user"].display_name == "Alice"


@pytest.mark.asyncio
async def test_create_user_default_name(user_service):
    result = await user_service.create_user("alice")

    assert result["user"].display_name == "Adventurer"


@pytest.mark.asyncio
async def test_get_unknown_user(user_service):
    with pytest.raises(RecordNotFoundError):
        await user_service.get_user("ghost")


@pytest.mark.asyncio
async def test_update_profile_ignores_protected_fields(user_service, make_user, get_balance):
    await make_user("alice", total_xp=100)

    user = await user_service.update_profile("alice", {
        "display_name": "  Ally  ",
        "total_xp": 999999,
        "current_streak": 50,
    })

    assert user.display_name == "Ally"
    assert user.total_xp == 100
    assert user.current_streak == 0
    assert await get_balance("alice") == 100


@pytest.mark.asyncio
async def test_update_profile_persona(user_service, make_user):
    await make_user("alice")

    user = await user_service.update_profile("alice", {
        "persona": {"archetype": "Explorer", "motivation_type": "social", "traits": ["curious"]},
    })

    assert isinstance(user.persona, Persona)
    assert user.persona.motivation_type == "social"
    assert user.persona.traits == ["curious"]


@pytest.mark.asyncio
async def test_update_profile_rejects_unknown_and_blank(user_service, make_user):
    await make_user("alice")

    with pytest.raises(ValidationError):
        await user_service.update_profile("alice", {"favourite_colour": "blue"})
    with pytest.raises(ValidationError):
        await user_service.update_profile("alice", {"display_name": "   "})


@pytest.mark.asyncio
async def test_record_activity_builds_streak(user_service, make_user):
    await make_user("alice")

    await user_service.record_activity("alice", date(2026, 3, 1))
    result = await user_service.record_activity("alice", date(2026, 3, 2))
    same_day = await user_service.record_activity("alice", date(2026, 3, 2))

    assert result["current_streak"] == 2
    assert same_day["changed"] is False
    user = await user_service.get_user("alice")
    assert user.current_streak == 2
    assert user.longest_streak == 2
    assert user.last_active_date == date(2026, 3, 2)


@pytest.mark.asyncio
async def test_record_activity_after_gap(user_service, make_user):
    await make_user("alice")
    await user_service.record_activity("alice", date(2026, 3, 1))
    await user_service.record_activity("alice", date(2026, 3, 2))

    result = await user_service.record_activity("alice", date(2026, 3, 6))

    assert result["current_streak"] == 1
    assert result["longest_streak"] == 2


@pytest.mark.asyncio
async def test_xp_and_stake_views(user_service, make_user):
    await make_user("alice", total_xp=400)

    xp = await user_service.get_xp("alice")
    stakes = await user_service.get_stake_options("alice")

    assert xp["current_level"] == 2
    assert stakes["recommended_stakes"] == [50, 66, 82, 100]


@pytest.mark.asyncio
async def test_xp_history_for_unknown_user(user_service):
    with pytest.raises(RecordNotFoundError):
        await user_service.get_xp_history("ghost")
