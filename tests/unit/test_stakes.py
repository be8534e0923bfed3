"""Unit tests for challenge stake rules"""
import pytest

from habitquest.gamification.stakes import (
    can_afford_stake,
    maximum_stake,
    minimum_stake,
    recommended_stakes,
    stake_options,
)


@pytest.mark.parametrize("level,expected", [(1, 50), (2, 50), (3, 75), (4, 100), (10, 250)])
def test_minimum_stake(level, expected):
    assert minimum_stake(level) == expected


@pytest.mark.parametrize("total_xp,expected", [(0, 0), (100, 25), (400, 100), (2000, 500), (3000, 500)])
def test_maximum_stake(total_xp, expected):
    assert maximum_stake(total_xp) == expected


def test_recommended_stakes_four_options():
    # min 50, max 100, step 16
    assert recommended_stakes(2, 400) == [50, 66, 82, 100]


def test_recommended_stakes_empty_when_unaffordable():
    assert recommended_stakes(1, 100) == []


def test_recommended_stakes_collapse_in_narrow_range():
    assert recommended_stakes(1, 200) == [50]
    assert recommended_stakes(1, 204) == [50, 51]


def test_recommended_stakes_properties():
    """Ascending, distinct, at most four, all within [min, max]"""
    for level in range(1, 25):
        for total_xp in range(0, 4000, 37):
            options = recommended_stakes(level, total_xp)
            assert options == sorted(set(options))
            assert len(options) <= 4
            for option in options:
                assert minimum_stake(level) <= option <= maximum_stake(total_xp)
            if options:
                assert options[0] == minimum_stake(level)
                assert options[-1] == maximum_stake(total_xp)


def test_can_afford_stake():
    assert can_afford_stake(100, 100) is True
    assert can_afford_stake(99, 100) is False
    assert can_afford_stake(100, 0) is False


def test_stake_options():
    options = stake_options(400)

    assert options["level"] == 2
    assert options["minimum_stake"] == 50
    assert options["maximum_stake"] == 100
    assert options["recommended_stakes"] == [50, 66, 82, 100]
    assert options["can_stake"] is True
    assert stake_options(50)["can_stake"] is False
