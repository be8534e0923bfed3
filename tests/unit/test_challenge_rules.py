"""Unit tests for the pure challenge transitions"""
from datetime import timedelta

import pytest

from habitquest.exceptions import (
    AuthorizationError,
    InsufficientXPError,
    InvalidTransitionError,
    ValidationError,
)
from habitquest.gamification import challenges as rules
from habitquest.models.challenge import AI_OPPONENT_ID, AIDifficulty, ChallengeStatus
from habitquest.models.habit import Habit


@pytest.fixture
def habit():
    return Habit(id="h1", user_id="alice", name="Meditate", category="mindfulness", xp_reward=10)


@pytest.fixture
def pending(habit, t0):
    return rules.new_pvp_challenge("c1", "alice", "Alice", "bob", "Bob", habit, 7, 100, t0)


@pytest.fixture
def active(pending, t0):
    return rules.accept_challenge(pending, "bob", t0)


@pytest.fixture
def ai_active(habit, t0):
    return rules.new_ai_challenge("c2", "alice", "Alice", "Sage Apprentice", habit, 7, 50, AIDifficulty.EASY, t0)


class TestChallengeTerms:

    def test_valid_terms(self):
        rules.validate_challenge_terms(14, 100, 400)

    @pytest.mark.parametrize("duration", [0, 1, 10, 31])
    def test_unsupported_duration(self, duration):
        with pytest.raises(ValidationError):
            rules.validate_challenge_terms(duration, 100, 400)

    @pytest.mark.parametrize("stake", [0, -10])
    def test_non_positive_stake(self, stake):
        with pytest.raises(ValidationError):
            rules.validate_challenge_terms(7, stake, 400)

    def test_stake_above_balance(self):
        with pytest.raises(InsufficientXPError) as exc_info:
            rules.validate_challenge_terms(7, 500, 400)
        assert exc_info.value.required == 500
        assert exc_info.value.available == 400


class TestCreation:

    def test_pvp_challenge_starts_pending(self, pending, t0):
        assert pending.status == ChallengeStatus.PENDING
        assert pending.habit_name == "Meditate"
        assert pending.habit_category == "mindfulness"
        assert pending.initiator_progress == 0
        assert pending.opponent_progress == 0
        assert pending.end_date == t0 + timedelta(days=7)

    def test_cannot_challenge_yourself(self, habit, t0):
        with pytest.raises(ValidationError):
            rules.new_pvp_challenge("c1", "alice", "Alice", "alice", "Alice", habit, 7, 100, t0)

    def test_cannot_pvp_the_sage(self, habit, t0):
        with pytest.raises(ValidationError):
            rules.new_pvp_challenge("c1", "alice", "Alice", AI_OPPONENT_ID, "Sage", habit, 7, 100, t0)

    def test_ai_challenge_starts_active(self, ai_active):
        assert ai_active.status == ChallengeStatus.ACTIVE
        assert ai_active.opponent_id == AI_OPPONENT_ID
        assert ai_active.is_ai


class TestAcceptReject:

    def test_accept_restarts_window(self, pending, t0):
        later = t0 + timedelta(days=2)
        accepted = rules.accept_challenge(pending, "bob", later, habit_id="hb")

        assert accepted.status == ChallengeStatus.ACTIVE
        assert accepted.start_date == later
        assert accepted.end_date == later + timedelta(days=7)
        assert accepted.opponent_habit_id == "hb"

    def test_only_opponent_may_accept(self, pending, t0):
        with pytest.raises(AuthorizationError):
            rules.accept_challenge(pending, "alice", t0)

    def test_second_accept_is_rejected(self, active, t0):
        with pytest.raises(InvalidTransitionError):
            rules.accept_challenge(active, "bob", t0)

    def test_reject(self, pending, t0):
        rejected = rules.reject_challenge(pending, "bob", t0)
        assert rejected.status == ChallengeStatus.REJECTED

        with pytest.raises(InvalidTransitionError):
            rules.accept_challenge(rejected, "bob", t0)

    def test_ai_challenge_cannot_be_accepted(self, ai_active, t0):
        with pytest.raises(InvalidTransitionError):
            rules.accept_challenge(ai_active, AI_OPPONENT_ID, t0)


class TestReleaseEscrow:

    def test_friend_challenge_goes_back_to_pending(self, active, t0):
        collected = active.model_copy(update={"escrowed_user_ids": ["alice"]})

        released = rules.release_escrow(collected, t0)

        assert released.status == ChallengeStatus.PENDING
        assert released.escrowed_user_ids == []
        assert released.escrow_round == 1

    def test_ai_challenge_is_rejected(self, ai_active, t0):
        assert rules.release_escrow(ai_active, t0).status == ChallengeStatus.REJECTED

    def test_only_active_challenges(self, pending, t0):
        with pytest.raises(InvalidTransitionError):
            rules.release_escrow(pending, t0)


class TestProgress:

    def test_progress_is_bounded_by_duration(self, active, t0):
        challenge = active
        for day in range(10):
            challenge = rules.apply_progress(challenge, "alice", t0 + timedelta(hours=day))
        assert challenge.initiator_progress == 7
        assert challenge.opponent_progress == 0

    def test_opponent_progress(self, active, t0):
        challenge = rules.apply_progress(active, "bob", t0 + timedelta(days=1))
        assert challenge.opponent_progress == 1

    def test_progress_requires_active(self, pending, t0):
        with pytest.raises(InvalidTransitionError):
            rules.apply_progress(pending, "alice", t0)

    def test_progress_outside_window(self, active, t0):
        with pytest.raises(InvalidTransitionError):
            rules.apply_progress(active, "alice", t0 + timedelta(days=8))

    def test_progress_counts_the_completion_date(self, active, t0):
        later = t0 + timedelta(days=3)
        with pytest.raises(InvalidTransitionError):
            rules.apply_progress(active, "alice", later, day=(t0 - timedelta(days=1)).date())

        challenge = rules.apply_progress(active, "alice", later, day=(t0 + timedelta(days=1)).date())
        assert challenge.initiator_progress == 1

    @pytest.mark.parametrize("user_id", ["mallory", AI_OPPONENT_ID])
    def test_progress_for_non_human_participant(self, active, t0, user_id):
        with pytest.raises(AuthorizationError):
            rules.apply_progress(active, user_id, t0)

    def test_ai_progress_never_moves_backwards(self, ai_active, t0):
        challenge = rules.apply_ai_progress(ai_active, 4, t0)
        challenge = rules.apply_ai_progress(challenge, 2, t0)
        assert challenge.opponent_progress == 4

        challenge = rules.apply_ai_progress(challenge, 50, t0)
        assert challenge.opponent_progress == 7

    def test_days_elapsed(self, active, t0):
        assert rules.days_elapsed(active, t0 - timedelta(days=1)) == 0
        assert rules.days_elapsed(active, t0 + timedelta(days=3, hours=5)) == 3


class TestResolution:

    def test_not_due_mid_window(self, active, t0):
        assert rules.is_due(active, t0 + timedelta(days=3)) is False

    def test_due_at_end_date(self, active, t0):
        assert rules.is_due(active, t0 + timedelta(days=7)) is True

    def test_due_when_a_side_finishes(self, active, t0):
        finished = active.model_copy(update={"opponent_progress": 7})
        assert rules.is_due(finished, t0 + timedelta(days=1)) is True

    def test_pending_is_never_due(self, pending, t0):
        assert rules.is_due(pending, t0 + timedelta(days=30)) is False

    @pytest.mark.parametrize("mine,theirs,status,winner", [
        (5, 3, ChallengeStatus.VICTORY, "alice"),
        (3, 5, ChallengeStatus.DEFEATED, "bob"),
        (4, 4, ChallengeStatus.TIED, None),
    ])
    def test_outcomes(self, active, t0, mine, theirs, status, winner):
        challenge = active.model_copy(update={"initiator_progress": mine, "opponent_progress": theirs})
        resolved = rules.resolve_challenge(challenge, t0 + timedelta(days=7))

        assert resolved.status == status
        assert resolved.winner_id == winner
        assert resolved.resolved_at == t0 + timedelta(days=7)

    def test_resolve_twice(self, active, t0):
        resolved = rules.resolve_challenge(active, t0 + timedelta(days=7))
        with pytest.raises(InvalidTransitionError):
            rules.resolve_challenge(resolved, t0 + timedelta(days=7))


class TestBalancePlans:

    def test_escrow_plan(self, active, ai_active):
        assert rules.escrow_plan(active) == ["alice", "bob"]
        assert rules.escrow_plan(ai_active) == ["alice"]

    def test_winner_takes_double_stake(self, active, t0):
        challenge = active.model_copy(update={"initiator_progress": 3, "opponent_progress": 5})
        resolved = rules.resolve_challenge(challenge, t0 + timedelta(days=7))
        assert rules.settlement_plan(resolved) == {"bob": 200}

    def test_tie_refunds_each_stake(self, active, t0):
        resolved = rules.resolve_challenge(active, t0 + timedelta(days=7))
        assert rules.settlement_plan(resolved) == {"alice": 100, "bob": 100}

    def test_ai_win_credits_nobody(self, ai_active, t0):
        challenge = ai_active.model_copy(update={"opponent_progress": 3})
        resolved = rules.resolve_challenge(challenge, t0 + timedelta(days=7))
        assert resolved.winner_id == AI_OPPONENT_ID
        assert rules.settlement_plan(resolved) == {}

    def test_ai_tie_refunds_human(self, ai_active, t0):
        resolved = rules.resolve_challenge(ai_active, t0 + timedelta(days=7))
        assert rules.settlement_plan(resolved) == {"alice": 50}

    def test_unresolved_has_no_settlement(self, pending, active):
        assert rules.settlement_plan(pending) == {}
        assert rules.settlement_plan(active) == {}


class TestProjection:

    def test_initiator_view(self, active):
        view = rules.project(active.model_copy(update={"initiator_progress": 2}), "alice")

        assert view.is_initiator is True
        assert view.opponent_id == "bob"
        assert view.opponent_name == "Bob"
        assert view.my_progress == 2

    def test_opponent_view_swaps_perspective(self, active, t0):
        challenge = active.model_copy(update={"initiator_progress": 2, "opponent_progress": 5})
        resolved = rules.resolve_challenge(challenge, t0 + timedelta(days=7))

        mine = rules.project(resolved, "alice")
        theirs = rules.project(resolved, "bob")

        assert mine.status == ChallengeStatus.DEFEATED
        assert theirs.status == ChallengeStatus.VICTORY
        assert theirs.my_progress == 5
        assert theirs.opponent_progress == 2
        assert theirs.opponent_id == "alice"

    def test_tie_is_tie_for_both(self, active, t0):
        resolved = rules.resolve_challenge(active, t0 + timedelta(days=7))
        assert rules.project(resolved, "alice").status == ChallengeStatus.TIED
        assert rules.project(resolved, "bob").status == ChallengeStatus.TIED

    def test_outsider_cannot_view(self, active):
        with pytest.raises(AuthorizationError):
            rules.project(active, "mallory")


class TestDisplayHelpers:

    def test_days_left_rounds_up(self, t0):
        assert rules.calculate_days_left(t0 + timedelta(days=2, hours=12), t0) == 3
        assert rules.calculate_days_left(t0 - timedelta(days=1), t0) == 0
        assert rules.calculate_days_left(None, t0) == 0

    def test_lead(self):
        assert rules.calculate_lead(5, 3) == 2
        assert rules.calculate_lead(1, 4) == -3

    def test_challenge_stats(self, active, t0):
        won = rules.resolve_challenge(active.model_copy(update={"initiator_progress": 4}), t0 + timedelta(days=7))
        views = [
            rules.project(active, "alice"),
            rules.project(won, "alice"),
            rules.project(won.model_copy(update={"opponent_id": "carol"}), "alice"),
        ]

        stats = rules.calculate_challenge_stats(views)

        assert stats == {
            "active_count": 1,
            "victories_count": 2,
            "defeats_count": 0,
            "ties_count": 0,
            "unique_opponents": 2,
            "total_challenges": 3,
        }
