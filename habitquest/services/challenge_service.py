"""
ChallengeService - Challenge Lifecycle

Persists the transitions from habitquest.gamification.challenges and moves the
staked XP. Every status change is a compare-and-set on the status that was
read, so a second accept or resolve fails instead of moving XP twice.

Balance movements (stake debits, payouts, refunds) are applied one user at a
time and recorded on the challenge in escrowed_user_ids / settled_user_ids.
Each movement has a fixed XP ledger id (challenge, user, source), so
reconcile_challenges() can replay a movement a crash left unrecorded without
applying it twice. Stake debits never overdraw: if one fails, the stakes
already collected are handed back and the challenge leaves the active state.
"""

import logging
import random
from datetime import date, datetime, timedelta, timezone
from functools import partial
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from habitquest.db.store import DocumentStore, Filter
from habitquest.events import (
    AI_SAGE_CHALLENGE,
    CHALLENGE_ACCEPTED,
    CHALLENGE_COMPLETED,
    CHALLENGE_PROGRESS,
    CHALLENGE_REJECTED,
    CHALLENGE_REQUEST,
    Event,
    EventBus,
    Subscription,
    invoke_callback,
)
from habitquest.exceptions import (
    AuthorizationError,
    ConflictError,
    InsufficientXPError,
    InvalidTransitionError,
    RecordNotFoundError,
    ValidationError,
)
from habitquest.gamification import challenges as rules
from habitquest.gamification.ai_opponent import (
    AI_DIFFICULTY_SETTINGS,
    difficulty_for_level,
    simulate_ai_progress,
    suggest_ai_challenges,
)
from habitquest.gamification.stakes import can_afford_stake, minimum_stake
from habitquest.gamification.xp_system import USERS, XP_TRANSACTIONS, adjust_xp, ledger_key
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
from habitquest.models.user import UserAccount
from habitquest.observability.metrics import challenge_outcomes_total, challenge_transitions_total

logger = logging.getLogger(__name__)

CHALLENGES = "challenges"
HABITS = "habits"

MAX_CAS_RETRIES = 5

# Source types written to the XP ledger
STAKE_SOURCE = "challenge_stake"
PAYOUT_SOURCE = "challenge_payout"
REFUND_SOURCE = "challenge_refund"
STAKE_RELEASE_SOURCE = "challenge_stake_release"

# Challenges written more recently than this are left to the request that is
# still working on them
RECONCILE_GRACE = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _fields(challenge: Challenge, *names: str) -> Dict[str, Any]:
    return challenge.model_dump(mode="json", include=set(names))


class ChallengeService:
    """
    Service for challenges between two players or a player and the AI Sage.

    Responsibilities:
    - Create / accept / reject with stake validation before any write
    - Progress accrual from habit completions and the AI curve
    - Resolution with payout or tie refund
    - Reconciliation of half-applied balance movements
    - Per-user read projections and live subscriptions
    """

    def __init__(
        self,
        store: DocumentStore,
        events: Optional[EventBus] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.events = events or EventBus()
        self.rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_challenge(self, challenge_id: str) -> Challenge:
        doc = await self.store.get(CHALLENGES, challenge_id)
        if doc is None:
            raise RecordNotFoundError(
                f"Challenge {challenge_id} not found",
                record_type="Challenge",
                record_id=challenge_id,
            )
        return Challenge.from_document(doc)

    async def get_challenge_view(self, challenge_id: str, user_id: str) -> ChallengeView:
        return rules.project(await self.get_challenge(challenge_id), user_id)

    async def list_challenges(
        self,
        user_id: str,
        status: Optional[ChallengeStatus] = None,
    ) -> List[ChallengeView]:
        """
        Every challenge the user takes part in, newest first

        Args:
            status: Filter on the user's own perspective (victory means the
                user won)
        """
        as_initiator = await self.store.query(CHALLENGES, filters=[Filter("initiator_id", "==", user_id)])
        as_opponent = await self.store.query(CHALLENGES, filters=[Filter("opponent_id", "==", user_id)])
        views = _views_for(user_id, as_initiator + as_opponent)
        if status is not None:
            views = [v for v in views if v.status == status]
        return views

    async def get_challenge_stats(self, user_id: str) -> Dict[str, Any]:
        return rules.calculate_challenge_stats(await self.list_challenges(user_id))

    async def subscribe_to_challenges(self, user_id: str, callback: Callable) -> Subscription:
        """
        Live list of the user's challenge views

        The callback receives the full list (newest first) once both sides of
        the query have delivered, then again after every challenge write.
        cancel() on the returned handle stops both underlying watches.
        """
        snapshots: Dict[str, list] = {}
        parts: List[Subscription] = []

        def cancel_parts(_: Subscription) -> None:
            for part in parts:
                part.cancel()

        handle = Subscription(on_cancel=cancel_parts)

        async def deliver(role: str, docs: list) -> None:
            snapshots[role] = docs
            if len(snapshots) < 2 or not handle.active:
                return
            await invoke_callback(callback, _views_for(user_id, snapshots["initiator"] + snapshots["opponent"]))

        parts.append(await self.store.subscribe_query(
            CHALLENGES, partial(deliver, "initiator"), filters=[Filter("initiator_id", "==", user_id)]
        ))
        parts.append(await self.store.subscribe_query(
            CHALLENGES, partial(deliver, "opponent"), filters=[Filter("opponent_id", "==", user_id)]
        ))
        return handle

    async def get_ai_offers(self, user_id: str) -> List[Dict[str, Any]]:
        """AI Sage challenge offers for the user's first habits"""
        user = await self._get_user(user_id)
        docs = await self.store.query(HABITS, filters=[Filter("user_id", "==", user_id)], order_by="created_at")
        habits = [Habit.from_document(doc) for doc in docs]
        motivation = user.persona.motivation_type if user.persona else None
        return suggest_ai_challenges(user.level, user.total_xp, habits, user.display_name, motivation)

    # ------------------------------------------------------------------
    # Create / accept / reject
    # ------------------------------------------------------------------

    async def create_challenge(
        self,
        initiator_id: str,
        opponent_id: str,
        habit_id: str,
        duration_days: int,
        stake_xp: int,
        now: Optional[datetime] = None,
    ) -> Challenge:
        """
        Challenge a friend. Nothing is debited until the friend accepts.

        Raises:
            ValidationError / InsufficientXPError: before any write
            RecordNotFoundError: unknown opponent or habit
        """
        now = now or _utcnow()
        initiator = await self._get_user(initiator_id)
        rules.validate_challenge_terms(duration_days, stake_xp, initiator.total_xp, initiator_id)
        opponent = await self._get_user(opponent_id)
        habit = await self._get_habit(habit_id, initiator_id)

        challenge = rules.new_pvp_challenge(
            uuid4().hex,
            initiator_id,
            initiator.display_name,
            opponent_id,
            opponent.display_name,
            habit,
            duration_days,
            stake_xp,
            now,
        )
        await self.store.create(CHALLENGES, challenge.to_document(), doc_id=challenge.id)
        challenge_transitions_total.labels(action="create").inc()
        logger.info(
            f"Challenge {challenge.id} created: {initiator_id} vs {opponent_id}, "
            f"{duration_days} days, {stake_xp} XP"
        )

        await self.events.publish(Event(
            type=CHALLENGE_REQUEST,
            user_ids=[opponent_id],
            payload={
                "challenge_id": challenge.id,
                "from_user_id": initiator_id,
                "from_name": initiator.display_name,
                "habit_name": habit.name,
                "duration_days": duration_days,
                "stake_xp": stake_xp,
            },
        ))
        return challenge

    async def create_ai_challenge(
        self,
        user_id: str,
        habit_id: str,
        difficulty: Optional[AIDifficulty] = None,
        duration_days: Optional[int] = None,
        stake_xp: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Challenge:
        """
        Challenge the AI Sage. Starts active; only the user's stake is escrowed.

        Difficulty, duration and stake default to the offer for the user's level.
        """
        now = now or _utcnow()
        user = await self._get_user(user_id)
        difficulty = difficulty or difficulty_for_level(user.level)
        settings = AI_DIFFICULTY_SETTINGS[difficulty]
        duration_days = duration_days or settings["duration_days"]
        if stake_xp is None:
            stake_xp = int(minimum_stake(user.level) * settings["stake_multiplier"])

        rules.validate_challenge_terms(duration_days, stake_xp, user.total_xp, user_id)
        habit = await self._get_habit(habit_id, user_id)

        challenge = rules.new_ai_challenge(
            uuid4().hex,
            user_id,
            user.display_name,
            settings["name"],
            habit,
            duration_days,
            stake_xp,
            difficulty,
            now,
        )
        await self.store.create(CHALLENGES, challenge.to_document(), doc_id=challenge.id)
        try:
            challenge = await self._escrow(challenge)
        except InsufficientXPError:
            await self._release_escrow(challenge.id, now)
            raise
        challenge_transitions_total.labels(action="create_ai").inc()
        logger.info(
            f"AI Sage challenge {challenge.id} started for {user_id}: "
            f"{difficulty.value}, {duration_days} days, {stake_xp} XP"
        )

        await self.events.publish(Event(
            type=AI_SAGE_CHALLENGE,
            user_ids=[user_id],
            payload={
                "challenge_id": challenge.id,
                "opponent_name": settings["name"],
                "difficulty": difficulty.value,
                "habit_name": habit.name,
                "duration_days": duration_days,
                "stake_xp": stake_xp,
            },
        ))
        return challenge

    async def accept_challenge(
        self,
        challenge_id: str,
        user_id: str,
        habit_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ChallengeView:
        """
        Opponent accepts: pending -> active, both stakes debited

        Both participants must still afford the stake; if either cannot, the
        challenge stays pending and nothing is debited. The balance check is
        repeated by each debit, so a stake spent elsewhere in the meantime
        hands back what was collected and returns the challenge to pending.
        """
        now = now or _utcnow()
        challenge = await self.get_challenge(challenge_id)
        accepted = rules.accept_challenge(challenge, user_id, now, habit_id)
        if habit_id:
            await self._get_habit(habit_id, user_id)

        for uid in rules.escrow_plan(accepted):
            participant = await self._get_user(uid)
            if not can_afford_stake(participant.total_xp, accepted.stake_xp):
                raise InsufficientXPError(
                    required=accepted.stake_xp,
                    available=participant.total_xp,
                    user_id=uid,
                    operation="accept_challenge",
                )

        await self._transition(
            accepted,
            ChallengeStatus.PENDING,
            _fields(accepted, "status", "opponent_habit_id", "start_date", "end_date", "updated_at"),
            action="accept",
        )
        try:
            accepted = await self._escrow(accepted)
        except InsufficientXPError:
            await self._release_escrow(challenge_id, now)
            raise
        challenge_transitions_total.labels(action="accept").inc()
        logger.info(f"Challenge {challenge_id} accepted by {user_id}; {accepted.stake_xp} XP escrowed from each side")

        await self.events.publish(Event(
            type=CHALLENGE_ACCEPTED,
            user_ids=[accepted.initiator_id],
            payload={
                "challenge_id": challenge_id,
                "by_user_id": user_id,
                "by_name": accepted.opponent_name,
                "habit_name": accepted.habit_name,
                "stake_xp": accepted.stake_xp,
            },
        ))
        return rules.project(accepted, user_id)

    async def reject_challenge(
        self,
        challenge_id: str,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> ChallengeView:
        """Opponent declines: pending -> rejected, no XP moves"""
        now = now or _utcnow()
        challenge = await self.get_challenge(challenge_id)
        rejected = rules.reject_challenge(challenge, user_id, now)

        await self._transition(
            rejected,
            ChallengeStatus.PENDING,
            _fields(rejected, "status", "updated_at"),
            action="reject",
        )
        challenge_transitions_total.labels(action="reject").inc()
        logger.info(f"Challenge {challenge_id} rejected by {user_id}")

        await self.events.publish(Event(
            type=CHALLENGE_REJECTED,
            user_ids=[rejected.initiator_id],
            payload={
                "challenge_id": challenge_id,
                "by_user_id": user_id,
                "by_name": rejected.opponent_name,
                "habit_name": rejected.habit_name,
            },
        ))
        return rules.project(rejected, user_id)

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    async def record_habit_completion(
        self,
        user_id: str,
        habit: Habit,
        day: Optional[date] = None,
        now: Optional[datetime] = None,
    ) -> List[ChallengeView]:
        """
        Advance every active challenge the completed habit counts for

        A habit counts for the initiator when it is the challenge habit, and
        for the opponent when it is their linked habit or, with no linked
        habit, any habit in the challenge habit's category. Only completions
        dated inside the challenge window count.

        Args:
            day: Date the habit was completed for (defaults to now's date)
        """
        now = now or _utcnow()
        day = day or now.date()
        active = Filter("status", "==", ChallengeStatus.ACTIVE.value)
        candidates = await self.store.query(
            CHALLENGES, filters=[active, Filter("initiator_id", "==", user_id)]
        ) + await self.store.query(
            CHALLENGES, filters=[active, Filter("opponent_id", "==", user_id)]
        )

        views = []
        for doc in candidates:
            challenge = Challenge.from_document(doc)
            if not _habit_counts(challenge, user_id, habit):
                continue
            if not rules.is_within_window(challenge, day):
                logger.debug(f"Completion on {day} is outside challenge {challenge.id}")
                continue
            views.append(await self._record_progress(challenge.id, user_id, day, now))
        return views

    async def _record_progress(
        self,
        challenge_id: str,
        user_id: str,
        day: date,
        now: datetime,
    ) -> ChallengeView:
        for _ in range(MAX_CAS_RETRIES):
            challenge = await self.get_challenge(challenge_id)
            updated = rules.apply_progress(challenge, user_id, now, day)
            field = "initiator_progress" if user_id == challenge.initiator_id else "opponent_progress"
            try:
                await self.store.update(
                    CHALLENGES,
                    challenge_id,
                    _fields(updated, field, "updated_at"),
                    expected={"status": ChallengeStatus.ACTIVE.value, field: getattr(challenge, field)},
                )
                break
            except ConflictError:
                logger.debug(f"Progress write on {challenge_id} raced; retrying")
        else:
            raise ConflictError(
                f"Could not record progress on challenge {challenge_id}",
                record_type="Challenge",
                record_id=challenge_id,
            )

        logger.info(
            f"Challenge {challenge_id} progress: {user_id} at "
            f"{getattr(updated, field)}/{updated.duration_days}"
        )
        await self._publish_progress(updated)
        return rules.project(updated, user_id)

    async def update_ai_progress(self, challenge_id: str, now: Optional[datetime] = None) -> Challenge:
        """Advance the AI Sage along its completion curve (never backwards)"""
        now = now or _utcnow()
        challenge = await self.get_challenge(challenge_id)
        if challenge.challenge_type != ChallengeType.AI_SAGE:
            raise ValidationError(
                f"Challenge {challenge_id} has no AI opponent",
                field="challenge_id",
                value=challenge_id,
            )

        elapsed = min(rules.days_elapsed(challenge, now), challenge.duration_days)
        target = simulate_ai_progress(challenge.ai_difficulty, elapsed, challenge.duration_days, self.rng)
        updated = rules.apply_ai_progress(challenge, target, now)
        if updated.opponent_progress == challenge.opponent_progress:
            return challenge

        await self.store.update(
            CHALLENGES,
            challenge_id,
            _fields(updated, "opponent_progress", "updated_at"),
            expected={
                "status": ChallengeStatus.ACTIVE.value,
                "opponent_progress": challenge.opponent_progress,
            },
        )
        logger.info(
            f"AI Sage progress on {challenge_id}: "
            f"{updated.opponent_progress}/{updated.duration_days}"
        )
        await self._publish_progress(updated)
        return updated

    async def tick_ai_challenges(self, now: Optional[datetime] = None) -> int:
        """Advance every active AI challenge; returns how many moved"""
        now = now or _utcnow()
        docs = await self.store.query(CHALLENGES, filters=[
            Filter("status", "==", ChallengeStatus.ACTIVE.value),
            Filter("challenge_type", "==", ChallengeType.AI_SAGE.value),
        ])

        moved = 0
        for doc in docs:
            try:
                before = int(doc.data.get("opponent_progress") or 0)
                updated = await self.update_ai_progress(doc.id, now)
                if updated.opponent_progress != before:
                    moved += 1
            except (ConflictError, InvalidTransitionError) as e:
                # Resolved or written concurrently; the next tick sees the new state
                logger.warning(f"Skipped AI tick for challenge {doc.id}: {e.message}")
        return moved

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve_challenge(self, challenge_id: str, now: Optional[datetime] = None) -> Challenge:
        """
        active -> victory | defeated | tied, then pay out

        Only allowed once the challenge is due (end date passed or one side
        reached the duration). The winner is credited 2x stake; a tie refunds
        every escrowed participant their own stake.
        """
        now = now or _utcnow()

        for _ in range(MAX_CAS_RETRIES):
            challenge = await self.get_challenge(challenge_id)
            if challenge.status == ChallengeStatus.ACTIVE and not rules.is_due(challenge, now):
                raise InvalidTransitionError(
                    f"Challenge {challenge_id} is not due for resolution yet",
                    challenge_id=challenge_id,
                    current_status=challenge.status.value,
                    action="resolve",
                )
            resolved = rules.resolve_challenge(challenge, now)
            try:
                await self.store.update(
                    CHALLENGES,
                    challenge_id,
                    _fields(resolved, "status", "winner_id", "resolved_at", "updated_at"),
                    expected={
                        "status": ChallengeStatus.ACTIVE.value,
                        "initiator_progress": challenge.initiator_progress,
                        "opponent_progress": challenge.opponent_progress,
                    },
                )
                break
            except ConflictError:
                # Progress moved or another resolver won; re-read decides which
                logger.debug(f"Resolution of {challenge_id} raced; re-reading")
        else:
            raise ConflictError(
                f"Could not resolve challenge {challenge_id}",
                record_type="Challenge",
                record_id=challenge_id,
            )

        resolved = await self._escrow(resolved)
        resolved = await self._settle(resolved)

        challenge_transitions_total.labels(action="resolve").inc()
        challenge_outcomes_total.labels(
            challenge_type=resolved.challenge_type.value,
            outcome=resolved.status.value,
        ).inc()
        logger.info(
            f"Challenge {challenge_id} resolved: {resolved.status.value} "
            f"({resolved.initiator_progress} vs {resolved.opponent_progress}), winner={resolved.winner_id}"
        )

        await self.events.publish(Event(
            type=CHALLENGE_COMPLETED,
            user_ids=rules.escrow_plan(resolved),
            payload={
                "challenge_id": challenge_id,
                "status": resolved.status.value,
                "winner_id": resolved.winner_id,
                "initiator_id": resolved.initiator_id,
                "initiator_name": resolved.initiator_name,
                "opponent_name": resolved.opponent_name,
                "habit_name": resolved.habit_name,
                "stake_xp": resolved.stake_xp,
            },
        ))
        return resolved

    async def resolve_due_challenges(self, now: Optional[datetime] = None) -> List[Challenge]:
        """Bring AI progress up to date and resolve every due challenge"""
        now = now or _utcnow()
        docs = await self.store.query(CHALLENGES, filters=[Filter("status", "==", ChallengeStatus.ACTIVE.value)])

        resolved = []
        for doc in docs:
            challenge = Challenge.from_document(doc)
            try:
                if challenge.is_ai:
                    challenge = await self.update_ai_progress(challenge.id, now)
                if not rules.is_due(challenge, now):
                    continue
                resolved.append(await self.resolve_challenge(challenge.id, now))
            except (ConflictError, InvalidTransitionError) as e:
                logger.warning(f"Challenge {challenge.id} changed during the sweep: {e.message}")
        return resolved

    # ------------------------------------------------------------------
    # Balance movements
    # ------------------------------------------------------------------

    async def reconcile_challenges(
        self,
        now: Optional[datetime] = None,
        grace: timedelta = RECONCILE_GRACE,
    ) -> int:
        """
        Finish stake debits and payouts that a crash left unrecorded

        Returns the number of challenges that needed repair.
        """
        now = now or _utcnow()
        statuses = [ChallengeStatus.ACTIVE.value] + [s.value for s in RESOLVED_STATUSES]
        docs = await self.store.query(CHALLENGES, filters=[Filter("status", "in", statuses)])

        repaired = 0
        for doc in docs:
            challenge = Challenge.from_document(doc)
            if challenge.updated_at is not None and now - challenge.updated_at < grace:
                continue

            missing = [uid for uid in rules.escrow_plan(challenge) if uid not in challenge.escrowed_user_ids]
            if challenge.status in RESOLVED_STATUSES:
                missing += [
                    uid for uid in rules.settlement_plan(challenge) if uid not in challenge.settled_user_ids
                ]
            if not missing:
                continue

            logger.warning(f"Reconciling challenge {challenge.id}: movements missing for {missing}")
            try:
                challenge = await self._escrow(challenge)
            except InsufficientXPError as e:
                if challenge.status != ChallengeStatus.ACTIVE:
                    logger.error(f"Challenge {challenge.id} resolved without a collectable stake: {e.message}")
                    continue
                await self._release_escrow(challenge.id, now)
                repaired += 1
                continue
            if challenge.status in RESOLVED_STATUSES:
                await self._settle(challenge)
            challenge_transitions_total.labels(action="reconcile").inc()
            repaired += 1

        if repaired:
            logger.info(f"Reconciled {repaired} challenge(s)")
        return repaired

    async def _escrow(self, challenge: Challenge) -> Challenge:
        for uid in rules.escrow_plan(challenge):
            challenge = await self._ensure_movement(
                challenge, uid, -challenge.stake_xp, STAKE_SOURCE, "escrowed_user_ids",
                f"Stake for challenge on {challenge.habit_name}",
                ledger_id=_stake_key(challenge, uid),
            )
        return challenge

    async def _settle(self, challenge: Challenge) -> Challenge:
        source = REFUND_SOURCE if challenge.status == ChallengeStatus.TIED else PAYOUT_SOURCE
        reason = "Tie refund" if source == REFUND_SOURCE else "Challenge victory"
        for uid, amount in rules.settlement_plan(challenge).items():
            challenge = await self._ensure_movement(
                challenge, uid, amount, source, "settled_user_ids",
                f"{reason} on {challenge.habit_name}",
                ledger_id=ledger_key(challenge.id, uid, source),
            )
        return challenge

    async def _release_escrow(self, challenge_id: str, now: datetime) -> Challenge:
        """
        Hand back every stake collected for the current activation

        The stake ledger entries, not escrowed_user_ids, decide who is repaid,
        so a debit that was applied but never recorded is returned as well.
        """
        challenge = await self.get_challenge(challenge_id)
        for uid in rules.escrow_plan(challenge):
            if await self.store.get(XP_TRANSACTIONS, _stake_key(challenge, uid)) is None:
                continue
            await adjust_xp(
                self.store,
                uid,
                challenge.stake_xp,
                STAKE_RELEASE_SOURCE,
                source_id=challenge.id,
                reason=f"Stake returned for challenge on {challenge.habit_name}",
                events=self.events,
                ledger_id=ledger_key(challenge.id, uid, STAKE_RELEASE_SOURCE, challenge.escrow_round),
            )

        released = rules.release_escrow(challenge, now)
        await self._transition(
            released,
            ChallengeStatus.ACTIVE,
            _fields(released, "status", "escrowed_user_ids", "escrow_round", "updated_at"),
            action="release",
        )
        challenge_transitions_total.labels(action="release").inc()
        logger.warning(f"Stakes for challenge {challenge_id} handed back; now {released.status.value}")
        return released

    async def _ensure_movement(
        self,
        challenge: Challenge,
        user_id: str,
        amount: int,
        source_type: str,
        applied_field: str,
        reason: str,
        ledger_id: str,
    ) -> Challenge:
        """Apply one balance movement at most once and record it on the challenge"""
        if user_id in getattr(challenge, applied_field):
            return challenge

        result = await adjust_xp(
            self.store,
            user_id,
            amount,
            source_type,
            source_id=challenge.id,
            reason=reason,
            events=self.events,
            ledger_id=ledger_id,
        )
        if not result["applied"]:
            logger.warning(f"{source_type} for {user_id} on {challenge.id} was applied but not recorded")

        applied = await self._mark_applied(challenge.id, applied_field, user_id)
        return challenge.model_copy(update={applied_field: applied})

    async def _mark_applied(self, challenge_id: str, applied_field: str, user_id: str) -> List[str]:
        for _ in range(MAX_CAS_RETRIES):
            doc = await self.store.get(CHALLENGES, challenge_id)
            if doc is None:
                raise RecordNotFoundError(
                    f"Challenge {challenge_id} not found",
                    record_type="Challenge",
                    record_id=challenge_id,
                )
            current = list(doc.data.get(applied_field) or [])
            if user_id in current:
                return current
            try:
                await self.store.update(
                    CHALLENGES,
                    challenge_id,
                    {applied_field: current + [user_id]},
                    expected={applied_field: current},
                )
                return current + [user_id]
            except ConflictError:
                logger.debug(f"{applied_field} on {challenge_id} raced; retrying")
        raise ConflictError(
            f"Could not record {applied_field} for {user_id} on challenge {challenge_id}",
            record_type="Challenge",
            record_id=challenge_id,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _transition(
        self,
        challenge: Challenge,
        from_status: ChallengeStatus,
        fields: Dict[str, Any],
        action: str,
    ) -> None:
        try:
            await self.store.update(CHALLENGES, challenge.id, fields, expected={"status": from_status.value})
        except ConflictError:
            current = await self.get_challenge(challenge.id)
            raise InvalidTransitionError(
                f"Cannot {action} challenge {challenge.id}: status changed to '{current.status.value}'",
                challenge_id=challenge.id,
                current_status=current.status.value,
                action=action,
            )

    async def _publish_progress(self, challenge: Challenge) -> None:
        await self.events.publish(Event(
            type=CHALLENGE_PROGRESS,
            user_ids=rules.escrow_plan(challenge),
            payload={
                "challenge_id": challenge.id,
                "initiator_progress": challenge.initiator_progress,
                "opponent_progress": challenge.opponent_progress,
                "duration_days": challenge.duration_days,
            },
        ))

    async def _get_user(self, user_id: str) -> UserAccount:
        doc = await self.store.get(USERS, user_id)
        if doc is None:
            raise RecordNotFoundError(
                f"User {user_id} not found", record_type="User", record_id=user_id
            )
        return UserAccount.from_document(doc)

    async def _get_habit(self, habit_id: str, owner_id: str) -> Habit:
        doc = await self.store.get(HABITS, habit_id)
        if doc is None:
            raise RecordNotFoundError(
                f"Habit {habit_id} not found", record_type="Habit", record_id=habit_id
            )
        habit = Habit.from_document(doc)
        if habit.user_id != owner_id:
            raise AuthorizationError(
                f"Habit {habit_id} does not belong to {owner_id}",
                resource="this habit",
                user_id=owner_id,
            )
        return habit


def _stake_key(challenge: Challenge, user_id: str) -> str:
    return ledger_key(challenge.id, user_id, STAKE_SOURCE, challenge.escrow_round)


def _habit_counts(challenge: Challenge, user_id: str, habit: Habit) -> bool:
    if user_id == challenge.initiator_id:
        return habit.id == challenge.habit_id
    if user_id == challenge.opponent_id and user_id != AI_OPPONENT_ID:
        if challenge.opponent_habit_id:
            return habit.id == challenge.opponent_habit_id
        return habit.category == challenge.habit_category
    return False


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _views_for(user_id: str, docs: list) -> List[ChallengeView]:
    views = {}
    for doc in docs:
        views[doc.id] = rules.project(Challenge.from_document(doc), user_id)
    return sorted(views.values(), key=lambda v: v.created_at or _EPOCH, reverse=True)
