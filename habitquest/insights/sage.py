"""
AI Sage insights

Builds a summary of a user's habits, streaks and challenges, sends it to an
OpenAI-compatible text-generation endpoint and parses the constrained reply:

    {"insight": "...", "suggested_habit": "..."}

Network, auth and parse failures all surface as exceptions; nothing is
defaulted and nothing is retried automatically.
"""

import json
import logging
import math
import time
from collections import Counter
from typing import Dict, List, Optional, Sequence

import httpx
import openai
import pybreaker
from openai import AsyncOpenAI
from pydantic import BaseModel, Field

from habitquest import config
from habitquest.exceptions import (
    ConfigurationError,
    InsightParseError,
    InsightServiceError,
    wrap_external_exception,
)
from habitquest.models.challenge import ChallengeStatus, ChallengeType, ChallengeView
from habitquest.models.habit import Habit
from habitquest.models.user import Persona, UserAccount
from habitquest.gamification.streak_system import calculate_habit_streak
from habitquest.observability.metrics import insight_request_duration_seconds, insight_requests_total
from habitquest.resilience.circuit_breaker import INSIGHT_BREAKER, with_circuit_breaker

logger = logging.getLogger(__name__)

INSIGHT_MAX_WORDS = 30
SUGGESTED_HABIT_MAX_WORDS = 15
MAX_MISSED_DAYS = 3

# Fixed English names so the prompt does not depend on the process locale
WEEKDAYS = ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday")


# ============================================
# Models
# ============================================

class SageInsight(BaseModel):
    insight: str
    suggested_habit: str
    warnings: List[str] = Field(default_factory=list)


class HabitSummary(BaseModel):
    name: str
    category: str
    frequency: str
    success_rate: int
    streak: int
    reminder_time: Optional[str] = None


class ChallengeSummary(BaseModel):
    active: int = 0
    completed: int = 0
    victories: int = 0
    defeats: int = 0
    ties: int = 0
    type: str = "solo"  # pvp, ai-sage or solo


class UserContext(BaseModel):
    """Everything the prompt is built from"""
    persona: Optional[Persona] = None
    habits: List[HabitSummary] = Field(default_factory=list)
    current_streak: int = 0
    longest_streak: int = 0
    time_patterns: Dict[str, int] = Field(
        default_factory=lambda: {"morning": 0, "afternoon": 0, "evening": 0, "night": 0}
    )
    missed_days: List[str] = Field(default_factory=list)
    challenges: ChallengeSummary = Field(default_factory=ChallengeSummary)
    friend_challenges: int = 0
    solo_habits: int = 0
    why_matters: List[str] = Field(default_factory=list)


# ============================================
# Context
# ============================================

def success_rate(habit: Habit) -> int:
    """Completed records / all records x 100, rounded half up; 0 with no records"""
    total = len(habit.completions)
    if total == 0:
        return 0
    completed = sum(1 for r in habit.completions if r.completed)
    return math.floor(completed / total * 100 + 0.5)


def time_of_day_bucket(reminder_time: str) -> str:
    hour = int(reminder_time.split(":")[0])
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def time_patterns(habits: Sequence[Habit]) -> Dict[str, int]:
    patterns = {"morning": 0, "afternoon": 0, "evening": 0, "night": 0}
    for habit in habits:
        if habit.reminder_time:
            patterns[time_of_day_bucket(habit.reminder_time)] += 1
    return patterns


def missed_weekdays(habits: Sequence[Habit], top: int = MAX_MISSED_DAYS) -> List[str]:
    """Weekdays with the most missed records (first seen wins ties)"""
    counts = Counter(
        WEEKDAYS[record.date.weekday()]
        for habit in habits
        for record in habit.completions
        if not record.completed
    )
    return [day for day, _ in counts.most_common(top)]


def summarize_challenges(views: Sequence[ChallengeView]) -> ChallengeSummary:
    finished = (ChallengeStatus.VICTORY, ChallengeStatus.DEFEATED, ChallengeStatus.TIED)
    if any(v.challenge_type == ChallengeType.PVP for v in views):
        kind = "pvp"
    elif any(v.challenge_type == ChallengeType.AI_SAGE for v in views):
        kind = "ai-sage"
    else:
        kind = "solo"

    return ChallengeSummary(
        active=sum(1 for v in views if v.status == ChallengeStatus.ACTIVE),
        completed=sum(1 for v in views if v.status in finished),
        victories=sum(1 for v in views if v.status == ChallengeStatus.VICTORY),
        defeats=sum(1 for v in views if v.status == ChallengeStatus.DEFEATED),
        ties=sum(1 for v in views if v.status == ChallengeStatus.TIED),
        type=kind,
    )


def build_user_context(
    user: UserAccount,
    habits: Sequence[Habit],
    challenges: Sequence[ChallengeView],
) -> UserContext:
    summary = summarize_challenges(challenges)
    return UserContext(
        persona=user.persona,
        habits=[
            HabitSummary(
                name=h.name,
                category=h.category,
                frequency=h.frequency.value,
                success_rate=success_rate(h),
                streak=calculate_habit_streak(h.completions),
                reminder_time=h.reminder_time,
            )
            for h in habits
        ],
        current_streak=user.current_streak,
        longest_streak=user.longest_streak,
        time_patterns=time_patterns(habits),
        missed_days=missed_weekdays(habits),
        challenges=summary,
        friend_challenges=sum(1 for c in challenges if c.challenge_type == ChallengeType.PVP),
        solo_habits=max(len(habits) - summary.active, 0),
        why_matters=user.persona.recommended_habits if user.persona else [],
    )


# ============================================
# Prompt
# ============================================

def build_prompt(context: UserContext) -> str:
    persona = context.persona or Persona()
    persona_name = persona.persona_name or persona.archetype or "User"
    persona_type = persona.archetype or "General User"

    habits_list = "\n    ".join(
        f"- {h.name} ({h.category}): {h.success_rate}% success, {h.streak} day streak, {h.frequency}"
        for h in context.habits
    ) or "No habits yet"
    patterns = ", ".join(
        f"{bucket}: {count} habits" for bucket, count in context.time_patterns.items() if count > 0
    ) or "No clear pattern"
    missed = ", ".join(context.missed_days) or "None identified"

    lines = [
        'You are an expert habit-building coach called "AI Sage" in a habit tracking app.',
        "",
        "You analyze real user habit data and give short, actionable, motivating insights.",
        "You suggest one NEW habit tailored to their personality, current routines, and gaps.",
        "",
        "USER CONTEXT:",
        "",
        f"- Persona: {persona_name} ({persona_type})",
    ]
    if persona.traits:
        lines.append(f"- Traits: {', '.join(persona.traits)}")
    if persona.coaching_style:
        lines.append(f"- Coaching Style: {persona.coaching_style}")
    lines += [
        "",
        "- Completed habits & streak data:",
        f"    - Habits: {habits_list}",
        f"    - Current Streak: {context.current_streak} days",
        f"    - Longest Streak: {context.longest_streak} days",
        f"    - Time of day patterns: {patterns}",
        f"    - Missed days / weak points: {missed}",
        "",
        "- Challenges joined/completed:",
        f"    - Active: {context.challenges.active}",
        f"    - Completed: {context.challenges.completed}",
        f"    - Victories: {context.challenges.victories}",
        f"    - Defeats: {context.challenges.defeats}",
        f"    - Type: {context.challenges.type}",
        "",
        "- Social interaction:",
        f"    - Friend challenges: {context.friend_challenges}",
        f"    - Solo habits: {context.solo_habits}",
    ]
    if context.why_matters:
        lines.append(f'- "Why it matters" answers: {", ".join(context.why_matters)}')
    lines += [
        "",
        "YOUR TASK:",
        "",
        f"1. Provide ONE positive, specific insight of at most {INSIGHT_MAX_WORDS} words.",
        f"2. Suggest ONE new habit idea of at most {SUGGESTED_HABIT_MAX_WORDS} words that fits "
        "their personality, goals, and gaps, based on the data.",
        "3. Phrase it as a coach, in a friendly, non-judgmental tone.",
        "",
        "OUTPUT FORMAT:",
        "",
        '{"insight": "...", "suggested_habit": "..."}',
        "",
        "ONLY output the above JSON object. No markdown, no code blocks, just valid JSON.",
    ]
    return "\n".join(lines)


# ============================================
# Reply parsing
# ============================================

def extract_json_object(text: str) -> str:
    """
    First balanced {...} substring of text

    Braces inside JSON strings are ignored. A '{' that never closes is
    skipped and the search continues from the next one.
    """
    start = text.find("{")
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for i in range(start, len(text)):
            ch = text[i]
            if in_string:
                if escaped:
                    escaped = False
                elif ch == "\\":
                    escaped = True
                elif ch == '"':
                    in_string = False
            elif ch == '"':
                in_string = True
            elif ch == "{":
                depth += 1
            elif ch == "}":
                depth -= 1
                if depth == 0:
                    return text[start:i + 1]
        start = text.find("{", start + 1)

    raise InsightParseError("No JSON object found in AI Sage reply", raw_response=text)


def _limit_words(value: str, limit: int, field: str, warnings: List[str]) -> str:
    words = value.split()
    if len(words) <= limit:
        return value.strip()
    warnings.append(f"{field} truncated from {len(words)} to {limit} words")
    logger.warning(f"AI Sage {field} had {len(words)} words; truncated to {limit}")
    return " ".join(words[:limit])


def parse_insight(text: str) -> SageInsight:
    """
    Parse a model reply into a SageInsight

    Raises:
        InsightParseError: no JSON object, invalid JSON, or a missing /
            non-string / empty field
    """
    raw = extract_json_object(text)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise InsightParseError(f"AI Sage reply is not valid JSON: {e}", raw_response=text, cause=e)

    warnings: List[str] = []
    fields = {}
    for field, limit in (("insight", INSIGHT_MAX_WORDS), ("suggested_habit", SUGGESTED_HABIT_MAX_WORDS)):
        value = data.get(field)
        if not isinstance(value, str) or not value.strip():
            raise InsightParseError(
                f"AI Sage reply field '{field}' is missing or not a non-empty string",
                raw_response=text,
            )
        fields[field] = _limit_words(value, limit, field, warnings)

    extra = set(data) - set(fields)
    if extra:
        logger.debug(f"Ignoring extra AI Sage reply fields: {sorted(extra)}")
    return SageInsight(**fields, warnings=warnings)


# ============================================
# Client
# ============================================

class SageClient:
    """OpenAI-compatible chat client with a timeout and no automatic retries"""

    def __init__(
        self,
        api_key: str = config.INSIGHT_API_KEY,
        base_url: str = config.INSIGHT_BASE_URL,
        model: str = config.INSIGHT_MODEL,
        timeout_seconds: float = config.INSIGHT_TIMEOUT_SECONDS,
    ):
        if not api_key:
            raise ConfigurationError(
                "INSIGHT_API_KEY is not set; AI Sage is disabled", config_key="INSIGHT_API_KEY"
            )
        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key,
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=min(10.0, timeout_seconds)),
            max_retries=0,
        )

    @with_circuit_breaker(INSIGHT_BREAKER)
    async def complete(self, prompt: str) -> str:
        """Send the prompt; return the reply text"""
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=0.7,
            )
        except openai.APIError as e:
            raise wrap_external_exception(e, operation="insight.complete")

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise InsightParseError("AI Sage returned an empty reply", raw_response="")
        return content


async def generate_insight(context: UserContext, client: SageClient, user_id: Optional[str] = None) -> SageInsight:
    """Prompt the model with the user context and parse its reply"""
    prompt = build_prompt(context)
    logger.info(
        f"Requesting AI Sage insight for {user_id or 'anonymous'} "
        f"({len(context.habits)} habits, {context.challenges.active} active challenges)"
    )

    started = time.monotonic()
    try:
        text = await client.complete(prompt)
    except pybreaker.CircuitBreakerError as e:
        insight_requests_total.labels(outcome="circuit_open").inc()
        raise InsightServiceError(
            "AI Sage is temporarily unavailable (circuit open)",
            user_id=user_id,
            operation="generate_insight",
            cause=e,
        )
    except InsightParseError:
        insight_requests_total.labels(outcome="parse_error").inc()
        raise
    except Exception:
        insight_requests_total.labels(outcome="service_error").inc()
        raise
    finally:
        insight_request_duration_seconds.observe(time.monotonic() - started)

    try:
        insight = parse_insight(text)
    except InsightParseError:
        insight_requests_total.labels(outcome="parse_error").inc()
        raise

    insight_requests_total.labels(outcome="success").inc()
    logger.info(f"AI Sage insight ready for {user_id or 'anonymous'}")
    return insight
