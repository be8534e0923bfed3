"""
Service Layer Package

Business logic services between the HTTP API and the document store.

Core Services:
- UserService: Accounts, profiles, activity streaks, XP views
- HabitService: Habit CRUD and idempotent daily completion
- ChallengeService: Challenge lifecycle with XP escrow and settlement
- NotificationService: Notification read model fed by the event bus
- InsightService: AI Sage coaching insights
"""

from habitquest.services.container import ServiceContainer, get_container, init_container, reset_container

__all__ = [
    "ServiceContainer",
    "get_container",
    "init_container",
    "reset_container",
]
