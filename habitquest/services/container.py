"""
Service Container - Dependency Injection Container

Simple DI container for managing service instances and their dependencies.
Uses lazy loading to only instantiate services when first accessed.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from habitquest.db.store import DocumentStore
from habitquest.events import EventBus

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Simple dependency injection container for services.

    Services are lazy-loaded on first access via properties.
    Infrastructure dependencies (store, events, insight client) are injected.
    """

    # Infrastructure dependencies (injected)
    store: DocumentStore
    events: EventBus = field(default_factory=EventBus)
    insight_client: Optional[object] = None  # SageClient; built from config when None

    # Services (lazy-loaded via properties)
    _user_service: Optional[object] = field(default=None, init=False, repr=False)
    _habit_service: Optional[object] = field(default=None, init=False, repr=False)
    _challenge_service: Optional[object] = field(default=None, init=False, repr=False)
    _notification_service: Optional[object] = field(default=None, init=False, repr=False)
    _insight_service: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def user_service(self):
        """Get UserService instance (lazy-loaded)"""
        if self._user_service is None:
            from habitquest.services.user_service import UserService
            self._user_service = UserService(self.store, self.events)
            logger.debug("UserService instantiated")
        return self._user_service

    @property
    def challenge_service(self):
        """Get ChallengeService instance (lazy-loaded)"""
        if self._challenge_service is None:
            from habitquest.services.challenge_service import ChallengeService
            self._challenge_service = ChallengeService(self.store, self.events)
            logger.debug("ChallengeService instantiated")
        return self._challenge_service

    @property
    def habit_service(self):
        """Get HabitService instance (lazy-loaded)"""
        if self._habit_service is None:
            from habitquest.services.habit_service import HabitService
            self._habit_service = HabitService(
                self.store,
                self.events,
                self.user_service,
                self.challenge_service
            )
            logger.debug("HabitService instantiated")
        return self._habit_service

    @property
    def notification_service(self):
        """Get NotificationService instance (lazy-loaded, attached to the event bus)"""
        if self._notification_service is None:
            from habitquest.services.notification_service import NotificationService
            self._notification_service = NotificationService(self.store)
            self._notification_service.attach(self.events)
            logger.debug("NotificationService instantiated")
        return self._notification_service

    @property
    def insight_service(self):
        """Get InsightService instance (lazy-loaded)"""
        if self._insight_service is None:
            from habitquest.services.insight_service import InsightService
            self._insight_service = InsightService(
                self.store,
                self.challenge_service,
                self.insight_client
            )
            logger.debug("InsightService instantiated")
        return self._insight_service

    async def close(self) -> None:
        """Detach read models and release the store"""
        if self._notification_service is not None:
            self._notification_service.detach()
        await self.store.close()


# Global container instance (initialized in the API lifespan)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() during application startup before using services."
        )
    return _container


def init_container(
    store: DocumentStore,
    events: Optional[EventBus] = None,
    insight_client: Optional[object] = None
) -> ServiceContainer:
    """
    Initialize the global service container.

    Should be called once at startup after the document store is ready.

    Args:
        store: Document store instance
        events: Event bus (a fresh one when None)
        insight_client: Optional text-generation client override

    Returns:
        ServiceContainer: The initialized container
    """
    global _container

    _container = ServiceContainer(
        store=store,
        events=events or EventBus(),
        insight_client=insight_client
    )

    # Notifications must hear events from the first request on
    _container.notification_service

    logger.info("Service container initialized")
    return _container


def reset_container() -> None:
    """Forget the global container (used on shutdown)"""
    global _container
    _container = None
