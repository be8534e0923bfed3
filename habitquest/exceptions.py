"""
Standardized exception hierarchy for habitquest
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

import openai
import psycopg

logger = logging.getLogger(__name__)


class HabitQuestError(Exception):
    """
    Base exception for all habitquest errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise HabitQuestError(
            message="Failed to escrow stake",
            user_id="uid-123",
            operation="accept_challenge",
            context={"challenge_id": "abc-123"}
        )
    """

    def __init__(
        self,
        message: str,
        user_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data, exc_info=self.cause)
        else:
            logger.error(f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (User Input)
# ==========================================

class ValidationError(HabitQuestError):
    """
    Raised when input fails validation before any write

    Examples:
    - Empty habit name
    - Unsupported challenge duration
    - Non-positive stake

    Example:
        raise ValidationError(
            message="Duration must be one of 7, 14, 21, 30",
            field="duration_days",
            value=10,
            user_id="uid-123"
        )
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        super().__init__(
            message=message,
            user_message=f"Invalid {field}: {message}" if field else message,
            context={"field": field, "value": value},
            **kwargs
        )


class InsufficientXPError(ValidationError):
    """User cannot afford the requested stake"""

    def __init__(
        self,
        required: int,
        available: int,
        **kwargs
    ):
        self.required = required
        self.available = available
        super().__init__(
            message=f"Stake of {required} XP exceeds available balance of {available} XP",
            field="stake_xp",
            value=required,
            **kwargs
        )
        self.user_message = f"You need {max(required - available, 0)} more XP to stake {required} XP."


# ==========================================
# Challenge Lifecycle Errors
# ==========================================

class InvalidTransitionError(HabitQuestError):
    """Requested challenge transition is not allowed from the current status"""

    def __init__(
        self,
        message: str,
        challenge_id: Optional[str] = None,
        current_status: Optional[str] = None,
        action: Optional[str] = None,
        **kwargs
    ):
        self.challenge_id = challenge_id
        self.current_status = current_status
        self.action = action
        super().__init__(
            message=message,
            user_message=f"This challenge can't be {action or 'changed'} right now.",
            context={
                "challenge_id": challenge_id,
                "current_status": current_status,
                "action": action,
            },
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(HabitQuestError):
    """
    Base class for document store errors
    """
    pass


class ConnectionError(DatabaseError):
    """Document store connection failed"""

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble connecting to the database. Please try again in a moment.",
            **kwargs
        )


class QueryError(DatabaseError):
    """Document store operation failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your data. Please try again.",
            context={**(kwargs.pop("context", None) or {}), "query": query},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested document does not exist"""

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


class ConflictError(DatabaseError):
    """Conditional write lost against a concurrent change"""

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message="This item was changed by someone else. Please refresh and try again.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


# ==========================================
# External API Errors
# ==========================================

class ExternalAPIError(HabitQuestError):
    """
    Base class for external API failures
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        self.service = service
        self.status_code = status_code
        kwargs.setdefault(
            "user_message",
            f"We're having trouble connecting to {service or 'an external service'}. Please try again later."
        )
        super().__init__(
            message=message,
            context={"service": service, "status_code": status_code},
            **kwargs
        )


class InsightServiceError(ExternalAPIError):
    """Text-generation endpoint failed (network, auth, non-2xx)"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            service="AI Sage",
            user_message="AI Sage is unavailable right now. Please try again.",
            **kwargs
        )


class InsightParseError(HabitQuestError):
    """Text-generation reply did not contain the expected JSON object"""

    def __init__(self, message: str, raw_response: Optional[str] = None, **kwargs):
        self.raw_response = raw_response
        super().__init__(
            message=message,
            user_message="AI Sage gave an unreadable answer. Please try again.",
            context={"raw_response": (raw_response or "")[:200]},
            **kwargs
        )


# ==========================================
# Authentication & Authorization
# ==========================================

class AuthenticationError(HabitQuestError):
    """Authentication failed"""

    def __init__(
        self,
        message: str = "Authentication failed",
        **kwargs
    ):
        super().__init__(
            message=message,
            user_message="Authentication failed. Please sign in again.",
            **kwargs
        )


class AuthorizationError(HabitQuestError):
    """User lacks permission for requested operation"""

    def __init__(
        self,
        message: str = "Insufficient permissions",
        resource: Optional[str] = None,
        **kwargs
    ):
        self.resource = resource
        super().__init__(
            message=message,
            user_message=f"You don't have permission to access {resource or 'this resource'}.",
            context={"resource": resource},
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(HabitQuestError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact support.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> HabitQuestError:
    """
    Wrap external exceptions (psycopg, openai) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        user_id: User ID if applicable
        context: Additional context

    Returns:
        Appropriate HabitQuestError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(
                e,
                operation="store.update",
                context={"collection": "challenges"}
            )
    """
    if isinstance(error, HabitQuestError):
        return error

    # Database errors
    if isinstance(error, psycopg.OperationalError):
        return ConnectionError(
            message=f"Database connection failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )

    # Text-generation client errors
    elif isinstance(error, openai.APIStatusError):
        return InsightServiceError(
            message=f"Text generation returned error: {error.status_code}",
            status_code=error.status_code,
            user_id=user_id,
            operation=operation,
            cause=error
        )
    elif isinstance(error, openai.APIError):
        return InsightServiceError(
            message=f"Text generation request failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            cause=error
        )

    # Generic fallback
    else:
        return HabitQuestError(
            message=f"{operation} failed: {str(error)}",
            user_id=user_id,
            operation=operation,
            context=context,
            cause=error
        )
