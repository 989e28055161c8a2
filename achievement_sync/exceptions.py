"""
Exception hierarchy for achievement-sync

Every error carries a request id, a UTC timestamp, a message safe to show
to end users and structured context, and logs itself once on creation.

    AchievementSyncError
    ├── ValidationError           caller input rejected
    ├── DatabaseError             (retryable)
    │   ├── ConnectionError
    │   ├── QueryError
    │   └── RecordNotFoundError   (not retryable)
    ├── ProgressCreationError     counters could not be built (retryable)
    ├── SyncError                 forced resync failed (retryable)
    └── ConfigurationError
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


def _merged(base: Dict[str, Any], extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    return {**base, **(extra or {})}


class AchievementSyncError(Exception):
    """
    Base exception for all achievement-sync errors

    Example:
        raise AchievementSyncError(
            message="Failed to save progress counters",
            user_id="user-123",
            operation="save_progress_counters",
            context={"reviews": 12}
        )
    """

    retryable: bool = False
    default_user_message: str = "An error occurred. Please try again."

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
        self.user_message = user_message or self.default_user_message
        self.timestamp = datetime.now(timezone.utc)

        self._log()

    def _log(self) -> None:
        # "message" is reserved on LogRecord, hence error_message
        extra = {
            "error_type": type(self).__name__,
            "error_message": self.message,
            "request_id": self.request_id,
            "user_id": self.user_id,
            "operation": self.operation,
            "error_context": self.context,
        }
        if self.cause is not None:
            extra["cause"] = repr(self.cause)
        logger.error(
            f"{type(self).__name__} [{self.request_id}]: {self.message}",
            extra=extra,
            exc_info=self.cause,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON body for API error responses"""
        return {
            "error": type(self).__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "retryable": self.retryable,
            "timestamp": self.timestamp.isoformat(),
        }


class ValidationError(AchievementSyncError):
    """
    Caller input rejected: non-positive delta, unknown counter key,
    unknown achievement id, negative correction value.
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
        kwargs["context"] = _merged({"field": field, "value": value}, kwargs.get("context"))
        kwargs.setdefault("user_message", f"Invalid {field}: {message}" if field else message)
        super().__init__(message, **kwargs)


# ==========================================
# Storage
# ==========================================

class DatabaseError(AchievementSyncError):
    """Record store or authoritative source failure"""
    retryable = True
    default_user_message = "We encountered an issue saving your progress. Please try again."


class ConnectionError(DatabaseError):
    """Could not reach the database"""
    default_user_message = "We're having trouble connecting to the database. Please try again in a moment."

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(message, **kwargs)


class QueryError(DatabaseError):
    """A statement failed to execute"""

    def __init__(self, message: str, query: Optional[str] = None, **kwargs):
        self.query = query
        kwargs["context"] = _merged({"query": query}, kwargs.get("context"))
        super().__init__(message, **kwargs)


class RecordNotFoundError(DatabaseError):
    """A record required by the operation does not exist"""
    retryable = False

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        kwargs["context"] = _merged(
            {"record_type": record_type, "record_id": record_id}, kwargs.get("context")
        )
        kwargs.setdefault("user_message", f"{record_type or 'Record'} not found.")
        super().__init__(message, **kwargs)


# ==========================================
# Reconciliation
# ==========================================

class ProgressCreationError(AchievementSyncError):
    """
    Progress counters could not be built from the authoritative sources.

    The only failure propagated out of the progress store: there is no
    partial record that would be safe to return instead.
    """
    retryable = True
    default_user_message = "We couldn't load your progress right now. Please try again."


class SyncError(AchievementSyncError):
    """A requested full resynchronization failed"""
    retryable = True
    default_user_message = "We couldn't refresh your achievements. Please try again."


class ConfigurationError(AchievementSyncError):
    """Invalid or missing configuration"""
    default_user_message = "The system is not properly configured. Please contact support."

    def __init__(self, message: str, config_key: Optional[str] = None, **kwargs):
        self.config_key = config_key
        kwargs["context"] = _merged({"config_key": config_key}, kwargs.get("context"))
        super().__init__(message, **kwargs)


def wrap_external_exception(
    error: Exception,
    operation: str,
    user_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> AchievementSyncError:
    """
    Translate a driver exception into the hierarchy

    psycopg.OperationalError becomes ConnectionError, any other psycopg.Error
    a QueryError, anything else the base class. Errors already in the
    hierarchy are returned unchanged.

    Example:
        try:
            await cur.execute(query, params)
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="save_summary", user_id=user_id) from e
    """
    import psycopg

    if isinstance(error, AchievementSyncError):
        return error

    details = {"user_id": user_id, "operation": operation, "context": context, "cause": error}
    if isinstance(error, psycopg.OperationalError):
        return ConnectionError(f"Database connection failed: {error}", **details)
    if isinstance(error, psycopg.Error):
        return QueryError(f"Database query failed: {error}", **details)
    return AchievementSyncError(f"{operation} failed: {error}", **details)
