"""
Resilience utilities for PhoneBridge.

Provides:
- Error taxonomy shared by the directory API and the webhook relay
- Graceful degradation for best-effort collaborators
- Time-bounded awaits that resolve to a fallback instead of raising
"""
import asyncio
import functools
import inspect
import logging
from typing import Awaitable, Callable, TypeVar, Optional, Any

logger = logging.getLogger(__name__)

T = TypeVar('T')


class PhoneBridgeError(Exception):
    """Base class for PhoneBridge errors that map to an HTTP status."""

    status_code: int = 500
    error: str = "Internal error"

    def __init__(self, message: str = "", error: Optional[str] = None):
        self.message = message
        if error:
            self.error = error
        super().__init__(message or self.error)

    def to_dict(self) -> dict:
        body = {"error": self.error}
        if self.message and self.message != self.error:
            body["message"] = self.message
        return body


class ValidationError(PhoneBridgeError):
    """Bad phone, bad email, or missing field."""
    status_code = 400
    error = "Validation error"


class NotFoundError(PhoneBridgeError):
    """Requested record does not exist."""
    status_code = 404
    error = "Not found"


class ConfigurationError(PhoneBridgeError):
    """Required configuration is missing (e.g. fallback contact id)."""
    status_code = 500
    error = "Configuration error"


class ServiceUnavailableError(PhoneBridgeError):
    """Raised when an external service is unavailable."""
    status_code = 500

    def __init__(self, service: str, message: str):
        self.service = service
        super().__init__(message, error=f"{service} unavailable")


class StoreUnavailable(ServiceUnavailableError):
    """The directory store could not be reached."""

    def __init__(self, message: str):
        super().__init__("directory_store", message)


class UpstreamTimeout(ServiceUnavailableError):
    """A bounded upstream call exceeded its time limit."""

    def __init__(self, service: str, message: str = "timed out"):
        super().__init__(service, message)


class UpstreamApiError(ServiceUnavailableError):
    """The CRM rejected a call or answered with something unusable."""

    def __init__(self, message: str, service: str = "crm"):
        super().__init__(service, message)


def graceful_degradation(
    service_name: str,
    fallback_value: Any = None,
    log_level: int = logging.WARNING,
):
    """
    Decorator for graceful degradation when a best-effort service fails.

    Args:
        service_name: Name of the service (for logging)
        fallback_value: Value to return on failure
        log_level: Log level for failures
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @functools.wraps(func)
        async def async_wrapper(*args, **kwargs) -> T:
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                logger.log(
                    log_level,
                    f"{service_name} unavailable: {e}. Using fallback."
                )
                return fallback_value

        @functools.wraps(func)
        def sync_wrapper(*args, **kwargs) -> T:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                logger.log(
                    log_level,
                    f"{service_name} unavailable: {e}. Using fallback."
                )
                return fallback_value

        if inspect.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: float,
    service_name: str,
    fallback_value: Any = None,
) -> T:
    """
    Await with a deadline, resolving to fallback_value on timeout.

    The underlying task is cancelled when the deadline passes. Other
    exceptions propagate to the caller.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(f"{service_name} timed out after {timeout:.1f}s. Using fallback.")
        return fallback_value


def user_friendly_error(error: Exception) -> str:
    """
    Convert exception to user-friendly error message.

    Args:
        error: The exception to convert

    Returns:
        User-friendly error message
    """
    if isinstance(error, ServiceUnavailableError):
        return f"{error.service} is currently unavailable. {error.message}"

    if isinstance(error, PhoneBridgeError):
        return error.message or error.error

    error_type = type(error).__name__
    error_str = str(error).lower()

    if "timeout" in error_str or "timed out" in error_str:
        return "The request timed out. Please try again."

    if "connection" in error_str or "network" in error_str:
        return "Unable to connect. Please check your internet connection."

    if "unauthorized" in error_str or "401" in error_str:
        return "Authentication failed. Please check the API key."

    return f"An error occurred: {error_type}. Please try again."
