"""
Shared service-layer plumbing: a logging base class, the service exception
hierarchy, and ServiceResult, which views and tasks unwrap instead of
catching exceptions.
"""
import logging
from typing import Any, Dict, Optional


class BaseService:
    """
    Base class for stateless services.

    Log records carry their keyword context under ``record.context`` so
    structured handlers can pick up ids (group_id, user_id, ...) without
    parsing the message.
    """

    def __init__(self):
        self.logger = logging.getLogger(self.__class__.__name__)

    def log_info(self, message: str, **context) -> None:
        self.logger.info(message, extra={'context': context})

    def log_warning(self, message: str, **context) -> None:
        self.logger.warning(message, extra={'context': context})

    def log_error(self, message: str, exception: Optional[Exception] = None, **context) -> None:
        """Log an error; pass the exception to attach its traceback."""
        self.logger.error(message, exc_info=exception, extra={'context': context})


class ServiceException(Exception):
    """
    Base exception for service errors.

    Args:
        message: Human readable description, shown to API clients
        code: Stable machine readable code, e.g. 'GROUP_ENDED'
        details: Extra payload for the caller, e.g. remaining slots
    """

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}


class ValidationError(ServiceException):
    """Input is malformed or out of range."""


class BusinessRuleViolation(ServiceException):
    """Input is well formed but the current state does not allow it."""


class ServiceResult:
    """
    Outcome of a service call.

    Truthy on success. On failure ``error`` holds the message,
    ``error_code`` the stable code and ``details`` any payload the
    raising exception carried.
    """

    def __init__(self, success: bool, data: Any = None, error: Optional[str] = None,
                 error_code: Optional[str] = None, details: Optional[Dict] = None):
        self.success = success
        self.data = data
        self.error = error
        self.error_code = error_code
        self.details = details or {}

    @classmethod
    def ok(cls, data: Any = None) -> 'ServiceResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, error_code: Optional[str] = None,
             details: Optional[Dict] = None) -> 'ServiceResult':
        return cls(success=False, error=error, error_code=error_code, details=details)

    @classmethod
    def from_exception(cls, exc: ServiceException) -> 'ServiceResult':
        return cls.fail(exc.message, error_code=exc.code, details=exc.details)

    def __bool__(self) -> bool:
        return self.success

    def __repr__(self) -> str:
        if self.success:
            return f"<ServiceResult ok data={self.data!r}>"
        return f"<ServiceResult failed code={self.error_code} error={self.error!r}>"
