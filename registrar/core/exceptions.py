"""
Custom exceptions for the Registrar platform.

Every exception carries an ``ErrorKind`` tag so callers can dispatch on
``error.kind`` instead of inspecting the class hierarchy.
"""

from typing import Optional, Any, Dict

from .enums import ErrorKind


class RegistrarException(Exception):
    """Base exception for all Registrar-related errors."""

    kind: ErrorKind = ErrorKind.INVARIANT_VIOLATION

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert the error into a serializable payload."""
        return {
            'kind': self.kind.value,
            'error_code': self.error_code,
            'message': self.message,
            'details': self.details,
        }


class InvariantViolationError(RegistrarException):
    """Raised when a business rule of an aggregate would be broken."""

    kind = ErrorKind.INVARIANT_VIOLATION

    def __init__(self, aggregate: str, invariant: str, message: str,
                 error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        super().__init__(f"[{aggregate}] {invariant}: {message}", error_code or invariant, details)
        self.aggregate = aggregate
        self.invariant = invariant
        self.reason = message

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload.update({'aggregate': self.aggregate, 'invariant': self.invariant})
        return payload


class NotFoundError(RegistrarException):
    """Raised when a referenced record does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} with id '{entity_id}' not found", "NotFound",
                         {'entity': entity, 'id': entity_id})
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(RegistrarException):
    """Raised when input is malformed."""

    kind = ErrorKind.VALIDATION

    def __init__(self, field: str, message: str):
        super().__init__(f"Validation error for field '{field}': {message}", "Validation",
                         {'field': field})
        self.field = field
        self.reason = message


class AuthorizationError(RegistrarException):
    """Raised when the acting user lacks the required role."""

    kind = ErrorKind.AUTHORIZATION


class ConcurrencyError(RegistrarException):
    """Raised when a lock cannot be taken or a record changed underneath a transaction."""

    kind = ErrorKind.CONCURRENCY


class PersistenceError(RegistrarException):
    """Raised when persistence operations fail."""

    kind = ErrorKind.PERSISTENCE


class ConfigurationError(RegistrarException):
    """Raised when configuration is invalid."""

    kind = ErrorKind.CONFIGURATION
