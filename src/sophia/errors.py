"""Domain-specific exceptions with stable error codes."""

from __future__ import annotations


class SophiaError(Exception):
    """Base class for domain errors."""

    error: str = "domain_error"
    status_code: int = 400

    def __init__(self, message: str, *, error: str | None = None, status_code: int | None = None):
        super().__init__(message)
        if error:
            self.error = error
        if status_code:
            self.status_code = status_code


class ValidationError(SophiaError):
    error = "validation_error"
    status_code = 400


class ConfigurationError(SophiaError):
    error = "configuration_error"
    status_code = 500


class StatePersistenceError(SophiaError):
    """Chat state could not be written; the turn must not be reported as done."""

    error = "state_persistence_failed"
    status_code = 503


__all__ = ["SophiaError", "ValidationError", "ConfigurationError", "StatePersistenceError"]
