# backend/medipublish/errors.py

from typing import List, Optional


class MediPublishError(Exception):
    """Base class for errors raised by the CME core."""


class ValidationError(MediPublishError):
    """Malformed input. Carries optional per-field details."""

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or []


class UnsupportedFormat(ValidationError):
    pass


class NotFoundError(MediPublishError):
    pass


class UnknownSpecialty(NotFoundError):
    def __init__(self, specialty: str):
        super().__init__(f"No requirements found for specialty: {specialty}")
        self.specialty = specialty


class PermissionDeniedError(MediPublishError):
    pass


class GradingConfigurationError(MediPublishError):
    """
    The activity cannot be graded (no question bank, no passing score).

    This is a data-integrity problem in authored content, not a user error.
    """


class AttemptsExhausted(MediPublishError):
    def __init__(self, activity_id: int, attempts_allowed: int):
        super().__init__(
            f"All {attempts_allowed} attempts for activity {activity_id} have been used."
        )
        self.activity_id = activity_id
        self.attempts_allowed = attempts_allowed


class StorageError(MediPublishError):
    """The database rejected a read or a write."""
