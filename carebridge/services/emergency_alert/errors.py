"""Exceptions raised by the emergency alert service.

NotFoundError comes from the shared database package so that storage and
service code raise the same type for a missing episode.
"""
from typing import Sequence

from carebridge.shared.database import NotFoundError


class EmergencyAlertError(Exception):
    """Base exception for emergency alert errors."""
    pass


class ValidationError(EmergencyAlertError):
    """Caller supplied missing or structurally invalid data."""

    def __init__(self, message: str, missing_fields: Sequence[str] = ()):
        super().__init__(message)
        self.missing_fields = list(missing_fields)


class InvalidTransitionError(ValidationError):
    """Requested status change is not allowed by the state machine."""
    pass


class MethodNotAllowedError(EmergencyAlertError):
    """HTTP method has no route."""
    pass


def episode_not_found(episode_id: str) -> NotFoundError:
    return NotFoundError(f"Episode {episode_id} not found")


__all__ = [
    "EmergencyAlertError",
    "ValidationError",
    "InvalidTransitionError",
    "MethodNotAllowedError",
    "NotFoundError",
    "episode_not_found",
]
