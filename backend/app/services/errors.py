"""Domain errors raised by the service layer and mapped to HTTP responses in ``app.api``."""

from __future__ import annotations


class ServiceError(Exception):
    """Base class for errors surfaced to the user as a failed action."""

    status_code = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    """Input rejected before any write was issued."""


class UsernameTakenError(ValidationError):
    status_code = 409


class AuthenticationError(ServiceError):
    status_code = 401


class PermissionDeniedError(ServiceError):
    status_code = 403


class NotFoundError(ServiceError):
    status_code = 404


class GroupOperationError(ServiceError):
    """A multi-document group operation failed and its completed steps were undone."""

    status_code = 502
