"""
Custom exceptions for the bulk send service.
"""

from __future__ import annotations


class EasySendError(Exception):
    """Base exception carrying the HTTP status it maps to."""

    status_code = 500

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        if status_code is not None:
            self.status_code = status_code


class ValidationError(EasySendError):
    """Exception for bad input. Rejected synchronously, never retried."""

    status_code = 400


class AuthenticationError(EasySendError):
    status_code = 401


class PermissionDeniedError(EasySendError):
    status_code = 403


class NotFoundError(EasySendError):
    status_code = 404


class LicenseError(EasySendError):
    """Base for license domain failures."""

    status_code = 403


class AlreadyUsedError(LicenseError):
    status_code = 409


class ExpiredError(LicenseError):
    pass


class MachineMismatchError(LicenseError):
    pass


class NotActivatedError(LicenseError):
    pass


class SessionNotReadyError(EasySendError):
    status_code = 409


class JobAlreadyRunningError(EasySendError):
    status_code = 409


class EndpointError(EasySendError):
    """Delivery failure for a single recipient."""

    status_code = 502


class LinkFailure(EasySendError):
    status_code = 503


class AuthFailure(LinkFailure):
    pass


class StoreUnavailableError(EasySendError):
    """The durable store cannot be reached."""

    status_code = 503
