"""
Error taxonomy for the scheduling core.

Every failure a caller may need to branch on has its own type. The HTTP
layer maps them to status codes in ``app.main``; services never raise
``HTTPException`` directly.
"""
from typing import Optional


class ClinicError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500
    default_message: str = "An unexpected error occurred"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    @property
    def error(self) -> str:
        return type(self).__name__


# Authentication
class AuthenticationFailed(ClinicError):
    status_code = 401
    default_message = "Could not validate credentials"


class InvalidCredential(AuthenticationFailed):
    """Credential is malformed, tampered with, or carries unusable claims."""
    default_message = "Invalid credential"


class ExpiredCredential(AuthenticationFailed):
    """Credential signature is valid but its expiry has passed."""
    default_message = "Credential has expired"


# Authorization
class AuthorizationError(ClinicError):
    status_code = 403
    default_message = "Not enough permissions"


# Request handling
class ValidationError(ClinicError):
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(ClinicError):
    status_code = 404
    default_message = "The requested resource was not found"


class ConflictError(ClinicError):
    """Requested slot overlaps a committed appointment."""
    status_code = 409
    default_message = "The requested slot is no longer available"


class InvalidTransition(ClinicError):
    status_code = 409
    default_message = "Appointment cannot change to the requested status"


# Infrastructure
class PersistenceError(ClinicError):
    status_code = 500
    default_message = "Appointment store failure"


class SchedulingTimeout(ClinicError):
    """Waited too long for the practitioner's reservation lock."""
    status_code = 503
    default_message = "Scheduling is busy, please retry"
