"""
Monetization error taxonomy
Every error carries a machine-readable reason and the HTTP status the API layer should use
"""

from typing import Optional


class MonetizationError(Exception):
    """Base exception for settlement and withdrawal errors"""

    http_status = 400

    def __init__(self, message: str, reason: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.reason = reason or self.__class__.__name__


class ValidationError(MonetizationError):
    """Rejected input - never retried automatically"""

    http_status = 400


class RateLimitedError(ValidationError):
    """Caller is inside a cooldown window"""

    http_status = 429


class ForbiddenError(ValidationError):
    """Caller is not allowed to perform the operation"""

    http_status = 403


class ConflictError(ValidationError):
    """Operation duplicates one that already happened"""

    http_status = 409


class NotFoundError(MonetizationError):
    """Referenced clip, profile or request does not exist"""

    http_status = 404


class ConfigurationError(MonetizationError):
    """Missing reward rate or provider credentials - fatal, never guessed"""

    http_status = 500


class ExternalProviderError(MonetizationError):
    """Transfer provider call failed"""

    http_status = 502


# Machine-readable reasons and user-facing messages
CLIP_NOT_FOUND = "Voice clip not found"
CANNOT_VALIDATE_OWN_CLIP = "You cannot validate your own clip"
ALREADY_VALIDATED = "You have already validated this clip"
RATE_LIMITED = "Please wait before submitting another validation"
INSUFFICIENT_TRUST = "Your trust score is too low to validate"
LANGUAGE_MISMATCH = "This clip is not in a language you validate"
USER_NOT_FOUND = "User profile not found"
