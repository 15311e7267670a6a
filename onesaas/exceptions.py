"""Custom exceptions for OneSaaS.

Every policy failure carries a stable ``code`` so callers can branch on the
reason without parsing messages. ``status_code`` is the HTTP-equivalent class
and ``retryable`` separates infrastructure trouble from policy decisions.
"""

from typing import Any, Dict, Optional


class OneSaaSError(Exception):
    """Base class for all user-visible OneSaaS failures."""

    code = "error"
    status_code = 400
    retryable = False
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, **extra: Any):
        self.message = message or self.default_message
        self.extra: Dict[str, Any] = extra
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "detail": self.message,
            "code": self.code,
            "retryable": self.retryable,
        }
        body.update(self.extra)
        return body


class InvalidCredentialsError(OneSaaSError):
    """Wrong email or password. The message never says which."""

    code = "invalid_credentials"
    status_code = 401
    default_message = "Invalid credentials"


class EmailNotVerifiedError(OneSaaSError):
    code = "email_not_verified"
    status_code = 403
    default_message = "Please verify your email before logging in"


class InvalidTwoFactorCodeError(OneSaaSError):
    code = "invalid_2fa_code"
    status_code = 401
    default_message = "Invalid 2FA code"


class InvalidOrExpiredTokenError(OneSaaSError):
    """Signature, decryption, expiry and token-class failures all collapse here."""

    code = "invalid_or_expired_token"
    status_code = 401
    default_message = "Invalid or expired token"


class InvalidApiKeyError(OneSaaSError):
    code = "invalid_api_key"
    status_code = 401
    default_message = "Invalid API key"


class GuestAccessExpiredError(OneSaaSError):
    code = "guest_access_expired"
    status_code = 403
    default_message = "Your guest access has expired. Please renew your guest access or subscribe to a plan."


class NoActiveSubscriptionError(OneSaaSError):
    code = "no_active_subscription"
    status_code = 403
    default_message = "No active subscription found. Please subscribe to a plan."


class AlgorithmNotInPlanError(OneSaaSError):
    code = "algorithm_not_in_plan"
    status_code = 403
    default_message = "This algorithm is not available in your plan"


class InsufficientRoleError(OneSaaSError):
    code = "insufficient_role"
    status_code = 403
    default_message = "Insufficient permissions"


class DuplicateResourceError(OneSaaSError):
    code = "duplicate_resource"
    status_code = 409
    default_message = "Resource already exists"


class NotFoundError(OneSaaSError):
    code = "not_found"
    status_code = 404
    default_message = "Resource not found"


class InvalidStateError(OneSaaSError):
    """The request is valid but conflicts with the current state (e.g. 2FA already on)."""

    code = "invalid_state"
    status_code = 409
    default_message = "Operation not allowed in the current state"


class ValidationFailedError(OneSaaSError):
    code = "validation_failed"
    status_code = 400
    default_message = "Invalid input"


class RateLimitExceededError(OneSaaSError):
    code = "rate_limit_exceeded"
    status_code = 429
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(self, message: Optional[str] = None, retry_after: int = 60, **extra: Any):
        self.retry_after = retry_after
        super().__init__(message, **extra)


class CryptoError(OneSaaSError):
    """Malformed ciphertext or a key that does not match."""

    code = "crypto_error"
    status_code = 400
    default_message = "Failed to decrypt data"


class StoreUnavailableError(OneSaaSError):
    """The backing store timed out or is unreachable. Never treated as a grant."""

    code = "store_unavailable"
    status_code = 503
    retryable = True
    default_message = "Service temporarily unavailable. Please retry."
