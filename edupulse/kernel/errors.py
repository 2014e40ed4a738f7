"""
Error taxonomy for the identity core.

Services raise these; only the transport boundary turns them into HTTP
responses. Each public error carries a status code, a stable machine code
and a message that is safe to show to any caller.
"""

from typing import Optional


class IdentityError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(IdentityError):
    """Malformed or semantically invalid input."""

    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Validation failed"


class AuthenticationError(IdentityError):
    """Bad credentials, missing/invalid session token or inactive account."""

    status_code = 401
    code = "AUTHENTICATION_ERROR"
    default_message = "Authentication required"


class InvalidSessionTokenError(AuthenticationError):
    """A session token failed verification."""

    code = "INVALID_TOKEN"
    default_message = "Invalid or expired token"


class TokenSignatureError(InvalidSessionTokenError):
    """Signature mismatch or undecodable token."""


class TokenExpiredError(InvalidSessionTokenError):
    """Token expiry has passed."""


class TokenKindError(InvalidSessionTokenError):
    """Token kind (access/refresh) does not match the operation."""


class AuthorizationError(IdentityError):
    """Authenticated, but role or ownership does not permit the operation."""

    status_code = 403
    code = "AUTHORIZATION_ERROR"
    default_message = "Insufficient permissions"


class NotFoundError(IdentityError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Resource not found"


class ConflictError(IdentityError):
    status_code = 409
    code = "CONFLICT"
    default_message = "Resource conflict"


class ExpiredOrInvalidTokenError(IdentityError):
    """
    A verification or reset token was wrong, expired or already used.

    The three cases are deliberately indistinguishable to the caller.
    """

    status_code = 400
    code = "INVALID_OR_EXPIRED_TOKEN"
    default_message = "Invalid or expired token"


# Internal errors: never rendered directly.

class EmailAlreadyExistsError(Exception):
    """Raised by a user repository when the unique email constraint is violated."""

    def __init__(self, email: str):
        self.email = email
        super().__init__("Email already registered")


class DeliveryError(Exception):
    """Raised by a delivery gateway when a message could not be handed off."""
