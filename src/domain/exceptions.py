"""
Domain exceptions - Semantic error types for member verification.

This module defines domain-specific exceptions that communicate
business rule violations without leaking infrastructure details.

Validation, Conflict, NotFound and Authorization errors are expected,
user-facing outcomes. ExternalServiceError signals a failed side effect
(role grant/revoke, email send) and is the only one logged as a failure.
"""


class VerificationError(Exception):
    """Base class for verification domain errors."""

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message


class ValidationError(VerificationError):
    """Malformed or unapproved email, or malformed request."""

    pass


class ConflictError(VerificationError):
    """Duplicate email/platform ID, or record in an incompatible state."""

    def __init__(self, message: str = "", field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class InvalidEmailFormat(ValidationError):
    """Submitted text is not a well-formed email address."""

    pass


class DomainNotApproved(ValidationError):
    """Email domain is not on the approved list."""

    def __init__(self, email: str) -> None:
        super().__init__(f"Domain not approved: {email}")
        self.email = email


class EmailAlreadyClaimed(ConflictError):
    """Email is already bound to another live record."""

    def __init__(self, email: str) -> None:
        super().__init__(f"Email already registered: {email}", field="email")
        self.email = email


class NotFoundError(VerificationError):
    """Unknown code, member or team."""

    pass


class UnknownTeamError(NotFoundError):
    """Requested team is not in the configured mapping."""

    def __init__(self, team: str) -> None:
        super().__init__(f"Team '{team}' not found.")
        self.team = team


class AuthorizationError(VerificationError):
    """Invoker lacks the moderator capability."""

    pass


class ExternalServiceError(VerificationError):
    """Role grant/revoke or email send failed."""

    pass


class CodeCollisionError(VerificationError):
    """
    A freshly generated verification code already exists.

    With 256-bit codes this means the random source is broken. It is
    treated as fatal and never retried.
    """

    pass
