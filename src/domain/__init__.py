"""
Domain layer - Pure business logic with zero framework imports.

This package contains the member verification state machine. It defines
its own port interfaces for infrastructure abstraction; the chat platform,
the database and the mail relay are adapters plugged in from outside.
"""

from .exceptions import (
    AuthorizationError,
    CodeCollisionError,
    ConflictError,
    DomainNotApproved,
    EmailAlreadyClaimed,
    ExternalServiceError,
    InvalidEmailFormat,
    NotFoundError,
    UnknownTeamError,
    ValidationError,
    VerificationError,
)
from .ports import ChatPlatform, EmailSender, IdentityRecord, IdentityRepository, MemberState, MemberStats
from .roles import RoleMap, RoleSynchronizer, RoleSyncReport
from .verification import SubmitResult, VerificationOutcome, VerificationService

__all__ = [
    "AuthorizationError",
    "ChatPlatform",
    "CodeCollisionError",
    "ConflictError",
    "DomainNotApproved",
    "EmailAlreadyClaimed",
    "EmailSender",
    "ExternalServiceError",
    "IdentityRecord",
    "IdentityRepository",
    "InvalidEmailFormat",
    "MemberState",
    "MemberStats",
    "NotFoundError",
    "RoleMap",
    "RoleSyncReport",
    "RoleSynchronizer",
    "SubmitResult",
    "UnknownTeamError",
    "ValidationError",
    "VerificationError",
    "VerificationOutcome",
    "VerificationService",
]
