"""
Port interfaces - Protocol definitions for infrastructure abstraction.

This module defines the interfaces (ports) that the domain requires
from infrastructure. Adapters implement these protocols.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol


class MemberState(str, Enum):
    """
    Verification lifecycle states.

    State Transitions:
    - PENDING -> VERIFIED (web completion or moderator verify)
    - VERIFIED -> RESTRICTED (moderator restrict)
    - RESTRICTED -> VERIFIED (moderator unrestrict)
    - any -> deleted (moderator reset or purge)

    Deleted records are gone; nothing transitions out of deletion.
    """

    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    RESTRICTED = "RESTRICTED"


@dataclass(frozen=True)
class IdentityRecord:
    """One member's verification record, keyed by platform identity."""

    platform_id: str
    display_name: str
    email: str
    verification_code: str
    team_role: str
    state: MemberState
    created_at: datetime
    verified_at: datetime | None = None

    @property
    def is_verified(self) -> bool:
        return self.state is MemberState.VERIFIED


@dataclass(frozen=True)
class MemberStats:
    """Record counts by state."""

    total: int
    verified: int
    pending: int
    restricted: int


class IdentityRepository(Protocol):
    """
    Port interface for identity persistence.

    Uniqueness of platform_id, email and verification_code is enforced
    by the storage layer itself. Existence checks are only an optimization
    for friendlier errors.
    """

    async def create(
        self, platform_id: str, display_name: str, email: str, code: str
    ) -> IdentityRecord:
        """
        Atomically create a PENDING record.

        Raises:
            ConflictError: platform_id or email already taken
            CodeCollisionError: verification code already taken
        """
        ...

    async def create_verified(
        self,
        platform_id: str,
        display_name: str,
        email: str,
        code: str,
        team_role: str,
    ) -> IdentityRecord:
        """
        Atomically replace any non-verified record for platform_id with
        a VERIFIED one.

        Raises:
            ConflictError: platform_id already VERIFIED or email taken
        """
        ...

    async def get_by_platform_id(self, platform_id: str) -> IdentityRecord:
        """Raises NotFoundError if absent."""
        ...

    async def get_by_email(self, email: str) -> IdentityRecord:
        """Raises NotFoundError if absent."""
        ...

    async def get_by_code(self, code: str) -> IdentityRecord:
        """Raises NotFoundError if absent."""
        ...

    async def email_exists(self, email: str) -> bool:
        ...

    async def transition(
        self,
        platform_id: str,
        new_state: MemberState,
        *,
        expected_state: MemberState,
        team_role: str | None = None,
        code: str | None = None,
        expected_team: str | None = None,
        stamp_verified: bool = False,
    ) -> IdentityRecord:
        """
        Guarded state change.

        Applies only when the stored state equals expected_state (and the
        stored code / team match when given).

        Raises:
            NotFoundError: record no longer exists
            ConflictError: record exists but the guard no longer holds
        """
        ...

    async def delete(self, platform_id: str) -> IdentityRecord:
        """Hard-delete and return the removed record. Raises NotFoundError."""
        ...

    async def stats(self) -> MemberStats:
        ...

    async def list_all(self) -> list[IdentityRecord]:
        """All records, most recently created first."""
        ...


class ChatPlatform(Protocol):
    """
    Port interface for the chat platform.

    Role calls are idempotent: granting a held role or revoking an absent
    one succeeds. Failures raise ExternalServiceError.
    """

    async def send_direct_message(self, platform_id: str, text: str) -> None:
        ...

    async def grant_role(self, platform_id: str, role_id: str) -> None:
        ...

    async def revoke_role(self, platform_id: str, role_id: str) -> None:
        ...


class EmailSender(Protocol):
    """Port interface for email delivery."""

    async def send(self, to: str, subject: str, text_body: str, html_body: str) -> None:
        """
        Send a multipart email.

        Raises:
            ExternalServiceError: delivery to the relay failed
        """
        ...
