"""
Verification domain service - the member verification state machine.

This module drives every transition of an identity record. It is shared
by all three entry points (chat DMs, the web completion callback and
moderator commands), which run as independent concurrent tasks.

Each operation follows the same shape:
1. Read the current record.
2. Plan the transition with a pure planner (see transitions.py).
3. Apply it through a guarded store call that re-checks the state the
   plan was made against. A concurrent writer that got there first makes
   the call fail with ConflictError/NotFoundError instead of being
   overwritten.
4. Reconcile platform roles (best effort, see roles.py).
5. Notify the member by direct message (best effort).

Steps 4 and 5 never undo step 3.
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from . import messages
from .codes import generate_verification_code, redact_code
from .exceptions import (
    ConflictError,
    DomainNotApproved,
    EmailAlreadyClaimed,
    ExternalServiceError,
    InvalidEmailFormat,
    NotFoundError,
    ValidationError,
)
from .policy import is_approved_domain, is_valid_format, normalize_email
from .ports import ChatPlatform, EmailSender, IdentityRecord, IdentityRepository, MemberState, MemberStats
from .roles import RoleMap, RoleSynchronizer, RoleSyncReport
from .transitions import (
    plan_change_team,
    plan_completion,
    plan_manual_verify,
    plan_rejoin,
    plan_removal,
    plan_restrict,
    plan_unrestrict,
)

logger = logging.getLogger(__name__)


class SubmitResult(Enum):
    """Result of a member submitting an email by direct message."""

    SENT = "sent"
    EMAIL_FAILED = "email_failed"
    ALREADY_PENDING = "already_pending"
    ALREADY_VERIFIED = "already_verified"
    RESTRICTED = "restricted"


@dataclass(frozen=True)
class VerificationOutcome:
    """
    A stored transition plus the role reconciliation that followed it.

    degraded is True when the store was updated but some role call failed.
    """

    record: IdentityRecord
    roles: RoleSyncReport = field(default_factory=RoleSyncReport)
    previous: IdentityRecord | None = None

    @property
    def degraded(self) -> bool:
        return not self.roles.ok


@dataclass
class VerificationService:
    """
    Domain service for member verification.

    Orchestrates email validation, code generation, guarded state
    transitions, role synchronization and member notification.
    """

    repository: IdentityRepository
    platform: ChatPlatform
    email_sender: EmailSender
    roles: RoleSynchronizer
    role_map: RoleMap
    approved_domains: tuple[str, ...]
    base_url: str
    welcome_message: str = messages.DEFAULT_WELCOME
    logger: logging.Logger = field(default=logger)

    @property
    def team_selection(self) -> bool:
        return self.role_map.team_selection

    # ------------------------------------------------------------------
    # Chat entry point
    # ------------------------------------------------------------------

    async def member_joined(self, platform_id: str, display_name: str) -> RoleSyncReport | None:
        """
        Handle a member (re-)entering the space.

        Verified members get their recorded roles back; this is where
        drift between the store and the platform is repaired. Everyone
        else without access is greeted or told they are restricted.
        """
        record = await self._find(platform_id)
        if record is None or record.state is MemberState.PENDING:
            self.logger.info("New member joined: %s (%s)", display_name, platform_id)
            await self._notify(platform_id, self.welcome_message)
            return None
        if record.state is MemberState.RESTRICTED:
            self.logger.info("Restricted member re-joined: %s", display_name)
            await self._notify(platform_id, messages.RESTRICTED)
            return None

        self.logger.info("Restoring roles for returning verified member: %s", display_name)
        plan = plan_rejoin(record, self.role_map)
        report = await self.roles.apply(platform_id, grant=plan.grant)

        # Granted roles must match the record as it stands after the grant.
        current = await self._find(platform_id)
        kept = plan_rejoin(current, self.role_map).grant if current is not None else ()
        stale = [role_id for role_id in plan.grant if role_id not in kept]
        if stale:
            self.logger.warning("Record for %s changed while restoring roles; revoking %s", display_name, stale)
            await self.roles.apply(platform_id, revoke=stale)
        return report

    async def submit_email(self, platform_id: str, display_name: str, text: str) -> SubmitResult:
        """
        First contact: bind an email to the member and send the link.

        Raises:
            InvalidEmailFormat: text is not an email address
            DomainNotApproved: domain is not allow-listed
            EmailAlreadyClaimed: email belongs to another record
        """
        existing = await self._find(platform_id)
        if existing is not None:
            if existing.state is MemberState.VERIFIED:
                self.logger.debug("Member %s is already verified", display_name)
                return SubmitResult.ALREADY_VERIFIED
            if existing.state is MemberState.RESTRICTED:
                self.logger.info("Blocked restricted member %s from self-verification", display_name)
                return SubmitResult.RESTRICTED
            self.logger.debug("Member %s already has verification in progress", display_name)
            return SubmitResult.ALREADY_PENDING

        email = self._validate_email(text)
        self.logger.info("Processing verification request from %s with email %s", display_name, email)

        if await self.repository.email_exists(email):
            self.logger.warning("Duplicate email registration attempt: %s (member: %s)", email, display_name)
            raise EmailAlreadyClaimed(email)

        code = generate_verification_code()
        try:
            await self.repository.create(platform_id, display_name, email, code)
        except ConflictError as exc:
            if exc.field == "platform_id":
                return SubmitResult.ALREADY_PENDING
            self.logger.warning("Lost race for email %s (member: %s)", email, display_name)
            raise EmailAlreadyClaimed(email) from None
        self.logger.debug("Created pending record for %s (code %s)", display_name, redact_code(code))

        content = messages.verification_email(display_name, self.verification_url(code), self.team_selection)
        try:
            await self.email_sender.send(email, content.subject, content.text_body, content.html_body)
        except ExternalServiceError as exc:
            self.logger.error("Error sending verification email to %s: %s", email, exc)
            return SubmitResult.EMAIL_FAILED

        self.logger.info("Verification email sent to %s (member: %s)", email, display_name)
        return SubmitResult.SENT

    # ------------------------------------------------------------------
    # Web entry point
    # ------------------------------------------------------------------

    async def lookup_code(self, code: str) -> IdentityRecord:
        """Resolve a code for display. Raises NotFoundError."""
        return await self.repository.get_by_code(code)

    async def complete_verification(self, code: str, team: str | None) -> VerificationOutcome:
        """
        Consume a verification code: PENDING -> VERIFIED.

        The guarded update matches on the code as well as the state, so a
        consumed code can never verify again even with a different team.
        """
        record = await self.repository.get_by_code(code)
        plan = plan_completion(record, team, self.role_map)

        updated = await self.repository.transition(
            record.platform_id,
            MemberState.VERIFIED,
            expected_state=MemberState.PENDING,
            team_role=plan.team_role,
            code=code,
            stamp_verified=True,
        )
        self.logger.info(
            "Member %s verified via web (team: %s, email: %s)",
            updated.display_name,
            updated.team_role or "-",
            updated.email,
        )
        report = await self.roles.apply(updated.platform_id, grant=plan.grant)
        await self._notify(updated.platform_id, messages.verification_complete(updated.team_role))
        return VerificationOutcome(updated, report, previous=record)

    # ------------------------------------------------------------------
    # Moderator entry point
    # ------------------------------------------------------------------

    async def manual_verify(
        self, platform_id: str, display_name: str, email: str, team: str | None = None
    ) -> VerificationOutcome:
        """Create or replace the member's record directly as VERIFIED."""
        email = self._validate_email(email)
        existing = await self._find(platform_id)
        plan = plan_manual_verify(existing, team, self.role_map)

        holder = await self._find_by_email(email)
        if holder is not None and holder.platform_id != platform_id:
            self.logger.warning("Duplicate email in manual verify: %s", email)
            raise EmailAlreadyClaimed(email)

        try:
            record = await self.repository.create_verified(
                platform_id, display_name, email, generate_verification_code(), plan.team_role
            )
        except ConflictError as exc:
            if exc.field == "email":
                raise EmailAlreadyClaimed(email) from None
            raise ConflictError("Member is already verified.") from None

        self.logger.info(
            "Manual verification: %s (team: %s, email: %s)", display_name, record.team_role or "-", email
        )
        report = await self.roles.apply(platform_id, grant=plan.grant)
        await self._notify(platform_id, messages.manually_verified(record.team_role))
        return VerificationOutcome(record, report, previous=existing)

    async def change_team(self, platform_id: str, team: str) -> VerificationOutcome:
        record = await self.repository.get_by_platform_id(platform_id)
        plan = plan_change_team(record, team, self.role_map)

        updated = await self.repository.transition(
            platform_id,
            MemberState.VERIFIED,
            expected_state=MemberState.VERIFIED,
            expected_team=record.team_role,
            team_role=plan.team_role,
        )
        self.logger.info("Team change: %s moved from %s to %s", record.display_name, record.team_role, team)
        report = await self.roles.apply(platform_id, grant=plan.grant, revoke=plan.revoke)
        await self._notify(platform_id, messages.team_changed(record.team_role, team))
        return VerificationOutcome(updated, report, previous=record)

    async def restrict(self, platform_id: str, reason: str | None = None) -> VerificationOutcome:
        record = await self.repository.get_by_platform_id(platform_id)
        plan = plan_restrict(record, self.role_map)

        updated = await self.repository.transition(
            platform_id,
            MemberState.RESTRICTED,
            expected_state=MemberState.VERIFIED,
            expected_team=record.team_role,
        )
        self.logger.info("Restricted %s (reason: %s)", record.display_name, reason or "-")
        report = await self.roles.apply(platform_id, revoke=plan.revoke)
        await self._notify(platform_id, messages.restricted_notice(reason))
        return VerificationOutcome(updated, report, previous=record)

    async def unrestrict(self, platform_id: str) -> VerificationOutcome:
        record = await self.repository.get_by_platform_id(platform_id)
        plan = plan_unrestrict(record, self.role_map)

        updated = await self.repository.transition(
            platform_id,
            MemberState.VERIFIED,
            expected_state=MemberState.RESTRICTED,
            expected_team=record.team_role,
            stamp_verified=True,
        )
        self.logger.info("Unrestricted %s (team: %s)", record.display_name, record.team_role or "-")
        report = await self.roles.apply(platform_id, grant=plan.grant)
        await self._notify(platform_id, messages.unrestricted_notice(record.team_role))
        return VerificationOutcome(updated, report, previous=record)

    async def reset(self, platform_id: str) -> VerificationOutcome:
        """Hard-delete the record so the member can start over."""
        deleted = await self.repository.delete(platform_id)
        plan = plan_removal(deleted, self.role_map)
        self.logger.info("Reset verification for %s", deleted.display_name)
        report = await self.roles.apply(platform_id, revoke=plan.revoke)
        await self._notify(platform_id, messages.RESET_NOTICE)
        return VerificationOutcome(deleted, report)

    async def purge(self, platform_id: str | None = None, email: str | None = None) -> VerificationOutcome:
        """
        Erase a member's data, looked up by platform ID or by email.

        The platform ID wins when both are given.
        """
        if platform_id:
            record = await self.repository.get_by_platform_id(platform_id)
        elif email:
            record = await self.repository.get_by_email(normalize_email(email))
        else:
            raise ValidationError("Please provide either a user or an email address.")

        deleted = await self.repository.delete(record.platform_id)
        plan = plan_removal(deleted, self.role_map)
        self.logger.info("Purged member data: %s (email: %s)", deleted.display_name, deleted.email)
        report = await self.roles.apply(deleted.platform_id, revoke=plan.revoke)
        await self._notify(deleted.platform_id, messages.PURGE_NOTICE)
        return VerificationOutcome(deleted, report)

    async def stats(self) -> MemberStats:
        return await self.repository.stats()

    async def list_members(self) -> list[IdentityRecord]:
        return await self.repository.list_all()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def verification_url(self, code: str) -> str:
        return f"{self.base_url.rstrip('/')}/verify?code={code}"

    def _validate_email(self, text: str) -> str:
        email = normalize_email(text)
        if not is_valid_format(email):
            self.logger.debug("Invalid email format: %s", email)
            raise InvalidEmailFormat("Invalid email format.")
        if not is_approved_domain(email, self.approved_domains):
            self.logger.warning("Rejected email from unapproved domain: %s", email)
            raise DomainNotApproved(email)
        return email

    async def _find(self, platform_id: str) -> IdentityRecord | None:
        try:
            return await self.repository.get_by_platform_id(platform_id)
        except NotFoundError:
            return None

    async def _find_by_email(self, email: str) -> IdentityRecord | None:
        try:
            return await self.repository.get_by_email(email)
        except NotFoundError:
            return None

    async def _notify(self, platform_id: str, text: str) -> None:
        try:
            await self.platform.send_direct_message(platform_id, text)
        except ExternalServiceError as exc:
            self.logger.warning("Could not deliver direct message to %s: %s", platform_id, exc)
