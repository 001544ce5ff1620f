"""
Moderator commands - an explicit name -> handler table.

Handlers receive parsed arguments and the invoker, call the verification
service and return the reply text shown (privately) to the moderator.
Domain errors are turned into replies in one place, dispatch().
"""

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from src.domain.exceptions import (
    AuthorizationError,
    DomainNotApproved,
    EmailAlreadyClaimed,
    InvalidEmailFormat,
    UnknownTeamError,
    ValidationError,
    VerificationError,
)
from src.domain.ports import IdentityRecord, MemberState
from src.domain.verification import VerificationOutcome, VerificationService

logger = logging.getLogger(__name__)

PERMISSION_DENIED = "❌ You don't have permission to use this command."
MAX_REPLY_LENGTH = 1900


@dataclass(frozen=True)
class Invoker:
    """Who issued a command, as resolved by the platform adapter."""

    platform_id: str
    display_name: str
    is_admin: bool


@dataclass(frozen=True)
class Target:
    """A member referenced by a command option."""

    platform_id: str
    display_name: str


Handler = Callable[[Mapping[str, Any], Invoker], Awaitable[str]]


@dataclass(frozen=True)
class CommandSpec:
    name: str
    description: str
    handler: Handler
    admin_only: bool = True


def mention(platform_id: str) -> str:
    return f"<@{platform_id}>"


def describe_state(record: IdentityRecord) -> str:
    if record.state is MemberState.VERIFIED:
        return f"✅ Verified ({record.team_role})" if record.team_role else "✅ Verified"
    if record.state is MemberState.RESTRICTED:
        return f"⚠️ Restricted (was {record.team_role})" if record.team_role else "⚠️ Restricted"
    return "⏳ Pending"


@dataclass
class ModeratorCommands:
    """
    Command table for the moderator surface.

    changeteam is only registered when team selection is enabled, and
    verify then takes a team option.
    """

    service: VerificationService
    approved_domains: tuple[str, ...]
    prefix: str = "warden"
    logger: logging.Logger = field(default=logger)
    table: dict[str, CommandSpec] = field(init=False)

    def __post_init__(self) -> None:
        specs = [
            CommandSpec("stats", "View verification statistics (Moderator only)", self.handle_stats),
            CommandSpec("list", "List all users and their verification status (Moderator only)", self.handle_list),
            CommandSpec("reset", "Reset a user's verification (Moderator only)", self.handle_reset),
            CommandSpec("verify", "Manually verify a user (Moderator only)", self.handle_verify),
            CommandSpec("restrict", "Temporarily restrict a user's access (Moderator only)", self.handle_restrict),
            CommandSpec("unrestrict", "Remove restrictions from a user (Moderator only)", self.handle_unrestrict),
            CommandSpec("purge", "Permanently delete user data (Moderator only)", self.handle_purge),
            CommandSpec("domains", "List approved email domains (Moderator only)", self.handle_domains),
            CommandSpec("help", "Show help information", self.handle_help, admin_only=False),
        ]
        if self.team_selection:
            specs.append(
                CommandSpec("changeteam", "Change a verified user's team (Moderator only)", self.handle_change_team)
            )
        self.table = {spec.name: spec for spec in specs}

    @property
    def team_selection(self) -> bool:
        return self.service.team_selection

    def command_name(self, name: str) -> str:
        return f"{self.prefix}-{name}"

    async def dispatch(self, name: str, args: Mapping[str, Any], invoker: Invoker) -> str:
        spec = self.table.get(name)
        if spec is None:
            return f"❌ Unknown command: {name}"

        try:
            if spec.admin_only and not invoker.is_admin:
                raise AuthorizationError(f"{invoker.display_name} is not a moderator")
            self.logger.debug("Moderator %s invoked %s", invoker.display_name, name)
            return await spec.handler(args, invoker)
        except AuthorizationError:
            self.logger.info("Denied %s to %s", name, invoker.display_name)
            return PERMISSION_DENIED
        except UnknownTeamError as exc:
            teams = ", ".join(f"`{team}`" for team in self.service.role_map.team_names())
            return f"❌ Team '{exc.team}' not found.\n\n**Available teams:** {teams}"
        except InvalidEmailFormat:
            return "❌ Invalid email format."
        except DomainNotApproved:
            return "❌ Domain not approved. Email must be from an approved domain."
        except EmailAlreadyClaimed:
            return "❌ This email address is already registered to another user."
        except VerificationError as exc:
            return f"❌ {exc.message}"
        except Exception:
            self.logger.exception("Command %s failed", name)
            return "❌ An internal error occurred."

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_stats(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        stats = await self.service.stats()
        self.logger.info(
            "Stats retrieved: total=%d verified=%d pending=%d restricted=%d",
            stats.total,
            stats.verified,
            stats.pending,
            stats.restricted,
        )
        return (
            "📊 **Verification Statistics**\n"
            f"Total Users: {stats.total}\n"
            f"Verified: {stats.verified}\n"
            f"Pending: {stats.pending}\n"
            f"Restricted: {stats.restricted}"
        )

    async def handle_list(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        records = await self.service.list_members()
        if not records:
            return "No users in the database yet."

        lines = ["👥 **User List**"]
        length = len(lines[0])
        for shown, record in enumerate(records):
            entry = f"**{record.display_name}**\n└ {record.email}\n└ {describe_state(record)}"
            if length + len(entry) > MAX_REPLY_LENGTH:
                lines.append(f"… and {len(records) - shown} more")
                break
            lines.append(entry)
            length += len(entry) + 2
        return "\n\n".join(lines)

    async def handle_reset(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        target: Target = args["user"]
        self.logger.info("Moderator %s resetting %s", invoker.display_name, target.display_name)
        outcome = await self.service.reset(target.platform_id)
        return self._with_roles_warning(
            f"✅ Reset verification for {mention(target.platform_id)}. "
            "They can now start the verification process again.",
            outcome,
        )

    async def handle_verify(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        target: Target = args["user"]
        email: str = args["email"]
        team: str | None = args.get("team") if self.team_selection else None
        self.logger.info(
            "Moderator %s manually verifying %s (email=%s team=%s)",
            invoker.display_name,
            target.display_name,
            email,
            team or "-",
        )
        outcome = await self.service.manual_verify(target.platform_id, target.display_name, email, team)
        reply = f"✅ Successfully verified {mention(target.platform_id)} with email `{outcome.record.email}`"
        if outcome.record.team_role:
            reply += f" and assigned to **{outcome.record.team_role}** team"
        return self._with_roles_warning(reply + ".", outcome)

    async def handle_change_team(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        target: Target = args["user"]
        team: str = args["team"]
        outcome = await self.service.change_team(target.platform_id, team)
        old = outcome.previous.team_role if outcome.previous else ""
        return self._with_roles_warning(
            f"✅ Changed {mention(target.platform_id)} from **{old or 'none'}** to **{team}** team.",
            outcome,
        )

    async def handle_restrict(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        target: Target = args["user"]
        reason: str | None = args.get("reason")
        outcome = await self.service.restrict(target.platform_id, reason)
        reply = f"✅ Restricted {mention(target.platform_id)}."
        if reason:
            reply += f"\n**Reason:** {reason}"
        reply += (
            "\n\nUser has been notified and their roles removed. "
            f"Use `/{self.command_name('unrestrict')}` to restore access."
        )
        return self._with_roles_warning(reply, outcome)

    async def handle_unrestrict(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        target: Target = args["user"]
        outcome = await self.service.unrestrict(target.platform_id)
        reply = f"✅ Removed restrictions from {mention(target.platform_id)}"
        if outcome.record.team_role:
            reply += f" on the **{outcome.record.team_role}** team"
        return self._with_roles_warning(reply + ". Their access has been restored.", outcome)

    async def handle_purge(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        target: Target | None = args.get("user")
        email: str | None = args.get("email")
        if target is None and not email:
            raise ValidationError("Please provide either a user or an email address.")
        self.logger.info(
            "Moderator %s purging %s", invoker.display_name, target.display_name if target else email
        )
        outcome = await self.service.purge(platform_id=target.platform_id if target else None, email=email)
        record = outcome.record
        return self._with_roles_warning(
            "✅ User data purged successfully.\n\n"
            f"**User:** {record.display_name}\n"
            f"**Email:** {record.email}\n"
            f"**Platform ID:** {record.platform_id}\n\n"
            "All user data has been permanently removed from the database.",
            outcome,
        )

    async def handle_domains(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        listing = "\n".join(f"• {domain}" for domain in self.approved_domains)
        return f"📧 **Approved Email Domains**\n{listing}"

    async def handle_help(self, args: Mapping[str, Any], invoker: Invoker) -> str:
        steps = "reply with your work email address, and I'll send you a verification link. Click the link"
        if self.team_selection:
            steps += ", select your team, and you're all set!"
        else:
            steps += " and you're all set!"
        reply = (
            "🛡️ **Help**\n"
            "I manage access to this server through work email verification.\n\n"
            f"**🆕 New Users**\nWhen you join the server, I'll send you a DM. Simply {steps}\n\n"
            "**📧 Email Requirements**\nYour email must be from an approved company domain. "
            "Each email can only be used once."
        )
        if invoker.is_admin:
            commands = "\n".join(
                f"`/{self.command_name(spec.name)}` - {spec.description.replace(' (Moderator only)', '')}"
                for spec in self.table.values()
                if spec.admin_only
            )
            reply += f"\n\n**🔧 Moderator Commands**\n{commands}"
        return reply

    def _with_roles_warning(self, reply: str, outcome: VerificationOutcome) -> str:
        if outcome.degraded:
            failed = ", ".join(outcome.roles.failed)
            reply += f"\n\n⚠️ Role update failed for: {failed}. Please fix the roles manually."
        return reply
