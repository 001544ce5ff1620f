"""
Role synchronization - translates membership state into platform roles.

The identity store is the system of record. Platform roles are a second,
best-effort copy: a stored transition is never rolled back because a role
call failed. Drift is repaired when the member re-joins the space (roles
are re-granted from the stored record) or by a moderator re-issuing a
command.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from .exceptions import ExternalServiceError, UnknownTeamError
from .ports import ChatPlatform

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RoleMap:
    """Team name -> role ID mapping plus the optional base members role."""

    teams: Mapping[str, str]
    members_role: str = ""
    team_selection: bool = False

    def team_role_id(self, team: str) -> str:
        try:
            return self.teams[team]
        except KeyError:
            raise UnknownTeamError(team) from None

    def has_team(self, team: str) -> bool:
        return team in self.teams

    def team_names(self) -> list[str]:
        return list(self.teams)

    def member_role_ids(self, team_role: str) -> tuple[str, ...]:
        """Roles a verified member on team_role should hold."""
        roles: list[str] = []
        if self.members_role:
            roles.append(self.members_role)
        if self.team_selection and team_role in self.teams:
            roles.append(self.teams[team_role])
        return tuple(roles)


@dataclass
class RoleSyncReport:
    """Outcome of a best-effort batch of role calls."""

    applied: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


@dataclass
class RoleSynchronizer:
    """
    Applies role grants/revocations through the chat platform.

    Single calls raise ExternalServiceError. Batch calls never raise;
    they log each failure and report it.
    """

    platform: ChatPlatform
    logger: logging.Logger = field(default=logger)

    async def grant(self, platform_id: str, role_id: str) -> None:
        await self.platform.grant_role(platform_id, role_id)

    async def revoke(self, platform_id: str, role_id: str) -> None:
        await self.platform.revoke_role(platform_id, role_id)

    async def apply(
        self,
        platform_id: str,
        grant: Iterable[str] = (),
        revoke: Iterable[str] = (),
    ) -> RoleSyncReport:
        """Revoke first, then grant, continuing past individual failures."""
        report = RoleSyncReport()
        for role_id in revoke:
            try:
                await self.revoke(platform_id, role_id)
            except ExternalServiceError as exc:
                self.logger.error("Failed to revoke role %s from %s: %s", role_id, platform_id, exc)
                report.failed.append(role_id)
            else:
                self.logger.debug("Revoked role %s from %s", role_id, platform_id)
                report.applied.append(role_id)
        for role_id in grant:
            try:
                await self.grant(platform_id, role_id)
            except ExternalServiceError as exc:
                self.logger.error("Failed to grant role %s to %s: %s", role_id, platform_id, exc)
                report.failed.append(role_id)
            else:
                self.logger.debug("Granted role %s to %s", role_id, platform_id)
                report.applied.append(role_id)
        return report
