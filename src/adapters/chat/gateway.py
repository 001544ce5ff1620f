"""
Discord gateway adapter - Implements ChatPlatform protocol.

A discord.py client that:
- delivers direct messages and grants/revokes roles for the domain
- forwards member joins and DMs to ChatEventHandler
- registers the moderator slash commands and forwards them to
  ModeratorCommands

discord.py dispatches every gateway event on its own task, so handlers
for different members never wait on each other.
"""

import logging

import discord
from discord import app_commands

from src.bot.commands import Invoker, ModeratorCommands, Target
from src.bot.events import ChatEventHandler
from src.domain.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)


def build_intents() -> discord.Intents:
    intents = discord.Intents.default()
    intents.members = True
    intents.message_content = True
    intents.dm_messages = True
    return intents


class DiscordGateway(discord.Client):
    """
    Implements ChatPlatform protocol via discord.py.

    Uses structural subtyping - no explicit inheritance from Protocol.
    Role calls are idempotent: granting a held role or revoking a missing
    one is a no-op.
    """

    def __init__(
        self,
        guild_id: str,
        admin_role: str = "",
        logger: logging.Logger = logger,
    ) -> None:
        super().__init__(intents=build_intents())
        self.tree = app_commands.CommandTree(self)
        self._guild_id = int(guild_id)
        self._admin_role = admin_role
        self._logger = logger
        self._chat_events: ChatEventHandler | None = None
        self._moderator_commands: ModeratorCommands | None = None

    def bind(self, events: ChatEventHandler, commands: ModeratorCommands) -> None:
        """Attach the handlers. Called once during wiring, before start()."""
        self._chat_events = events
        self._moderator_commands = commands

    @property
    def connected(self) -> bool:
        return self.is_ready() and not self.is_closed()

    # ------------------------------------------------------------------
    # ChatPlatform
    # ------------------------------------------------------------------

    async def send_direct_message(self, platform_id: str, text: str) -> None:
        self._require_connection()
        try:
            user = self.get_user(int(platform_id)) or await self.fetch_user(int(platform_id))
            await user.send(text)
        except discord.HTTPException as exc:
            raise ExternalServiceError(f"Could not send DM to {platform_id}: {exc}") from exc

    async def grant_role(self, platform_id: str, role_id: str) -> None:
        member, role = await self._resolve(platform_id, role_id)
        if role in member.roles:
            return
        try:
            await member.add_roles(role, reason="Member verified")
        except discord.HTTPException as exc:
            raise ExternalServiceError(f"Could not grant role {role_id}: {exc}") from exc

    async def revoke_role(self, platform_id: str, role_id: str) -> None:
        member, role = await self._resolve(platform_id, role_id)
        if role not in member.roles:
            return
        try:
            await member.remove_roles(role, reason="Verification state changed")
        except discord.HTTPException as exc:
            raise ExternalServiceError(f"Could not revoke role {role_id}: {exc}") from exc

    def _require_connection(self) -> None:
        if not self.connected:
            raise ExternalServiceError("Chat gateway is not connected")

    async def _resolve(self, platform_id: str, role_id: str) -> tuple[discord.Member, discord.Role]:
        self._require_connection()
        guild = self.get_guild(self._guild_id)
        if guild is None:
            raise ExternalServiceError(f"Guild {self._guild_id} is not available")
        role = guild.get_role(int(role_id))
        if role is None:
            raise ExternalServiceError(f"Role {role_id} not found in guild")
        try:
            member = guild.get_member(int(platform_id)) or await guild.fetch_member(int(platform_id))
        except discord.HTTPException as exc:
            raise ExternalServiceError(f"Member {platform_id} not found in guild: {exc}") from exc
        return member, role

    def has_admin_capability(self, user: discord.abc.User) -> bool:
        """Moderators hold the configured admin role or guild administrator."""
        if not isinstance(user, discord.Member):
            return False
        if user.guild_permissions.administrator:
            return True
        return bool(self._admin_role) and any(str(role.id) == self._admin_role for role in user.roles)

    # ------------------------------------------------------------------
    # Gateway events
    # ------------------------------------------------------------------

    async def setup_hook(self) -> None:
        if self._moderator_commands is not None:
            guild = discord.Object(id=self._guild_id)
            self._register_commands(guild)
            synced = await self.tree.sync(guild=guild)
            self._logger.info("Synced %d command(s) to guild %s", len(synced), self._guild_id)

    async def on_ready(self) -> None:
        self._logger.info("Logged in as %s (ID: %s)", self.user, self.user.id if self.user else "-")

    async def on_member_join(self, member: discord.Member) -> None:
        if member.guild.id != self._guild_id or member.bot or self._chat_events is None:
            return
        await self._chat_events.on_member_joined(str(member.id), member.display_name)

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or self._chat_events is None:
            return
        if not isinstance(message.channel, discord.DMChannel):
            return
        await self._chat_events.on_direct_message(
            str(message.author.id), message.author.display_name, message.content
        )

    # ------------------------------------------------------------------
    # Slash commands
    # ------------------------------------------------------------------

    async def _run(self, interaction: discord.Interaction, name: str, args: dict) -> None:
        await interaction.response.defer(ephemeral=True)
        invoker = Invoker(
            platform_id=str(interaction.user.id),
            display_name=interaction.user.display_name,
            is_admin=self.has_admin_capability(interaction.user),
        )
        reply = await self._moderator_commands.dispatch(name, args, invoker)
        await interaction.followup.send(reply, ephemeral=True)

    def _register_commands(self, guild: discord.abc.Snowflake) -> None:
        table = self._moderator_commands.table
        name = self._moderator_commands.command_name

        def add(command: app_commands.Command) -> None:
            self.tree.add_command(command, guild=guild)

        def target(member: discord.Member) -> Target:
            return Target(str(member.id), member.display_name)

        @app_commands.command(name=name("stats"), description=table["stats"].description)
        async def stats(interaction: discord.Interaction) -> None:
            await self._run(interaction, "stats", {})

        @app_commands.command(name=name("list"), description=table["list"].description)
        async def list_members(interaction: discord.Interaction) -> None:
            await self._run(interaction, "list", {})

        @app_commands.command(name=name("reset"), description=table["reset"].description)
        @app_commands.describe(user="The user to reset")
        async def reset(interaction: discord.Interaction, user: discord.Member) -> None:
            await self._run(interaction, "reset", {"user": target(user)})

        if self._moderator_commands.team_selection:

            @app_commands.command(name=name("verify"), description=table["verify"].description)
            @app_commands.describe(user="The user to verify", email="Their work email", team="Team to assign")
            async def verify(
                interaction: discord.Interaction, user: discord.Member, email: str, team: str
            ) -> None:
                await self._run(interaction, "verify", {"user": target(user), "email": email, "team": team})

            @app_commands.command(name=name("changeteam"), description=table["changeteam"].description)
            @app_commands.describe(user="The user to move", team="The new team")
            async def change_team(interaction: discord.Interaction, user: discord.Member, team: str) -> None:
                await self._run(interaction, "changeteam", {"user": target(user), "team": team})

            add(change_team)
        else:

            @app_commands.command(name=name("verify"), description=table["verify"].description)
            @app_commands.describe(user="The user to verify", email="Their work email")
            async def verify(interaction: discord.Interaction, user: discord.Member, email: str) -> None:
                await self._run(interaction, "verify", {"user": target(user), "email": email})

        @app_commands.command(name=name("restrict"), description=table["restrict"].description)
        @app_commands.describe(user="The user to restrict", reason="Reason shown to the user")
        async def restrict(
            interaction: discord.Interaction, user: discord.Member, reason: str | None = None
        ) -> None:
            await self._run(interaction, "restrict", {"user": target(user), "reason": reason})

        @app_commands.command(name=name("unrestrict"), description=table["unrestrict"].description)
        @app_commands.describe(user="The user to unrestrict")
        async def unrestrict(interaction: discord.Interaction, user: discord.Member) -> None:
            await self._run(interaction, "unrestrict", {"user": target(user)})

        @app_commands.command(name=name("purge"), description=table["purge"].description)
        @app_commands.describe(user="The user to purge", email="Or the email address to purge")
        async def purge(
            interaction: discord.Interaction,
            user: discord.Member | None = None,
            email: str | None = None,
        ) -> None:
            args = {"user": target(user) if user else None, "email": email}
            await self._run(interaction, "purge", args)

        @app_commands.command(name=name("domains"), description=table["domains"].description)
        async def domains(interaction: discord.Interaction) -> None:
            await self._run(interaction, "domains", {})

        @app_commands.command(name=name("help"), description=table["help"].description)
        async def help_command(interaction: discord.Interaction) -> None:
            await self._run(interaction, "help", {})

        for command in (stats, list_members, reset, verify, restrict, unrestrict, purge, domains, help_command):
            add(command)
