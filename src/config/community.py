"""
Community configuration - Pydantic models for config.yaml.

Approved domains, the team -> role mapping and feature flags are
validated eagerly when the file is loaded; a bad reference is a startup
error rather than a runtime surprise.
"""

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from src.domain.messages import DEFAULT_WELCOME
from src.domain.roles import RoleMap

logger = logging.getLogger(__name__)


class DiscordConfig(BaseModel):
    """Chat platform settings."""

    guild_id: str
    admin_role: str = ""  # Role ID granting moderator capability
    members_role: str = ""  # Base role granted to every verified member
    welcome_message: str = ""
    command_prefix: str = "warden"

    @property
    def welcome_text(self) -> str:
        return self.welcome_message.strip() or DEFAULT_WELCOME


class EmailConfig(BaseModel):
    """Outbound mail settings. An empty smtp_host selects the console sender."""

    smtp_host: str = ""
    smtp_port: int = 587
    smtp_username: str = ""
    from_address: str = "noreply@localhost"
    from_name: str = "Warden"
    starttls: bool = True


class ServerConfig(BaseModel):
    base_url: str = "http://localhost:8080"


class FeaturesConfig(BaseModel):
    enable_team_selection: bool = False


class CommunityConfig(BaseModel):
    """Root configuration model that matches the config.yaml structure."""

    discord: DiscordConfig
    email: EmailConfig = Field(default_factory=EmailConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    features: FeaturesConfig = Field(default_factory=FeaturesConfig)
    approved_domains: list[str]
    teams: dict[str, str] = Field(default_factory=dict)

    @field_validator("approved_domains")
    @classmethod
    def normalize_domains(cls, domains: list[str]) -> list[str]:
        normalized = [d.strip().lower() for d in domains if d.strip()]
        if not normalized:
            raise ValueError("at least one approved domain is required")
        return normalized

    @model_validator(mode="after")
    def check_teams(self) -> "CommunityConfig":
        if self.features.enable_team_selection:
            if not self.teams:
                raise ValueError("team selection is enabled but no teams are configured")
            missing = [name for name, role_id in self.teams.items() if not str(role_id).strip()]
            if missing:
                raise ValueError(f"teams without a role ID: {', '.join(missing)}")
        return self

    @property
    def team_selection(self) -> bool:
        return self.features.enable_team_selection

    def role_map(self) -> RoleMap:
        teams = dict(self.teams) if self.team_selection else {}
        return RoleMap(
            teams=teams,
            members_role=self.discord.members_role,
            team_selection=self.team_selection,
        )


def load_community_config(path: str | Path) -> CommunityConfig:
    """
    Load and validate the community YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the YAML is malformed or fails validation
    """
    with open(path, encoding="utf-8") as f:
        content = f.read()

    try:
        loaded = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ValueError(f"Error parsing YAML: {e}") from e
    if not isinstance(loaded, dict):
        raise ValueError(f"Configuration file {path} is empty or not a mapping")

    try:
        config = CommunityConfig(**loaded)
    except ValidationError as e:
        raise ValueError(f"Invalid configuration: {e}") from e

    logger.debug(
        "Loaded community config: guild=%s teams=%d domains=%d team_selection=%s",
        config.discord.guild_id,
        len(config.teams),
        len(config.approved_domains),
        config.team_selection,
    )
    return config
