"""
API request and response models.

Pydantic models for FastAPI endpoint validation and OpenAPI schema generation.
"""

from pydantic import BaseModel, Field


class VerifyRequest(BaseModel):
    """Request model for completing a verification from the web page."""

    code: str = Field(..., min_length=1, max_length=128, description="Verification code from the email link")
    team: str | None = Field(default=None, description="Team name; required when team selection is enabled")


class VerifyResponse(BaseModel):
    """Response model for a completed verification."""

    status: str = "success"
    message: str


class ErrorResponse(BaseModel):
    """Standard error response model."""

    detail: str


class BotStatus(BaseModel):
    connected: bool


class DatabaseStatus(BaseModel):
    connected: bool
    total_users: int = 0
    verified_users: int = 0
    pending_users: int = 0
    restricted_users: int = 0


class StatusResponse(BaseModel):
    """Read-only operational summary."""

    status: str
    version: str
    uptime: str
    uptime_seconds: int
    bot: BotStatus
    database: DatabaseStatus
    timestamp: str
