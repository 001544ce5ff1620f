"""
FastAPI dependencies - Dependency injection factories.

The lifespan wires every component once and stores it on app.state;
these Depends() factories hand them to routes. Tests override them.
"""

import time

from fastapi import Request

from src.adapters.chat.gateway import DiscordGateway
from src.domain.verification import VerificationService


def get_verification_service(request: Request) -> VerificationService:
    """Get the verification service created during app lifespan startup."""
    return request.app.state.service


def get_gateway(request: Request) -> DiscordGateway | None:
    """Get the chat gateway, or None when it is disabled."""
    return getattr(request.app.state, "gateway", None)


def get_started_at(request: Request) -> float:
    """Monotonic timestamp recorded when the app started."""
    return getattr(request.app.state, "started_at", time.monotonic())
