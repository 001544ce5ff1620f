"""
FastAPI application factory and configuration.

This module creates the FastAPI application instance and wires every
component in the lifespan: settings, community config, logging, the
database pool, the mail sender, the Discord gateway, the verification
service and the chat/moderator handlers. The gateway runs as a
background task next to the web server.
"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone

import psycopg
from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, PlainTextResponse
from psycopg_pool import AsyncConnectionPool

from src.adapters.chat.gateway import DiscordGateway
from src.adapters.repository import PostgresIdentityRepository, run_migrations
from src.adapters.smtp.console import ConsoleEmailSender
from src.adapters.smtp.relay import SmtpEmailSender
from src.api.dependencies import get_gateway, get_started_at, get_verification_service
from src.api.models import BotStatus, DatabaseStatus, StatusResponse
from src.api.routes import router
from src.bot.commands import ModeratorCommands
from src.bot.events import ChatEventHandler
from src.config.community import CommunityConfig, load_community_config
from src.config.logs import configure_logging
from src.config.settings import Settings, get_settings
from src.domain.ports import EmailSender
from src.domain.roles import RoleSynchronizer
from src.domain.verification import VerificationService

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def build_email_sender(
    config: CommunityConfig, settings: Settings, logger: logging.Logger = logger
) -> EmailSender:
    """SMTP relay when a host is configured, console logging otherwise."""
    if not config.email.smtp_host:
        logger.warning("No SMTP host configured; verification emails will be logged to console")
        return ConsoleEmailSender(logger)
    return SmtpEmailSender(
        host=config.email.smtp_host,
        port=config.email.smtp_port,
        username=config.email.smtp_username,
        password=settings.smtp_password,
        from_address=config.email.from_address,
        from_name=config.email.from_name,
        starttls=config.email.starttls,
        logger=logger,
    )


def build_components(
    config: CommunityConfig,
    settings: Settings,
    pool: AsyncConnectionPool,
    app_logger: logging.Logger,
) -> tuple[DiscordGateway, VerificationService]:
    """Wire the gateway, service and handlers, each with its own child logger."""
    gateway = DiscordGateway(
        config.discord.guild_id, config.discord.admin_role, logger=app_logger.getChild("gateway")
    )
    service = VerificationService(
        repository=PostgresIdentityRepository(pool),
        platform=gateway,
        email_sender=build_email_sender(config, settings, app_logger.getChild("mail")),
        roles=RoleSynchronizer(gateway, logger=app_logger.getChild("roles")),
        role_map=config.role_map(),
        approved_domains=tuple(config.approved_domains),
        base_url=config.server.base_url,
        welcome_message=config.discord.welcome_text,
        logger=app_logger.getChild("service"),
    )
    gateway.bind(
        ChatEventHandler(service, gateway, logger=app_logger.getChild("events")),
        ModeratorCommands(
            service,
            tuple(config.approved_domains),
            prefix=config.discord.command_prefix,
            logger=app_logger.getChild("commands"),
        ),
    )
    return gateway, service


def _log_gateway_exit(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Discord gateway stopped: %s", exc, exc_info=exc)


async def stop_gateway(gateway: DiscordGateway, task: asyncio.Task) -> None:
    """Close the client and collect its task."""
    await gateway.close()
    if task.done():
        return
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    FastAPI lifespan context manager.

    Manages application startup and shutdown:
    - Loads configuration and opens the database pool on startup
    - Runs migrations on startup
    - Starts the Discord gateway (when a token is configured)
    - Closes the gateway and the pool on shutdown
    """
    settings = get_settings()
    app_logger = configure_logging(settings.log_level)
    config = load_community_config(settings.config_path)

    app_logger.info("Starting application...")
    app_logger.info("Connecting to database...")

    # Create connection pool with explicit sizing
    pool = AsyncConnectionPool(
        conninfo=settings.database_url,
        min_size=settings.pool_min_size,
        max_size=settings.pool_max_size,
        open=False,
    )
    await pool.open(wait=True)

    app_logger.info("Running database migrations...")
    await run_migrations(pool)

    gateway, service = build_components(config, settings, pool, app_logger)

    gateway_task: asyncio.Task | None = None
    if settings.discord_token:
        gateway_task = asyncio.create_task(gateway.start(settings.discord_token))
        gateway_task.add_done_callback(_log_gateway_exit)
    else:
        app_logger.warning("DISCORD_TOKEN is not set; chat gateway disabled")

    # Store components in app state for dependency injection
    app.state.pool = pool
    app.state.service = service
    app.state.gateway = gateway
    app.state.started_at = time.monotonic()

    app_logger.info("Application startup complete")

    yield

    # Shutdown
    app_logger.info("Shutting down application...")
    if gateway_task is not None:
        await stop_gateway(gateway, gateway_task)
    await pool.close()
    app_logger.info("Database connection pool closed")




app = FastAPI(
    title="warden",
    description="Work-email verification gatekeeper for a Discord community",
    version=VERSION,
    lifespan=lifespan,
)

app.include_router(router)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are a 400, not FastAPI's default 422."""
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": "Invalid request"})


@app.get("/health", response_class=PlainTextResponse)
async def health_check() -> str:
    """Liveness probe."""
    return "OK"


def format_uptime(seconds: int) -> str:
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {secs}s"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@app.get("/status", response_model=StatusResponse)
async def status_summary(
    service: VerificationService = Depends(get_verification_service),
    gateway: DiscordGateway | None = Depends(get_gateway),
    started_at: float = Depends(get_started_at),
) -> StatusResponse:
    """
    Read-only operational summary.

    Reports record counts and connectivity; a database outage is
    reported as connected=false rather than an error.
    """
    try:
        stats = await service.stats()
        database = DatabaseStatus(
            connected=True,
            total_users=stats.total,
            verified_users=stats.verified,
            pending_users=stats.pending,
            restricted_users=stats.restricted,
        )
    except psycopg.Error as exc:
        logger.error("Status check could not reach the database: %s", exc)
        database = DatabaseStatus(connected=False)

    uptime_seconds = int(time.monotonic() - started_at)
    bot_connected = gateway.connected if gateway is not None else False
    return StatusResponse(
        status="ok" if database.connected else "degraded",
        version=VERSION,
        uptime=format_uptime(uptime_seconds),
        uptime_seconds=uptime_seconds,
        bot=BotStatus(connected=bot_connected),
        database=database,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )
