"""
Shared test fixtures and configuration.

This module provides pytest fixtures for:
- The anyio backend used by async tests
- An in-memory identity store that enforces the same uniqueness and
  guarded-transition rules as the PostgreSQL adapter
- Mocked chat platform and email sender
- A wired VerificationService
- A PostgreSQL pool for integration and adversarial tests
"""

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from psycopg_pool import AsyncConnectionPool, PoolTimeout

from src.adapters.repository import run_migrations
from src.config.settings import get_settings
from src.domain.exceptions import CodeCollisionError, ConflictError, NotFoundError
from src.domain.ports import IdentityRecord, MemberState, MemberStats
from src.domain.roles import RoleMap, RoleSynchronizer
from src.domain.verification import VerificationService

TEAMS = {"Engineering": "role-eng", "Design": "role-design"}
MEMBERS_ROLE = "role-member"
BASE_URL = "https://verify.example.com"


class InMemoryIdentityRepository:
    """
    Dict-backed IdentityRepository.

    No method awaits between its check and its write, so under a single
    event loop each call is atomic, like one SQL statement.
    """

    def __init__(self) -> None:
        self.records: dict[str, IdentityRecord] = {}
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _now(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def _check_unique(self, platform_id: str, email: str, code: str) -> None:
        for record in self.records.values():
            if record.verification_code == code:
                raise CodeCollisionError("Generated verification code already exists")
            if record.email == email:
                raise ConflictError("Email address already registered", field="email")
        if platform_id in self.records:
            raise ConflictError("Member already has a record", field="platform_id")

    def seed(
        self,
        platform_id: str,
        email: str,
        state: MemberState = MemberState.PENDING,
        team_role: str = "",
        code: str | None = None,
        display_name: str | None = None,
    ) -> IdentityRecord:
        record = IdentityRecord(
            platform_id=platform_id,
            display_name=display_name or f"user-{platform_id}",
            email=email,
            verification_code=code or f"code-{platform_id}",
            team_role=team_role,
            state=state,
            created_at=self._now(),
            verified_at=self._clock if state is not MemberState.PENDING else None,
        )
        self.records[platform_id] = record
        return record

    async def create(self, platform_id: str, display_name: str, email: str, code: str) -> IdentityRecord:
        self._check_unique(platform_id, email, code)
        record = IdentityRecord(
            platform_id, display_name, email, code, "", MemberState.PENDING, self._now()
        )
        self.records[platform_id] = record
        return record

    async def create_verified(
        self, platform_id: str, display_name: str, email: str, code: str, team_role: str
    ) -> IdentityRecord:
        existing = self.records.get(platform_id)
        if existing is not None and existing.state is MemberState.VERIFIED:
            raise ConflictError("Member already has a record", field="platform_id")
        if existing is not None:
            del self.records[platform_id]
        try:
            self._check_unique(platform_id, email, code)
        except ConflictError:
            if existing is not None:
                self.records[platform_id] = existing
            raise
        now = self._now()
        record = IdentityRecord(
            platform_id, display_name, email, code, team_role, MemberState.VERIFIED, now, now
        )
        self.records[platform_id] = record
        return record

    async def get_by_platform_id(self, platform_id: str) -> IdentityRecord:
        try:
            return self.records[platform_id]
        except KeyError:
            raise NotFoundError("User not found in the database.") from None

    async def get_by_email(self, email: str) -> IdentityRecord:
        for record in self.records.values():
            if record.email == email:
                return record
        raise NotFoundError("No user found with that email address.")

    async def get_by_code(self, code: str) -> IdentityRecord:
        for record in self.records.values():
            if record.verification_code == code:
                return record
        raise NotFoundError("Invalid or expired verification code.")

    async def email_exists(self, email: str) -> bool:
        return any(record.email == email for record in self.records.values())

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
        current = await self.get_by_platform_id(platform_id)
        if (
            current.state is not expected_state
            or (code is not None and current.verification_code != code)
            or (expected_team is not None and current.team_role != expected_team)
        ):
            raise ConflictError(f"Member is {current.state.value.lower()}", field="state")
        updated = IdentityRecord(
            platform_id=current.platform_id,
            display_name=current.display_name,
            email=current.email,
            verification_code=current.verification_code,
            team_role=current.team_role if team_role is None else team_role,
            state=new_state,
            created_at=current.created_at,
            verified_at=self._now() if stamp_verified else current.verified_at,
        )
        self.records[platform_id] = updated
        return updated

    async def delete(self, platform_id: str) -> IdentityRecord:
        try:
            return self.records.pop(platform_id)
        except KeyError:
            raise NotFoundError("User not found in the database.") from None

    async def stats(self) -> MemberStats:
        states = [record.state for record in self.records.values()]
        return MemberStats(
            total=len(states),
            verified=states.count(MemberState.VERIFIED),
            pending=states.count(MemberState.PENDING),
            restricted=states.count(MemberState.RESTRICTED),
        )

    async def list_all(self) -> list[IdentityRecord]:
        return sorted(self.records.values(), key=lambda r: r.created_at, reverse=True)


@pytest.fixture
def anyio_backend() -> str:
    """Run async tests on asyncio only."""
    return "asyncio"


@pytest.fixture
async def pg_pool(anyio_backend: str) -> AsyncGenerator[AsyncConnectionPool, None]:
    """
    Connection pool for integration and adversarial tests.

    Skips the test when PostgreSQL is unreachable. Migrations are applied
    and the members table is emptied before each test.
    """
    settings = get_settings()
    pool = AsyncConnectionPool(conninfo=settings.database_url, min_size=1, max_size=10, open=False)
    try:
        await pool.open(wait=True, timeout=5)
    except PoolTimeout:
        await pool.close()
        pytest.skip(f"PostgreSQL not reachable at {settings.database_url}")

    await run_migrations(pool)
    async with pool.connection() as conn:
        await conn.execute("DELETE FROM members")
    yield pool
    await pool.close()


@pytest.fixture
def repository() -> InMemoryIdentityRepository:
    return InMemoryIdentityRepository()


@pytest.fixture
def platform() -> AsyncMock:
    """Chat platform double; every call succeeds unless a test says otherwise."""
    return AsyncMock()


@pytest.fixture
def email_sender() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def role_map() -> RoleMap:
    return RoleMap(teams=dict(TEAMS), members_role=MEMBERS_ROLE, team_selection=True)


@pytest.fixture
def service(
    repository: InMemoryIdentityRepository,
    platform: AsyncMock,
    email_sender: AsyncMock,
    role_map: RoleMap,
) -> VerificationService:
    return VerificationService(
        repository=repository,
        platform=platform,
        email_sender=email_sender,
        roles=RoleSynchronizer(platform),
        role_map=role_map,
        approved_domains=("acme.com", "example.org"),
        base_url=BASE_URL,
    )


@pytest.fixture
def plain_service(
    repository: InMemoryIdentityRepository,
    platform: AsyncMock,
    email_sender: AsyncMock,
) -> VerificationService:
    """Service with team selection disabled."""
    return VerificationService(
        repository=repository,
        platform=platform,
        email_sender=email_sender,
        roles=RoleSynchronizer(platform),
        role_map=RoleMap(teams={}, members_role=MEMBERS_ROLE, team_selection=False),
        approved_domains=("acme.com",),
        base_url=BASE_URL,
    )
