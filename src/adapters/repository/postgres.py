"""
PostgreSQL repository adapter - Implements IdentityRepository protocol.

This module provides the PostgreSQL implementation of the domain's
repository port using psycopg3 (async) with raw SQL.

Concurrency Design:
-------------------
Three entry points (chat DMs, web callback, moderator commands) may touch
the same member at once. Correctness never depends on a prior existence
check; it rests on two database mechanisms:

1. **UNIQUE constraints** on platform_id, email and verification_code.
   Two racing creates for the same email resolve to exactly one row; the
   loser gets UniqueViolation, translated to ConflictError here.

2. **Guarded UPDATEs**. Every transition is a single
   ``UPDATE ... WHERE platform_id = %s AND state = %s [AND ...]`` so it
   only applies to the state the caller planned against. Zero rows
   affected is re-read to report NotFoundError (row deleted meanwhile)
   or ConflictError (state moved on).

No process-wide lock is taken; PostgreSQL row locks serialize writers
per member.
"""

import logging
from pathlib import Path
from typing import Any

from psycopg import errors
from psycopg_pool import AsyncConnectionPool

from src.domain.exceptions import CodeCollisionError, ConflictError, NotFoundError
from src.domain.ports import IdentityRecord, MemberState, MemberStats

logger = logging.getLogger(__name__)

_COLUMNS = (
    "platform_id, display_name, email, verification_code, team_role, state, created_at, verified_at"
)

_SELECT_BY = {
    "platform_id": f"SELECT {_COLUMNS} FROM members WHERE platform_id = %s",
    "email": f"SELECT {_COLUMNS} FROM members WHERE email = %s",
    "verification_code": f"SELECT {_COLUMNS} FROM members WHERE verification_code = %s",
}

_NOT_FOUND = {
    "platform_id": "User not found in the database.",
    "email": "No user found with that email address.",
    "verification_code": "Invalid or expired verification code.",
}

# Constraint name -> record field, see migrations/001_create_members.sql
_CONSTRAINT_FIELDS = {
    "members_pkey": "platform_id",
    "members_email_key": "email",
    "members_verification_code_key": "verification_code",
}


def _to_record(row: tuple[Any, ...]) -> IdentityRecord:
    return IdentityRecord(
        platform_id=row[0],
        display_name=row[1],
        email=row[2],
        verification_code=row[3],
        team_role=row[4] or "",
        state=MemberState(row[5]),
        created_at=row[6],
        verified_at=row[7],
    )


def _conflict(exc: errors.UniqueViolation) -> Exception:
    """Translate a unique violation into the matching domain error."""
    constraint = exc.diag.constraint_name or ""
    field = _CONSTRAINT_FIELDS.get(constraint)
    if field == "verification_code":
        return CodeCollisionError("Generated verification code already exists")
    if field == "email":
        return ConflictError("Email address already registered", field="email")
    return ConflictError("Member already has a record", field=field or "platform_id")


class PostgresIdentityRepository:
    """
    Implements IdentityRepository protocol via psycopg3.

    Uses structural subtyping - no explicit inheritance from Protocol.
    All SQL uses parameterized queries.
    """

    def __init__(self, pool: AsyncConnectionPool) -> None:
        """
        Initialize repository with connection pool.

        Args:
            pool: psycopg3 AsyncConnectionPool for database connections
        """
        self._pool = pool

    async def create(
        self, platform_id: str, display_name: str, email: str, code: str
    ) -> IdentityRecord:
        """
        Atomically create a PENDING record.

        The INSERT either lands or violates a UNIQUE constraint; there is
        no window between check and write.
        """
        sql = f"""
            INSERT INTO members (platform_id, display_name, email, verification_code, state)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_COLUMNS}
        """
        async with self._pool.connection() as conn:
            try:
                cursor = await conn.execute(
                    sql, (platform_id, display_name, email, code, MemberState.PENDING.value)
                )
                row = await cursor.fetchone()
                await conn.commit()
            except errors.UniqueViolation as exc:
                raise _conflict(exc) from None
        return _to_record(row)

    async def create_verified(
        self,
        platform_id: str,
        display_name: str,
        email: str,
        code: str,
        team_role: str,
    ) -> IdentityRecord:
        """
        Replace any non-verified record for platform_id with a VERIFIED one.

        Runs as one transaction: if the INSERT conflicts (email taken by
        someone else, or a concurrent writer verified the member first) the
        DELETE is rolled back too.
        """
        delete_sql = "DELETE FROM members WHERE platform_id = %s AND state <> %s"
        insert_sql = f"""
            INSERT INTO members
                (platform_id, display_name, email, verification_code, team_role, state, verified_at)
            VALUES (%s, %s, %s, %s, %s, %s, NOW())
            RETURNING {_COLUMNS}
        """
        async with self._pool.connection() as conn:
            try:
                async with conn.transaction():
                    await conn.execute(delete_sql, (platform_id, MemberState.VERIFIED.value))
                    cursor = await conn.execute(
                        insert_sql,
                        (platform_id, display_name, email, code, team_role, MemberState.VERIFIED.value),
                    )
                    row = await cursor.fetchone()
            except errors.UniqueViolation as exc:
                raise _conflict(exc) from None
        return _to_record(row)

    async def get_by_platform_id(self, platform_id: str) -> IdentityRecord:
        return await self._get("platform_id", platform_id)

    async def get_by_email(self, email: str) -> IdentityRecord:
        return await self._get("email", email)

    async def get_by_code(self, code: str) -> IdentityRecord:
        return await self._get("verification_code", code)

    async def email_exists(self, email: str) -> bool:
        async with self._pool.connection() as conn:
            cursor = await conn.execute(
                "SELECT EXISTS(SELECT 1 FROM members WHERE email = %s)", (email,)
            )
            row = await cursor.fetchone()
        return bool(row[0])

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
        Guarded state change in a single UPDATE.

        Optional guards (code, expected_team) are skipped when None. The
        code guard is what makes a consumed code permanently useless: once
        the row leaves PENDING the WHERE clause can never match again.
        """
        sql = f"""
            UPDATE members
            SET state = %(new_state)s,
                team_role = COALESCE(%(team_role)s::text, team_role),
                verified_at = CASE WHEN %(stamp)s THEN NOW() ELSE verified_at END
            WHERE platform_id = %(platform_id)s
              AND state = %(expected_state)s
              AND (%(code)s::text IS NULL OR verification_code = %(code)s::text)
              AND (%(expected_team)s::text IS NULL OR team_role = %(expected_team)s::text)
            RETURNING {_COLUMNS}
        """
        params = {
            "new_state": new_state.value,
            "team_role": team_role,
            "stamp": stamp_verified,
            "platform_id": platform_id,
            "expected_state": expected_state.value,
            "code": code,
            "expected_team": expected_team,
        }
        async with self._pool.connection() as conn:
            cursor = await conn.execute(sql, params)
            row = await cursor.fetchone()
            await conn.commit()

        if row is not None:
            return _to_record(row)

        # Lost a race or guard mismatch - tell the caller which
        current = await self._get("platform_id", platform_id)
        logger.debug(
            "Transition %s -> %s rejected for %s (now %s)",
            expected_state.value,
            new_state.value,
            platform_id,
            current.state.value,
        )
        raise ConflictError(f"Member is {current.state.value.lower()}", field="state")

    async def delete(self, platform_id: str) -> IdentityRecord:
        """Hard delete. Returns the row as it was at deletion time."""
        sql = f"DELETE FROM members WHERE platform_id = %s RETURNING {_COLUMNS}"
        async with self._pool.connection() as conn:
            cursor = await conn.execute(sql, (platform_id,))
            row = await cursor.fetchone()
            await conn.commit()
        if row is None:
            raise NotFoundError("User not found in the database.")
        return _to_record(row)

    async def stats(self) -> MemberStats:
        sql = """
            SELECT COUNT(*),
                   COUNT(*) FILTER (WHERE state = 'VERIFIED'),
                   COUNT(*) FILTER (WHERE state = 'PENDING'),
                   COUNT(*) FILTER (WHERE state = 'RESTRICTED')
            FROM members
        """
        async with self._pool.connection() as conn:
            cursor = await conn.execute(sql)
            row = await cursor.fetchone()
        return MemberStats(total=row[0], verified=row[1], pending=row[2], restricted=row[3])

    async def list_all(self) -> list[IdentityRecord]:
        sql = f"SELECT {_COLUMNS} FROM members ORDER BY created_at DESC, platform_id"
        async with self._pool.connection() as conn:
            cursor = await conn.execute(sql)
            rows = await cursor.fetchall()
        return [_to_record(row) for row in rows]

    async def ping(self) -> bool:
        """Connectivity probe for the status surface."""
        async with self._pool.connection() as conn:
            await conn.execute("SELECT 1")
        return True

    async def _get(self, column: str, value: str) -> IdentityRecord:
        async with self._pool.connection() as conn:
            cursor = await conn.execute(_SELECT_BY[column], (value,))
            row = await cursor.fetchone()
        if row is None:
            raise NotFoundError(_NOT_FOUND[column])
        return _to_record(row)


async def run_migrations(pool: AsyncConnectionPool) -> None:
    """
    Execute all SQL migration files from the migrations directory.

    Migrations are executed in sorted order (alphabetically by filename).
    Each migration should be idempotent (use IF NOT EXISTS, etc.).

    Args:
        pool: psycopg3 AsyncConnectionPool instance
    """
    # Structure: src/adapters/repository/postgres.py -> migrations/
    migrations_dir = Path(__file__).parent.parent.parent.parent / "migrations"

    if not migrations_dir.exists():
        logger.warning(f"Migrations directory not found: {migrations_dir}")
        return

    sql_files = sorted(migrations_dir.glob("*.sql"))

    if not sql_files:
        logger.info("No migration files found")
        return

    logger.info(f"Running {len(sql_files)} migration(s)")

    for sql_file in sql_files:
        logger.info(f"Executing migration: {sql_file.name}")
        try:
            sql_content = sql_file.read_text()

            async with pool.connection() as conn:
                await conn.execute(sql_content)
                await conn.commit()

            logger.info(f"Migration complete: {sql_file.name}")
        except Exception as e:
            logger.error(f"Migration failed: {sql_file.name} - {e}")
            raise RuntimeError(f"Database migration failed: {sql_file.name}") from e
