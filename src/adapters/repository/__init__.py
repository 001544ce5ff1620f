"""Repository adapters - Database implementations."""

from .postgres import PostgresIdentityRepository, run_migrations

__all__ = ["PostgresIdentityRepository", "run_migrations"]
