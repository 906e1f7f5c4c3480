"""
Database Module
===============

Async PostgreSQL access (asyncpg + SQLAlchemy 2.0).

Usage:
    from shared.database import PostgresClient

    store = SqlRuleStore(PostgresClient.get_session_factory())
"""

from shared.database.postgres import Base, PostgresClient


__all__ = [
    "PostgresClient",
    "Base",
]
