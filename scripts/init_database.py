#!/usr/bin/env python3
"""
Database Initialization Script
==============================

Create the regulatory truth tables and optionally seed reference data.

Usage:
    python scripts/init_database.py
    python scripts/init_database.py --seed
    python scripts/init_database.py --sync-aliases
    python scripts/init_database.py --url sqlite+aiosqlite:///regtruth.db

Version: 0.1.0
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from shared.logging import get_logger, setup_logging

setup_logging(log_level="INFO", json_logs=False, service_name="init-db")
logger = get_logger(__name__)


# Publishers seeded for development, with their authority hierarchy
SEED_SOURCES = [
    ("narodne-novine", "Narodne novine", "https://narodne-novine.nn.hr", 1),
    ("porezna-uprava", "Porezna uprava", "https://www.porezna-uprava.hr", 3),
    ("fina", "Financijska agencija", "https://www.fina.hr", 4),
]


async def init_postgres() -> bool:
    """Create every table of the rule store."""
    # Registers the ORM tables on Base.metadata
    import services.regulatory_truth.store.tables  # noqa: F401
    from shared.database.postgres import PostgresClient

    logger.info("postgres_initializing")

    try:
        await PostgresClient.create_all()

        missing = await PostgresClient.missing_tables()
        if missing:
            logger.error("tables_missing_after_create", tables=missing)
            return False

        return True

    except Exception as e:
        logger.error("postgres_initialization_failed", error=str(e))
        return False


async def seed_sources() -> bool:
    """Insert the development source list."""
    from services.regulatory_truth.models import RegulatorySource
    from services.regulatory_truth.store import SqlRuleStore
    from shared.database.postgres import PostgresClient

    store = SqlRuleStore(PostgresClient.get_session_factory())
    try:
        async with store.transaction():
            for slug, name, url, hierarchy in SEED_SOURCES:
                await store.add_source(
                    RegulatorySource(slug=slug, name=name, url=url, hierarchy=hierarchy)
                )
        logger.info("sources_seeded", count=len(SEED_SOURCES))
        return True

    except Exception as e:
        logger.error("source_seeding_failed", error=str(e))
        return False


async def sync_aliases() -> bool:
    """Write the canonical alias table onto stored concepts."""
    from services.regulatory_truth.concepts import ConceptResolver
    from services.regulatory_truth.store import SqlRuleStore
    from shared.database.postgres import PostgresClient

    resolver = ConceptResolver(SqlRuleStore(PostgresClient.get_session_factory()))
    try:
        updated = await resolver.sync_canonical_aliases()
        logger.info("concept_aliases_synced", updated=updated)
        return True

    except Exception as e:
        logger.error("alias_sync_failed", error=str(e))
        return False


async def main(args: argparse.Namespace) -> int:
    """Main initialization function."""
    from shared.database.postgres import PostgresClient

    if args.url:
        PostgresClient.configure(args.url)

    results = {"PostgreSQL": await init_postgres()}

    if args.seed and results["PostgreSQL"]:
        results["Seed Sources"] = await seed_sources()

    if args.sync_aliases and results["PostgreSQL"]:
        results["Concept Aliases"] = await sync_aliases()

    await PostgresClient.close()

    for name, ok in results.items():
        logger.info("initialization_step", step=name, ok=ok)

    if all(results.values()):
        logger.info("initialization_completed")
        return 0

    logger.error("initialization_failed", failed=[k for k, v in results.items() if not v])
    return 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialize the regulatory truth database")
    parser.add_argument("--seed", action="store_true", help="Seed development sources")
    parser.add_argument(
        "--sync-aliases", action="store_true", help="Sync canonical concept aliases"
    )
    parser.add_argument("--url", help="Database URL overriding the POSTGRES_* settings")

    sys.exit(asyncio.run(main(parser.parse_args())))
