import asyncio
import logging
from pathlib import Path

import asyncpg
from jinja2 import Template

from gridhistory import models
from gridhistory.postgres import PostgresStore
from gridhistory.tiers import TIERS

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).parent / "migrations"


def render_migration(migration_file: Path) -> str:
    content = migration_file.read_text()
    if migration_file.suffix == ".j2":
        content = Template(content).render(
            TIERS=TIERS, METRIC_COLUMNS=models.METRIC_COLUMNS
        )
    return content


async def run_all_migrations(connection: asyncpg.Connection) -> None:
    """Create every table; migrations are idempotent and safe to re-run"""
    migration_files = sorted(
        f for f in MIGRATIONS_DIR.iterdir() if f.suffix == ".sql" or f.name.endswith(".sql.j2")
    )
    logger.info("Found %d migration files", len(migration_files))
    for migration_file in migration_files:
        logger.info("Running migration: %s", migration_file.name)
        await connection.execute(render_migration(migration_file))
    logger.info("All migrations completed successfully")


async def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    store = await PostgresStore.connect()
    try:
        await run_all_migrations(store.connection)
    finally:
        await store.close()


if __name__ == "__main__":
    asyncio.run(main())
