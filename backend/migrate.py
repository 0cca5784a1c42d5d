"""
Creates any missing database tables: ``python -m backend.migrate``.

Existing tables are left as they are; column changes are not applied.
"""

from __future__ import annotations

import logging
import sys

from backend.config import get_settings
from backend.db import PostgresDbClient

logger = logging.getLogger(__name__)


def run_migrations(database_url: str | None = None) -> int:
    database_url = database_url or get_settings().database_url
    if not database_url:
        logger.error("DATABASE_URL is not set")
        return 1

    logger.info("Running migrations...")
    client = PostgresDbClient(database_url, create_schema=True)
    client.engine.dispose()
    logger.info("Migrations complete.")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(run_migrations())
