#!/usr/bin/env python3
import logging
import sys
from pathlib import Path
import psycopg2

# Add project root to path for config access
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from src.config import get_config

MIGRATIONS_DIR = ROOT / "migrations"

logger = logging.getLogger(__name__)


def get_migration_conn():
    """Open a dedicated connection to the configured database."""
    db_cfg = get_config().database
    return psycopg2.connect(
        host=db_cfg.host,
        port=db_cfg.port,
        user=db_cfg.user,
        password=db_cfg.password,
        database=db_cfg.database,
    )


def run():
    migration_files = sorted(
        MIGRATIONS_DIR.glob("*.sql"),
        key=lambda p: int(p.name.split("_")[0])
    )

    conn = get_migration_conn()
    try:
        cur = conn.cursor()

        # Ensure schema_migrations table exists
        cur.execute("""
            CREATE TABLE IF NOT EXISTS schema_migrations (
                version TEXT PRIMARY KEY
            );
        """)
        conn.commit()

        # Get applied migrations
        cur.execute("SELECT version FROM schema_migrations")
        applied = {row[0] for row in cur.fetchall()}

        # Apply unapplied migrations
        for mf in migration_files:
            version = mf.stem.split("_")[0]
            if version in applied:
                continue  # already applied

            with mf.open("r") as f:
                sql = f.read()

            try:
                cur.execute(sql)
                cur.execute(
                    "INSERT INTO schema_migrations (version) VALUES (%s)",
                    (version,)
                )
                conn.commit()
                logger.info(f"Applied migration {mf.name}")
            except Exception as e:
                conn.rollback()
                raise RuntimeError(f"Migration failed: {mf.name}") from e

    finally:
        conn.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    run()
