"""
Database migration runner for Alembic migrations.
"""
import logging
import os
from alembic.config import Config
from alembic import command
from sqlalchemy import create_engine, text

from searchquota.core import config as app_config

logger = logging.getLogger(__name__)

ADVISORY_LOCK_ID = 918273645

ALEMBIC_INI_PATH = os.path.join(
    os.path.dirname(os.path.dirname(os.path.dirname(os.path.abspath(__file__)))), "alembic.ini"
)


def build_alembic_config(database_url: str) -> Config:
    alembic_cfg = Config(ALEMBIC_INI_PATH)
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    # Keep the application's logging setup
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def run_migrations(database_url: str = None):
    """
    Run Alembic migrations to head revision.

    On PostgreSQL an advisory lock keeps concurrently starting instances
    from migrating at the same time.
    """
    database_url = database_url or app_config.DATABASE_URL
    if not database_url:
        raise ValueError("DATABASE_URL is not set")

    logger.info("RUN_MIGRATIONS=1 -> running alembic upgrade head")
    alembic_cfg = build_alembic_config(database_url)

    engine = create_engine(database_url, pool_pre_ping=True)
    lock_conn = None

    try:
        if database_url.startswith("postgresql"):
            # Hold the lock on a dedicated connection for the whole upgrade
            lock_conn = engine.connect()
            try:
                lock_conn.execute(text(f"SELECT pg_advisory_lock({ADVISORY_LOCK_ID})"))
                lock_conn.commit()
                logger.info("Migration lock acquired")
            except Exception as lock_error:
                logger.warning(f"Could not acquire advisory lock: {lock_error}")
                lock_conn.close()
                lock_conn = None

        command.upgrade(alembic_cfg, "head")
        logger.info("Migrations complete")

    except Exception:
        logger.exception("Migration failed")
        raise
    finally:
        if lock_conn:
            try:
                lock_conn.execute(text(f"SELECT pg_advisory_unlock({ADVISORY_LOCK_ID})"))
                lock_conn.commit()
                lock_conn.close()
            except Exception as unlock_error:
                logger.warning(f"Could not release advisory lock: {unlock_error}")
        engine.dispose()
