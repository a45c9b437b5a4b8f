import logging
import time
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from authcore.config import settings
from authcore.models.database import Base, engine, is_sqlite_url, normalize_database_url
from authcore.models import Account, AccountToken, AuditLog, AuthSession, OAuthAuthorizationCode  # noqa: F401 - register models

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parent.parent


def wait_for_db(retries: int, retry_delay_seconds: int) -> None:
    """Block until the auth database answers ``SELECT 1`` or retries run out."""
    last_error = None
    for attempt in range(1, retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except OperationalError as exc:
            last_error = exc
            logger.warning("Auth database not reachable (attempt %s/%s): %s", attempt, retries, exc)
            if attempt < retries:
                time.sleep(retry_delay_seconds)
            continue
        logger.info("Auth database reachable on attempt %s", attempt)
        return

    raise RuntimeError(
        f"Database is unreachable after {retries} attempts; sessions and accounts cannot be served."
    ) from last_error


def init_db():
    """Make the auth schema (accounts, sessions, codes, account tokens, audit log) current."""
    wait_for_db(
        retries=settings.DB_CONNECT_RETRIES,
        retry_delay_seconds=settings.DB_CONNECT_RETRY_DELAY_SECONDS,
    )
    if is_sqlite_url(settings.DATABASE_URL):
        Base.metadata.create_all(bind=engine)
        logger.info("SQLite auth schema created: %s", ", ".join(sorted(Base.metadata.tables)))
        return

    run_migrations()


def run_migrations() -> None:
    from alembic import command
    from alembic.config import Config

    alembic_ini = PROJECT_ROOT / "alembic.ini"
    script_location = PROJECT_ROOT / "alembic"
    if not alembic_ini.exists() or not script_location.exists():
        raise RuntimeError("Alembic configuration is missing (alembic.ini or alembic/ directory not found).")

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(script_location))
    config.set_main_option("sqlalchemy.url", normalize_database_url(settings.DATABASE_URL))
    logger.info("Upgrading auth schema to the latest Alembic revision")
    command.upgrade(config, "head")
