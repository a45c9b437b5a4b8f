from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker

from authcore.config import settings

# Bare Postgres URLs (as handed out by hosting providers) are pinned to psycopg 3.
_DRIVER_PREFIXES = {
    "postgres://": "postgresql+psycopg://",
    "postgresql://": "postgresql+psycopg://",
}


def normalize_database_url(database_url: str) -> str:
    for prefix, replacement in _DRIVER_PREFIXES.items():
        if database_url.startswith(prefix):
            return replacement + database_url[len(prefix):]
    return database_url


def is_sqlite_url(database_url: str) -> bool:
    return database_url.startswith("sqlite:")


def _engine_options(database_url: str) -> dict:
    if is_sqlite_url(database_url):
        # Sync routes run in FastAPI's thread pool.
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(
    normalize_database_url(settings.DATABASE_URL),
    **_engine_options(settings.DATABASE_URL),
)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
