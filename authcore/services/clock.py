from datetime import datetime, timezone
from typing import Callable

from sqlalchemy.orm import Session

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def db_datetime(db: Session, value: datetime) -> datetime:
    """SQLite stores naive datetimes; comparisons there must be naive UTC too."""
    bind = db.get_bind()
    if bind and bind.dialect.name == "sqlite":
        return as_utc(value).replace(tzinfo=None)
    return value
