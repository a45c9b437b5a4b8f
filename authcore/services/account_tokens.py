import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from authcore.models import AccountToken
from authcore.services.clock import db_datetime, utcnow
from authcore.services.token_codec import hash_token

PURPOSE_EMAIL_VERIFY = "email_verify"
PURPOSE_PASSWORD_RESET = "password_reset"


def _new_token() -> str:
    return secrets.token_urlsafe(48)


def get_latest_account_token(db: Session, account_id: int, purpose: str) -> AccountToken | None:
    return (
        db.query(AccountToken)
        .filter(AccountToken.account_id == account_id, AccountToken.purpose == purpose)
        .order_by(AccountToken.created_at.desc(), AccountToken.id.desc())
        .first()
    )


def issue_account_token(
    db: Session,
    account_id: int,
    purpose: str,
    expires_in_minutes: int,
    now: datetime | None = None,
) -> tuple[str, AccountToken]:
    raw = _new_token()
    record = AccountToken(
        account_id=account_id,
        purpose=purpose,
        token_hash=hash_token(raw),
        expires_at=db_datetime(db, (now or utcnow()) + timedelta(minutes=expires_in_minutes)),
    )
    db.add(record)
    db.flush()
    return raw, record


def invalidate_account_tokens(db: Session, account_id: int, purpose: str, now: datetime | None = None) -> int:
    return (
        db.query(AccountToken)
        .filter(
            AccountToken.account_id == account_id,
            AccountToken.purpose == purpose,
            AccountToken.used_at.is_(None),
        )
        .update({AccountToken.used_at: db_datetime(db, now or utcnow())}, synchronize_session=False)
    )


def consume_account_token(
    db: Session,
    raw_token: str,
    purpose: str,
    now: datetime | None = None,
) -> AccountToken | None:
    token_hash = hash_token(raw_token)
    db_now = db_datetime(db, now or utcnow())

    updated = (
        db.query(AccountToken)
        .filter(
            AccountToken.token_hash == token_hash,
            AccountToken.purpose == purpose,
            AccountToken.used_at.is_(None),
            AccountToken.expires_at > db_now,
        )
        .update({AccountToken.used_at: db_now}, synchronize_session=False)
    )
    if updated != 1:
        return None

    return (
        db.query(AccountToken)
        .filter(AccountToken.token_hash == token_hash, AccountToken.purpose == purpose)
        .first()
    )


def find_account_token(db: Session, raw_token: str, purpose: str) -> AccountToken | None:
    return (
        db.query(AccountToken)
        .filter(AccountToken.token_hash == hash_token(raw_token), AccountToken.purpose == purpose)
        .first()
    )


def is_account_token_valid(db: Session, raw_token: str, purpose: str, now: datetime | None = None) -> bool:
    """True while the token is unused and unexpired; the token is left untouched."""
    if not raw_token:
        return False
    return (
        db.query(AccountToken.id)
        .filter(
            AccountToken.token_hash == hash_token(raw_token),
            AccountToken.purpose == purpose,
            AccountToken.used_at.is_(None),
            AccountToken.expires_at > db_datetime(db, now or utcnow()),
        )
        .first()
        is not None
    )


def sweep_expired_account_tokens(db: Session, now: datetime | None = None) -> int:
    return (
        db.query(AccountToken)
        .filter(AccountToken.expires_at < db_datetime(db, now or utcnow()))
        .delete(synchronize_session=False)
    )
