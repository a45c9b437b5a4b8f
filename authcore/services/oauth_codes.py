import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import or_
from sqlalchemy.orm import Session

from authcore.models import OAuthAuthorizationCode
from authcore.services.clock import Clock, db_datetime, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RedeemedCode:
    account_id: int
    access_token: str
    refresh_token: str


class OneTimeCodeBroker:
    """Single-use codes that carry a pre-minted token pair across a redirect."""

    def __init__(self, ttl_seconds: int = 30, clock: Clock = utcnow) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._clock = clock

    def issue(self, db: Session, account_id: int, access_token: str, refresh_token: str) -> str:
        code = secrets.token_urlsafe(48)
        db.add(
            OAuthAuthorizationCode(
                code=code,
                account_id=account_id,
                access_token=access_token,
                refresh_token=refresh_token,
                expires_at=db_datetime(db, self._clock() + self.ttl),
                used=False,
            )
        )
        db.flush()
        return code

    def redeem(self, db: Session, code: str, now: datetime | None = None) -> RedeemedCode | None:
        """Mark the code used and hand back its tokens, or None.

        Unknown, expired and already used codes all give None.
        """
        if not code:
            return None
        db_now = db_datetime(db, now or self._clock())
        updated = (
            db.query(OAuthAuthorizationCode)
            .filter(
                OAuthAuthorizationCode.code == code,
                OAuthAuthorizationCode.used.is_(False),
                OAuthAuthorizationCode.expires_at > db_now,
            )
            .update({OAuthAuthorizationCode.used: True}, synchronize_session=False)
        )
        if updated != 1:
            return None

        record = db.query(OAuthAuthorizationCode).filter(OAuthAuthorizationCode.code == code).first()
        if not record:
            return None
        redeemed = RedeemedCode(
            account_id=record.account_id,
            access_token=record.access_token,
            refresh_token=record.refresh_token,
        )
        db.delete(record)
        db.flush()
        return redeemed

    def sweep(self, db: Session, now: datetime | None = None) -> int:
        db_now = db_datetime(db, now or self._clock())
        return (
            db.query(OAuthAuthorizationCode)
            .filter(
                or_(
                    OAuthAuthorizationCode.expires_at < db_now,
                    OAuthAuthorizationCode.used.is_(True),
                )
            )
            .delete(synchronize_session=False)
        )
