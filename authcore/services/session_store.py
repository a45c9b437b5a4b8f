import logging
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from authcore.models import AuthSession
from authcore.services.clock import Clock, as_utc, db_datetime, utcnow

logger = logging.getLogger(__name__)

USER_AGENT_MAX_LENGTH = 512


class SessionStore:
    """Refresh-token sessions. Methods flush; the caller commits."""

    def __init__(self, clock: Clock = utcnow) -> None:
        self._clock = clock

    def create(
        self,
        db: Session,
        account_id: int,
        refresh_token_hash: str,
        ip: str | None,
        user_agent: str | None,
        ttl: timedelta,
    ) -> AuthSession:
        record = AuthSession(
            account_id=account_id,
            refresh_token_hash=refresh_token_hash,
            ip_address=ip,
            user_agent=user_agent[:USER_AGENT_MAX_LENGTH] if user_agent else None,
            expires_at=db_datetime(db, self._clock() + ttl),
        )
        db.add(record)
        db.flush()
        return record

    def find_valid(self, db: Session, refresh_token_hash: str, now: datetime | None = None) -> AuthSession | None:
        now = now or self._clock()
        record = (
            db.query(AuthSession)
            .filter(AuthSession.refresh_token_hash == refresh_token_hash)
            .first()
        )
        if not record:
            return None
        if record.revoked_at is not None or as_utc(record.expires_at) <= as_utc(now):
            return None
        return record

    def revoke(self, db: Session, session_id: int, replaced_by_id: int | None = None) -> bool:
        """Revoke one session. Already revoked sessions are left untouched."""
        values = {AuthSession.revoked_at: db_datetime(db, self._clock())}
        if replaced_by_id is not None:
            values[AuthSession.replaced_by_id] = replaced_by_id
        updated = (
            db.query(AuthSession)
            .filter(
                AuthSession.id == session_id,
                AuthSession.revoked_at.is_(None),
            )
            .update(values, synchronize_session=False)
        )
        db.flush()
        return updated == 1

    def revoke_all(self, db: Session, account_id: int) -> int:
        updated = (
            db.query(AuthSession)
            .filter(
                AuthSession.account_id == account_id,
                AuthSession.revoked_at.is_(None),
            )
            .update(
                {AuthSession.revoked_at: db_datetime(db, self._clock())},
                synchronize_session=False,
            )
        )
        db.flush()
        return updated

    def claim_for_rotation(
        self,
        db: Session,
        refresh_token_hash: str,
        now: datetime | None = None,
    ) -> AuthSession | None:
        """Atomically revoke the valid session behind a refresh token.

        Of several concurrent callers presenting the same token only the one
        whose conditional update touches the row gets the session back.
        """
        now = now or self._clock()
        current = self.find_valid(db, refresh_token_hash, now)
        if not current:
            return None

        db_now = db_datetime(db, now)
        updated = (
            db.query(AuthSession)
            .filter(
                AuthSession.id == current.id,
                AuthSession.revoked_at.is_(None),
                AuthSession.expires_at > db_now,
            )
            .update({AuthSession.revoked_at: db_now}, synchronize_session=False)
        )
        if updated != 1:
            logger.warning("Concurrent rotation lost for session id=%s", current.id)
            return None
        db.flush()
        db.refresh(current)
        return current

    def link_replacement(self, db: Session, session_id: int, replaced_by_id: int) -> None:
        db.query(AuthSession).filter(AuthSession.id == session_id).update(
            {AuthSession.replaced_by_id: replaced_by_id},
            synchronize_session=False,
        )
        db.flush()

    def list_active(self, db: Session, account_id: int, now: datetime | None = None) -> list[AuthSession]:
        db_now = db_datetime(db, now or self._clock())
        return (
            db.query(AuthSession)
            .filter(
                AuthSession.account_id == account_id,
                AuthSession.revoked_at.is_(None),
                AuthSession.expires_at > db_now,
            )
            .order_by(AuthSession.created_at.desc(), AuthSession.id.desc())
            .all()
        )

    def sweep_expired(self, db: Session, now: datetime | None = None) -> int:
        db_now = db_datetime(db, now or self._clock())
        return (
            db.query(AuthSession)
            .filter(AuthSession.expires_at < db_now)
            .delete(synchronize_session=False)
        )

    def sweep_old_revoked(self, db: Session, older_than: datetime) -> int:
        return (
            db.query(AuthSession)
            .filter(
                AuthSession.revoked_at.is_not(None),
                AuthSession.revoked_at < db_datetime(db, older_than),
            )
            .delete(synchronize_session=False)
        )
