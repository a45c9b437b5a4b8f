import logging
from datetime import datetime, timedelta

from sqlalchemy import case
from sqlalchemy.orm import Session

from authcore.models import Account
from authcore.services.clock import Clock, as_utc, db_datetime, utcnow

logger = logging.getLogger(__name__)


class BruteForceGuard:
    """Failed-login counting and lockout windows, stored on the account row."""

    def __init__(self, max_attempts: int = 5, lock_minutes: int = 15, clock: Clock = utcnow) -> None:
        self.max_attempts = max_attempts
        self.lock_minutes = lock_minutes
        self._clock = clock

    def record_failure(
        self,
        db: Session,
        account_id: int,
        max_attempts: int | None = None,
        lock_minutes: int | None = None,
    ) -> datetime | None:
        """Count one failure; return the unlock time if this failure locked the account.

        Increment and threshold check happen in one UPDATE so concurrent
        failures cannot both read a stale counter.
        """
        if max_attempts is None:
            max_attempts = self.max_attempts
        if lock_minutes is None:
            lock_minutes = self.lock_minutes
        now = self._clock()
        db_now = db_datetime(db, now)
        lock_until = db_datetime(db, now + timedelta(minutes=lock_minutes))

        next_count = Account.failed_login_attempts + 1
        updated = (
            db.query(Account)
            .filter(Account.id == account_id)
            .update(
                {
                    Account.failed_login_attempts: next_count,
                    Account.last_failed_login_at: db_now,
                    Account.locked_until: case(
                        (next_count >= max_attempts, lock_until),
                        else_=Account.locked_until,
                    ),
                },
                synchronize_session=False,
            )
        )
        db.flush()
        if updated != 1:
            return None

        attempts, locked_until = (
            db.query(Account.failed_login_attempts, Account.locked_until)
            .filter(Account.id == account_id)
            .one()
        )
        if attempts >= max_attempts and locked_until is not None:
            logger.warning("Account id=%s locked after %s failed attempts", account_id, attempts)
            return as_utc(locked_until)
        return None

    def record_success(self, db: Session, account_id: int) -> None:
        db.query(Account).filter(Account.id == account_id).update(
            {
                Account.failed_login_attempts: 0,
                Account.last_failed_login_at: None,
                Account.locked_until: None,
            },
            synchronize_session=False,
        )
        db.flush()

    def reset(self, db: Session, account_id: int) -> None:
        logger.info("Administrative lockout reset for account id=%s", account_id)
        self.record_success(db, account_id)

    def is_locked(self, account: Account, now: datetime | None = None) -> bool:
        if account.locked_until is None:
            return False
        return as_utc(account.locked_until) > as_utc(now or self._clock())
