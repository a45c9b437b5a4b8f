import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy.orm import Session

from authcore.services.account_tokens import sweep_expired_account_tokens
from authcore.services.clock import Clock, utcnow
from authcore.services.oauth_codes import OneTimeCodeBroker
from authcore.services.session_store import SessionStore

logger = logging.getLogger(__name__)

TaskFunc = Callable[[datetime], int]


@dataclass
class ScheduledTask:
    name: str
    interval: timedelta
    func: TaskFunc
    next_run_at: datetime | None = None


class Scheduler:
    """Named periodic tasks. `run_pending` can be driven by a fake clock in tests."""

    def __init__(self, clock: Clock = utcnow, poll_seconds: float = 60.0) -> None:
        self._clock = clock
        self._poll_seconds = poll_seconds
        self._tasks: dict[str, ScheduledTask] = {}
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def tasks(self) -> dict[str, ScheduledTask]:
        return dict(self._tasks)

    def register(self, name: str, interval: timedelta, func: TaskFunc) -> ScheduledTask:
        if name in self._tasks:
            raise ValueError(f"Task {name!r} is already registered")
        task = ScheduledTask(name=name, interval=interval, func=func)
        self._tasks[name] = task
        return task

    def run_task(self, name: str, now: datetime | None = None) -> int | None:
        task = self._tasks[name]
        now = now or self._clock()
        task.next_run_at = now + task.interval
        logger.info("Running maintenance task %s", name)
        try:
            count = task.func(now)
        except Exception:
            logger.exception("Maintenance task %s failed", name)
            return None
        if count:
            logger.info("Maintenance task %s removed %s rows", name, count)
        else:
            logger.debug("Maintenance task %s had nothing to do", name)
        return count

    def run_pending(self, now: datetime | None = None) -> dict[str, int | None]:
        now = now or self._clock()
        results = {}
        for task in list(self._tasks.values()):
            if task.next_run_at is None or task.next_run_at <= now:
                results[task.name] = self.run_task(task.name, now)
        return results

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="authcore-maintenance", daemon=True)
        self._thread.start()
        logger.info("Maintenance scheduler started with %s tasks", len(self._tasks))

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)
            self._thread = None
        logger.info("Maintenance scheduler stopped")

    def _loop(self) -> None:
        while not self._stop.is_set():
            self.run_pending()
            self._stop.wait(self._poll_seconds)


def _in_session(session_factory: Callable[[], Session], work: Callable[[Session], int]) -> int:
    db = session_factory()
    try:
        count = work(db)
        db.commit()
        return count
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def register_default_tasks(
    scheduler: Scheduler,
    session_factory: Callable[[], Session],
    sessions: SessionStore,
    codes: OneTimeCodeBroker,
    revoked_retention_days: int = 30,
) -> Scheduler:
    def sweep_expired_sessions(now: datetime) -> int:
        return _in_session(session_factory, lambda db: sessions.sweep_expired(db, now))

    def sweep_revoked_sessions(now: datetime) -> int:
        cutoff = now - timedelta(days=revoked_retention_days)
        return _in_session(session_factory, lambda db: sessions.sweep_old_revoked(db, cutoff))

    def sweep_account_tokens(now: datetime) -> int:
        return _in_session(session_factory, lambda db: sweep_expired_account_tokens(db, now))

    def sweep_oauth_codes(now: datetime) -> int:
        return _in_session(session_factory, lambda db: codes.sweep(db, now))

    scheduler.register("sweep-expired-sessions", timedelta(days=1), sweep_expired_sessions)
    scheduler.register("sweep-revoked-sessions", timedelta(weeks=1), sweep_revoked_sessions)
    scheduler.register("sweep-account-tokens", timedelta(days=1), sweep_account_tokens)
    scheduler.register("sweep-oauth-codes", timedelta(hours=1), sweep_oauth_codes)
    return scheduler
