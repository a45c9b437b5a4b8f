import threading

from authcore.models import Account
from authcore.services.brute_force import BruteForceGuard
from authcore.services.clock import as_utc


def _reload(db, account_id) -> Account:
    db.expire_all()
    return db.get(Account, account_id)


def test_failures_below_threshold_do_not_lock(db, test_account, clock):
    guard = BruteForceGuard(max_attempts=5, lock_minutes=15, clock=clock)
    for _ in range(4):
        assert guard.record_failure(db, test_account.id) is None
    db.commit()

    account = _reload(db, test_account.id)
    assert account.failed_login_attempts == 4
    assert account.locked_until is None
    assert guard.is_locked(account) is False


def test_threshold_failure_locks_for_configured_window(db, test_account, clock):
    guard = BruteForceGuard(max_attempts=5, lock_minutes=15, clock=clock)
    results = [guard.record_failure(db, test_account.id) for _ in range(5)]
    db.commit()

    assert results[:4] == [None] * 4
    assert results[4] is not None
    assert abs((results[4] - clock()).total_seconds() - 15 * 60) < 1

    account = _reload(db, test_account.id)
    assert guard.is_locked(account) is True
    assert as_utc(account.last_failed_login_at) is not None


def test_lock_expires(db, test_account, clock):
    guard = BruteForceGuard(max_attempts=2, lock_minutes=15, clock=clock)
    guard.record_failure(db, test_account.id)
    guard.record_failure(db, test_account.id)
    db.commit()

    clock.advance(minutes=16)
    assert guard.is_locked(_reload(db, test_account.id)) is False


def test_per_call_thresholds_override_defaults(db, test_account, clock):
    guard = BruteForceGuard(max_attempts=5, lock_minutes=15, clock=clock)
    assert guard.record_failure(db, test_account.id, max_attempts=1, lock_minutes=1) is not None


def test_success_resets_counter_and_lock(db, test_account, clock):
    guard = BruteForceGuard(max_attempts=2, clock=clock)
    guard.record_failure(db, test_account.id)
    guard.record_failure(db, test_account.id)
    guard.record_success(db, test_account.id)
    db.commit()

    account = _reload(db, test_account.id)
    assert account.failed_login_attempts == 0
    assert account.locked_until is None
    assert account.last_failed_login_at is None


def test_reset_unlocks(db, test_account, clock):
    guard = BruteForceGuard(max_attempts=1, clock=clock)
    guard.record_failure(db, test_account.id)
    guard.reset(db, test_account.id)
    db.commit()
    assert guard.is_locked(_reload(db, test_account.id)) is False


def test_unknown_account_is_ignored(db, clock):
    guard = BruteForceGuard(clock=clock)
    assert guard.record_failure(db, 9999) is None


def test_explicit_zero_overrides_are_not_replaced_by_defaults(db, test_account, clock):
    guard = BruteForceGuard(max_attempts=5, lock_minutes=15, clock=clock)

    locked_until = guard.record_failure(db, test_account.id, max_attempts=0, lock_minutes=0)
    db.commit()

    assert locked_until is not None
    assert abs((locked_until - clock()).total_seconds()) < 1
    assert guard.is_locked(_reload(db, test_account.id)) is False


def test_concurrent_failures_are_all_counted(file_session_factory, account_factory):
    setup = file_session_factory()
    account = account_factory(setup, email="hammer@example.com")
    account_id = account.id
    setup.close()

    guard = BruteForceGuard(max_attempts=5, lock_minutes=15)
    barrier = threading.Barrier(5)
    results = []
    errors = []
    lock = threading.Lock()

    def attempt():
        db = file_session_factory()
        try:
            barrier.wait()
            locked_until = guard.record_failure(db, account_id)
            db.commit()
            with lock:
                results.append(locked_until)
        except Exception as exc:
            db.rollback()
            with lock:
                errors.append(exc)
        finally:
            db.close()

    threads = [threading.Thread(target=attempt) for _ in range(5)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert errors == []
    assert len([r for r in results if r is not None]) == 1

    check = file_session_factory()
    try:
        stored = check.get(Account, account_id)
        assert stored.failed_login_attempts == 5
        assert guard.is_locked(stored) is True
    finally:
        check.close()
