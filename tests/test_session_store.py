import threading
from datetime import timedelta

from authcore.models import AuthSession
from authcore.services.session_store import SessionStore
from authcore.services.token_codec import hash_token


def _store(clock=None) -> SessionStore:
    return SessionStore(clock=clock) if clock else SessionStore()


def test_create_and_find_valid(db, test_account):
    store = _store()
    record = store.create(db, test_account.id, hash_token("r1"), "10.0.0.1", "pytest", timedelta(days=7))
    db.commit()

    found = store.find_valid(db, hash_token("r1"))
    assert found is not None
    assert found.id == record.id
    assert found.ip_address == "10.0.0.1"
    assert store.find_valid(db, hash_token("unknown")) is None


def test_user_agent_is_truncated(db, test_account):
    record = _store().create(db, test_account.id, hash_token("r1"), None, "x" * 2000, timedelta(days=1))
    assert len(record.user_agent) == 512


def test_expired_session_is_not_valid(db, test_account, clock):
    store = _store(clock)
    store.create(db, test_account.id, hash_token("r1"), None, None, timedelta(minutes=5))
    db.commit()

    clock.advance(minutes=6)
    assert store.find_valid(db, hash_token("r1")) is None


def test_revoke_is_idempotent(db, test_account):
    store = _store()
    record = store.create(db, test_account.id, hash_token("r1"), None, None, timedelta(days=1))
    db.commit()

    assert store.revoke(db, record.id) is True
    assert store.revoke(db, record.id) is False
    db.commit()
    assert store.find_valid(db, hash_token("r1")) is None


def test_revoke_all_only_touches_that_account(db, test_account, test_account2):
    store = _store()
    store.create(db, test_account.id, hash_token("a1"), None, None, timedelta(days=1))
    store.create(db, test_account.id, hash_token("a2"), None, None, timedelta(days=1))
    store.create(db, test_account2.id, hash_token("b1"), None, None, timedelta(days=1))
    db.commit()

    assert store.revoke_all(db, test_account.id) == 2
    db.commit()
    assert store.list_active(db, test_account.id) == []
    assert len(store.list_active(db, test_account2.id)) == 1
    assert store.revoke_all(db, test_account.id) == 0


def test_claim_for_rotation_succeeds_once(db, test_account):
    store = _store()
    store.create(db, test_account.id, hash_token("r1"), None, None, timedelta(days=1))
    db.commit()

    claimed = store.claim_for_rotation(db, hash_token("r1"))
    db.commit()
    assert claimed is not None
    assert claimed.revoked_at is not None

    assert store.claim_for_rotation(db, hash_token("r1")) is None


def test_link_replacement_records_successor(db, test_account):
    store = _store()
    old = store.create(db, test_account.id, hash_token("r1"), None, None, timedelta(days=1))
    store.claim_for_rotation(db, hash_token("r1"))
    new = store.create(db, test_account.id, hash_token("r2"), None, None, timedelta(days=1))
    store.link_replacement(db, old.id, new.id)
    db.commit()

    db.refresh(old)
    assert old.replaced_by_id == new.id


def test_sweeps_remove_expired_and_old_revoked(db, test_account, clock):
    store = _store(clock)
    store.create(db, test_account.id, hash_token("short"), None, None, timedelta(hours=1))
    revoked = store.create(db, test_account.id, hash_token("revoked"), None, None, timedelta(days=90))
    store.create(db, test_account.id, hash_token("live"), None, None, timedelta(days=90))
    store.revoke(db, revoked.id)
    db.commit()

    clock.advance(days=2)
    assert store.sweep_expired(db) == 1
    assert store.sweep_old_revoked(db, clock() - timedelta(days=30)) == 0

    clock.advance(days=31)
    assert store.sweep_old_revoked(db, clock() - timedelta(days=30)) == 1
    db.commit()

    remaining = [s.refresh_token_hash for s in db.query(AuthSession).all()]
    assert remaining == [hash_token("live")]


def test_concurrent_rotation_has_a_single_winner(file_session_factory, account_factory):
    setup = file_session_factory()
    account = account_factory(setup, email="race@example.com")
    store = SessionStore()
    store.create(setup, account.id, hash_token("contested"), None, None, timedelta(days=1))
    setup.commit()
    setup.close()

    barrier = threading.Barrier(8)
    winners = []
    lock = threading.Lock()

    def attempt():
        db = file_session_factory()
        try:
            barrier.wait()
            claimed = store.claim_for_rotation(db, hash_token("contested"))
            db.commit()
            if claimed is not None:
                with lock:
                    winners.append(claimed.id)
        except Exception:
            db.rollback()
        finally:
            db.close()

    threads = [threading.Thread(target=attempt) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(winners) == 1
