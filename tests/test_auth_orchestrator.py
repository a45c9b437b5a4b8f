import time
from datetime import timedelta
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import pytest
from sqlalchemy.exc import SQLAlchemyError

from authcore.config import settings
from authcore.models import Account, AuditLog, AuthSession
from authcore.models.account import PROVIDER_GOOGLE
from authcore.services import audit
from authcore.services.audit import AuditSink
from authcore.services.auth_orchestrator import DELIVER_DIRECT, Principal, RequestContext
from authcore.services.container import build_auth_services
from authcore.services.email_service import EmailNotifier
from authcore.services.errors import (
    AccountLocked,
    AccountTokenInvalid,
    CodeInvalidOrExpired,
    DuplicateAccount,
    InvalidCredentials,
    PasswordUnchanged,
    TokenInvalid,
)
from authcore.services.google_identity import FederatedIdentity
from authcore.services.passwords import verify_password
from authcore.services.token_codec import hash_token

PASSWORD = "testpassword123"
CTX = RequestContext(ip="203.0.113.7", user_agent="pytest")


@pytest.fixture
def notifier():
    return MagicMock(spec=EmailNotifier)


@pytest.fixture
def services(clock, notifier):
    return build_auth_services(settings, MagicMock(), clock=clock, notifier=notifier)


@pytest.fixture
def auth(services):
    return services.orchestrator


def _link_token(mock_method) -> str:
    link = mock_method.call_args[0][2]
    return parse_qs(urlparse(link).query)["token"][0]


def _actions(db, account_id=None) -> list[str]:
    query = db.query(AuditLog).order_by(AuditLog.id)
    if account_id is not None:
        query = query.filter(AuditLog.account_id == account_id)
    return [row.action for row in query.all()]


def _authed(account_id: int) -> RequestContext:
    return RequestContext(ip=CTX.ip, user_agent=CTX.user_agent, principal=Principal(account_id=account_id))


# Registration


def test_register_creates_unverified_account_and_session(db, auth, notifier):
    result = auth.register(db, CTX, "  New.User@Example.com ", PASSWORD, "New User")

    account = db.query(Account).filter(Account.email == "new.user@example.com").one()
    assert account.is_email_verified is False
    assert account.password_hash != PASSWORD
    assert result.account.id == account.id
    assert result.tokens.access_token
    assert db.query(AuthSession).filter(AuthSession.account_id == account.id).count() == 1

    notifier.send_verification.assert_called_once()
    assert notifier.send_verification.call_args[0][0] == "new.user@example.com"
    assert _actions(db, account.id) == [audit.REGISTER]


def test_register_duplicate_email_is_rejected(db, auth, test_account):
    with pytest.raises(DuplicateAccount):
        auth.register(db, CTX, test_account.email.upper(), PASSWORD)


# Login


def test_login_success(db, auth, test_account):
    result = auth.login(db, CTX, test_account.email, PASSWORD)

    assert result.account.email == test_account.email
    session = db.query(AuthSession).one()
    assert session.refresh_token_hash == hash_token(result.tokens.refresh_token)
    assert session.ip_address == CTX.ip
    assert _actions(db, test_account.id) == [audit.LOGIN_SUCCESS]


def test_login_unknown_email_runs_dummy_verification(db, auth):
    with patch("authcore.services.auth_orchestrator.verify_dummy") as dummy:
        with pytest.raises(InvalidCredentials):
            auth.login(db, CTX, "nobody@example.com", PASSWORD)
    dummy.assert_called_once_with(PASSWORD)
    assert _actions(db) == [audit.LOGIN_FAILED]


def test_unknown_email_and_wrong_password_look_the_same(db, auth, test_account):
    with pytest.raises(InvalidCredentials) as unknown:
        auth.login(db, CTX, "nobody@example.com", PASSWORD)
    with pytest.raises(InvalidCredentials) as wrong:
        auth.login(db, CTX, test_account.email, "wrong-password")
    assert unknown.value.message == wrong.value.message


def test_federated_only_account_cannot_login_with_password(db, auth, account_factory):
    account = account_factory(db, email="g@example.com", password_hash=None)
    with pytest.raises(InvalidCredentials):
        auth.login(db, CTX, account.email, PASSWORD)


def test_lockout_after_repeated_failures(db, auth, test_account, clock):
    for _ in range(settings.LOGIN_MAX_ATTEMPTS):
        with pytest.raises(InvalidCredentials):
            auth.login(db, CTX, test_account.email, "wrong-password")

    assert audit.ACCOUNT_LOCKED in _actions(db, test_account.id)

    # Correct password is still refused while locked.
    with pytest.raises(AccountLocked) as locked:
        auth.login(db, CTX, test_account.email, PASSWORD)
    expected_unlock = clock() + timedelta(minutes=settings.LOGIN_LOCK_MINUTES)
    assert abs((locked.value.unlock_at - expected_unlock).total_seconds()) < 1
    assert "lockedUntil" in locked.value.extra()

    clock.advance(minutes=settings.LOGIN_LOCK_MINUTES + 1)
    result = auth.login(db, CTX, test_account.email, PASSWORD)
    assert result.account.id == test_account.id

    db.expire_all()
    account = db.get(Account, test_account.id)
    assert account.failed_login_attempts == 0
    assert account.locked_until is None


def test_locked_account_still_runs_password_check(db, auth, test_account):
    for _ in range(settings.LOGIN_MAX_ATTEMPTS):
        with pytest.raises(InvalidCredentials):
            auth.login(db, CTX, test_account.email, "wrong-password")

    with patch("authcore.services.auth_orchestrator.verify_password", wraps=verify_password) as spy:
        with pytest.raises(AccountLocked):
            auth.login(db, CTX, test_account.email, "wrong-password")
    spy.assert_called_once()


def test_success_resets_failure_counter(db, auth, test_account):
    for _ in range(settings.LOGIN_MAX_ATTEMPTS - 1):
        with pytest.raises(InvalidCredentials):
            auth.login(db, CTX, test_account.email, "wrong-password")
    auth.login(db, CTX, test_account.email, PASSWORD)

    with pytest.raises(InvalidCredentials):
        auth.login(db, CTX, test_account.email, "wrong-password")
    db.expire_all()
    assert db.get(Account, test_account.id).failed_login_attempts == 1


# Refresh and logout


def test_refresh_rotates_session(db, auth, test_account):
    first = auth.login(db, CTX, test_account.email, PASSWORD)
    second = auth.refresh(db, CTX, first.tokens.refresh_token)

    assert second.tokens.refresh_token != first.tokens.refresh_token
    old = db.get(AuthSession, first.session_id)
    db.refresh(old)
    assert old.revoked_at is not None
    assert old.replaced_by_id == second.session_id
    assert audit.TOKEN_REFRESHED in _actions(db, test_account.id)


def test_refresh_token_cannot_be_reused(db, auth, test_account):
    first = auth.login(db, CTX, test_account.email, PASSWORD)
    auth.refresh(db, CTX, first.tokens.refresh_token)

    with pytest.raises(TokenInvalid):
        auth.refresh(db, CTX, first.tokens.refresh_token)


def test_refresh_rejects_access_token(db, auth, test_account):
    result = auth.login(db, CTX, test_account.email, PASSWORD)
    with pytest.raises(TokenInvalid):
        auth.refresh(db, CTX, result.tokens.access_token)


def test_refresh_rejects_token_without_session(db, auth, services, test_account):
    orphan = services.codec.issue_pair(test_account.id, test_account.email, test_account.role)
    with pytest.raises(TokenInvalid):
        auth.refresh(db, CTX, orphan.refresh_token)


def test_logout_revokes_and_is_idempotent(db, auth, test_account):
    result = auth.login(db, CTX, test_account.email, PASSWORD)

    auth.logout(db, CTX, result.tokens.refresh_token)
    auth.logout(db, CTX, result.tokens.refresh_token)
    auth.logout(db, CTX, None)
    auth.logout(db, CTX, "garbage")

    with pytest.raises(TokenInvalid):
        auth.refresh(db, CTX, result.tokens.refresh_token)
    assert _actions(db, test_account.id).count(audit.LOGOUT) == 1


def test_logout_all_revokes_every_session(db, auth, test_account, test_account2):
    a = auth.login(db, CTX, test_account.email, PASSWORD)
    b = auth.login(db, CTX, test_account.email, PASSWORD)
    other = auth.login(db, CTX, test_account2.email, PASSWORD)

    assert auth.logout_all(db, _authed(test_account.id)) == 2

    for tokens in (a.tokens, b.tokens):
        with pytest.raises(TokenInvalid):
            auth.refresh(db, CTX, tokens.refresh_token)
    assert auth.refresh(db, CTX, other.tokens.refresh_token).account.id == test_account2.id


def test_logout_all_requires_principal(db, auth):
    with pytest.raises(TokenInvalid):
        auth.logout_all(db, CTX)


def test_list_sessions(db, auth, test_account):
    auth.login(db, CTX, test_account.email, PASSWORD)
    auth.login(db, CTX, test_account.email, PASSWORD)
    assert len(auth.list_sessions(db, _authed(test_account.id))) == 2


# Federated login and code exchange


def _google(subject="google-sub-1", email="fed@example.com") -> FederatedIdentity:
    return FederatedIdentity(
        provider=PROVIDER_GOOGLE,
        subject=subject,
        email=email,
        display_name="Fed User",
        avatar_url="https://example.com/a.png",
    )


def test_federated_login_creates_verified_account_and_code(db, auth):
    result = auth.complete_federated_login(db, CTX, _google())

    account = db.query(Account).filter(Account.email == "fed@example.com").one()
    assert account.is_email_verified is True
    assert account.password_hash is None
    assert account.oauth_subject == "google-sub-1"
    assert result.code
    assert result.tokens is None


def test_federated_login_reuses_linked_account(db, auth):
    first = auth.complete_federated_login(db, CTX, _google())
    second = auth.complete_federated_login(db, CTX, _google(email="changed@example.com"))
    assert first.account.id == second.account.id
    assert db.query(Account).count() == 1


def test_federated_login_links_existing_email_account(db, auth, account_factory):
    existing = account_factory(db, email="fed@example.com", is_email_verified=False)
    result = auth.complete_federated_login(db, CTX, _google())

    assert result.account.id == existing.id
    db.expire_all()
    linked = db.get(Account, existing.id)
    assert linked.oauth_provider == PROVIDER_GOOGLE
    assert linked.is_email_verified is True
    # Password login keeps working for the linked account.
    assert auth.login(db, CTX, "fed@example.com", PASSWORD).account.id == existing.id


def test_federated_login_direct_delivery(db, auth):
    result = auth.complete_federated_login(db, CTX, _google(), deliver=DELIVER_DIRECT)
    assert result.code is None
    assert result.tokens.access_token


def test_code_exchange_is_single_use(db, auth):
    issued = auth.complete_federated_login(db, CTX, _google())

    exchanged = auth.exchange_code(db, CTX, issued.code)
    assert exchanged.account.email == "fed@example.com"
    assert auth.refresh(db, CTX, exchanged.tokens.refresh_token).account.id == exchanged.account.id

    with pytest.raises(CodeInvalidOrExpired):
        auth.exchange_code(db, CTX, issued.code)


def test_code_exchange_rejects_expired_code(db, auth, clock):
    issued = auth.complete_federated_login(db, CTX, _google())
    clock.advance(seconds=settings.OAUTH_CODE_TTL_SECONDS + 1)
    with pytest.raises(CodeInvalidOrExpired):
        auth.exchange_code(db, CTX, issued.code)


# Email verification and password reset


def test_email_verification_flow(db, auth, notifier):
    result = auth.register(db, CTX, "verify@example.com", PASSWORD)
    token = _link_token(notifier.send_verification)

    view = auth.verify_email(db, token)
    assert view.is_email_verified is True
    notifier.send_welcome.assert_called_once()

    # A second click on the same link is harmless.
    assert auth.verify_email(db, token).id == result.account.id
    assert _actions(db, result.account.id).count(audit.EMAIL_VERIFIED) == 1


def test_verify_email_rejects_unknown_token(db, auth):
    with pytest.raises(AccountTokenInvalid):
        auth.verify_email(db, "not-a-token")


def test_resend_verification_respects_cooldown(db, auth, notifier, clock):
    auth.register(db, CTX, "resend@example.com", PASSWORD)
    assert notifier.send_verification.call_count == 1

    auth.request_email_verification(db, CTX, "resend@example.com")
    assert notifier.send_verification.call_count == 1

    clock.advance(seconds=settings.EMAIL_RESEND_COOLDOWN_SECONDS + 5)
    auth.request_email_verification(db, CTX, "resend@example.com")
    assert notifier.send_verification.call_count == 2

    auth.request_email_verification(db, CTX, "unknown@example.com")
    assert notifier.send_verification.call_count == 2


def test_password_reset_flow(db, auth, notifier, test_account):
    before = auth.login(db, CTX, test_account.email, PASSWORD)

    auth.forgot_password(db, CTX, test_account.email)
    token = _link_token(notifier.send_password_reset)
    auth.reset_password(db, CTX, token, "brand-new-password")

    with pytest.raises(TokenInvalid):
        auth.refresh(db, CTX, before.tokens.refresh_token)
    with pytest.raises(InvalidCredentials):
        auth.login(db, CTX, test_account.email, PASSWORD)
    assert auth.login(db, CTX, test_account.email, "brand-new-password").account.id == test_account.id
    notifier.send_password_changed.assert_called_once()

    with pytest.raises(AccountTokenInvalid):
        auth.reset_password(db, CTX, token, "another-password")


def test_password_reset_unlocks_account(db, auth, notifier, test_account):
    for _ in range(settings.LOGIN_MAX_ATTEMPTS):
        with pytest.raises(InvalidCredentials):
            auth.login(db, CTX, test_account.email, "wrong-password")

    auth.forgot_password(db, CTX, test_account.email)
    auth.reset_password(db, CTX, _link_token(notifier.send_password_reset), "brand-new-password")

    assert auth.login(db, CTX, test_account.email, "brand-new-password").account.id == test_account.id


def test_forgot_password_for_unknown_email_is_silent(db, auth, notifier):
    auth.forgot_password(db, CTX, "nobody@example.com")
    notifier.send_password_reset.assert_not_called()


def test_validate_reset_token_leaves_token_usable(db, auth, notifier, test_account):
    auth.forgot_password(db, CTX, test_account.email)
    token = _link_token(notifier.send_password_reset)

    assert auth.validate_reset_token(db, token) is True
    assert auth.validate_reset_token(db, token) is True
    assert auth.validate_reset_token(db, "unknown-token") is False

    auth.reset_password(db, CTX, token, "brand-new-password")
    assert auth.validate_reset_token(db, token) is False


def test_validate_reset_token_rejects_expired_token(db, auth, notifier, test_account, clock):
    auth.forgot_password(db, CTX, test_account.email)
    token = _link_token(notifier.send_password_reset)

    clock.advance(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES + 1)
    assert auth.validate_reset_token(db, token) is False


def test_send_verification_for_principal(db, auth, notifier, account_factory, test_account):
    pending = account_factory(db, email="pending@example.com", is_email_verified=False)

    assert auth.send_verification(db, _authed(pending.id)) is True
    notifier.send_verification.assert_called_once()
    assert notifier.send_verification.call_args[0][0] == "pending@example.com"

    assert auth.send_verification(db, _authed(test_account.id)) is False
    assert notifier.send_verification.call_count == 1

    with pytest.raises(TokenInvalid):
        auth.send_verification(db, CTX)


def test_change_password(db, auth, test_account):
    ctx = _authed(test_account.id)
    with pytest.raises(InvalidCredentials):
        auth.change_password(db, ctx, "wrong-password", "another-password")
    with pytest.raises(PasswordUnchanged):
        auth.change_password(db, ctx, PASSWORD, PASSWORD)

    auth.change_password(db, ctx, PASSWORD, "another-password")
    assert auth.login(db, CTX, test_account.email, "another-password").account.id == test_account.id


# Audit


def test_audit_failure_does_not_propagate():
    db = MagicMock()
    db.commit.side_effect = SQLAlchemyError("disk full")

    assert AuditSink().record(db, audit.LOGIN_SUCCESS, 1, "127.0.0.1", "pytest") is False
    db.rollback.assert_called_once()


def test_audit_failure_does_not_undo_login(db, auth, test_account):
    with patch.object(AuditSink, "record", return_value=False) as record:
        result = auth.login(db, CTX, test_account.email, PASSWORD)
    record.assert_called_once()
    assert db.get(AuthSession, result.session_id) is not None


# Timing


def test_unknown_email_and_wrong_password_take_similar_time(db, auth, test_account):
    def elapsed(email: str) -> float:
        start = time.perf_counter()
        with pytest.raises((InvalidCredentials, AccountLocked)):
            auth.login(db, CTX, email, "wrong-password")
        return time.perf_counter() - start

    unknown = sorted(elapsed("nobody@example.com") for _ in range(7))
    known = sorted(elapsed(test_account.email) for _ in range(7))

    assert abs(unknown[3] - known[3]) < 0.05
