"""Register / login / refresh / logout / OAuth workflows.

Each public method takes the SQLAlchemy session and the request context
explicitly, commits its primary work, and only then writes audit entries so a
failing audit write can never undo an authentication outcome.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from authcore.config import Settings
from authcore.models import Account, AuthSession
from authcore.models.account import PROVIDER_EMAIL, ROLE_USER, normalize_email
from authcore.services import account_tokens, audit
from authcore.services.audit import AuditSink
from authcore.services.brute_force import BruteForceGuard
from authcore.services.clock import Clock, as_utc, utcnow
from authcore.services.email_service import EmailNotifier, build_frontend_link
from authcore.services.errors import (
    AccountLocked,
    AccountTokenInvalid,
    CodeInvalidOrExpired,
    DuplicateAccount,
    InvalidCredentials,
    NotFound,
    PasswordUnchanged,
    TokenInvalid,
)
from authcore.services.google_identity import FederatedIdentity
from authcore.services.oauth_codes import OneTimeCodeBroker
from authcore.services.passwords import get_password_hash, verify_dummy, verify_password
from authcore.services.session_store import SessionStore
from authcore.services.token_codec import TokenCodec, TokenKind, TokenPair, hash_token

logger = logging.getLogger(__name__)

DELIVER_CODE = "code"
DELIVER_DIRECT = "direct"


@dataclass(frozen=True)
class Principal:
    account_id: int
    email: str | None = None
    role: str | None = None


@dataclass(frozen=True)
class RequestContext:
    ip: str | None = None
    user_agent: str | None = None
    principal: Principal | None = None


@dataclass(frozen=True)
class AccountView:
    id: int
    email: str
    display_name: str | None
    role: str
    is_email_verified: bool

    @classmethod
    def from_account(cls, account: Account) -> "AccountView":
        return cls(
            id=account.id,
            email=account.email,
            display_name=account.display_name,
            role=account.role,
            is_email_verified=bool(account.is_email_verified),
        )


@dataclass(frozen=True)
class AuthResult:
    tokens: TokenPair
    account: AccountView
    session_id: int | None = None


@dataclass(frozen=True)
class FederatedResult:
    account: AccountView
    code: str | None = None
    tokens: TokenPair | None = None


class AuthOrchestrator:
    def __init__(
        self,
        codec: TokenCodec,
        sessions: SessionStore,
        guard: BruteForceGuard,
        codes: OneTimeCodeBroker,
        audit_sink: AuditSink,
        notifier: EmailNotifier,
        settings: Settings,
        clock: Clock = utcnow,
    ) -> None:
        self.codec = codec
        self.sessions = sessions
        self.guard = guard
        self.codes = codes
        self.audit = audit_sink
        self.notifier = notifier
        self.settings = settings
        self._clock = clock

    # Credentials

    def register(
        self,
        db: Session,
        ctx: RequestContext,
        email: str,
        password: str,
        display_name: str | None = None,
    ) -> AuthResult:
        email = normalize_email(email)
        if self._find_by_email(db, email):
            logger.info("Registration rejected: email already registered")
            raise DuplicateAccount()

        account = Account(
            email=email,
            display_name=display_name,
            password_hash=get_password_hash(password),
            role=ROLE_USER,
            auth_provider=PROVIDER_EMAIL,
            is_email_verified=False,
            failed_login_attempts=0,
        )
        db.add(account)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            logger.info("Registration lost a race on a duplicate email")
            raise DuplicateAccount()

        verify_token, _ = account_tokens.issue_account_token(
            db,
            account_id=account.id,
            purpose=account_tokens.PURPOSE_EMAIL_VERIFY,
            expires_in_minutes=self.settings.EMAIL_VERIFY_TOKEN_EXPIRE_MINUTES,
            now=self._clock(),
        )
        result = self._start_session(db, ctx, account)
        db.commit()
        logger.info("Registered account id=%s", account.id)

        self.notifier.send_verification(
            account.email,
            account.display_name,
            build_frontend_link(self.settings.EMAIL_VERIFY_PATH, token=verify_token),
        )
        self.audit.record(db, audit.REGISTER, account.id, ctx.ip, ctx.user_agent)
        return result

    def login(self, db: Session, ctx: RequestContext, email: str, password: str) -> AuthResult:
        email = normalize_email(email)
        account = self._find_by_email(db, email)

        if account is None:
            # Same hashing cost as a real comparison so unknown emails cannot be timed.
            verify_dummy(password)
            logger.info("Login failed: unknown account")
            self.audit.record(
                db, audit.LOGIN_FAILED, None, ctx.ip, ctx.user_agent, email=email, reason="unknown_account"
            )
            raise InvalidCredentials()

        # Password comparison always runs before the lock check.
        password_ok = verify_password(password, account.password_hash)

        if self.guard.is_locked(account, self._clock()):
            logger.warning("Login attempt on locked account id=%s", account.id)
            raise AccountLocked(as_utc(account.locked_until))

        if not password_ok:
            locked_until = self.guard.record_failure(db, account.id)
            db.commit()
            logger.info("Login failed: wrong password for account id=%s", account.id)
            self.audit.record(
                db, audit.LOGIN_FAILED, account.id, ctx.ip, ctx.user_agent, reason="invalid_password"
            )
            if locked_until is not None:
                self.audit.record(
                    db, audit.ACCOUNT_LOCKED, account.id, ctx.ip, ctx.user_agent,
                    locked_until=locked_until.isoformat(),
                )
            raise InvalidCredentials()

        self.guard.record_success(db, account.id)
        result = self._start_session(db, ctx, account)
        db.commit()
        logger.info("Login succeeded for account id=%s", account.id)
        self.audit.record(db, audit.LOGIN_SUCCESS, account.id, ctx.ip, ctx.user_agent)
        return result

    def change_password(self, db: Session, ctx: RequestContext, current_password: str, new_password: str) -> None:
        account = self._require_principal_account(db, ctx)
        if not verify_password(current_password, account.password_hash):
            raise InvalidCredentials("Current password is incorrect")
        if verify_password(new_password, account.password_hash):
            raise PasswordUnchanged()

        account.password_hash = get_password_hash(new_password)
        db.commit()
        logger.info("Password changed for account id=%s", account.id)
        self.notifier.send_password_changed(account.email, account.display_name)
        self.audit.record(db, audit.PASSWORD_CHANGED, account.id, ctx.ip, ctx.user_agent, method="user_change")

    # Tokens and sessions

    def refresh(self, db: Session, ctx: RequestContext, refresh_token: str) -> AuthResult:
        self.codec.require(refresh_token, TokenKind.REFRESH)

        current = self.sessions.claim_for_rotation(db, hash_token(refresh_token), self._clock())
        if current is None:
            db.rollback()
            logger.info("Refresh rejected: no valid session for presented token")
            raise TokenInvalid()

        account = db.get(Account, current.account_id)
        if account is None:
            db.rollback()
            raise TokenInvalid()

        result = self._start_session(db, ctx, account)
        self.sessions.link_replacement(db, current.id, result.session_id)
        db.commit()
        logger.info("Rotated session id=%s -> id=%s", current.id, result.session_id)
        self.audit.record(db, audit.TOKEN_REFRESHED, account.id, ctx.ip, ctx.user_agent)
        return result

    def logout(self, db: Session, ctx: RequestContext, refresh_token: str | None) -> None:
        if not refresh_token or not refresh_token.strip():
            return
        session = self.sessions.find_valid(db, hash_token(refresh_token), self._clock())
        if session is None:
            return
        self.sessions.revoke(db, session.id)
        account_id = session.account_id
        db.commit()
        logger.info("Logout for account id=%s", account_id)
        self.audit.record(db, audit.LOGOUT, account_id, ctx.ip, ctx.user_agent)

    def logout_all(self, db: Session, ctx: RequestContext) -> int:
        if ctx.principal is None:
            raise TokenInvalid()
        account_id = ctx.principal.account_id
        revoked = self.sessions.revoke_all(db, account_id)
        db.commit()
        logger.info("Revoked %s sessions for account id=%s", revoked, account_id)
        self.audit.record(db, audit.LOGOUT_ALL, account_id, ctx.ip, ctx.user_agent, revoked=revoked)
        return revoked

    # Federated login

    def complete_federated_login(
        self,
        db: Session,
        ctx: RequestContext,
        identity: FederatedIdentity,
        deliver: str = DELIVER_CODE,
    ) -> FederatedResult:
        account = self._find_or_create_federated(db, identity)
        result = self._start_session(db, ctx, account)
        code = None
        if deliver == DELIVER_CODE:
            code = self.codes.issue(
                db, account.id, result.tokens.access_token, result.tokens.refresh_token
            )
        db.commit()
        logger.info("Federated login via %s for account id=%s", identity.provider, account.id)
        self.audit.record(
            db, audit.OAUTH_LOGIN, account.id, ctx.ip, ctx.user_agent, provider=identity.provider
        )
        if code is not None:
            return FederatedResult(account=result.account, code=code)
        return FederatedResult(account=result.account, tokens=result.tokens)

    def exchange_code(self, db: Session, ctx: RequestContext, code: str) -> AuthResult:
        redeemed = self.codes.redeem(db, code, self._clock())
        if redeemed is None:
            db.rollback()
            logger.info("OAuth code exchange rejected")
            raise CodeInvalidOrExpired()

        account = db.get(Account, redeemed.account_id)
        if account is None:
            db.rollback()
            raise CodeInvalidOrExpired()
        db.commit()
        self.audit.record(db, audit.OAUTH_CODE_EXCHANGED, account.id, ctx.ip, ctx.user_agent)
        tokens = TokenPair(
            access_token=redeemed.access_token,
            refresh_token=redeemed.refresh_token,
            access_expires_in=int(self.codec.access_ttl.total_seconds()),
            refresh_expires_in=int(self.codec.refresh_ttl.total_seconds()),
        )
        return AuthResult(tokens=tokens, account=AccountView.from_account(account))

    # Email verification and password reset

    def request_email_verification(self, db: Session, ctx: RequestContext, email: str) -> None:
        account = self._find_by_email(db, normalize_email(email))
        if account is None or account.is_email_verified:
            return
        self._resend_verification(db, account)

    def send_verification(self, db: Session, ctx: RequestContext) -> bool:
        """Send a fresh verification link to the signed-in account.

        Returns False when the email is already verified; nothing is sent then.
        """
        account = self._require_principal_account(db, ctx)
        if account.is_email_verified:
            logger.debug("Verification requested for already verified account id=%s", account.id)
            return False
        self._resend_verification(db, account)
        return True

    def verify_email(self, db: Session, token: str) -> AccountView:
        record = account_tokens.consume_account_token(
            db, token, account_tokens.PURPOSE_EMAIL_VERIFY, self._clock()
        )
        if record is None:
            db.rollback()
            stale = account_tokens.find_account_token(db, token, account_tokens.PURPOSE_EMAIL_VERIFY)
            account = db.get(Account, stale.account_id) if stale else None
            if account is not None and account.is_email_verified:
                return AccountView.from_account(account)
            raise AccountTokenInvalid()

        account = db.get(Account, record.account_id)
        if account is None:
            db.rollback()
            raise AccountTokenInvalid()

        newly_verified = not account.is_email_verified
        if newly_verified:
            account.is_email_verified = True
            account.email_verified_at = self._clock()
        db.commit()

        if newly_verified:
            logger.info("Email verified for account id=%s", account.id)
            self.audit.record(db, audit.EMAIL_VERIFIED, account.id)
            self.notifier.send_welcome(account.email, account.display_name)
        return AccountView.from_account(account)

    def forgot_password(self, db: Session, ctx: RequestContext, email: str) -> None:
        account = self._find_by_email(db, normalize_email(email))
        if account is None:
            logger.info("Password reset requested for unknown account")
            return

        now = self._clock()
        account_tokens.invalidate_account_tokens(db, account.id, account_tokens.PURPOSE_PASSWORD_RESET, now)
        raw, _ = account_tokens.issue_account_token(
            db,
            account_id=account.id,
            purpose=account_tokens.PURPOSE_PASSWORD_RESET,
            expires_in_minutes=self.settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES,
            now=now,
        )
        db.commit()
        self.audit.record(db, audit.PASSWORD_RESET_REQUESTED, account.id, ctx.ip, ctx.user_agent)
        self.notifier.send_password_reset(
            account.email,
            account.display_name,
            build_frontend_link(self.settings.PASSWORD_RESET_PATH, token=raw),
        )

    def validate_reset_token(self, db: Session, token: str) -> bool:
        return account_tokens.is_account_token_valid(
            db, token, account_tokens.PURPOSE_PASSWORD_RESET, self._clock()
        )

    def reset_password(self, db: Session, ctx: RequestContext, token: str, new_password: str) -> None:
        record = account_tokens.consume_account_token(
            db, token, account_tokens.PURPOSE_PASSWORD_RESET, self._clock()
        )
        if record is None:
            db.rollback()
            raise AccountTokenInvalid()

        account = db.get(Account, record.account_id)
        if account is None:
            db.rollback()
            raise AccountTokenInvalid()

        account.password_hash = get_password_hash(new_password)
        revoked = self.sessions.revoke_all(db, account.id)
        self.guard.record_success(db, account.id)
        db.commit()
        logger.info("Password reset for account id=%s, %s sessions revoked", account.id, revoked)
        self.audit.record(db, audit.PASSWORD_CHANGED, account.id, ctx.ip, ctx.user_agent, method="password_reset")
        self.notifier.send_password_changed(account.email, account.display_name)

    # Lookups

    def get_account(self, db: Session, account_id: int) -> AccountView:
        account = db.get(Account, account_id)
        if account is None:
            raise NotFound()
        return AccountView.from_account(account)

    def list_sessions(self, db: Session, ctx: RequestContext) -> list[AuthSession]:
        if ctx.principal is None:
            raise TokenInvalid()
        return self.sessions.list_active(db, ctx.principal.account_id, self._clock())

    # Internals

    @staticmethod
    def _find_by_email(db: Session, email: str) -> Account | None:
        return db.query(Account).filter(Account.email == email).first()

    def _require_principal_account(self, db: Session, ctx: RequestContext) -> Account:
        if ctx.principal is None:
            raise TokenInvalid()
        account = db.get(Account, ctx.principal.account_id)
        if account is None:
            raise TokenInvalid()
        return account

    def _resend_verification(self, db: Session, account: Account) -> None:
        now = self._clock()
        latest = account_tokens.get_latest_account_token(db, account.id, account_tokens.PURPOSE_EMAIL_VERIFY)
        cooldown = timedelta(seconds=self.settings.EMAIL_RESEND_COOLDOWN_SECONDS)
        if latest and latest.created_at and as_utc(latest.created_at) > now - cooldown:
            logger.info("Verification resend for account id=%s skipped (cooldown)", account.id)
            return

        account_tokens.invalidate_account_tokens(db, account.id, account_tokens.PURPOSE_EMAIL_VERIFY, now)
        raw, _ = account_tokens.issue_account_token(
            db,
            account_id=account.id,
            purpose=account_tokens.PURPOSE_EMAIL_VERIFY,
            expires_in_minutes=self.settings.EMAIL_VERIFY_TOKEN_EXPIRE_MINUTES,
            now=now,
        )
        db.commit()
        self.notifier.send_verification(
            account.email,
            account.display_name,
            build_frontend_link(self.settings.EMAIL_VERIFY_PATH, token=raw),
        )

    def _start_session(self, db: Session, ctx: RequestContext, account: Account) -> AuthResult:
        tokens = self.codec.issue_pair(account.id, account.email, account.role)
        record = self.sessions.create(
            db,
            account_id=account.id,
            refresh_token_hash=hash_token(tokens.refresh_token),
            ip=ctx.ip,
            user_agent=ctx.user_agent,
            ttl=self.codec.refresh_ttl,
        )
        return AuthResult(tokens=tokens, account=AccountView.from_account(account), session_id=record.id)

    def _find_or_create_federated(self, db: Session, identity: FederatedIdentity) -> Account:
        account = (
            db.query(Account)
            .filter(
                Account.oauth_provider == identity.provider,
                Account.oauth_subject == identity.subject,
            )
            .first()
        )
        if account is not None:
            return account

        email = normalize_email(identity.email)
        account = self._find_by_email(db, email)
        if account is not None:
            logger.info("Linking %s identity to existing account id=%s", identity.provider, account.id)
            account.oauth_provider = identity.provider
            account.oauth_subject = identity.subject
            if not account.avatar_url:
                account.avatar_url = identity.avatar_url
            if not account.is_email_verified:
                account.is_email_verified = True
                account.email_verified_at = self._clock()
            db.flush()
            return account

        account = Account(
            email=email,
            display_name=identity.display_name,
            password_hash=None,
            role=ROLE_USER,
            auth_provider=identity.provider,
            oauth_provider=identity.provider,
            oauth_subject=identity.subject,
            avatar_url=identity.avatar_url,
            is_email_verified=True,
            email_verified_at=self._clock(),
            failed_login_attempts=0,
        )
        db.add(account)
        db.flush()
        logger.info("Created account id=%s from %s login", account.id, identity.provider)
        return account
