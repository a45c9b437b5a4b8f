"""Explicit wiring of the authentication components."""
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Callable

from sqlalchemy.orm import Session

from authcore.config import Settings, settings
from authcore.services.audit import AuditSink
from authcore.services.auth_orchestrator import AuthOrchestrator
from authcore.services.brute_force import BruteForceGuard
from authcore.services.clock import Clock, utcnow
from authcore.services.email_service import EmailNotifier
from authcore.services.maintenance import Scheduler, register_default_tasks
from authcore.services.oauth_codes import OneTimeCodeBroker
from authcore.services.rate_limiter import RateLimiter
from authcore.services.session_store import SessionStore
from authcore.services.token_codec import TokenCodec


@dataclass
class AuthServices:
    codec: TokenCodec
    sessions: SessionStore
    rate_limiter: RateLimiter
    guard: BruteForceGuard
    codes: OneTimeCodeBroker
    orchestrator: AuthOrchestrator
    scheduler: Scheduler


def build_auth_services(
    config: Settings,
    session_factory: Callable[[], Session],
    clock: Clock = utcnow,
    notifier: EmailNotifier | None = None,
) -> AuthServices:
    codec = TokenCodec(
        secret=config.JWT_SECRET,
        issuer=config.JWT_ISSUER,
        audience=config.JWT_AUDIENCE,
        access_ttl=timedelta(minutes=config.JWT_ACCESS_EXPIRE_MINUTES),
        refresh_ttl=timedelta(days=config.JWT_REFRESH_EXPIRE_DAYS),
        algorithm=config.JWT_ALGORITHM,
        clock=clock,
    )
    sessions = SessionStore(clock=clock)
    guard = BruteForceGuard(
        max_attempts=config.LOGIN_MAX_ATTEMPTS,
        lock_minutes=config.LOGIN_LOCK_MINUTES,
        clock=clock,
    )
    codes = OneTimeCodeBroker(ttl_seconds=config.OAUTH_CODE_TTL_SECONDS, clock=clock)
    rate_limiter = RateLimiter(
        idle_ttl_seconds=config.RATE_LIMIT_IDLE_SECONDS,
        max_buckets=config.RATE_LIMIT_MAX_BUCKETS,
    )
    orchestrator = AuthOrchestrator(
        codec=codec,
        sessions=sessions,
        guard=guard,
        codes=codes,
        audit_sink=AuditSink(),
        notifier=notifier or EmailNotifier(),
        settings=config,
        clock=clock,
    )
    scheduler = register_default_tasks(
        Scheduler(clock=clock),
        session_factory,
        sessions,
        codes,
        revoked_retention_days=config.SESSION_REVOKED_RETENTION_DAYS,
    )
    return AuthServices(
        codec=codec,
        sessions=sessions,
        rate_limiter=rate_limiter,
        guard=guard,
        codes=codes,
        orchestrator=orchestrator,
        scheduler=scheduler,
    )


@lru_cache(maxsize=1)
def get_auth_services() -> AuthServices:
    from authcore.models.database import SessionLocal

    return build_auth_services(settings, SessionLocal)
