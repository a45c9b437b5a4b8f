"""Configuration checks run once from the application lifespan.

Problems that would make the service insecure or unreachable are collected
and raised together so an operator sees every bad setting in one restart.
"""
import logging
from urllib.parse import urlparse

from authcore.config import Settings
from authcore.services.errors import InsecureSigningSecret
from authcore.services.token_codec import validate_signing_secret

logger = logging.getLogger(__name__)

SUPPORTED_DB_SCHEMES = {"sqlite", "postgres", "postgresql", "postgresql+psycopg"}
COOKIE_SAMESITE_VALUES = {"lax", "strict", "none"}


def is_http_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def unquote(value: str) -> str:
    """Drop one pair of surrounding quotes left over from .env editing."""
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1].strip()
    return value


def parse_cors_origins(raw: str) -> list[str]:
    return [unquote(part) for part in raw.split(",") if part.strip()]


def validate_database_url(database_url: str) -> None:
    parsed = urlparse(database_url)
    if not parsed.scheme:
        raise RuntimeError("DATABASE_URL is missing URL scheme (expected postgresql:// or sqlite://).")
    if parsed.scheme not in SUPPORTED_DB_SCHEMES:
        raise RuntimeError(f"DATABASE_URL has unsupported scheme '{parsed.scheme}'.")
    if parsed.scheme == "sqlite":
        return
    if not parsed.hostname:
        raise RuntimeError("DATABASE_URL is missing host.")
    if not parsed.path.lstrip("/"):
        raise RuntimeError("DATABASE_URL is missing database name in path.")


def describe_database_url(database_url: str) -> str:
    """Credential-free summary of DATABASE_URL for startup logs."""
    parsed = urlparse(database_url)
    summary = (
        f"scheme={parsed.scheme or '<missing>'}, host={parsed.hostname or '<missing>'}, "
        f"port={parsed.port or '<default>'}, database={parsed.path.lstrip('/') or '<missing>'}"
    )
    if parsed.scheme.startswith("postgres") and "sslmode" not in parsed.query:
        summary += " (no sslmode in query; managed databases often need sslmode=require)"
    return summary


def validate_settings(settings: Settings) -> None:
    errors = []

    try:
        validate_signing_secret(settings.JWT_SECRET)
    except InsecureSigningSecret as exc:
        errors.append(f"JWT_SECRET rejected: {exc}")

    for name in ("BASE_URL", "FRONTEND_URL"):
        if not is_http_url(unquote(getattr(settings, name))):
            errors.append(f"{name} must be an absolute http(s) URL.")

    origins = parse_cors_origins(settings.CORS_ORIGINS)
    if not origins:
        errors.append("CORS_ORIGINS must contain at least one comma-separated origin URL.")
    bad_origins = [origin for origin in origins if not is_http_url(origin)]
    if bad_origins:
        errors.append(f"CORS_ORIGINS contains invalid URL(s): {', '.join(bad_origins)}")

    if settings.COOKIE_SAMESITE not in COOKIE_SAMESITE_VALUES:
        errors.append("COOKIE_SAMESITE must be one of: lax, strict, none.")
    elif settings.COOKIE_SAMESITE == "none" and not settings.COOKIE_SECURE:
        errors.append("COOKIE_SAMESITE=none requires COOKIE_SECURE=true.")

    if not settings.COOKIE_SECURE:
        logger.warning("COOKIE_SECURE is off; auth cookies will also be sent over plain HTTP.")
    if not settings.GOOGLE_CLIENT_ID:
        logger.warning("GOOGLE_CLIENT_ID is not set; Google sign-in is disabled.")

    if errors:
        raise RuntimeError("Startup configuration rejected: " + " | ".join(errors))
