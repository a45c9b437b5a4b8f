import os
from pathlib import Path

from dotenv import load_dotenv

env_path = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(dotenv_path=env_path)


class Settings:
    @staticmethod
    def _get_int(name: str, default: int) -> int:
        return int(os.getenv(name, str(default)))

    @staticmethod
    def _get_bool(name: str, default: bool) -> bool:
        raw = os.getenv(name)
        if raw is None or not raw.strip():
            return default
        return raw.strip().lower() in {"1", "true", "yes", "on"}

    @property
    def BASE_URL(self) -> str:
        return os.getenv("BASE_URL", "http://localhost:8000")

    @property
    def FRONTEND_URL(self) -> str:
        return os.getenv("FRONTEND_URL", "http://localhost:5173")

    @property
    def DATABASE_URL(self) -> str:
        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL is required")
        return database_url

    @property
    def DB_CONNECT_RETRIES(self) -> int:
        return self._get_int("DB_CONNECT_RETRIES", 10)

    @property
    def DB_CONNECT_RETRY_DELAY_SECONDS(self) -> int:
        return self._get_int("DB_CONNECT_RETRY_DELAY_SECONDS", 2)

    @property
    def CORS_ORIGINS(self) -> str:
        return os.getenv("CORS_ORIGINS", "http://localhost:5173")

    # Tokens

    @property
    def JWT_SECRET(self) -> str:
        return os.getenv("JWT_SECRET", "change-me-in-production")

    @property
    def JWT_ALGORITHM(self) -> str:
        return os.getenv("JWT_ALGORITHM", "HS256")

    @property
    def JWT_ISSUER(self) -> str:
        return os.getenv("JWT_ISSUER", "authcore-api")

    @property
    def JWT_AUDIENCE(self) -> str:
        return os.getenv("JWT_AUDIENCE", "authcore-app")

    @property
    def JWT_ACCESS_EXPIRE_MINUTES(self) -> int:
        return self._get_int("JWT_ACCESS_EXPIRE_MINUTES", 15)

    @property
    def JWT_REFRESH_EXPIRE_DAYS(self) -> int:
        return self._get_int("JWT_REFRESH_EXPIRE_DAYS", 7)

    @property
    def OAUTH_CODE_TTL_SECONDS(self) -> int:
        return self._get_int("OAUTH_CODE_TTL_SECONDS", 30)

    @property
    def SESSION_REVOKED_RETENTION_DAYS(self) -> int:
        return self._get_int("SESSION_REVOKED_RETENTION_DAYS", 30)

    # Rate limiting and lockout

    @property
    def RATE_LIMIT_ENABLED(self) -> bool:
        return self._get_bool("RATE_LIMIT_ENABLED", True)

    @property
    def RATE_LIMIT_PER_MINUTE(self) -> int:
        return self._get_int("RATE_LIMIT_PER_MINUTE", 60)

    @property
    def RATE_LIMIT_AUTH_PER_MINUTE(self) -> int:
        return self._get_int("RATE_LIMIT_AUTH_PER_MINUTE", 10)

    @property
    def RATE_LIMIT_IDLE_SECONDS(self) -> int:
        return self._get_int("RATE_LIMIT_IDLE_SECONDS", 3600)

    @property
    def RATE_LIMIT_MAX_BUCKETS(self) -> int:
        return self._get_int("RATE_LIMIT_MAX_BUCKETS", 100_000)

    @property
    def LOGIN_MAX_ATTEMPTS(self) -> int:
        return self._get_int("LOGIN_MAX_ATTEMPTS", 5)

    @property
    def LOGIN_LOCK_MINUTES(self) -> int:
        return self._get_int("LOGIN_LOCK_MINUTES", 15)

    @property
    def TRUSTED_PROXIES(self) -> set[str]:
        raw = os.getenv("TRUSTED_PROXIES", "127.0.0.1,::1")
        return {item.strip() for item in raw.split(",") if item.strip()}

    # Cookies

    @property
    def COOKIE_SECURE(self) -> bool:
        return self._get_bool("COOKIE_SECURE", False)

    @property
    def COOKIE_SAMESITE(self) -> str:
        return os.getenv("COOKIE_SAMESITE", "lax").lower()

    @property
    def COOKIE_DOMAIN(self) -> str | None:
        return os.getenv("COOKIE_DOMAIN") or None

    # Account tokens and email

    @property
    def EMAIL_VERIFY_TOKEN_EXPIRE_MINUTES(self) -> int:
        return self._get_int("EMAIL_VERIFY_TOKEN_EXPIRE_MINUTES", 24 * 60)

    @property
    def PASSWORD_RESET_TOKEN_EXPIRE_MINUTES(self) -> int:
        return self._get_int("PASSWORD_RESET_TOKEN_EXPIRE_MINUTES", 60)

    @property
    def EMAIL_RESEND_COOLDOWN_SECONDS(self) -> int:
        return self._get_int("EMAIL_RESEND_COOLDOWN_SECONDS", 60)

    @property
    def EMAIL_VERIFY_PATH(self) -> str:
        return os.getenv("EMAIL_VERIFY_PATH", "/auth/verify-email")

    @property
    def PASSWORD_RESET_PATH(self) -> str:
        return os.getenv("PASSWORD_RESET_PATH", "/auth/reset-password")

    @property
    def OAUTH_CALLBACK_PATH(self) -> str:
        return os.getenv("OAUTH_CALLBACK_PATH", "/auth/callback")

    @property
    def SMTP_HOST(self) -> str:
        return os.getenv("SMTP_HOST", "")

    @property
    def SMTP_PORT(self) -> int:
        return self._get_int("SMTP_PORT", 587)

    @property
    def SMTP_USER(self) -> str:
        return os.getenv("SMTP_USER", "")

    @property
    def SMTP_PASSWORD(self) -> str:
        return os.getenv("SMTP_PASSWORD", "")

    @property
    def SMTP_USE_TLS(self) -> bool:
        return self._get_bool("SMTP_USE_TLS", True)

    @property
    def SMTP_FROM_EMAIL(self) -> str:
        return os.getenv("SMTP_FROM_EMAIL", "")

    @property
    def SMTP_FROM_NAME(self) -> str:
        return os.getenv("SMTP_FROM_NAME", "Authcore")

    # Federated login

    @property
    def GOOGLE_CLIENT_ID(self) -> str:
        return os.getenv("GOOGLE_CLIENT_ID", "")

    @property
    def MAINTENANCE_ENABLED(self) -> bool:
        return self._get_bool("MAINTENANCE_ENABLED", True)


settings = Settings()
