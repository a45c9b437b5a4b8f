from sqlalchemy import Boolean, Column, DateTime, Integer, String, UniqueConstraint
from sqlalchemy.sql import func

from authcore.models.database import Base

ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"

PROVIDER_EMAIL = "EMAIL"
PROVIDER_GOOGLE = "GOOGLE"


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("oauth_provider", "oauth_subject", name="uq_accounts_oauth_identity"),
    )

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    display_name = Column(String(255), nullable=True)
    password_hash = Column(String(255), nullable=True)  # null for federated-only accounts
    role = Column(String(32), nullable=False, default=ROLE_USER)
    is_email_verified = Column(Boolean, default=False, nullable=False)
    email_verified_at = Column(DateTime(timezone=True), nullable=True)
    auth_provider = Column(String(32), nullable=False, default=PROVIDER_EMAIL)
    oauth_provider = Column(String(32), nullable=True)
    oauth_subject = Column(String(255), nullable=True)
    avatar_url = Column(String(1024), nullable=True)
    failed_login_attempts = Column(Integer, nullable=False, default=0)
    last_failed_login_at = Column(DateTime(timezone=True), nullable=True)
    locked_until = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


def normalize_email(email: str) -> str:
    return email.strip().lower()
