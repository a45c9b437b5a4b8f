from authcore.models.database import Base, get_db
from authcore.models.account import Account
from authcore.models.auth_token import AccountToken, AuditLog, AuthSession, OAuthAuthorizationCode

__all__ = [
    "Base",
    "get_db",
    "Account",
    "AccountToken",
    "AuditLog",
    "AuthSession",
    "OAuthAuthorizationCode",
]
