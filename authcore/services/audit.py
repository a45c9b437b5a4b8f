import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from authcore.models import AuditLog

logger = logging.getLogger(__name__)

LOGIN_SUCCESS = "LOGIN_SUCCESS"
LOGIN_FAILED = "LOGIN_FAILED"
ACCOUNT_LOCKED = "ACCOUNT_LOCKED"
REGISTER = "REGISTER"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
LOGOUT = "LOGOUT"
LOGOUT_ALL = "LOGOUT_ALL"
OAUTH_LOGIN = "OAUTH_LOGIN"
OAUTH_CODE_EXCHANGED = "OAUTH_CODE_EXCHANGED"
EMAIL_VERIFIED = "EMAIL_VERIFIED"
PASSWORD_RESET_REQUESTED = "PASSWORD_RESET_REQUESTED"
PASSWORD_CHANGED = "PASSWORD_CHANGED"


class AuditSink:
    """Append-only audit trail. A failed write is logged and never propagates."""

    def record(
        self,
        db: Session,
        action: str,
        account_id: int | None = None,
        ip: str | None = None,
        user_agent: str | None = None,
        **details: Any,
    ) -> bool:
        try:
            db.add(
                AuditLog(
                    action=action,
                    account_id=account_id,
                    ip_address=ip,
                    user_agent=user_agent[:512] if user_agent else None,
                    details=details or None,
                )
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("Failed to write audit entry action=%s account id=%s", action, account_id)
            return False
        return True
