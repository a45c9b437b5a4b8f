"""Google ID token verification for the federated login flow."""
import logging
from dataclasses import dataclass

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token

from authcore.config import settings
from authcore.models.account import PROVIDER_GOOGLE

logger = logging.getLogger(__name__)

GOOGLE_ISSUERS = {"https://accounts.google.com", "accounts.google.com"}


class GoogleTokenError(Exception):
    pass


@dataclass(frozen=True)
class FederatedIdentity:
    provider: str
    subject: str
    email: str
    display_name: str | None = None
    avatar_url: str | None = None


def verify_google_id_token(token: str) -> FederatedIdentity:
    if not settings.GOOGLE_CLIENT_ID:
        raise GoogleTokenError("GOOGLE_CLIENT_ID is not configured")
    try:
        claims = id_token.verify_oauth2_token(
            token,
            google_requests.Request(),
            settings.GOOGLE_CLIENT_ID,
            clock_skew_in_seconds=60,
        )
    except ValueError as exc:
        logger.warning("Google ID token rejected: %s", exc)
        raise GoogleTokenError("Invalid Google token") from exc

    if claims.get("iss") not in GOOGLE_ISSUERS:
        raise GoogleTokenError("Unexpected token issuer")
    email = claims.get("email")
    if not email or not claims.get("email_verified", False):
        raise GoogleTokenError("Google account has no verified email")

    return FederatedIdentity(
        provider=PROVIDER_GOOGLE,
        subject=str(claims["sub"]),
        email=email,
        display_name=claims.get("name") or claims.get("given_name"),
        avatar_url=claims.get("picture"),
    )
