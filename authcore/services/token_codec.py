import enum
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from jose import ExpiredSignatureError, JWTError, jwt
from jose.exceptions import JWTClaimsError

from authcore.services.clock import Clock, utcnow
from authcore.services.errors import InsecureSigningSecret, TokenInvalid

logger = logging.getLogger(__name__)

MIN_SECRET_LENGTH = 64
PLACEHOLDER_SECRETS = (
    "change-me-in-production",
    "CHANGE_ME_IN_PRODUCTION",
    "changeme",
    "secret",
)

CLAIM_USER_ID = "uid"
CLAIM_ROLE = "role"
CLAIM_TYPE = "type"


class TokenKind(str, enum.Enum):
    ACCESS = "access"
    REFRESH = "refresh"


@dataclass(frozen=True)
class VerifiedToken:
    valid: bool
    account_id: int | None = None
    email: str | None = None
    role: str | None = None
    kind: TokenKind | None = None


INVALID = VerifiedToken(valid=False)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int
    refresh_expires_in: int


def validate_signing_secret(secret: str | None) -> None:
    """Refuse placeholder or short secrets. Called before anything is signed."""
    value = (secret or "").strip()
    if not value:
        raise InsecureSigningSecret("JWT_SECRET is required.")
    lowered = value.lower()
    for placeholder in PLACEHOLDER_SECRETS:
        if lowered.startswith(placeholder.lower()):
            raise InsecureSigningSecret(
                "JWT_SECRET uses a placeholder value. "
                "Generate one with: openssl rand -base64 64"
            )
    if len(value) < MIN_SECRET_LENGTH:
        raise InsecureSigningSecret(
            f"JWT_SECRET is too short ({len(value)} characters); "
            f"at least {MIN_SECRET_LENGTH} characters (512 bits) are required."
        )


def hash_token(raw_token: str) -> str:
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class TokenCodec:
    """Signs and verifies access/refresh bearer tokens (HS256 JWT)."""

    def __init__(
        self,
        secret: str,
        issuer: str,
        audience: str,
        access_ttl: timedelta = timedelta(minutes=15),
        refresh_ttl: timedelta = timedelta(days=7),
        algorithm: str = "HS256",
        clock: Clock = utcnow,
    ) -> None:
        validate_signing_secret(secret)
        self._secret = secret
        self.issuer = issuer
        self.audience = audience
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl
        self.algorithm = algorithm
        self._clock = clock
        logger.info("Token signing secret validated (%s bits)", len(secret) * 8)

    def ttl_for(self, kind: TokenKind) -> timedelta:
        return self.access_ttl if kind == TokenKind.ACCESS else self.refresh_ttl

    def issue(self, account_id: int, email: str, role: str, kind: TokenKind) -> str:
        kind = TokenKind(kind)
        now = self._clock()
        claims = {
            "iss": self.issuer,
            "aud": self.audience,
            "sub": email,
            CLAIM_USER_ID: str(account_id),
            CLAIM_ROLE: role,
            CLAIM_TYPE: kind.value,
            "iat": now,
            "exp": now + self.ttl_for(kind),
            "jti": secrets.token_hex(8),
        }
        return jwt.encode(claims, self._secret, algorithm=self.algorithm)

    def issue_pair(self, account_id: int, email: str, role: str) -> TokenPair:
        return TokenPair(
            access_token=self.issue(account_id, email, role, TokenKind.ACCESS),
            refresh_token=self.issue(account_id, email, role, TokenKind.REFRESH),
            access_expires_in=int(self.access_ttl.total_seconds()),
            refresh_expires_in=int(self.refresh_ttl.total_seconds()),
        )

    def verify(self, token: str, expected_kind: TokenKind | None = None) -> VerifiedToken:
        if not token:
            return INVALID
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                audience=self.audience,
                issuer=self.issuer,
            )
        except ExpiredSignatureError:
            logger.debug("Rejected expired token")
            return INVALID
        except JWTClaimsError as exc:
            logger.warning("Rejected token with bad claims: %s", exc)
            return INVALID
        except JWTError as exc:
            logger.warning("Rejected malformed or badly signed token: %s", exc)
            return INVALID

        try:
            kind = TokenKind(payload.get(CLAIM_TYPE))
        except ValueError:
            logger.warning("Rejected token without a recognized kind")
            return INVALID
        if expected_kind is not None and kind != TokenKind(expected_kind):
            logger.warning("Rejected %s token where %s was required", kind.value, TokenKind(expected_kind).value)
            return INVALID

        try:
            account_id = int(payload.get(CLAIM_USER_ID))
        except (TypeError, ValueError):
            logger.warning("Rejected token without a usable account id")
            return INVALID

        return VerifiedToken(
            valid=True,
            account_id=account_id,
            email=payload.get("sub"),
            role=payload.get(CLAIM_ROLE),
            kind=kind,
        )

    def require(self, token: str, kind: TokenKind) -> VerifiedToken:
        verified = self.verify(token, expected_kind=kind)
        if not verified.valid:
            raise TokenInvalid()
        return verified
