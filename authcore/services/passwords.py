import secrets

from passlib.context import CryptContext

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")

# Hash of a random secret, produced with the live context so that verifying
# against it costs the same as verifying a real account hash.
_DUMMY_HASH = pwd_context.hash(secrets.token_urlsafe(32))


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    """Check a password, burning a full verification when there is no hash."""
    if not hashed:
        pwd_context.verify(plain, _DUMMY_HASH)
        return False
    return pwd_context.verify(plain, hashed)


def verify_dummy(plain: str) -> bool:
    pwd_context.verify(plain, _DUMMY_HASH)
    return False
