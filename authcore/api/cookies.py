from fastapi import Request, Response

from authcore.config import settings
from authcore.services.token_codec import TokenPair

ACCESS_TOKEN_COOKIE = "access_token"
REFRESH_TOKEN_COOKIE = "refresh_token"
ACCESS_COOKIE_PATH = "/"
REFRESH_COOKIE_PATH = "/api/auth"


def _set_cookie(response: Response, name: str, value: str, path: str, max_age: int) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        path=path,
        domain=settings.COOKIE_DOMAIN,
        secure=settings.COOKIE_SECURE,
        httponly=True,
        samesite=settings.COOKIE_SAMESITE,
    )


def set_auth_cookies(response: Response, tokens: TokenPair) -> None:
    _set_cookie(response, ACCESS_TOKEN_COOKIE, tokens.access_token, ACCESS_COOKIE_PATH, tokens.access_expires_in)
    _set_cookie(response, REFRESH_TOKEN_COOKIE, tokens.refresh_token, REFRESH_COOKIE_PATH, tokens.refresh_expires_in)


def clear_auth_cookies(response: Response) -> None:
    _set_cookie(response, ACCESS_TOKEN_COOKIE, "", ACCESS_COOKIE_PATH, 0)
    _set_cookie(response, REFRESH_TOKEN_COOKIE, "", REFRESH_COOKIE_PATH, 0)


def refresh_token_from(request: Request, body_token: str | None) -> str | None:
    if body_token:
        return body_token
    return request.cookies.get(REFRESH_TOKEN_COOKIE)
