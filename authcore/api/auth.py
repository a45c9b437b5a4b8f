import logging
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from authcore.api.cookies import clear_auth_cookies, refresh_token_from, set_auth_cookies
from authcore.config import settings
from authcore.dependencies import (
    get_authenticated_context,
    get_current_principal,
    get_orchestrator,
    get_request_context,
)
from authcore.models import get_db
from authcore.services.auth_orchestrator import (
    DELIVER_CODE,
    AccountView,
    AuthOrchestrator,
    AuthResult,
    Principal,
    RequestContext,
)
from authcore.services.email_service import build_frontend_link
from authcore.services.errors import TokenInvalid
from authcore.services.google_identity import GoogleTokenError, verify_google_id_token

router = APIRouter()
logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


def _check_password_strength(value: str) -> str:
    if len(value) < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return value


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(CamelModel):
    display_name: str | None = Field(default=None, alias="displayName", max_length=255)
    email: EmailStr
    password: str = Field(max_length=128)
    confirm_password: str = Field(alias="confirmPassword")

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)

    @model_validator(mode="after")
    def validate_confirm(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("Password confirmation does not match")
        return self


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(max_length=128)

    model_config = ConfigDict(
        json_schema_extra={"examples": [{"email": "user@example.com", "password": "securepassword"}]},
        populate_by_name=True,
    )


class RefreshRequest(CamelModel):
    refresh_token: str | None = Field(default=None, alias="refreshToken")


class LogoutRequest(CamelModel):
    refresh_token: str | None = Field(default=None, alias="refreshToken")


class OAuthCodeExchangeRequest(CamelModel):
    code: str = Field(min_length=1, max_length=128)


class GoogleLoginRequest(CamelModel):
    id_token: str = Field(alias="idToken", min_length=1)
    deliver: Literal["code", "direct"] = DELIVER_CODE


class EmailVerifyRequest(CamelModel):
    email: EmailStr


class EmailVerifyConfirmRequest(CamelModel):
    token: str


class PasswordForgotRequest(CamelModel):
    email: EmailStr


class PasswordResetRequest(CamelModel):
    token: str
    password: str = Field(max_length=128)
    confirm_password: str = Field(alias="confirmPassword")

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return _check_password_strength(v)

    @model_validator(mode="after")
    def validate_confirm(self) -> "PasswordResetRequest":
        if self.password != self.confirm_password:
            raise ValueError("Password confirmation does not match")
        return self


class AccountResponse(CamelModel):
    id: int
    email: str
    display_name: str | None = Field(default=None, alias="displayName")
    role: str
    is_email_verified: bool = Field(alias="isEmailVerified")

    @classmethod
    def from_view(cls, view: AccountView) -> "AccountResponse":
        return cls(
            id=view.id,
            email=view.email,
            displayName=view.display_name,
            role=view.role,
            isEmailVerified=view.is_email_verified,
        )


class TokenResponse(CamelModel):
    access_token: str = Field(alias="accessToken")
    refresh_token: str = Field(alias="refreshToken")
    token_type: str = "bearer"
    expires_in: int = Field(alias="expiresIn")
    refresh_expires_in: int = Field(alias="refreshExpiresIn")
    user: AccountResponse


class OAuthCodeResponse(CamelModel):
    code: str
    redirect_url: str = Field(alias="redirectUrl")
    expires_in: int = Field(alias="expiresIn")


class MessageResponse(CamelModel):
    message: str


class LogoutAllResponse(CamelModel):
    message: str
    revoked: int


class ResetTokenStatusResponse(CamelModel):
    valid: bool


def _token_response(result: AuthResult, response: Response) -> TokenResponse:
    set_auth_cookies(response, result.tokens)
    return TokenResponse(
        accessToken=result.tokens.access_token,
        refreshToken=result.tokens.refresh_token,
        expiresIn=result.tokens.access_expires_in,
        refreshExpiresIn=result.tokens.refresh_expires_in,
        user=AccountResponse.from_view(result.account),
    )


@router.post(
    "/register",
    response_model=TokenResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new account",
)
def register(
    body: RegisterRequest,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    """Create an unverified account, send the verification link and sign in."""
    result = auth.register(db, ctx, body.email, body.password, body.display_name)
    return _token_response(result, response)


@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login and get access/refresh tokens",
)
def login(
    body: LoginRequest,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    """Login with email/password. Locked accounts get 423 with `lockedUntil`."""
    result = auth.login(db, ctx, body.email, body.password)
    return _token_response(result, response)


@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Rotate the refresh token",
)
def refresh_tokens(
    request: Request,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
    body: RefreshRequest | None = None,
):
    """Revoke the presented refresh token and issue a new pair.

    The token is read from the body or, when absent, from the refresh cookie.
    """
    token = refresh_token_from(request, body.refresh_token if body else None)
    if not token:
        raise TokenInvalid()
    result = auth.refresh(db, ctx, token)
    return _token_response(result, response)


@router.post(
    "/logout",
    response_model=MessageResponse,
    summary="Logout by revoking the refresh token",
)
def logout(
    request: Request,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
    body: LogoutRequest | None = None,
):
    """Revoke refresh token. Always returns success message."""
    auth.logout(db, ctx, refresh_token_from(request, body.refresh_token if body else None))
    clear_auth_cookies(response)
    return MessageResponse(message="Logged out")


@router.post(
    "/logout-all",
    response_model=LogoutAllResponse,
    summary="Revoke every session of the current account",
)
def logout_all(
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_authenticated_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    revoked = auth.logout_all(db, ctx)
    clear_auth_cookies(response)
    return LogoutAllResponse(message="Logged out from all sessions", revoked=revoked)


@router.post(
    "/oauth/google",
    summary="Complete a Google sign-in",
    responses={200: {"description": "Either an exchange code or a token pair, depending on `deliver`."}},
)
def google_login(
    body: GoogleLoginRequest,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    """Verify a Google ID token, then hand out a one-time code or the tokens."""
    try:
        identity = verify_google_id_token(body.id_token)
    except GoogleTokenError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid Google token")

    result = auth.complete_federated_login(db, ctx, identity, deliver=body.deliver)
    if result.code is not None:
        return OAuthCodeResponse(
            code=result.code,
            redirectUrl=build_frontend_link(settings.OAUTH_CALLBACK_PATH, code=result.code),
            expiresIn=settings.OAUTH_CODE_TTL_SECONDS,
        )
    return _token_response(AuthResult(tokens=result.tokens, account=result.account), response)


@router.post(
    "/oauth/exchange",
    response_model=TokenResponse,
    summary="Exchange a one-time OAuth code for tokens",
)
def exchange_oauth_code(
    body: OAuthCodeExchangeRequest,
    response: Response,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    result = auth.exchange_code(db, ctx, body.code)
    return _token_response(result, response)


@router.post(
    "/verify-email/request",
    response_model=MessageResponse,
    summary="Resend email verification link",
)
def request_email_verification(
    body: EmailVerifyRequest,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    """Resend verification email (generic success response for privacy)."""
    auth.request_email_verification(db, ctx, body.email)
    return MessageResponse(message="If the account exists, a verification email has been sent.")


@router.post(
    "/verify-email/confirm",
    response_model=MessageResponse,
    summary="Confirm email verification token",
)
def confirm_email_verification(
    body: EmailVerifyConfirmRequest,
    db: Annotated[Session, Depends(get_db)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    auth.verify_email(db, body.token)
    return MessageResponse(message="Email has been verified")


@router.post(
    "/password/forgot",
    response_model=MessageResponse,
    summary="Request password reset email",
)
def request_password_reset(
    body: PasswordForgotRequest,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    """Issue password reset token and send email (privacy-safe response)."""
    auth.forgot_password(db, ctx, body.email)
    return MessageResponse(message="If the account exists, a reset email has been sent.")


@router.get(
    "/password/reset/validate",
    response_model=ResetTokenStatusResponse,
    summary="Check a password reset token without using it",
)
def validate_reset_token(
    token: Annotated[str, Query(min_length=1)],
    db: Annotated[Session, Depends(get_db)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    return ResetTokenStatusResponse(valid=auth.validate_reset_token(db, token))


@router.post(
    "/password/reset",
    response_model=MessageResponse,
    summary="Reset password by token",
)
def reset_password(
    body: PasswordResetRequest,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_request_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    """Reset password and revoke all active sessions."""
    auth.reset_password(db, ctx, body.token, body.password)
    return MessageResponse(message="Password has been reset")


@router.get(
    "/me",
    response_model=AccountResponse,
    summary="Get current authenticated account",
)
def me(
    principal: Annotated[Principal, Depends(get_current_principal)],
    db: Annotated[Session, Depends(get_db)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    return AccountResponse.from_view(auth.get_account(db, principal.account_id))
