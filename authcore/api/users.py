from datetime import datetime
from typing import Annotated

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from sqlalchemy.orm import Session

from authcore.api.auth import MIN_PASSWORD_LENGTH, MessageResponse
from authcore.dependencies import get_authenticated_context, get_orchestrator
from authcore.models import get_db
from authcore.services.auth_orchestrator import AuthOrchestrator, RequestContext
from authcore.services.clock import as_utc

router = APIRouter()


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(alias="currentPassword")
    new_password: str = Field(alias="newPassword", max_length=128)
    confirm_password: str = Field(alias="confirmPassword")

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        if len(v) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
        return v

    @model_validator(mode="after")
    def validate_confirm(self) -> "ChangePasswordRequest":
        if self.new_password != self.confirm_password:
            raise ValueError("Password confirmation does not match")
        return self


class SessionResponse(BaseModel):
    id: int
    ip_address: str | None = Field(default=None, alias="ipAddress")
    user_agent: str | None = Field(default=None, alias="userAgent")
    created_at: datetime | None = Field(default=None, alias="createdAt")
    expires_at: datetime = Field(alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True)


@router.post("/me/password", response_model=MessageResponse, summary="Change own password")
def change_password(
    body: ChangePasswordRequest,
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_authenticated_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    auth.change_password(db, ctx, body.current_password, body.new_password)
    return MessageResponse(message="Password has been changed")


@router.post("/me/send-verification", response_model=MessageResponse, summary="Email a new verification link")
def send_verification(
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_authenticated_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    if not auth.send_verification(db, ctx):
        return MessageResponse(message="Email is already verified")
    return MessageResponse(message="Verification email sent")


@router.get("/me/sessions", response_model=list[SessionResponse], summary="List active sessions")
def list_sessions(
    db: Annotated[Session, Depends(get_db)],
    ctx: Annotated[RequestContext, Depends(get_authenticated_context)],
    auth: Annotated[AuthOrchestrator, Depends(get_orchestrator)],
):
    return [
        SessionResponse(
            id=s.id,
            ipAddress=s.ip_address,
            userAgent=s.user_agent,
            createdAt=as_utc(s.created_at) if s.created_at else None,
            expiresAt=as_utc(s.expires_at),
        )
        for s in auth.list_sessions(db, ctx)
    ]
