from typing import Annotated

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from authcore.api.client import build_context
from authcore.api.cookies import ACCESS_TOKEN_COOKIE
from authcore.services.auth_orchestrator import AuthOrchestrator, Principal, RequestContext
from authcore.services.container import AuthServices, get_auth_services
from authcore.services.errors import TokenInvalid
from authcore.services.token_codec import TokenKind

security = HTTPBearer(auto_error=False)


def get_services() -> AuthServices:
    return get_auth_services()


def get_orchestrator(services: Annotated[AuthServices, Depends(get_services)]) -> AuthOrchestrator:
    return services.orchestrator


def get_current_principal_optional(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
    services: Annotated[AuthServices, Depends(get_services)],
) -> Principal | None:
    token = credentials.credentials if credentials else request.cookies.get(ACCESS_TOKEN_COOKIE)
    if not token:
        return None
    verified = services.codec.verify(token, expected_kind=TokenKind.ACCESS)
    if not verified.valid:
        return None
    return Principal(account_id=verified.account_id, email=verified.email, role=verified.role)


def get_current_principal(
    principal: Annotated[Principal | None, Depends(get_current_principal_optional)],
) -> Principal:
    if principal is None:
        raise TokenInvalid("Not authenticated")
    return principal


def get_request_context(request: Request) -> RequestContext:
    return build_context(request)


def get_authenticated_context(
    request: Request,
    principal: Annotated[Principal, Depends(get_current_principal)],
) -> RequestContext:
    return build_context(request, principal)
