import logging

from fastapi import Request

from authcore.config import settings
from authcore.services.auth_orchestrator import Principal, RequestContext

logger = logging.getLogger(__name__)

USER_AGENT_MAX_LENGTH = 512


def get_client_ip(request: Request, trusted_proxies: set[str] | None = None) -> str:
    """Client address, honouring forwarding headers only from trusted proxies."""
    remote = request.client.host if request.client else "unknown"
    trusted = settings.TRUSTED_PROXIES if trusted_proxies is None else trusted_proxies
    if remote not in trusted:
        return remote

    forwarded_for = request.headers.get("x-forwarded-for", "")
    if forwarded_for and forwarded_for.lower() != "unknown":
        client_ip = forwarded_for.split(",")[0].strip()
        if client_ip:
            return client_ip

    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip and real_ip.lower() != "unknown":
        return real_ip
    return remote


def get_user_agent(request: Request) -> str | None:
    user_agent = request.headers.get("user-agent")
    if not user_agent:
        return None
    return user_agent[:USER_AGENT_MAX_LENGTH]


def build_context(request: Request, principal: Principal | None = None) -> RequestContext:
    return RequestContext(
        ip=get_client_ip(request),
        user_agent=get_user_agent(request),
        principal=principal,
    )
